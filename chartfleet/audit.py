"""
Audit logging for rollout actions.

Records every release created, updated or deleted and every batch decision
as JSON lines, so the history of a rollout can be replayed after the fact.
"""

import logging
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, Optional, Union

logger = logging.getLogger(__name__)

# Audit log location, overridden from configuration at startup
AUDIT_LOG_PATH = Path("/var/log/chartfleet/audit.jsonl")
AUDIT_ENABLED = True


def configure_audit(enabled: bool, path: Union[str, Path]) -> None:
    """Set where audit entries go, or turn auditing off."""
    global AUDIT_LOG_PATH, AUDIT_ENABLED
    AUDIT_ENABLED = enabled
    AUDIT_LOG_PATH = Path(path)


def audit_rollout_action(
    action: str,
    deployment: str,
    details: Optional[Dict[str, Any]] = None,
    cluster: Optional[str] = None,
    success: Optional[bool] = None,
) -> None:
    """
    Log a rollout action for audit purposes.

    Failures to write are logged and never propagate.

    Args:
        action: Action taken (release_created, release_updated, release_deleted,
            batch_started, batch_advanced, rollout_completed, finalizer_removed)
        deployment: "namespace/name" of the ChartDeployment
        details: Additional details about the action
        cluster: "namespace/name" of the target cluster, if any
        success: Whether the action succeeded
    """
    if not AUDIT_ENABLED:
        return

    try:
        AUDIT_LOG_PATH.parent.mkdir(parents=True, exist_ok=True)

        audit_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "action": action,
            "deployment": deployment,
            "details": details or {},
        }
        if cluster is not None:
            audit_entry["cluster"] = cluster
        if success is not None:
            audit_entry["success"] = success

        # Append to audit log (JSONL format)
        with open(AUDIT_LOG_PATH, "a") as f:
            f.write(json.dumps(audit_entry) + "\n")

        logger.debug(f"Audit: {action} for {deployment}")

    except Exception as e:
        # Don't fail a reconcile pass due to audit logging issues
        logger.error(f"Failed to write audit log: {e}")
