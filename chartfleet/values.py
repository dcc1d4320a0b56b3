"""
Per-cluster values rendering.

A ChartDeployment's values_template is a Jinja2 template rendered once per
target cluster. The template sees the cluster and the deployment as plain
dicts with their wire (camelCase) field names, e.g.
``{{ cluster.metadata.labels.region }}`` or
``{{ cluster.spec.controlPlaneEndpoint.host }}``.
"""

import json
import logging
from typing import Any, Dict, Optional

import jinja2
import yaml

from chartfleet.errors import ValuesRenderError
from chartfleet.models.chart_deployment import ChartDeployment
from chartfleet.models.cluster import Cluster

logger = logging.getLogger(__name__)

_JINJA_ENV: Optional[jinja2.Environment] = None


def _build_jinja_env() -> jinja2.Environment:
    """Builds the Jinja2 environment used for values templates."""
    env = jinja2.Environment(
        undefined=jinja2.StrictUndefined,
        autoescape=False,
        keep_trailing_newline=True,
    )
    env.filters["tojson"] = lambda d, indent=None: json.dumps(d, default=str, indent=indent)
    env.filters["toyaml"] = lambda d: yaml.safe_dump(d, default_flow_style=False).rstrip("\n")
    return env


def _ensure_jinja_env() -> jinja2.Environment:
    global _JINJA_ENV
    if _JINJA_ENV is None:
        _JINJA_ENV = _build_jinja_env()
    return _JINJA_ENV


def template_context(deployment: ChartDeployment, cluster: Cluster) -> Dict[str, Any]:
    return {"cluster": cluster.to_wire(), "deployment": deployment.to_wire()}


def render_values(deployment: ChartDeployment, cluster: Cluster) -> str:
    """
    Render the deployment's values for one cluster.

    Args:
        deployment: Deployment providing values_template
        cluster: Target cluster

    Returns:
        Rendered YAML document (empty string for an empty template)

    Raises:
        ValuesRenderError: If the template fails to render, references an
            undefined variable, or produces invalid YAML
    """
    source = deployment.spec.values_template
    if not source.strip():
        return ""

    cluster_name = cluster.namespaced_name
    try:
        template = _ensure_jinja_env().from_string(source)
        rendered = template.render(template_context(deployment, cluster))
    except jinja2.TemplateError as e:
        raise ValuesRenderError(cluster_name, str(e)) from e

    try:
        parsed = yaml.safe_load(rendered)
    except yaml.YAMLError as e:
        raise ValuesRenderError(cluster_name, f"rendered values are not valid YAML: {e}") from e

    if parsed is not None and not isinstance(parsed, dict):
        raise ValuesRenderError(
            cluster_name, f"rendered values must be a mapping, got {type(parsed).__name__}"
        )

    logger.debug(f"Rendered {len(rendered)} bytes of values for {cluster_name}")
    return rendered
