"""
Shared fixtures for ChartFleet tests.
"""

import pytest

from chartfleet.audit import configure_audit
from chartfleet.models import (
    ChartDeployment,
    ChartDeploymentSpec,
    Cluster,
    ClusterRelease,
    Condition,
    LabelSelector,
    ObjectMeta,
    RolloutOptions,
    RolloutPolicy,
)
from chartfleet.store.memory import InMemoryStore


@pytest.fixture(autouse=True)
def audit_to_tmp(tmp_path):
    """Keep audit entries out of /var/log."""
    path = tmp_path / "audit.jsonl"
    configure_audit(True, path)
    yield path
    configure_audit(False, path)


@pytest.fixture
def store():
    """Empty in-memory store."""
    return InMemoryStore()


@pytest.fixture
def make_cluster():
    """Factory for Cluster objects."""

    def _make(name, labels=None, namespace="default"):
        return Cluster(
            metadata=ObjectMeta(name=name, namespace=namespace, labels=labels or {}),
            spec={"controlPlaneEndpoint": {"host": f"{name}.example.com", "port": 6443}},
        )

    return _make


@pytest.fixture
def make_deployment():
    """Factory for ChartDeployment objects."""

    def _make(
        name="podinfo",
        namespace="default",
        match_labels=None,
        install=None,
        upgrade=None,
        values_template="",
        reconcile_strategy="Normal",
        version="6.5.0",
    ):
        rollout = None
        if install is not None or upgrade is not None:
            rollout = RolloutPolicy(
                install=RolloutOptions(**install) if install is not None else None,
                upgrade=RolloutOptions(**upgrade) if upgrade is not None else None,
            )
        return ChartDeployment(
            metadata=ObjectMeta(name=name, namespace=namespace),
            spec=ChartDeploymentSpec(
                cluster_selector=LabelSelector(match_labels=match_labels or {"env": "prod"}),
                repo_url="https://stefanprodan.github.io/podinfo",
                chart_name="podinfo",
                version=version,
                release_namespace="podinfo",
                values_template=values_template,
                reconcile_strategy=reconcile_strategy,
                rollout=rollout,
            ),
        )

    return _make


@pytest.fixture
def add_clusters(store, make_cluster):
    """Create n clusters labelled env=prod named cluster-00, cluster-01, ..."""

    async def _add(count, labels=None, namespace="default"):
        clusters = []
        for i in range(count):
            cluster = make_cluster(
                f"cluster-{i:02d}", labels=labels or {"env": "prod"}, namespace=namespace
            )
            clusters.append(await store.create(cluster))
        return clusters

    return _add


@pytest.fixture
def mark_ready(store):
    """Simulate the release installer reporting a release as Ready."""

    async def _mark(release: ClusterRelease, status: str = "True") -> ClusterRelease:
        current = await store.get(ClusterRelease, release.key)
        current.status.conditions = [Condition(type="Ready", status=status)]
        current.status.observed_generation = current.metadata.generation
        return await store.update(current)

    return _mark
