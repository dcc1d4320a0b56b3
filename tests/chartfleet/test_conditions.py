"""
Tests for condition primitives and aggregation.
"""

from chartfleet import conditions
from chartfleet.models import (
    ClusterReference,
    ClusterRelease,
    ClusterReleaseSpec,
    Condition,
    ObjectMeta,
)


def release(name, ready=None, severity=None, reason=None, message=None):
    obj = ClusterRelease(
        metadata=ObjectMeta(name=name),
        spec=ClusterReleaseSpec(
            cluster_ref=ClusterReference(namespace="default", name=name),
            repo_url="https://charts.example.com",
            chart_name="app",
        ),
    )
    if ready is not None:
        obj.status.conditions = [
            Condition(
                type="Ready", status=ready, severity=severity, reason=reason, message=message
            )
        ]
    return obj


class TestSetCondition:
    """Test writing conditions."""

    def test_mark_true_and_read_back(self, make_deployment):
        deployment = make_deployment()
        conditions.mark_true(deployment, "ClusterReleasesReady")

        assert conditions.is_true(deployment, "ClusterReleasesReady")
        assert not conditions.is_false(deployment, "ClusterReleasesReady")
        assert conditions.get(deployment, "ClusterReleasesReady").last_transition_time

    def test_mark_false_formats_message(self, make_deployment):
        deployment = make_deployment()
        conditions.mark_false(
            deployment, "ClusterReleasesReady", "Waiting", "Info", "%d of %d ready", 1, 3
        )

        condition = conditions.get(deployment, "ClusterReleasesReady")
        assert condition.status == "False"
        assert condition.severity == "Info"
        assert condition.reason == "Waiting"
        assert condition.message == "1 of 3 ready"

    def test_message_without_args_is_not_formatted(self, make_deployment):
        deployment = make_deployment()
        conditions.mark_false(deployment, "X", "Reason", "Error", "100% broken")
        assert conditions.get(deployment, "X").message == "100% broken"

    def test_missing_condition_is_unknown(self, make_deployment):
        deployment = make_deployment()
        assert conditions.is_unknown(deployment, "Ready")
        assert not conditions.is_true(deployment, "Ready")

    def test_transition_time_kept_when_status_unchanged(self, make_deployment):
        deployment = make_deployment()
        conditions.mark_false(deployment, "X", "First", "Info")
        conditions.get(deployment, "X").last_transition_time = "2024-01-01T00:00:00Z"

        conditions.mark_false(deployment, "X", "Second", "Warning")

        condition = conditions.get(deployment, "X")
        assert condition.reason == "Second"
        assert condition.last_transition_time == "2024-01-01T00:00:00Z"

    def test_transition_time_changes_with_status(self, make_deployment):
        deployment = make_deployment()
        conditions.mark_false(deployment, "X", "First", "Info")
        conditions.get(deployment, "X").last_transition_time = "2024-01-01T00:00:00Z"

        conditions.mark_true(deployment, "X")

        assert conditions.get(deployment, "X").last_transition_time != "2024-01-01T00:00:00Z"

    def test_sorted_with_ready_first(self, make_deployment):
        deployment = make_deployment()
        conditions.mark_true(deployment, "Zeta")
        conditions.mark_true(deployment, "Alpha")
        conditions.mark_true(deployment, "Ready")

        assert [c.type for c in deployment.status.conditions] == ["Ready", "Alpha", "Zeta"]

    def test_delete(self, make_deployment):
        deployment = make_deployment()
        conditions.mark_true(deployment, "X")
        conditions.delete(deployment, "X")
        assert conditions.get(deployment, "X") is None


class TestSetAggregate:
    """Test folding child Ready conditions into a parent condition."""

    def test_no_sources_is_true(self, make_deployment):
        deployment = make_deployment()
        conditions.set_aggregate(deployment, "ClusterReleasesReady", [])
        assert conditions.is_true(deployment, "ClusterReleasesReady")

    def test_all_ready(self, make_deployment):
        deployment = make_deployment()
        conditions.set_aggregate(
            deployment, "ClusterReleasesReady", [release("a", "True"), release("b", "True")]
        )
        assert conditions.is_true(deployment, "ClusterReleasesReady")

    def test_missing_child_condition_counts_as_unknown(self, make_deployment):
        deployment = make_deployment()
        conditions.set_aggregate(
            deployment, "ClusterReleasesReady", [release("a", "True"), release("b")]
        )

        condition = conditions.get(deployment, "ClusterReleasesReady")
        assert condition.status == "Unknown"
        assert "b" in condition.message

    def test_single_false_carries_child_message(self, make_deployment):
        deployment = make_deployment()
        sources = [
            release("a", "True"),
            release("b", "False", "Warning", "InstallFailed", "timed out"),
        ]
        conditions.set_aggregate(deployment, "ClusterReleasesReady", sources)

        condition = conditions.get(deployment, "ClusterReleasesReady")
        assert condition.status == "False"
        assert condition.reason == "InstallFailed"
        assert condition.severity == "Warning"
        assert condition.message == "b: timed out"

    def test_false_wins_over_unknown_with_worst_severity(self, make_deployment):
        deployment = make_deployment()
        sources = [
            release("a", "False", "Info", "Progressing"),
            release("b", "False", "Error", "InstallFailed"),
            release("c"),
        ]
        conditions.set_aggregate(deployment, "ClusterReleasesReady", sources)

        condition = conditions.get(deployment, "ClusterReleasesReady")
        assert condition.status == "False"
        assert condition.severity == "Error"
        assert condition.reason == "InstallFailed"
        assert condition.message == "2 of 3 ClusterReleases not ready: a, b"


class TestSetSummary:
    """Test folding a parent's own conditions into Ready."""

    def test_all_true(self, make_deployment):
        deployment = make_deployment()
        conditions.mark_true(deployment, "A")
        conditions.mark_true(deployment, "B")

        conditions.set_summary(deployment, ["A", "B"])

        assert conditions.is_true(deployment, "Ready")

    def test_false_propagates(self, make_deployment):
        deployment = make_deployment()
        conditions.mark_true(deployment, "A")
        conditions.mark_false(deployment, "B", "Broken", "Error", "selector invalid")

        conditions.set_summary(deployment, ["A", "B"])

        ready = conditions.get(deployment, "Ready")
        assert ready.status == "False"
        assert ready.reason == "Broken"
        assert ready.message == "B: selector invalid"

    def test_missing_types_skipped(self, make_deployment):
        deployment = make_deployment()
        conditions.set_summary(deployment, ["A", "B"])
        assert conditions.get(deployment, "Ready") is None
