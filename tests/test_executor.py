import sqlite3

from dnr import db
from dnr.deadline import Deadline
from dnr.executor import execute
from dnr.models import (
    ConnectContainer,
    CreateNetwork,
    DiffPlan,
    DisconnectContainer,
    NetworkSpec,
    OutcomeKind,
    RejectedImmutableChange,
    RemoveNetwork,
    ResultStatus,
)


def _kinds(result):
    return [o.kind for o in result.outcomes]


def test_runs_operations_in_order(runtime):
    diff = DiffPlan(
        operations=(
            DisconnectContainer(network="net1", container="A"),
            ConnectContainer(network="net1", container="C"),
        )
    )
    result = execute(diff, runtime)
    assert _kinds(result) == [OutcomeKind.applied, OutcomeKind.applied]
    assert result.status == ResultStatus.fully_applied
    assert runtime.calls == [("disconnect", "A"), ("connect", "C")]


def test_already_satisfied_counts_as_success(runtime):
    diff = DiffPlan(
        operations=(
            ConnectContainer(network="net1", container="A"),
            DisconnectContainer(network="net1", container="C"),
        )
    )
    result = execute(diff, runtime)
    assert _kinds(result) == [OutcomeKind.already_satisfied, OutcomeKind.already_satisfied]
    assert result.success


def test_failed_create_skips_everything_after_it(runtime):
    runtime.failures[("create_network", "net2")] = "pool overlaps with other one on this address space"
    spec = NetworkSpec(name="net2")
    diff = DiffPlan(
        operations=(
            CreateNetwork(spec=spec),
            ConnectContainer(network="net2", container="A"),
            ConnectContainer(network="net2", container="B"),
        )
    )
    result = execute(diff, runtime)
    assert _kinds(result) == [OutcomeKind.failed, OutcomeKind.skipped, OutcomeKind.skipped]
    assert "pool overlaps" in result.outcomes[0].reason
    assert result.status == ResultStatus.rejected
    assert ("connect", "A") not in runtime.calls


def test_failed_disconnect_skips_only_its_own_reconnect(runtime):
    runtime.failures[("disconnect", "B")] = "endpoint is busy"
    diff = DiffPlan(
        operations=(
            DisconnectContainer(network="net1", container="B"),
            ConnectContainer(network="net1", container="B", ipv4_address="172.20.0.60"),
            ConnectContainer(network="net1", container="C"),
        )
    )
    result = execute(diff, runtime)
    assert _kinds(result) == [OutcomeKind.failed, OutcomeKind.skipped, OutcomeKind.applied]
    assert result.status == ResultStatus.partially_applied
    assert [o.index for o in result.failed] == [0]


def test_remove_is_skipped_while_containers_remain(runtime):
    runtime.failures[("disconnect", "A")] = "device or resource busy"
    diff = DiffPlan(
        operations=(
            DisconnectContainer(network="net1", container="A"),
            DisconnectContainer(network="net1", container="B"),
            RemoveNetwork(network="net1"),
        )
    )
    result = execute(diff, runtime)
    assert _kinds(result) == [OutcomeKind.failed, OutcomeKind.applied, OutcomeKind.skipped]
    assert "net1" in runtime.networks


def test_connect_failure_does_not_stop_the_plan(runtime):
    diff = DiffPlan(
        operations=(
            ConnectContainer(network="net1", container="C", ipv4_address="172.20.0.50"),
            DisconnectContainer(network="net1", container="A"),
        )
    )
    result = execute(diff, runtime)
    assert _kinds(result) == [OutcomeKind.failed, OutcomeKind.applied]
    assert "already in use" in result.outcomes[0].reason


def test_deadline_expiry_is_indeterminate_and_abandons_the_rest(runtime):
    runtime.hang.add(("connect", "C"))
    runtime.hang_s = 0.5
    diff = DiffPlan(
        operations=(
            DisconnectContainer(network="net1", container="A"),
            ConnectContainer(network="net1", container="C"),
            DisconnectContainer(network="net1", container="B"),
        )
    )
    result = execute(diff, runtime, Deadline.after(0.2))
    assert _kinds(result) == [OutcomeKind.applied, OutcomeKind.indeterminate, OutcomeKind.skipped]
    assert result.status == ResultStatus.indeterminate
    assert ("disconnect", "B") not in runtime.calls


def test_warnings_prevent_full_success(runtime):
    warning = RejectedImmutableChange(field="driver", observed="bridge", desired="overlay")
    result = execute(DiffPlan(operations=(), warnings=(warning,)), runtime)
    assert result.status == ResultStatus.rejected
    assert result.warnings == (warning,)

    result = execute(DiffPlan(operations=(ConnectContainer(network="net1", container="C"),), warnings=(warning,)), runtime)
    assert result.status == ResultStatus.partially_applied


def test_empty_plan_is_fully_applied(runtime):
    result = execute(DiffPlan(), runtime)
    assert result.success
    assert result.outcomes == []
    assert runtime.calls == []


def test_every_outcome_is_audited(runtime):
    runtime.failures[("connect", "C")] = "container is marked for removal"
    diff = DiffPlan(
        operations=(
            DisconnectContainer(network="net1", container="A"),
            ConnectContainer(network="net1", container="C"),
        )
    )
    execute(diff, runtime)
    events = db.latest_events(network="net1")
    assert [e["level"] for e in events] == ["ERROR", "INFO"]
    assert events[0]["container"] == "C"
    assert "container is marked for removal" in events[0]["message"]
    assert events[1]["message"] == "[0] disconnect A from net1: applied"


def test_unwritable_audit_log_does_not_stop_the_plan(runtime, monkeypatch):
    def locked():
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(db, "connect", locked)
    diff = DiffPlan(
        operations=(
            DisconnectContainer(network="net1", container="A"),
            ConnectContainer(network="net1", container="C"),
        )
    )
    result = execute(diff, runtime)
    assert _kinds(result) == [OutcomeKind.applied, OutcomeKind.applied]
    assert runtime.calls == [("disconnect", "A"), ("connect", "C")]
    assert result.status == ResultStatus.fully_applied
    assert result.audit_failures == 2
