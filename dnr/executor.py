"""Plan executor.

Runs operations strictly in plan order and never retries. Each operation
ends in exactly one outcome:

  applied / already_satisfied  the runtime is now in the requested state
  failed                       hard failure, recorded, the plan continues
  skipped                      a prerequisite failed, or the deadline passed
  indeterminate                the deadline expired mid-call; re-observe
"""
from __future__ import annotations

from typing import Any, Callable

from . import db
from .deadline import Deadline, call_with_deadline
from .errors import Indeterminate, NotFound, OperationFailed, RuntimeUnavailable
from .models import (
    ConnectContainer,
    CreateNetwork,
    DiffPlan,
    DisconnectContainer,
    Operation,
    OperationOutcome,
    OutcomeKind,
    ReconciliationResult,
    RemoveNetwork,
    UpdateNetworkMetadata,
    overall_status,
)
from .runtime import ApplyStatus, RuntimeHandle

_LEVELS = {
    OutcomeKind.applied: "INFO",
    OutcomeKind.already_satisfied: "INFO",
    OutcomeKind.skipped: "WARN",
    OutcomeKind.failed: "ERROR",
    OutcomeKind.indeterminate: "ERROR",
}


def execute(plan: DiffPlan, runtime: RuntimeHandle, deadline: Deadline | None = None) -> ReconciliationResult:
    outcomes: list[OperationOutcome] = []
    create_failed = False
    failed_disconnects: set[str] = set()
    abandoned = False
    audit_failures = 0

    for index, op in enumerate(plan.operations):
        skip = _skip_reason(op, abandoned, create_failed, failed_disconnects)
        if skip:
            outcome = OperationOutcome(index=index, operation=op, kind=OutcomeKind.skipped, reason=skip)
        else:
            outcome = _run(index, op, runtime, deadline)
            if outcome.kind == OutcomeKind.indeterminate:
                abandoned = True
            elif outcome.kind == OutcomeKind.failed:
                if isinstance(op, CreateNetwork):
                    create_failed = True
                elif isinstance(op, DisconnectContainer):
                    failed_disconnects.add(op.container)
        if not _audit(outcome):
            audit_failures += 1
        outcomes.append(outcome)

    return ReconciliationResult(
        status=overall_status(outcomes, plan.warnings),
        outcomes=outcomes,
        warnings=plan.warnings,
        audit_failures=audit_failures,
    )


def _skip_reason(op: Operation, abandoned: bool, create_failed: bool, failed_disconnects: set[str]) -> str:
    if abandoned:
        return "deadline expired before this operation ran"
    if create_failed:
        return "network creation failed"
    if isinstance(op, ConnectContainer) and op.container in failed_disconnects:
        return f"disconnect of {op.container} failed"
    if isinstance(op, RemoveNetwork) and failed_disconnects:
        return "containers are still attached"
    return ""


def _run(index: int, op: Operation, runtime: RuntimeHandle, deadline: Deadline | None) -> OperationOutcome:
    fn, kwargs = _dispatch(op, runtime)
    try:
        status = call_with_deadline(deadline, fn, **kwargs)
    except Indeterminate as e:
        return OperationOutcome(index=index, operation=op, kind=OutcomeKind.indeterminate, reason=str(e))
    except (OperationFailed, NotFound, RuntimeUnavailable) as e:
        return OperationOutcome(index=index, operation=op, kind=OutcomeKind.failed, reason=str(e))

    if status == ApplyStatus.already_satisfied:
        return OperationOutcome(index=index, operation=op, kind=OutcomeKind.already_satisfied, reason="already in desired state")
    return OperationOutcome(index=index, operation=op, kind=OutcomeKind.applied)


def _dispatch(op: Operation, runtime: RuntimeHandle) -> tuple[Callable[..., ApplyStatus], dict[str, Any]]:
    if isinstance(op, CreateNetwork):
        return runtime.create_network, {"spec": op.spec}
    if isinstance(op, UpdateNetworkMetadata):
        return runtime.update_network_metadata, {
            "network": op.network,
            "options": op.options,
            "labels": op.labels,
            "driver": op.driver,
            "ipam": op.ipam,
            "internal": op.internal,
            "enable_ipv6": op.enable_ipv6,
        }
    if isinstance(op, ConnectContainer):
        return runtime.connect, {
            "network": op.network,
            "container": op.container,
            "ipv4_address": op.ipv4_address,
            "ipv6_address": op.ipv6_address,
        }
    if isinstance(op, DisconnectContainer):
        return runtime.disconnect, {"network": op.network, "container": op.container}
    if isinstance(op, RemoveNetwork):
        return runtime.remove_network, {"network": op.network}
    raise TypeError(f"unknown operation {op!r}")


def _audit(outcome: OperationOutcome) -> bool:
    op = outcome.operation
    msg = f"[{outcome.index}] {op.describe()}: {outcome.kind.value}"
    if outcome.reason and outcome.kind != OutcomeKind.already_satisfied:
        msg += f" ({outcome.reason})"
    return db.try_log_event(_LEVELS[outcome.kind], msg, network=op.network, container=op.container)
