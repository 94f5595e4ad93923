from __future__ import annotations

from . import db
from .deadline import Deadline, call_with_deadline
from .errors import ConflictInProgress, Indeterminate, InvalidSpec, MalformedDocument, NotFound, RuntimeUnavailable
from .executor import execute
from .leases import LeaseTable
from .models import (
    AttachmentState,
    CreateNetwork,
    DiffPlan,
    NetworkSpec,
    NetworkState,
    OutcomeKind,
    ReconciliationResult,
    ResultStatus,
    UpdateNetworkMetadata,
)
from .observer import observe, observe_containers, observe_disconnected
from .parser import parse
from .planner import plan
from .runtime import RuntimeHandle
from .serializer import serialize
from .settings import settings


class Coordinator:
    """Reconstructs documents from live networks and converges networks toward documents.

    At most one apply runs per network: the lease covers both the reference
    the caller used and the network name in the document.
    """

    def __init__(
        self,
        runtime: RuntimeHandle,
        leases: LeaseTable | None = None,
        max_passes: int | None = None,
        timeout_s: float | None = None,
    ):
        self.runtime = runtime
        self.leases = leases or LeaseTable()
        self.max_passes = max(1, int(settings.apply_max_passes if max_passes is None else max_passes))
        self.timeout_s = settings.operation_timeout_s if timeout_s is None else timeout_s

    def _deadline(self, timeout_s: float | None) -> Deadline | None:
        return Deadline.after(self.timeout_s if timeout_s is None else timeout_s)

    # --- reads -------------------------------------------------------------

    def detail(self, ref: str, timeout_s: float | None = None) -> NetworkState:
        return observe(self.runtime, ref, self._deadline(timeout_s))

    def disconnected(self, ref: str, timeout_s: float | None = None) -> list[AttachmentState]:
        return observe_disconnected(self.runtime, ref, self._deadline(timeout_s))

    def reconstruct(self, ref: str, timeout_s: float | None = None) -> str:
        return serialize(observe(self.runtime, ref, self._deadline(timeout_s)))

    def preview(self, ref: str, document: str, timeout_s: float | None = None) -> DiffPlan:
        """Plan without executing."""
        desired = parse(document)
        deadline = self._deadline(timeout_s)
        observed = self._observe_current(ref, desired, deadline)
        return plan(desired, observed, self._candidates(desired, observed, deadline))

    # --- apply -------------------------------------------------------------

    def apply(self, ref: str, document: str, timeout_s: float | None = None) -> ReconciliationResult:
        try:
            desired = parse(document)
        except (MalformedDocument, InvalidSpec) as e:
            db.log_event("WARN", f"Rejected document: {e}", network=ref)
            raise

        deadline = self._deadline(timeout_s)
        try:
            lease = self.leases.acquire([ref, desired.name])
        except ConflictInProgress as e:
            db.log_event("WARN", str(e), network=desired.name)
            raise

        try:
            started = db.try_log_event("INFO", f"Apply started for {ref} (lease {lease.token})", network=desired.name)
            result = self._converge(ref, desired, deadline)
            if not started:
                result.audit_failures += 1
            result.state = self._observe_after(ref, desired, deadline, result)
            _audit(
                result,
                "INFO" if result.success else "WARN",
                f"Apply finished: {result.status.value} after {result.passes} pass(es), "
                f"{len(result.outcomes)} operation(s), {len(result.warnings)} warning(s)",
                desired.name,
            )
            return result
        finally:
            self.leases.release(lease)

    def _converge(self, ref: str, desired: NetworkSpec, deadline: Deadline | None) -> ReconciliationResult:
        previous: ReconciliationResult | None = None
        attempt = 1
        while True:
            try:
                observed = self._observe_current(ref, desired, deadline)
                candidates = self._candidates(desired, observed, deadline)
            except (RuntimeUnavailable, Indeterminate) as e:
                # The first pass has not changed anything yet; later ones have.
                if previous is None:
                    raise
                previous.status = ResultStatus.indeterminate
                _audit(previous, "ERROR", f"Could not re-observe before pass {attempt}: {e}", desired.name)
                return previous

            diff = plan(desired, observed, candidates)
            result = execute(diff, self.runtime, deadline)
            result.passes = attempt
            if previous is not None:
                result.audit_failures += previous.audit_failures
            for w in diff.warnings:
                _audit(result, "WARN", f"Rejected immutable change: {w.describe()}", desired.name)
            # Re-plan from a fresh snapshot rather than re-issuing failed calls.
            if not result.failed or result.status == ResultStatus.indeterminate or attempt >= self.max_passes:
                return result
            previous = result
            attempt += 1

    def _observe_current(self, ref: str, desired: NetworkSpec, deadline: Deadline | None) -> NetworkState | None:
        """Snapshot of the target network, or None if it does not exist."""
        for candidate in dict.fromkeys([ref, desired.name]):
            try:
                return observe(self.runtime, candidate, deadline)
            except NotFound:
                continue
        return None

    def _candidates(
        self, desired: NetworkSpec, observed: NetworkState | None, deadline: Deadline | None
    ) -> tuple[AttachmentState, ...]:
        """Host containers, fetched only when two new references could name the same one."""
        new = [i for i in desired.attachments if observed is None or observed.attachment(i.ref) is None]
        if len(new) < 2:
            return ()
        return tuple(observe_containers(self.runtime, deadline))

    def _observe_after(
        self, ref: str, desired: NetworkSpec, deadline: Deadline | None, result: ReconciliationResult
    ) -> NetworkState | None:
        # A create or rebuild gives the network a new id, so look it up by name then.
        order = [desired.name, ref] if _replaced(result) else [ref, desired.name]
        try:
            for candidate in dict.fromkeys(order):
                try:
                    return observe(self.runtime, candidate, deadline)
                except NotFound:
                    continue
        except (Indeterminate, RuntimeUnavailable) as e:
            _audit(result, "ERROR", f"Could not re-observe after apply: {e}", desired.name)
            result.status = ResultStatus.indeterminate
        return None

    # --- passthroughs ------------------------------------------------------

    def start_container(self, ref: str, timeout_s: float | None = None) -> None:
        call_with_deadline(self._deadline(timeout_s), self.runtime.start_container, ref)
        db.log_event("INFO", f"Started container {ref}", container=ref)

    def stop_container(self, ref: str, timeout_s: float | None = None) -> None:
        call_with_deadline(self._deadline(timeout_s), self.runtime.stop_container, ref)
        db.log_event("INFO", f"Stopped container {ref}", container=ref)


def _audit(result: ReconciliationResult, level: str, message: str, network: str) -> None:
    if not db.try_log_event(level, message, network=network):
        result.audit_failures += 1


def _replaced(result: ReconciliationResult) -> bool:
    return any(
        isinstance(o.operation, (CreateNetwork, UpdateNetworkMetadata))
        and o.kind in {OutcomeKind.applied, OutcomeKind.indeterminate}
        for o in result.outcomes
    )
