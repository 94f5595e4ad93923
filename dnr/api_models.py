from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from .models import (
    AttachmentState,
    DiffPlan,
    NetworkState,
    Operation,
    OperationOutcome,
    ReconciliationResult,
    RejectedImmutableChange,
)


class DocumentRequest(BaseModel):
    yaml: str = Field(..., description="Declarative network document (compose-like YAML)")


class Reconstruction(BaseModel):
    yaml: str


# Response shapes below mirror the dashboard's NetworkDetail contract (camelCase, Docker-style keys).


class PortMapping(BaseModel):
    HostIp: str
    HostPort: str


class ContainerState(BaseModel):
    Running: bool
    Status: str


class IpamEntry(BaseModel):
    Subnet: str
    Gateway: str = ""
    IPRange: Optional[str] = None


class AttachedContainer(BaseModel):
    id: str
    name: str
    ipv4Address: str
    ipv6Address: str
    macAddress: str
    ports: dict[str, Optional[list[PortMapping]]]
    state: ContainerState


class NetworkDetail(BaseModel):
    id: str
    name: str
    driver: str
    scope: str
    created: str
    ipam: list[IpamEntry]
    internal: bool
    attachableContainers: list[AttachedContainer]
    options: dict[str, str]
    labels: dict[str, str]
    enableIPv6: bool


class DisconnectedContainer(BaseModel):
    id: str
    name: str
    state: ContainerState


class PlannedOperation(BaseModel):
    index: int
    kind: str
    network: str
    container: Optional[str] = None
    description: str


class OperationResult(PlannedOperation):
    outcome: str
    reason: str = ""


class ImmutableChange(BaseModel):
    field: str
    observed: str
    desired: str
    message: str


class PlanResponse(BaseModel):
    empty: bool
    operations: list[PlannedOperation]
    warnings: list[ImmutableChange]


class ApplyResponse(BaseModel):
    success: bool
    status: str
    passes: int
    audit_failures: int = 0
    operations: list[OperationResult]
    warnings: list[ImmutableChange]
    state: Optional[NetworkDetail] = None


def container_state(a: AttachmentState) -> ContainerState:
    return ContainerState(Running=a.running, Status=a.status)


def network_detail(state: NetworkState) -> NetworkDetail:
    return NetworkDetail(
        id=state.id,
        name=state.name,
        driver=state.driver,
        scope=state.scope,
        created=state.created,
        ipam=[IpamEntry(Subnet=p.subnet, Gateway=p.gateway or "", IPRange=p.ip_range) for p in state.ipam],
        internal=state.internal,
        attachableContainers=[
            AttachedContainer(
                id=a.container_id,
                name=a.name,
                ipv4Address=a.ipv4_address,
                ipv6Address=a.ipv6_address,
                macAddress=a.mac_address,
                # Docker reports exposed-but-unpublished ports as null
                ports={
                    port: [PortMapping(HostIp=b.host_ip, HostPort=b.host_port) for b in bindings] or None
                    for port, bindings in a.ports.items()
                },
                state=container_state(a),
            )
            for a in state.attachments
        ],
        options=dict(state.options),
        labels=dict(state.labels),
        enableIPv6=state.enable_ipv6,
    )


def disconnected_container(a: AttachmentState) -> DisconnectedContainer:
    return DisconnectedContainer(id=a.container_id, name=a.name, state=container_state(a))


def planned_operation(index: int, op: Operation) -> PlannedOperation:
    return PlannedOperation(index=index, kind=op.kind, network=op.network, container=op.container, description=op.describe())


def operation_result(o: OperationOutcome) -> OperationResult:
    op = o.operation
    return OperationResult(
        index=o.index,
        kind=op.kind,
        network=op.network,
        container=op.container,
        description=op.describe(),
        outcome=o.kind.value,
        reason=o.reason,
    )


def immutable_change(w: RejectedImmutableChange) -> ImmutableChange:
    return ImmutableChange(field=w.field, observed=w.observed, desired=w.desired, message=w.describe())


def plan_response(diff: DiffPlan) -> PlanResponse:
    return PlanResponse(
        empty=diff.is_empty,
        operations=[planned_operation(i, op) for i, op in enumerate(diff.operations)],
        warnings=[immutable_change(w) for w in diff.warnings],
    )


def apply_response(result: ReconciliationResult) -> ApplyResponse:
    return ApplyResponse(
        success=result.success,
        status=result.status.value,
        passes=result.passes,
        audit_failures=result.audit_failures,
        operations=[operation_result(o) for o in result.outcomes],
        warnings=[immutable_change(w) for w in result.warnings],
        state=network_detail(result.state) if result.state is not None else None,
    )
