"""Canonical in-memory model shared by every stage.

NetworkState is what the runtime reports, NetworkSpec is what the operator
declares. Plans and results are built from these and discarded after each
request.
"""
from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Union


@dataclass(frozen=True)
class IpamPool:
    subnet: str
    gateway: str | None = None
    ip_range: str | None = None

    @property
    def network(self) -> ipaddress.IPv4Network | ipaddress.IPv6Network:
        return ipaddress.ip_network(self.subnet, strict=False)

    @property
    def version(self) -> int:
        return self.network.version


@dataclass(frozen=True)
class PortBinding:
    host_ip: str
    host_port: str


@dataclass(frozen=True)
class AttachmentState:
    """One container's endpoint on the observed network.

    requested_ipv4/requested_ipv6 are the static addresses recorded on the
    endpoint (None when the runtime picked the address).
    """

    container_id: str
    name: str
    ipv4_address: str = ""
    ipv6_address: str = ""
    mac_address: str = ""
    ports: dict[str, tuple[PortBinding, ...]] = field(default_factory=dict)
    running: bool = False
    status: str = ""
    requested_ipv4: str | None = None
    requested_ipv6: str | None = None


@dataclass(frozen=True)
class NetworkState:
    id: str
    name: str
    driver: str
    scope: str = "local"
    created: str = ""
    internal: bool = False
    enable_ipv6: bool = False
    ipam: tuple[IpamPool, ...] = ()
    options: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)
    attachments: tuple[AttachmentState, ...] = ()

    def __post_init__(self) -> None:
        ids = [a.container_id for a in self.attachments]
        if len(ids) != len(set(ids)):
            raise ValueError(f"duplicate container ids in network '{self.name}'")
        nets = [p.network for p in self.ipam]
        for i, a in enumerate(nets):
            for b in nets[i + 1 :]:
                if a.version == b.version and a.overlaps(b):
                    raise ValueError(f"overlapping IPAM subnets {a} and {b} in network '{self.name}'")

    def attachment(self, ref: str) -> AttachmentState | None:
        for a in self.attachments:
            if matches_container(ref, a):
                return a
        return None


@dataclass(frozen=True)
class AttachmentIntent:
    ref: str  # container name or id
    ipv4_address: str | None = None
    ipv6_address: str | None = None


@dataclass(frozen=True)
class NetworkSpec:
    name: str
    driver: str = "bridge"
    ipam: tuple[IpamPool, ...] = ()
    options: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)
    internal: bool = False
    enable_ipv6: bool = False
    attachments: tuple[AttachmentIntent, ...] = ()
    # Explicit removal request; never inferred from an empty attachment list.
    absent: bool = False


def matches_container(ref: str, attachment: AttachmentState) -> bool:
    """Return True if a container reference (name, id or short id) names this attachment."""
    if not ref:
        return False
    ref = ref.lstrip("/")
    if ref == attachment.name or ref == attachment.container_id:
        return True
    return len(ref) >= 12 and attachment.container_id.startswith(ref)


# --- plan operations -------------------------------------------------------


@dataclass(frozen=True)
class CreateNetwork:
    spec: NetworkSpec
    kind: ClassVar[str] = "create_network"

    @property
    def network(self) -> str:
        return self.spec.name

    @property
    def container(self) -> str | None:
        return None

    def describe(self) -> str:
        pools = ", ".join(p.subnet for p in self.spec.ipam) or "auto"
        return f"create network {self.spec.name} (driver {self.spec.driver}, ipam {pools})"


@dataclass(frozen=True)
class UpdateNetworkMetadata:
    """Replace options/labels of an existing network.

    Carries the network's current driver, IPAM and flags so a runtime that
    cannot edit metadata in place can rebuild the network unchanged otherwise.
    """

    network: str
    options: dict[str, str]
    labels: dict[str, str]
    driver: str
    ipam: tuple[IpamPool, ...] = ()
    internal: bool = False
    enable_ipv6: bool = False
    kind: ClassVar[str] = "update_network_metadata"

    @property
    def container(self) -> str | None:
        return None

    def describe(self) -> str:
        return f"update metadata of network {self.network} ({len(self.options)} options, {len(self.labels)} labels)"


@dataclass(frozen=True)
class ConnectContainer:
    network: str
    container: str
    ipv4_address: str | None = None
    ipv6_address: str | None = None
    kind: ClassVar[str] = "connect_container"

    def describe(self) -> str:
        extra = [x for x in (self.ipv4_address, self.ipv6_address) if x]
        suffix = f" at {', '.join(extra)}" if extra else ""
        return f"connect {self.container} to {self.network}{suffix}"


@dataclass(frozen=True)
class DisconnectContainer:
    network: str
    container: str
    kind: ClassVar[str] = "disconnect_container"

    def describe(self) -> str:
        return f"disconnect {self.container} from {self.network}"


@dataclass(frozen=True)
class RemoveNetwork:
    network: str
    kind: ClassVar[str] = "remove_network"

    @property
    def container(self) -> str | None:
        return None

    def describe(self) -> str:
        return f"remove network {self.network}"


Operation = Union[CreateNetwork, UpdateNetworkMetadata, ConnectContainer, DisconnectContainer, RemoveNetwork]


@dataclass(frozen=True)
class RejectedImmutableChange:
    """Plan-level warning: the document changes a field the runtime cannot mutate."""

    field: str
    observed: str
    desired: str

    def describe(self) -> str:
        return f"{self.field} cannot be changed in place (observed {self.observed!r}, desired {self.desired!r})"


@dataclass(frozen=True)
class DiffPlan:
    operations: tuple[Operation, ...] = ()
    warnings: tuple[RejectedImmutableChange, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.operations

    def __len__(self) -> int:
        return len(self.operations)


# --- results ---------------------------------------------------------------


class OutcomeKind(str, Enum):
    applied = "applied"
    already_satisfied = "already_satisfied"
    failed = "failed"
    skipped = "skipped"
    indeterminate = "indeterminate"


class ResultStatus(str, Enum):
    fully_applied = "fully_applied"
    partially_applied = "partially_applied"
    rejected = "rejected"
    indeterminate = "indeterminate"


@dataclass(frozen=True)
class OperationOutcome:
    index: int
    operation: Operation
    kind: OutcomeKind
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.kind in {OutcomeKind.applied, OutcomeKind.already_satisfied}


def overall_status(outcomes: list[OperationOutcome] | tuple[OperationOutcome, ...], warnings: tuple = ()) -> ResultStatus:
    if any(o.kind == OutcomeKind.indeterminate for o in outcomes):
        return ResultStatus.indeterminate
    if all(o.ok for o in outcomes) and not warnings:
        return ResultStatus.fully_applied
    if not any(o.ok for o in outcomes):
        return ResultStatus.rejected
    return ResultStatus.partially_applied


@dataclass
class ReconciliationResult:
    status: ResultStatus
    outcomes: list[OperationOutcome] = field(default_factory=list)
    warnings: tuple[RejectedImmutableChange, ...] = ()
    state: NetworkState | None = None
    passes: int = 1
    # audit records that could not be written to the event log
    audit_failures: int = 0

    @property
    def success(self) -> bool:
        return self.status == ResultStatus.fully_applied

    @property
    def failed(self) -> list[OperationOutcome]:
        return [o for o in self.outcomes if o.kind == OutcomeKind.failed]
