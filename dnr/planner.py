"""Diff planner.

plan() is a pure function of its arguments: no runtime calls, no
side effects. Operation order:

  create / metadata update, then every disconnect, then every connect.

so a container being re-addressed is always detached before it is attached
again. Removal is only planned for an explicit ``absent`` spec.
"""
from __future__ import annotations

import ipaddress

from .models import (
    AttachmentIntent,
    AttachmentState,
    ConnectContainer,
    CreateNetwork,
    DiffPlan,
    DisconnectContainer,
    IpamPool,
    NetworkSpec,
    NetworkState,
    Operation,
    RejectedImmutableChange,
    RemoveNetwork,
    UpdateNetworkMetadata,
    matches_container,
)
from .validation import PREDEFINED_NETWORKS


def plan(
    desired: NetworkSpec | None,
    observed: NetworkState | None,
    candidates: tuple[AttachmentState, ...] = (),
) -> DiffPlan:
    """Diff desired against observed.

    candidates are known containers that are not attached yet; they let two
    references to the same container (name and id) collapse into one connect.
    """
    if desired is None:
        return DiffPlan()

    if observed is None:
        if desired.absent:
            return DiffPlan()
        ops: list[Operation] = [CreateNetwork(spec=desired)]
        ops.extend(_connect(desired.name, i) for i in _unique_new(desired.attachments, candidates))
        return DiffPlan(operations=tuple(ops))

    if desired.absent:
        ops = [DisconnectContainer(network=observed.name, container=a.name) for a in observed.attachments]
        ops.append(RemoveNetwork(network=observed.name))
        return DiffPlan(operations=tuple(ops))

    warnings = immutable_changes(desired, observed)

    head: list[Operation] = []
    metadata_changed = desired.options != observed.options or desired.labels != observed.labels
    # Predefined networks cannot be removed, so they cannot be rebuilt either.
    if metadata_changed and observed.name not in PREDEFINED_NETWORKS:
        head.append(
            UpdateNetworkMetadata(
                network=observed.name,
                options=dict(desired.options),
                labels=dict(desired.labels),
                driver=observed.driver,
                ipam=observed.ipam,
                internal=observed.internal,
                enable_ipv6=observed.enable_ipv6,
            )
        )

    wanted: dict[str, AttachmentIntent] = {}
    pending: set[str] = set()
    connects: list[Operation] = []
    for intent in desired.attachments:
        current = observed.attachment(intent.ref)
        if current is None:
            key = _identity(intent.ref, candidates)
            if key not in pending:
                pending.add(key)
                connects.append(_connect(observed.name, intent))
            continue
        if current.container_id in wanted:
            continue
        wanted[current.container_id] = intent
        if static_request_changed(intent, current):
            connects.append(_connect(observed.name, intent, container=current.name))

    disconnects: list[Operation] = []
    for a in observed.attachments:
        intent = wanted.get(a.container_id)
        if intent is None or static_request_changed(intent, a):
            disconnects.append(DisconnectContainer(network=observed.name, container=a.name))

    return DiffPlan(operations=tuple(head + disconnects + connects), warnings=warnings)


def immutable_changes(desired: NetworkSpec, observed: NetworkState) -> tuple[RejectedImmutableChange, ...]:
    out: list[RejectedImmutableChange] = []
    if desired.name != observed.name:
        out.append(RejectedImmutableChange("name", observed.name, desired.name))
    if desired.driver != observed.driver:
        out.append(RejectedImmutableChange("driver", observed.driver, desired.driver))
    # No declared pools means "whatever the runtime allocated".
    if desired.ipam and not ipam_matches(desired.ipam, observed.ipam):
        out.append(RejectedImmutableChange("ipam", _pools(observed.ipam), _pools(desired.ipam)))
    if desired.internal != observed.internal:
        out.append(RejectedImmutableChange("internal", str(observed.internal).lower(), str(desired.internal).lower()))
    if desired.enable_ipv6 != observed.enable_ipv6:
        out.append(
            RejectedImmutableChange("enable_ipv6", str(observed.enable_ipv6).lower(), str(desired.enable_ipv6).lower())
        )
    if observed.name in PREDEFINED_NETWORKS:
        if desired.labels != observed.labels:
            out.append(RejectedImmutableChange("labels", _pairs(observed.labels), _pairs(desired.labels)))
        if desired.options != observed.options:
            out.append(RejectedImmutableChange("options", _pairs(observed.options), _pairs(desired.options)))
    return tuple(out)


def ipam_matches(desired: tuple[IpamPool, ...], observed: tuple[IpamPool, ...]) -> bool:
    """Same subnets; gateway and ip_range compared only where the document sets them."""
    if len(desired) != len(observed):
        return False
    by_subnet = {_net(p.subnet): p for p in observed}
    for want in desired:
        have = by_subnet.get(_net(want.subnet))
        if have is None:
            return False
        if want.gateway and not same_address(want.gateway, have.gateway):
            return False
        if want.ip_range and _net(want.ip_range) != _net(have.ip_range):
            return False
    return True


def static_request_changed(intent: AttachmentIntent, current: AttachmentState) -> bool:
    return not (
        same_address(intent.ipv4_address, current.requested_ipv4)
        and same_address(intent.ipv6_address, current.requested_ipv6)
    )


def same_address(a: str | None, b: str | None) -> bool:
    if not a or not b:
        return not a and not b
    try:
        return ipaddress.ip_address(a) == ipaddress.ip_address(b)
    except ValueError:
        return a == b


def _identity(ref: str, candidates: tuple[AttachmentState, ...]) -> str:
    for c in candidates:
        if matches_container(ref, c):
            return c.container_id
    return ref.lstrip("/")


def _unique_new(intents: tuple[AttachmentIntent, ...], candidates: tuple[AttachmentState, ...]) -> list[AttachmentIntent]:
    seen: set[str] = set()
    out: list[AttachmentIntent] = []
    for intent in intents:
        key = _identity(intent.ref, candidates)
        if key not in seen:
            seen.add(key)
            out.append(intent)
    return out


def _connect(network: str, intent: AttachmentIntent, container: str | None = None) -> ConnectContainer:
    return ConnectContainer(
        network=network,
        container=container or intent.ref,
        ipv4_address=intent.ipv4_address,
        ipv6_address=intent.ipv6_address,
    )


def _net(value: str | None) -> str | None:
    if not value:
        return None
    try:
        return str(ipaddress.ip_network(value, strict=False))
    except ValueError:
        return value


def _pools(pools: tuple[IpamPool, ...]) -> str:
    return ", ".join(p.subnet + (f" gw {p.gateway}" if p.gateway else "") for p in pools) or "none"


def _pairs(values: dict[str, str]) -> str:
    return ", ".join(f"{k}={v}" for k, v in sorted(values.items())) or "none"
