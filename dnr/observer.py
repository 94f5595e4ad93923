"""State observer: read a network and its attachments from the runtime.

Two sub-queries are made (network inspect, then the host-wide container
list). They are not atomic; read skew between them is tolerated and never
retried here.
"""
from __future__ import annotations

from typing import Any

from .deadline import Deadline, call_with_deadline
from .models import AttachmentState, IpamPool, NetworkState, PortBinding
from .runtime import RuntimeHandle


def observe(runtime: RuntimeHandle, ref: str, deadline: Deadline | None = None) -> NetworkState:
    """Return a fresh snapshot of the network named or identified by ref.

    Raises NotFound, RuntimeUnavailable, or Indeterminate on deadline expiry.
    """
    raw = call_with_deadline(deadline, runtime.inspect_network, ref)
    containers = call_with_deadline(deadline, runtime.list_containers)
    return network_state_from_inspect(raw, containers)


def observe_disconnected(runtime: RuntimeHandle, ref: str, deadline: Deadline | None = None) -> list[AttachmentState]:
    """Containers on the host that have no endpoint on this network."""
    raw = call_with_deadline(deadline, runtime.inspect_network, ref)
    containers = call_with_deadline(deadline, runtime.list_containers)
    net_id, net_name = raw.get("Id", ""), raw.get("Name", "")
    out: dict[str, AttachmentState] = {}
    for c in containers:
        if _endpoint_for(c, net_id, net_name) is not None:
            continue
        a = _attachment(c, {})
        out.setdefault(a.container_id, a)
    return sorted(out.values(), key=lambda a: (a.name, a.container_id))


def observe_containers(runtime: RuntimeHandle, deadline: Deadline | None = None) -> list[AttachmentState]:
    """Every container on the host, without endpoint data."""
    out: dict[str, AttachmentState] = {}
    for c in call_with_deadline(deadline, runtime.list_containers):
        a = _attachment(c, {})
        out.setdefault(a.container_id, a)
    return sorted(out.values(), key=lambda a: (a.name, a.container_id))


def network_state_from_inspect(raw: dict[str, Any], containers: list[dict[str, Any]]) -> NetworkState:
    net_id = raw.get("Id", "")
    net_name = raw.get("Name", "")

    attachments: dict[str, AttachmentState] = {}
    for c in containers:
        ep = _endpoint_for(c, net_id, net_name)
        if ep is None:
            continue
        a = _attachment(c, ep)
        attachments.setdefault(a.container_id, a)

    # Running endpoints the container list missed (container removed in between).
    for cid, ep in (raw.get("Containers") or {}).items():
        if cid in attachments or cid.startswith("ep-"):
            continue
        attachments[cid] = AttachmentState(
            container_id=cid,
            name=(ep.get("Name") or cid[:12]).lstrip("/"),
            ipv4_address=_strip_prefix(ep.get("IPv4Address")),
            ipv6_address=_strip_prefix(ep.get("IPv6Address")),
            mac_address=ep.get("MacAddress") or "",
            running=True,
            status="running",
        )

    return NetworkState(
        id=net_id,
        name=net_name,
        driver=raw.get("Driver") or "",
        scope=raw.get("Scope") or "local",
        created=raw.get("Created") or "",
        internal=bool(raw.get("Internal")),
        enable_ipv6=bool(raw.get("EnableIPv6")),
        ipam=ipam_pools(raw.get("IPAM")),
        options=dict(raw.get("Options") or {}),
        labels=dict(raw.get("Labels") or {}),
        attachments=tuple(sorted(attachments.values(), key=lambda a: (a.name, a.container_id))),
    )


def ipam_pools(ipam: dict[str, Any] | None) -> tuple[IpamPool, ...]:
    pools: list[IpamPool] = []
    seen: set[str] = set()
    for cfg in (ipam or {}).get("Config") or []:
        subnet = cfg.get("Subnet")
        if not subnet or subnet in seen:
            continue
        seen.add(subnet)
        pools.append(IpamPool(subnet=subnet, gateway=cfg.get("Gateway") or None, ip_range=cfg.get("IPRange") or None))
    return tuple(pools)


def _endpoint_for(container: dict[str, Any], net_id: str, net_name: str) -> dict[str, Any] | None:
    networks = (container.get("NetworkSettings") or {}).get("Networks") or {}
    if net_name in networks:
        return networks[net_name] or {}
    for ep in networks.values():
        if ep and net_id and ep.get("NetworkID") == net_id:
            return ep
    return None


def _attachment(container: dict[str, Any], ep: dict[str, Any]) -> AttachmentState:
    state = container.get("State") or {}
    if isinstance(state, str):
        # container list summaries carry the state as a bare string
        state = {"Running": state == "running", "Status": state}
    ipam_cfg = ep.get("IPAMConfig") or {}
    return AttachmentState(
        container_id=container.get("Id", ""),
        name=_container_name(container),
        ipv4_address=ep.get("IPAddress") or "",
        ipv6_address=ep.get("GlobalIPv6Address") or "",
        mac_address=ep.get("MacAddress") or "",
        ports=_ports((container.get("NetworkSettings") or {}).get("Ports")),
        running=bool(state.get("Running")),
        status=state.get("Status") or "",
        requested_ipv4=ipam_cfg.get("IPv4Address") or None,
        requested_ipv6=ipam_cfg.get("IPv6Address") or None,
    )


def _container_name(container: dict[str, Any]) -> str:
    name = container.get("Name")
    if not name:
        names = container.get("Names") or []
        name = names[0] if names else container.get("Id", "")[:12]
    return name.lstrip("/")


def _ports(raw: dict[str, Any] | None) -> dict[str, tuple[PortBinding, ...]]:
    out: dict[str, tuple[PortBinding, ...]] = {}
    for port in sorted(raw or {}):
        bindings = raw[port] or []
        out[port] = tuple(PortBinding(host_ip=b.get("HostIp", ""), host_port=str(b.get("HostPort", ""))) for b in bindings)
    return out


def _strip_prefix(addr: str | None) -> str:
    return (addr or "").split("/", 1)[0]
