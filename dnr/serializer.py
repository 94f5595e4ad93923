"""Render an observed network as an editable compose-like YAML document.

Output is deterministic: fixed key order, sorted option/label keys and
services sorted by container name. Values the operator cannot declare
(addresses, MAC, ids, ports, lifecycle) are written under ``x-observed``
and ignored by the parser.
"""
from __future__ import annotations

from typing import Any

import yaml

from .models import AttachmentIntent, AttachmentState, IpamPool, NetworkSpec, NetworkState

HEADER = "# Fields under x-observed are read-only and ignored on apply.\n"


def to_spec_view(state: NetworkState) -> NetworkSpec:
    """The declarable part of a snapshot."""
    attachments = sorted(state.attachments, key=lambda a: (a.name, a.container_id))
    return NetworkSpec(
        name=state.name,
        driver=state.driver,
        ipam=state.ipam,
        options=dict(state.options),
        labels=dict(state.labels),
        internal=state.internal,
        enable_ipv6=state.enable_ipv6,
        attachments=tuple(
            AttachmentIntent(ref=a.name, ipv4_address=a.requested_ipv4, ipv6_address=a.requested_ipv6)
            for a in attachments
        ),
    )


def serialize(state: NetworkState) -> str:
    network: dict[str, Any] = {
        "driver": state.driver,
        "internal": state.internal,
        "enable_ipv6": state.enable_ipv6,
        "driver_opts": _sorted(state.options),
        "labels": _sorted(state.labels),
        "ipam": {"config": [_pool(p) for p in state.ipam]},
        "x-observed": {"id": state.id, "scope": state.scope, "created": state.created},
    }
    services: dict[str, Any] = {}
    for a in sorted(state.attachments, key=lambda a: (a.name, a.container_id)):
        services[a.name] = _service(state.name, a)

    doc = {"networks": {state.name: network}, "services": services}
    return HEADER + yaml.safe_dump(doc, default_flow_style=False, sort_keys=False, allow_unicode=True)


def _service(network: str, a: AttachmentState) -> dict[str, Any]:
    svc: dict[str, Any] = {}
    static: dict[str, str] = {}
    if a.requested_ipv4:
        static["ipv4_address"] = a.requested_ipv4
    if a.requested_ipv6:
        static["ipv6_address"] = a.requested_ipv6
    if static:
        svc["networks"] = {network: static}
    svc["x-observed"] = {
        "id": a.container_id,
        "ipv4_address": a.ipv4_address,
        "ipv6_address": a.ipv6_address,
        "mac_address": a.mac_address,
        "running": a.running,
        "status": a.status,
        "ports": {port: [_binding(b.host_ip, b.host_port) for b in bindings] for port, bindings in sorted(a.ports.items())},
    }
    return svc


def _pool(p: IpamPool) -> dict[str, str]:
    out = {"subnet": p.subnet}
    if p.gateway:
        out["gateway"] = p.gateway
    if p.ip_range:
        out["ip_range"] = p.ip_range
    return out


def _binding(host_ip: str, host_port: str) -> str:
    if ":" in host_ip:
        return f"[{host_ip}]:{host_port}"
    return f"{host_ip}:{host_port}" if host_ip else host_port


def _sorted(d: dict[str, str]) -> dict[str, str]:
    return {k: d[k] for k in sorted(d)}
