"""Parse an operator-supplied document into a NetworkSpec.

Grammar (network scoped subset of compose)::

    networks:
      <name>:                  # exactly one; "<name>: null" asks for removal
        driver: bridge
        internal: false
        enable_ipv6: false
        driver_opts: {}
        labels: {}
        ipam:
          config:
            - {subnet: 172.20.0.0/16, gateway: 172.20.0.1, ip_range: 172.20.5.0/24}
    services:                  # one attachment per service
      <container>:
        container_name: <name or id>   # defaults to the service key
        networks:
          <name>: {ipv4_address: 172.20.0.10}

Keys starting with ``x-`` are extension fields and are ignored anywhere.
Structure problems raise MalformedDocument; semantic ones InvalidSpec.
"""
from __future__ import annotations

import ipaddress
from typing import Any, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from .errors import InvalidSpec, MalformedDocument
from .models import AttachmentIntent, IpamPool, NetworkSpec
from .validation import validate_spec


def _without_extensions(data: Any) -> Any:
    if isinstance(data, dict):
        return {k: v for k, v in data.items() if not (isinstance(k, str) and k.startswith("x-"))}
    return data


class _DocModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="before")
    @classmethod
    def _drop_extensions(cls, data: Any) -> Any:
        return _without_extensions(data)


def _stringify(data: Any) -> Any:
    """Compose accepts "k=v" lists and scalar values; the runtime wants str -> str."""
    if isinstance(data, list):
        out: dict[str, str] = {}
        for item in data:
            key, _, value = str(item).partition("=")
            out[key] = value
        return out
    if isinstance(data, dict):
        return {k: (str(v).lower() if isinstance(v, bool) else ("" if v is None else str(v))) for k, v in data.items()}
    return data


class PoolDoc(_DocModel):
    subnet: str
    gateway: Optional[str] = None
    ip_range: Optional[str] = None


class IpamDoc(_DocModel):
    driver: Optional[str] = None
    config: list[PoolDoc] = []


class NetworkDoc(_DocModel):
    driver: str = "bridge"
    internal: bool = False
    enable_ipv6: bool = False
    driver_opts: dict[str, str] = {}
    labels: dict[str, str] = {}
    ipam: Optional[IpamDoc] = None

    @field_validator("driver_opts", "labels", mode="before")
    @classmethod
    def _as_str_map(cls, v: Any) -> Any:
        return {} if v is None else _stringify(v)


class ServiceNetworkDoc(_DocModel):
    ipv4_address: Optional[str] = None
    ipv6_address: Optional[str] = None


class ServiceDoc(_DocModel):
    container_name: Optional[str] = None
    networks: Union[list[str], dict[str, Optional[ServiceNetworkDoc]], None] = None


class Document(_DocModel):
    version: Union[str, float, None] = None
    networks: dict[str, Optional[NetworkDoc]]
    services: Optional[dict[str, Optional[ServiceDoc]]] = None

    @field_validator("networks", "services", mode="before")
    @classmethod
    def _drop_extension_entries(cls, v: Any) -> Any:
        return _without_extensions(v)


def parse(document: str) -> NetworkSpec:
    """Parse and fully validate a document; nothing touches the runtime."""
    if not isinstance(document, str) or not document.strip():
        raise MalformedDocument("document is empty")
    try:
        data = yaml.safe_load(document)
    except yaml.YAMLError as e:
        raise MalformedDocument(f"invalid YAML: {e}") from e
    if not isinstance(data, dict):
        raise MalformedDocument("document root must be a mapping")

    try:
        doc = Document.model_validate(data)
    except ValidationError as e:
        raise MalformedDocument(_format_errors(e)) from e

    if len(doc.networks) != 1:
        raise MalformedDocument("document must declare exactly one network under 'networks'")
    name, net = next(iter(doc.networks.items()))

    errors: list[str] = []
    intents = _intents(name, doc.services or {}, errors)

    if net is None:
        spec = NetworkSpec(name=name, attachments=intents, absent=True)
    else:
        pools = net.ipam.config if net.ipam else []
        spec = NetworkSpec(
            name=name,
            driver=net.driver,
            ipam=tuple(IpamPool(subnet=_net(p.subnet), gateway=_addr(p.gateway), ip_range=_net(p.ip_range)) for p in pools),
            options=dict(net.driver_opts),
            labels=dict(net.labels),
            internal=net.internal,
            enable_ipv6=net.enable_ipv6,
            attachments=intents,
        )
        if net.ipam and net.ipam.driver not in (None, "default"):
            errors.append(f"ipam driver '{net.ipam.driver}' is not supported (only 'default')")

    errors.extend(validate_spec(spec))
    if errors:
        raise InvalidSpec(errors)
    return spec


def _intents(network: str, services: dict[str, Optional[ServiceDoc]], errors: list[str]) -> tuple[AttachmentIntent, ...]:
    out: list[AttachmentIntent] = []
    for key, svc in services.items():
        svc = svc or ServiceDoc()
        ref = (svc.container_name or key).lstrip("/")
        ipv4 = ipv6 = None
        if isinstance(svc.networks, list):
            others = [n for n in svc.networks if n != network]
            if others:
                errors.append(f"service '{key}' references undeclared network '{others[0]}'")
        elif isinstance(svc.networks, dict):
            others = [n for n in svc.networks if n != network]
            if others:
                errors.append(f"service '{key}' references undeclared network '{others[0]}'")
            cfg = svc.networks.get(network)
            if cfg is not None:
                ipv4, ipv6 = _addr(cfg.ipv4_address), _addr(cfg.ipv6_address)
        out.append(AttachmentIntent(ref=ref, ipv4_address=ipv4, ipv6_address=ipv6))
    return tuple(out)


def _addr(value: str | None) -> str | None:
    # Canonical form when parseable; validation reports the rest.
    if not value:
        return None
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        return value


def _net(value: str | None) -> str | None:
    if not value:
        return None
    try:
        return str(ipaddress.ip_network(value.strip()))
    except ValueError:
        return value


def _format_errors(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(x) for x in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "malformed document: " + "; ".join(parts)
