"""Semantic checks on a NetworkSpec.

All problems are collected so the operator sees every error at once.
"""
from __future__ import annotations

import ipaddress
import re

from .models import NetworkSpec

NETWORK_NAME_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.\-]*$")
CONTAINER_REF_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.\-]*$")
OPTION_KEY_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._\-]*$")

PREDEFINED_NETWORKS = {"bridge", "host", "none"}

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network


def validate_spec(spec: NetworkSpec) -> list[str]:
    errors: list[str] = []

    if not NETWORK_NAME_RE.match(spec.name or ""):
        errors.append(f"invalid network name '{spec.name}'")

    errors.extend(_check_refs(spec))

    if spec.absent:
        if spec.name in PREDEFINED_NETWORKS:
            errors.append(f"predefined network '{spec.name}' cannot be removed")
        if spec.attachments:
            errors.append("a removal document cannot list services")
        return errors

    if not (spec.driver or "").strip():
        errors.append("driver must not be empty")

    for key in spec.options:
        if not OPTION_KEY_RE.match(key):
            errors.append(f"invalid driver option key '{key}'")
    for key in spec.labels:
        if not key.strip():
            errors.append("label keys must not be empty")

    subnets, gateways = _check_pools(spec, errors)
    _check_ipv6_flag(spec, subnets, errors)
    _check_static_addresses(spec, subnets, gateways, errors)
    return errors


def _check_refs(spec: NetworkSpec) -> list[str]:
    errors: list[str] = []
    seen: set[str] = set()
    for intent in spec.attachments:
        if not CONTAINER_REF_RE.match(intent.ref or ""):
            errors.append(f"invalid container reference '{intent.ref}'")
        if intent.ref in seen:
            errors.append(f"container '{intent.ref}' is listed more than once")
        seen.add(intent.ref)
    return errors


def _check_pools(spec: NetworkSpec, errors: list[str]) -> tuple[list[IPNetwork], set]:
    subnets: list[IPNetwork] = []
    gateways: set = set()
    for pool in spec.ipam:
        try:
            net = ipaddress.ip_network(pool.subnet or "")
        except ValueError:
            errors.append(f"invalid subnet '{pool.subnet}'")
            continue
        for other in subnets:
            if other.version == net.version and other.overlaps(net):
                errors.append(f"subnet {net} overlaps {other}")
        subnets.append(net)

        if pool.gateway:
            try:
                gw = ipaddress.ip_address(pool.gateway)
            except ValueError:
                errors.append(f"invalid gateway '{pool.gateway}'")
            else:
                if gw.version != net.version or gw not in net:
                    errors.append(f"gateway {gw} is outside subnet {net}")
                gateways.add(gw)

        if pool.ip_range:
            try:
                rng = ipaddress.ip_network(pool.ip_range)
            except ValueError:
                errors.append(f"invalid ip_range '{pool.ip_range}'")
            else:
                if rng.version != net.version or not rng.subnet_of(net):
                    errors.append(f"ip_range {rng} is outside subnet {net}")
    return subnets, gateways


def _check_ipv6_flag(spec: NetworkSpec, subnets: list[IPNetwork], errors: list[str]) -> None:
    has_v6 = any(n.version == 6 for n in subnets)
    if has_v6 and not spec.enable_ipv6:
        errors.append("IPv6 subnet declared but enable_ipv6 is false")
    if spec.enable_ipv6 and spec.ipam and not has_v6:
        errors.append("enable_ipv6 is true but no IPv6 subnet is declared")


def _check_static_addresses(spec: NetworkSpec, subnets: list[IPNetwork], gateways: set, errors: list[str]) -> None:
    taken: dict = {}
    for intent in spec.attachments:
        for version, raw in ((4, intent.ipv4_address), (6, intent.ipv6_address)):
            if not raw:
                continue
            try:
                addr = ipaddress.ip_address(raw)
            except ValueError:
                errors.append(f"container '{intent.ref}': invalid address '{raw}'")
                continue
            if addr.version != version:
                errors.append(f"container '{intent.ref}': '{raw}' is not an IPv{version} address")
                continue
            if version == 6 and not spec.enable_ipv6:
                errors.append(f"container '{intent.ref}': IPv6 address requested but enable_ipv6 is false")
            family = [n for n in subnets if n.version == version]
            if not family:
                errors.append(f"container '{intent.ref}': static address {addr} requires a declared IPv{version} subnet")
            elif not any(addr in n for n in family):
                errors.append(f"container '{intent.ref}': static address {addr} is outside the declared subnets")
            elif any(addr in (n.network_address, n.broadcast_address) for n in family if addr in n and n.version == 4):
                errors.append(f"container '{intent.ref}': {addr} is a network or broadcast address")
            if addr in gateways:
                errors.append(f"container '{intent.ref}': {addr} is the gateway address")
            if addr in taken:
                errors.append(f"containers '{taken[addr]}' and '{intent.ref}' request the same address {addr}")
            taken.setdefault(addr, intent.ref)
