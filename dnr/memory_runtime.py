"""
In memory runtime.

Used by tests and by DNR_RUNTIME=memory for local demos. It keeps networks
and containers as Docker Engine API inspect payloads, so the observer reads
it exactly as it reads a real daemon.

Fault injection
failures  (action, target) -> message, raised as OperationFailed
hang      (action, target) pairs that block for hang_s seconds
available when False, every call raises RuntimeUnavailable
"""
from __future__ import annotations

import ipaddress
import secrets
import time
from dataclasses import dataclass, field
from threading import RLock
from typing import Any

from .errors import NotFound, OperationFailed, RuntimeUnavailable
from .models import IpamPool, NetworkSpec
from .runtime import ApplyStatus


def _new_id() -> str:
    return secrets.token_hex(32)


def _mac() -> str:
    return "02:42:" + ":".join(secrets.token_hex(1) for _ in range(4))


@dataclass
class InMemoryRuntime:
    networks: dict[str, dict[str, Any]] = field(default_factory=dict)  # name -> network attrs
    containers: dict[str, dict[str, Any]] = field(default_factory=dict)  # id -> container attrs
    failures: dict[tuple[str, str], str] = field(default_factory=dict)
    hang: set[tuple[str, str]] = field(default_factory=set)
    hang_s: float = 5.0
    available: bool = True
    calls: list[tuple[str, str]] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._lock = RLock()
        self._auto_subnet = 18

    # --- fixtures ----------------------------------------------------------

    def add_network(
        self,
        name: str,
        driver: str = "bridge",
        subnets: list[str] | None = None,
        options: dict[str, str] | None = None,
        labels: dict[str, str] | None = None,
        internal: bool = False,
        enable_ipv6: bool = False,
    ) -> dict[str, Any]:
        pools = tuple(IpamPool(subnet=s) for s in subnets or [])
        self._create(name, driver, pools, options or {}, labels or {}, internal, enable_ipv6)
        return self.networks[name]

    def add_container(
        self,
        name: str,
        running: bool = True,
        ports: dict[str, Any] | None = None,
        networks: dict[str, str | None] | None = None,
    ) -> str:
        """Create a container; networks maps network name -> static IPv4 (or None)."""
        cid = _new_id()
        with self._lock:
            self.containers[cid] = {
                "Id": cid,
                "Name": f"/{name}",
                "State": {"Status": "running" if running else "exited", "Running": running},
                "NetworkSettings": {"Ports": dict(ports or {}), "Networks": {}},
            }
            for net, ipv4 in (networks or {}).items():
                self._attach(self.networks[net], self.containers[cid], ipv4, None)
        return cid

    # --- RuntimeHandle -----------------------------------------------------

    def ping(self) -> bool:
        return self.available

    def inspect_network(self, ref: str) -> dict[str, Any]:
        self._enter("inspect_network", ref)
        with self._lock:
            return _copy(self._network(ref))

    def list_containers(self) -> list[dict[str, Any]]:
        self._enter("list_containers", "")
        with self._lock:
            return [_copy(c) for c in self.containers.values()]

    def create_network(self, spec: NetworkSpec) -> ApplyStatus:
        self._enter("create_network", spec.name)
        with self._lock:
            if spec.name in self.networks:
                return ApplyStatus.already_satisfied
            self._create(spec.name, spec.driver, spec.ipam, spec.options, spec.labels, spec.internal, spec.enable_ipv6)
        return ApplyStatus.applied

    def update_network_metadata(
        self,
        network: str,
        options: dict[str, str],
        labels: dict[str, str],
        driver: str,
        ipam: tuple[IpamPool, ...],
        internal: bool,
        enable_ipv6: bool,
    ) -> ApplyStatus:
        self._enter("update_network_metadata", network)
        with self._lock:
            net = self._network(network)
            old_id = net["Id"]
            # a rebuild gives the network a new id; endpoints are carried over
            net["Id"] = _new_id()
            net["Options"] = dict(options)
            net["Labels"] = dict(labels)
            for c in self.containers.values():
                ep = c["NetworkSettings"]["Networks"].get(net["Name"])
                if ep and ep["NetworkID"] == old_id:
                    ep["NetworkID"] = net["Id"]
        return ApplyStatus.applied

    def remove_network(self, network: str) -> ApplyStatus:
        self._enter("remove_network", network)
        with self._lock:
            try:
                net = self._network(network)
            except NotFound:
                return ApplyStatus.already_satisfied
            if self._endpoints(net["Name"]):
                raise OperationFailed(f"error while removing network: network {net['Name']} has active endpoints")
            del self.networks[net["Name"]]
        return ApplyStatus.applied

    def connect(
        self, network: str, container: str, ipv4_address: str | None = None, ipv6_address: str | None = None
    ) -> ApplyStatus:
        self._enter("connect", container)
        with self._lock:
            net = self._network(network)
            c = self._container(container)
            if net["Name"] in c["NetworkSettings"]["Networks"]:
                return ApplyStatus.already_satisfied
            self._attach(net, c, ipv4_address, ipv6_address)
        return ApplyStatus.applied

    def disconnect(self, network: str, container: str) -> ApplyStatus:
        self._enter("disconnect", container)
        with self._lock:
            try:
                net = self._network(network)
                c = self._container(container)
            except NotFound:
                return ApplyStatus.already_satisfied
            if c["NetworkSettings"]["Networks"].pop(net["Name"], None) is None:
                return ApplyStatus.already_satisfied
            net["Containers"].pop(c["Id"], None)
        return ApplyStatus.applied

    def start_container(self, container: str) -> None:
        self._enter("start_container", container)
        with self._lock:
            c = self._container(container)
            c["State"] = {"Status": "running", "Running": True}
            for name, ep in c["NetworkSettings"]["Networks"].items():
                if name in self.networks:
                    self.networks[name]["Containers"][c["Id"]] = self._endpoint_summary(c, ep)

    def stop_container(self, container: str) -> None:
        self._enter("stop_container", container)
        with self._lock:
            c = self._container(container)
            c["State"] = {"Status": "exited", "Running": False}
            for name in c["NetworkSettings"]["Networks"]:
                if name in self.networks:
                    self.networks[name]["Containers"].pop(c["Id"], None)

    # --- internals ---------------------------------------------------------

    def _enter(self, action: str, target: str) -> None:
        if not self.available:
            raise RuntimeUnavailable("docker is not reachable")
        self.calls.append((action, target))
        if (action, target) in self.hang:
            time.sleep(self.hang_s)
        msg = self.failures.get((action, target))
        if msg:
            raise OperationFailed(msg)

    def _network(self, ref: str) -> dict[str, Any]:
        if ref in self.networks:
            return self.networks[ref]
        for net in self.networks.values():
            if net["Id"] == ref or (len(ref) >= 12 and net["Id"].startswith(ref)):
                return net
        raise NotFound(f"network {ref} not found")

    def _container(self, ref: str) -> dict[str, Any]:
        ref = ref.lstrip("/")
        for c in self.containers.values():
            if c["Id"] == ref or c["Name"].lstrip("/") == ref or (len(ref) >= 12 and c["Id"].startswith(ref)):
                return c
        raise NotFound(f"No such container: {ref}")

    def _endpoints(self, net_name: str) -> list[dict[str, Any]]:
        return [c for c in self.containers.values() if net_name in c["NetworkSettings"]["Networks"]]

    def _create(
        self,
        name: str,
        driver: str,
        pools: tuple[IpamPool, ...],
        options: dict[str, str],
        labels: dict[str, str],
        internal: bool,
        enable_ipv6: bool,
    ) -> None:
        if not pools:
            pools = (IpamPool(subnet=f"172.{self._auto_subnet}.0.0/16"),)
            self._auto_subnet += 1
        config = []
        for p in pools:
            net = ipaddress.ip_network(p.subnet)
            cfg = {"Subnet": p.subnet, "Gateway": p.gateway or str(next(net.hosts()))}
            if p.ip_range:
                cfg["IPRange"] = p.ip_range
            config.append(cfg)
        self.networks[name] = {
            "Name": name,
            "Id": _new_id(),
            "Created": "2024-01-01T00:00:00.000000000Z",
            "Scope": "local",
            "Driver": driver,
            "EnableIPv6": enable_ipv6,
            "IPAM": {"Driver": "default", "Options": None, "Config": config},
            "Internal": internal,
            "Attachable": False,
            "Ingress": False,
            "Containers": {},
            "Options": dict(options),
            "Labels": dict(labels),
        }

    def _attach(self, net: dict[str, Any], c: dict[str, Any], ipv4: str | None, ipv6: str | None) -> None:
        ipv4_addr, prefix = self._allocate(net, 4, ipv4)
        ipv6_addr = ""
        if net["EnableIPv6"] or ipv6:
            ipv6_addr, _ = self._allocate(net, 6, ipv6)
        ipam_cfg = {}
        if ipv4:
            ipam_cfg["IPv4Address"] = ipv4
        if ipv6:
            ipam_cfg["IPv6Address"] = ipv6
        ep = {
            "IPAMConfig": ipam_cfg or None,
            "Aliases": None,
            "NetworkID": net["Id"],
            "EndpointID": _new_id(),
            "IPAddress": ipv4_addr,
            "IPPrefixLen": prefix,
            "GlobalIPv6Address": ipv6_addr,
            "MacAddress": _mac(),
        }
        c["NetworkSettings"]["Networks"][net["Name"]] = ep
        if c["State"]["Running"]:
            net["Containers"][c["Id"]] = self._endpoint_summary(c, ep)

    def _endpoint_summary(self, c: dict[str, Any], ep: dict[str, Any]) -> dict[str, Any]:
        return {
            "Name": c["Name"].lstrip("/"),
            "EndpointID": ep["EndpointID"],
            "MacAddress": ep["MacAddress"],
            "IPv4Address": f"{ep['IPAddress']}/{ep['IPPrefixLen']}" if ep["IPAddress"] else "",
            "IPv6Address": ep["GlobalIPv6Address"],
        }

    def _allocate(self, net: dict[str, Any], version: int, wanted: str | None) -> tuple[str, int]:
        used = set()
        for c in self._endpoints(net["Name"]):
            ep = c["NetworkSettings"]["Networks"][net["Name"]]
            used.update(x for x in (ep["IPAddress"], ep["GlobalIPv6Address"]) if x)
        pools = [cfg for cfg in net["IPAM"]["Config"] if ipaddress.ip_network(cfg["Subnet"]).version == version]
        if wanted:
            addr = ipaddress.ip_address(wanted)
            for cfg in pools:
                subnet = ipaddress.ip_network(cfg["Subnet"])
                if addr in subnet:
                    if str(addr) in used or str(addr) == cfg.get("Gateway"):
                        raise OperationFailed(f"Address already in use: {addr}")
                    return str(addr), subnet.prefixlen
            raise OperationFailed(f"no configured subnet contains the IP address {addr}")
        for cfg in pools:
            subnet = ipaddress.ip_network(cfg["Subnet"])
            for host in subnet.hosts():
                if str(host) not in used and str(host) != cfg.get("Gateway"):
                    return str(host), subnet.prefixlen
        if not pools:
            return "", 0
        raise OperationFailed(f"no available addresses on network {net['Name']}")


def _copy(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {k: _copy(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_copy(v) for v in obj]
    return obj
