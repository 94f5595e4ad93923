from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator

import docker
import requests
from docker.errors import APIError, DockerException, NotFound as DockerNotFound
from docker.types import IPAMConfig, IPAMPool

from . import db
from .errors import NotFound, OperationFailed, RuntimeUnavailable
from .models import IpamPool, NetworkSpec
from .observer import ipam_pools
from .runtime import ApplyStatus
from .settings import settings

# Daemon messages meaning "the runtime is already in the requested state".
ALREADY_SATISFIED = {
    "create_network": ("already exists",),
    "connect": ("already exists in network", "is already attached", "already connected"),
    "disconnect": ("is not connected", "not connected to"),
    "remove_network": (),
}

# A 404 on these means the thing to undo is already gone.
SATISFIED_ON_404 = {"disconnect", "remove_network"}


def _client() -> docker.DockerClient:
    if settings.docker_base_url:
        return docker.DockerClient(base_url=settings.docker_base_url, timeout=settings.docker_timeout_s)
    return docker.from_env(timeout=settings.docker_timeout_s)


def explain(e: Exception) -> str:
    return str(getattr(e, "explanation", None) or e)


def classify(action: str, e: APIError) -> ApplyStatus | None:
    """ApplyStatus.already_satisfied if the daemon error means no-op convergence, else None."""
    if e.status_code == 404 and action in SATISFIED_ON_404:
        return ApplyStatus.already_satisfied
    text = explain(e).lower()
    if any(p in text for p in ALREADY_SATISFIED.get(action, ())):
        return ApplyStatus.already_satisfied
    return None


@contextmanager
def _docker_errors(what: str) -> Iterator[None]:
    """Translate docker SDK / transport exceptions into the reconciler taxonomy."""
    try:
        yield
    except DockerNotFound as e:
        raise NotFound(f"{what}: {explain(e)}") from e
    except APIError as e:
        raise OperationFailed(f"{what}: {explain(e)}") from e
    except (DockerException, requests.exceptions.RequestException) as e:
        raise RuntimeUnavailable(f"{what}: docker is not reachable ({type(e).__name__}: {e})") from e


def ipam_config(pools: tuple[IpamPool, ...]) -> IPAMConfig | None:
    if not pools:
        return None
    return IPAMConfig(
        pool_configs=[IPAMPool(subnet=p.subnet, gateway=p.gateway or None, iprange=p.ip_range or None) for p in pools]
    )


class DockerRuntime:
    """Runtime handle backed by the Docker Engine API (docker SDK)."""

    def __init__(self, client: docker.DockerClient | None = None):
        self._client = client

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            with _docker_errors("connect to docker"):
                self._client = _client()
        return self._client

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except (RuntimeUnavailable, DockerException, requests.exceptions.RequestException):
            return False

    # --- reads -------------------------------------------------------------

    def inspect_network(self, ref: str) -> dict[str, Any]:
        with _docker_errors(f"inspect network {ref}"):
            return self.client.networks.get(ref).attrs

    def list_containers(self) -> list[dict[str, Any]]:
        with _docker_errors("list containers"):
            return [c.attrs for c in self.client.containers.list(all=True, ignore_removed=True)]

    # --- mutations ---------------------------------------------------------

    def create_network(self, spec: NetworkSpec) -> ApplyStatus:
        with _docker_errors(f"create network {spec.name}"):
            try:
                self._create(
                    spec.name, spec.driver, spec.options, spec.labels, spec.ipam, spec.internal, spec.enable_ipv6
                )
            except APIError as e:
                status = classify("create_network", e)
                if status is None:
                    raise
                return status
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
        """Docker cannot edit options/labels in place: rebuild the network.

        Endpoints are captured, detached, and re-attached to the new network
        with their previous static address requests and aliases. If any step
        fails the endpoints are put back before the error is raised.
        """
        with _docker_errors(f"rebuild network {network}"):
            net = self.client.networks.get(network)
            name = net.attrs.get("Name", network)
            endpoints = self._endpoints(name, net.attrs.get("Id", ""))

            for cid, _ in endpoints:
                net.disconnect(cid, force=True)

            removed = False
            new = None
            try:
                net.remove()
                removed = True
                db.try_log_event("WARN", f"Removed network {name} to rebuild it with new metadata", network=name)
                new = self._create(name, driver, options, labels, ipam, internal, enable_ipv6)
                for cid, ep in endpoints:
                    _reattach(new, cid, ep)
            except (DockerException, requests.exceptions.RequestException):
                self._restore(name, net, new, removed, endpoints)
                raise
        return ApplyStatus.applied

    def _endpoints(self, name: str, net_id: str) -> list[tuple[str, dict[str, Any]]]:
        out: list[tuple[str, dict[str, Any]]] = []
        for c in self.client.containers.list(all=True, ignore_removed=True):
            nets = (c.attrs.get("NetworkSettings") or {}).get("Networks") or {}
            ep = nets.get(name)
            if ep is None:
                ep = next((x for x in nets.values() if x and x.get("NetworkID") == net_id), None)
            if ep is not None:
                out.append((c.id, ep))
        return out

    def _restore(self, name: str, old, new, removed: bool, endpoints: list[tuple[str, dict[str, Any]]]) -> None:
        """Reattach captured endpoints after a failed rebuild, to whichever network exists."""
        try:
            target = new if new is not None else old
            if removed and new is None:
                attrs = old.attrs
                target = self._create(
                    name,
                    attrs.get("Driver") or "bridge",
                    attrs.get("Options") or {},
                    attrs.get("Labels") or {},
                    ipam_pools(attrs.get("IPAM")),
                    bool(attrs.get("Internal")),
                    bool(attrs.get("EnableIPv6")),
                )
            restored = 0
            for cid, ep in endpoints:
                try:
                    _reattach(target, cid, ep)
                except APIError as e:
                    if classify("connect", e) is None:
                        db.try_log_event("ERROR", f"Could not reattach {cid[:12]} to {name}: {explain(e)}", network=name)
                        continue
                restored += 1
        except (DockerException, requests.exceptions.RequestException) as e:
            db.try_log_event("ERROR", f"Could not restore network {name} after a failed rebuild: {e}", network=name)
        else:
            db.try_log_event(
                "WARN",
                f"Rebuild of network {name} failed; reattached {restored} of {len(endpoints)} endpoint(s)",
                network=name,
            )

    def _create(
        self,
        name: str,
        driver: str,
        options: dict[str, str],
        labels: dict[str, str],
        ipam: tuple[IpamPool, ...],
        internal: bool,
        enable_ipv6: bool,
    ):
        return self.client.networks.create(
            name,
            driver=driver,
            options=dict(options) or None,
            ipam=ipam_config(ipam),
            check_duplicate=True,
            internal=internal,
            labels=dict(labels) or None,
            enable_ipv6=enable_ipv6,
        )

    def remove_network(self, network: str) -> ApplyStatus:
        with _docker_errors(f"remove network {network}"):
            try:
                self.client.networks.get(network).remove()
            except APIError as e:
                status = classify("remove_network", e)
                if status is None:
                    raise
                return status
        return ApplyStatus.applied

    def connect(
        self, network: str, container: str, ipv4_address: str | None = None, ipv6_address: str | None = None
    ) -> ApplyStatus:
        with _docker_errors(f"connect {container} to {network}"):
            try:
                self.client.networks.get(network).connect(
                    container, ipv4_address=ipv4_address, ipv6_address=ipv6_address
                )
            except APIError as e:
                status = classify("connect", e)
                if status is None:
                    raise
                return status
        return ApplyStatus.applied

    def disconnect(self, network: str, container: str) -> ApplyStatus:
        with _docker_errors(f"disconnect {container} from {network}"):
            try:
                self.client.networks.get(network).disconnect(container)
            except APIError as e:
                status = classify("disconnect", e)
                if status is None:
                    raise
                return status
        return ApplyStatus.applied

    # --- passthroughs ------------------------------------------------------

    def start_container(self, container: str) -> None:
        with _docker_errors(f"start container {container}"):
            self.client.containers.get(container).start()

    def stop_container(self, container: str) -> None:
        with _docker_errors(f"stop container {container}"):
            self.client.containers.get(container).stop()


def _reattach(net, cid: str, ep: dict[str, Any]) -> None:
    cfg = ep.get("IPAMConfig") or {}
    aliases = [a for a in ep.get("Aliases") or [] if a != cid[:12]] or None
    net.connect(
        cid,
        ipv4_address=cfg.get("IPv4Address") or None,
        ipv6_address=cfg.get("IPv6Address") or None,
        aliases=aliases,
    )
