"""Runtime handle interface.

The observer and executor talk to the container runtime only through this
protocol. Raw return values use the Docker Engine API inspect shapes
(``Name``, ``IPAM``, ``NetworkSettings`` ...), whatever the transport.

Mutating calls return an ApplyStatus instead of raising when the runtime
was already in the requested state; hard failures raise OperationFailed,
an unreachable control channel raises RuntimeUnavailable.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Protocol

from .models import IpamPool, NetworkSpec


class ApplyStatus(str, Enum):
    applied = "applied"
    already_satisfied = "already_satisfied"


class RuntimeHandle(Protocol):
    def ping(self) -> bool:
        """Return True if the control channel answers."""

    def inspect_network(self, ref: str) -> dict[str, Any]:
        """Network inspect by id or name; raises NotFound."""

    def list_containers(self) -> list[dict[str, Any]]:
        """Container inspect payloads for every container on the host, stopped ones included."""

    def create_network(self, spec: NetworkSpec) -> ApplyStatus:
        """Create a network from the spec's network-level fields."""

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
        """Replace options and labels, keeping driver, IPAM and flags."""

    def remove_network(self, network: str) -> ApplyStatus:
        """Remove a network."""

    def connect(
        self, network: str, container: str, ipv4_address: str | None = None, ipv6_address: str | None = None
    ) -> ApplyStatus:
        """Attach a container, optionally with static addresses."""

    def disconnect(self, network: str, container: str) -> ApplyStatus:
        """Detach a container."""

    def start_container(self, container: str) -> None:
        """Start a container; raises NotFound."""

    def stop_container(self, container: str) -> None:
        """Stop a container; raises NotFound."""
