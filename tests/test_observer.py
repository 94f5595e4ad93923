import pytest

from dnr.errors import NotFound, RuntimeUnavailable
from dnr.models import IpamPool, PortBinding
from dnr.observer import network_state_from_inspect, observe, observe_disconnected

NETWORK = {
    "Name": "net1",
    "Id": "9" * 64,
    "Created": "2024-05-01T10:00:00.123456789Z",
    "Scope": "local",
    "Driver": "bridge",
    "EnableIPv6": False,
    "IPAM": {
        "Driver": "default",
        "Options": None,
        "Config": [{"Subnet": "172.20.0.0/16", "Gateway": "172.20.0.1", "IPRange": "172.20.5.0/24"}],
    },
    "Internal": False,
    "Containers": {
        "a" * 64: {"Name": "web", "MacAddress": "02:42:ac:14:00:02", "IPv4Address": "172.20.0.2/16", "IPv6Address": ""},
        "e" * 64: {"Name": "gone", "MacAddress": "02:42:ac:14:00:09", "IPv4Address": "172.20.0.9/16", "IPv6Address": ""},
    },
    "Options": {"com.docker.network.bridge.name": "br-net1"},
    "Labels": {"team": "core"},
}


def _container(cid, name, networks, running=True, ports=None):
    return {
        "Id": cid,
        "Name": f"/{name}",
        "State": {"Running": running, "Status": "running" if running else "exited"},
        "NetworkSettings": {"Ports": ports or {}, "Networks": networks},
    }


CONTAINERS = [
    _container(
        "a" * 64,
        "web",
        {
            "net1": {
                "IPAMConfig": None,
                "NetworkID": "9" * 64,
                "IPAddress": "172.20.0.2",
                "GlobalIPv6Address": "",
                "MacAddress": "02:42:ac:14:00:02",
            }
        },
        ports={"80/tcp": [{"HostIp": "0.0.0.0", "HostPort": "8080"}], "9000/tcp": None},
    ),
    _container(
        "b" * 64,
        "db",
        {
            "net1": {
                "IPAMConfig": {"IPv4Address": "172.20.0.10"},
                "NetworkID": "9" * 64,
                "IPAddress": "",
                "GlobalIPv6Address": "",
                "MacAddress": "",
            }
        },
        running=False,
    ),
    _container("c" * 64, "tools", {"bridge": {"NetworkID": "1" * 64, "IPAddress": "172.17.0.2"}}),
]


def test_converts_docker_inspect_payloads():
    state = network_state_from_inspect(NETWORK, CONTAINERS)
    assert state.name == "net1"
    assert state.created == "2024-05-01T10:00:00.123456789Z"
    assert state.ipam == (IpamPool(subnet="172.20.0.0/16", gateway="172.20.0.1", ip_range="172.20.5.0/24"),)
    assert state.options == {"com.docker.network.bridge.name": "br-net1"}
    assert [a.name for a in state.attachments] == ["db", "gone", "web"]

    db, gone, web = state.attachments
    assert web.ipv4_address == "172.20.0.2"
    assert web.requested_ipv4 is None
    assert web.ports == {"80/tcp": (PortBinding("0.0.0.0", "8080"),), "9000/tcp": ()}
    assert web.running and web.status == "running"

    # stopped containers keep their endpoint config but are absent from network inspect
    assert db.requested_ipv4 == "172.20.0.10"
    assert not db.running and db.status == "exited"

    # listed by the network but missing from the container list (read skew)
    assert gone.ipv4_address == "172.20.0.9"


def test_duplicate_container_entries_are_collapsed():
    state = network_state_from_inspect(NETWORK, CONTAINERS + [CONTAINERS[0]])
    ids = [a.container_id for a in state.attachments]
    assert len(ids) == len(set(ids))


def test_endpoint_found_by_network_id_after_rename():
    renamed = dict(NETWORK, Name="net1-renamed", Containers={})
    state = network_state_from_inspect(renamed, CONTAINERS)
    assert [a.name for a in state.attachments] == ["db", "web"]


def test_observe_reads_runtime(runtime):
    state = observe(runtime, "net1")
    assert [a.name for a in state.attachments] == ["A", "B"]
    a, b = state.attachments
    assert a.ipv4_address == "172.20.0.2"
    assert a.ports["80/tcp"] == (PortBinding("0.0.0.0", "8080"),)
    assert b.ipv4_address == "172.20.0.50"
    assert b.requested_ipv4 == "172.20.0.50"
    assert state.labels == {"team": "core"}

    by_id = observe(runtime, state.id)
    assert by_id == state


def test_observe_disconnected(runtime):
    out = observe_disconnected(runtime, "net1")
    assert [c.name for c in out] == ["C"]
    assert out[0].ipv4_address == ""
    assert not out[0].running


def test_observe_errors(runtime):
    with pytest.raises(NotFound):
        observe(runtime, "missing")
    runtime.available = False
    with pytest.raises(RuntimeUnavailable):
        observe(runtime, "net1")


def test_each_observation_is_fresh(runtime):
    before = observe(runtime, "net1")
    runtime.disconnect("net1", "A")
    after = observe(runtime, "net1")
    assert [a.name for a in before.attachments] == ["A", "B"]
    assert [a.name for a in after.attachments] == ["B"]
