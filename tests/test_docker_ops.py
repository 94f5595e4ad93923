from unittest.mock import MagicMock, call

import pytest
import requests
from docker.errors import APIError, NotFound as DockerNotFound

from dnr.docker_ops import DockerRuntime, classify, ipam_config
from dnr.errors import NotFound, OperationFailed, RuntimeUnavailable
from dnr.models import IpamPool, NetworkSpec
from dnr.runtime import ApplyStatus


def _response(status: int) -> requests.Response:
    r = requests.Response()
    r.status_code = status
    return r


def api_error(status: int, explanation: str, cls=APIError) -> APIError:
    return cls(f"{status} Client Error", response=_response(status), explanation=explanation)


@pytest.mark.parametrize(
    "action,status,explanation,expected",
    [
        ("connect", 403, "endpoint with name web already exists in network net1", ApplyStatus.already_satisfied),
        ("disconnect", 500, "container abc is not connected to network net1", ApplyStatus.already_satisfied),
        ("disconnect", 404, "No such container: abc", ApplyStatus.already_satisfied),
        ("remove_network", 404, "network net1 not found", ApplyStatus.already_satisfied),
        ("create_network", 409, "network with name net1 already exists", ApplyStatus.already_satisfied),
        ("connect", 404, "No such container: abc", None),
        ("connect", 400, "Address already in use", None),
        ("remove_network", 403, "error while removing network: network net1 has active endpoints", None),
    ],
)
def test_classify(action, status, explanation, expected):
    assert classify(action, api_error(status, explanation)) == expected


def test_ipam_config_maps_pools():
    assert ipam_config(()) is None
    cfg = ipam_config((IpamPool(subnet="172.20.0.0/16", gateway="172.20.0.1", ip_range="172.20.5.0/24"),))
    (pool,) = cfg["Config"]
    assert pool["Subnet"] == "172.20.0.0/16"
    assert pool["Gateway"] == "172.20.0.1"
    assert pool["IPRange"] == "172.20.5.0/24"


@pytest.fixture
def client():
    return MagicMock()


def test_inspect_network_returns_attrs(client):
    client.networks.get.return_value.attrs = {"Name": "net1", "Id": "abc"}
    assert DockerRuntime(client).inspect_network("net1") == {"Name": "net1", "Id": "abc"}


def test_missing_network_is_not_found(client):
    client.networks.get.side_effect = api_error(404, "network nope not found", DockerNotFound)
    with pytest.raises(NotFound):
        DockerRuntime(client).inspect_network("nope")


def test_transport_errors_are_runtime_unavailable(client):
    client.containers.list.side_effect = requests.exceptions.ConnectionError("connection refused")
    with pytest.raises(RuntimeUnavailable):
        DockerRuntime(client).list_containers()


def test_connect_passes_static_addresses(client):
    status = DockerRuntime(client).connect("net1", "web", ipv4_address="172.20.0.9")
    assert status == ApplyStatus.applied
    client.networks.get.return_value.connect.assert_called_once_with("web", ipv4_address="172.20.0.9", ipv6_address=None)


def test_connect_when_already_attached(client):
    client.networks.get.return_value.connect.side_effect = api_error(
        403, "endpoint with name web already exists in network net1"
    )
    assert DockerRuntime(client).connect("net1", "web") == ApplyStatus.already_satisfied


def test_connect_failure_is_operation_failed(client):
    client.networks.get.return_value.connect.side_effect = api_error(400, "Address already in use")
    with pytest.raises(OperationFailed, match="Address already in use"):
        DockerRuntime(client).connect("net1", "web", ipv4_address="172.20.0.1")


def test_disconnect_from_missing_network_is_satisfied(client):
    client.networks.get.side_effect = api_error(404, "network net1 not found", DockerNotFound)
    assert DockerRuntime(client).disconnect("net1", "web") == ApplyStatus.already_satisfied


def test_create_network_arguments(client):
    spec = NetworkSpec(
        name="net2",
        driver="bridge",
        ipam=(IpamPool(subnet="10.5.0.0/24", gateway="10.5.0.1"),),
        options={"com.docker.network.driver.mtu": "1400"},
        labels={"team": "edge"},
        internal=True,
    )
    assert DockerRuntime(client).create_network(spec) == ApplyStatus.applied
    args, kwargs = client.networks.create.call_args
    assert args == ("net2",)
    assert kwargs["driver"] == "bridge"
    assert kwargs["internal"] is True
    assert kwargs["labels"] == {"team": "edge"}
    assert kwargs["options"] == {"com.docker.network.driver.mtu": "1400"}
    assert kwargs["ipam"]["Config"][0]["Subnet"] == "10.5.0.0/24"


CID = "c" * 64
ENDPOINT = {"NetworkID": "n" * 64, "IPAMConfig": {"IPv4Address": "172.20.0.50"}, "Aliases": [CID[:12], "db"]}
REBUILD = dict(
    options={},
    labels={"team": "edge"},
    driver="bridge",
    ipam=(IpamPool(subnet="172.20.0.0/16", gateway="172.20.0.1"),),
    internal=False,
    enable_ipv6=False,
)


@pytest.fixture
def attached(client):
    """net1 with one attached container and one container on another network."""
    net = client.networks.get.return_value
    net.attrs = {
        "Name": "net1",
        "Id": "n" * 64,
        "Driver": "bridge",
        "Options": {},
        "Labels": {"team": "core"},
        "Internal": False,
        "EnableIPv6": False,
        "IPAM": {"Config": [{"Subnet": "172.20.0.0/16", "Gateway": "172.20.0.1"}]},
    }
    container = MagicMock()
    container.id = CID
    container.attrs = {"NetworkSettings": {"Networks": {"net1": dict(ENDPOINT)}}}
    other = MagicMock()
    other.id = "d" * 64
    other.attrs = {"NetworkSettings": {"Networks": {"bridge": {"NetworkID": "b" * 64}}}}
    client.containers.list.return_value = [container, other]
    return net


def test_update_metadata_rebuilds_and_reattaches(client, attached):
    status = DockerRuntime(client).update_network_metadata("net1", **REBUILD)
    assert status == ApplyStatus.applied
    attached.disconnect.assert_called_once_with(CID, force=True)
    attached.remove.assert_called_once_with()
    assert client.networks.create.call_args.kwargs["labels"] == {"team": "edge"}
    assert client.networks.create.return_value.connect.call_args == call(
        CID, ipv4_address="172.20.0.50", ipv6_address=None, aliases=["db"]
    )


def test_failed_remove_reattaches_to_the_old_network(client, attached):
    attached.remove.side_effect = api_error(403, "net1 has active endpoints")
    with pytest.raises(OperationFailed, match="active endpoints"):
        DockerRuntime(client).update_network_metadata("net1", **REBUILD)
    attached.disconnect.assert_called_once_with(CID, force=True)
    attached.connect.assert_called_once_with(CID, ipv4_address="172.20.0.50", ipv6_address=None, aliases=["db"])
    client.networks.create.assert_not_called()


def test_failed_create_restores_the_previous_network(client, attached):
    restored = MagicMock()
    client.networks.create.side_effect = [api_error(400, "invalid driver option"), restored]
    with pytest.raises(OperationFailed, match="invalid driver option"):
        DockerRuntime(client).update_network_metadata("net1", **REBUILD)

    first, second = client.networks.create.call_args_list
    assert first.kwargs["labels"] == {"team": "edge"}
    assert second.args == ("net1",)
    assert second.kwargs["labels"] == {"team": "core"}
    assert second.kwargs["ipam"]["Config"][0]["Subnet"] == "172.20.0.0/16"
    restored.connect.assert_called_once_with(CID, ipv4_address="172.20.0.50", ipv6_address=None, aliases=["db"])


def test_failed_reconnect_retries_on_the_new_network(client, attached):
    new = client.networks.create.return_value
    new.connect.side_effect = [requests.exceptions.ReadTimeout("read timed out"), None]
    with pytest.raises(RuntimeUnavailable):
        DockerRuntime(client).update_network_metadata("net1", **REBUILD)
    assert new.connect.call_count == 2
    assert client.networks.create.call_count == 1


def test_ping_reports_unreachable_daemon(client):
    client.ping.side_effect = requests.exceptions.ConnectionError("refused")
    assert DockerRuntime(client).ping() is False
