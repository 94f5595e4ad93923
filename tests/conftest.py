import pytest

from dnr import db
from dnr.memory_runtime import InMemoryRuntime
from dnr.settings import Settings


@pytest.fixture(autouse=True)
def isolated_db(tmp_path, monkeypatch):
    """Every test writes audit events to its own sqlite file."""
    monkeypatch.setattr(db, "settings", Settings(db_path=str(tmp_path / "events.db")))
    db.init_db()


@pytest.fixture
def runtime():
    """net1 (bridge, 172.20.0.0/16) with A and B attached; C exists but is not attached."""
    rt = InMemoryRuntime()
    rt.add_network("net1", subnets=["172.20.0.0/16"], labels={"team": "core"})
    rt.add_container(
        "A",
        ports={"80/tcp": [{"HostIp": "0.0.0.0", "HostPort": "8080"}], "443/tcp": None},
        networks={"net1": None},
    )
    rt.add_container("B", networks={"net1": "172.20.0.50"})
    rt.add_container("C", running=False)
    return rt
