import json
import threading

import pytest

from builderkit.nodegroup import Node, NodeGroup
from builderkit.platform import Platform
from builderkit.store import Store


@pytest.fixture
def store(tmp_path):
    return Store(tmp_path / "buildx")


def _name(group):
    return None if group is None else group.name


def test_empty_startup(store):
    with store.txn() as txn:
        assert txn.current("foo") is None


def test_store_creates_directories(tmp_path):
    root = tmp_path / "root"
    Store(root)
    assert (root / "instances").is_dir()
    assert (root / "defaults").is_dir()


def test_node_locking(store):
    results = []
    done = threading.Event()

    def worker():
        with store.txn() as other:
            results.append(other.node_group_by_name("locked"))
        done.set()

    with store.txn() as txn:
        thread = threading.Thread(target=worker)
        thread.start()
        assert not done.wait(0.1), "transaction should have waited"
        assert results == []
        txn.save(NodeGroup(name="locked", driver="held-driver"))
        assert txn.node_group_by_name("locked").driver == "held-driver"

    assert done.wait(5), "transaction should have completed"
    thread.join()
    assert [group.driver for group in results] == ["held-driver"]
    assert [group.name for group in results] == ["locked"]


def test_node_management(store):
    with store.txn() as txn:
        with pytest.raises(ValueError, match="invalid name"):
            txn.save(NodeGroup(name="foo/bar", driver="driver"))

        txn.save(NodeGroup(name="mybuild", driver="mydriver"))
        ng = txn.node_group_by_name("mybuild")
        assert ng.name == "mybuild"
        assert ng.driver == "mydriver"

        with pytest.raises(FileNotFoundError):
            txn.node_group_by_name("mybuild2")

        txn.save(NodeGroup(name="mybuild2", driver="mydriver2"))
        ng = txn.node_group_by_name("mybuild2")
        assert ng.name == "mybuild2"
        assert ng.driver == "mydriver2"

        txn.save(NodeGroup(name="mybuild", driver="mydriver-mod"))
        ng = txn.node_group_by_name("mybuild")
        assert ng.name == "mybuild"
        assert ng.driver == "mydriver-mod"

        assert [g.name for g in txn.list()] == ["mybuild", "mybuild2"]

        txn.set_current("foo", "mybuild", False, False)
        assert _name(txn.current("foo")) == "mybuild"
        assert _name(txn.current("foo")) == "mybuild"
        assert txn.current("bar") is None
        assert txn.current("foo") is None

        txn.set_current("foo", "mybuild", False, True)
        assert _name(txn.current("foo")) == "mybuild"
        assert txn.current("bar") is None
        assert _name(txn.current("foo")) == "mybuild"

        txn.set_current("foo", "mybuild2", False, True)
        assert _name(txn.current("foo")) == "mybuild2"

        txn.set_current("bar", "mybuild", False, False)
        assert _name(txn.current("bar")) == "mybuild"
        assert _name(txn.current("foo")) == "mybuild2"

        txn.set_current("foo", "mybuild2", True, False)
        assert _name(txn.current("foo")) == "mybuild2"
        assert _name(txn.current("bar")) == "mybuild2"

        txn.set_current("bar", "mybuild", False, False)
        assert _name(txn.current("bar")) == "mybuild"
        assert txn.current("foo") is None

        txn.set_current("bar", "mybuild", False, True)
        txn.set_current("foo", "mybuild2", False, False)

        txn.remove("mybuild2")
        with pytest.raises(FileNotFoundError):
            txn.node_group_by_name("mybuild2")

        assert txn.current("foo") is None
        assert _name(txn.current("bar")) == "mybuild"


def test_save_and_load_full_group(store):
    group = NodeGroup(
        name="builder",
        driver="docker-container",
        nodes=[
            Node(
                name="builder0",
                endpoint="default",
                platforms=[Platform(os="linux", architecture="amd64")],
                flags=["--debug"],
                files={"buildkitd.toml": b"debug = true\n"},
            )
        ],
    )
    with store.txn() as txn:
        txn.save(group)
        assert txn.node_group_by_name("builder") == group


def test_saved_file_is_json(store):
    with store.txn() as txn:
        txn.save(NodeGroup(name="Mixed", driver="d"))
    stored = json.loads((store.root / "instances" / "mixed").read_text())
    assert stored["Name"] == "Mixed"
    assert stored["Driver"] == "d"
    assert stored["Dynamic"] is False


def test_name_lookup_is_case_insensitive(store):
    with store.txn() as txn:
        txn.save(NodeGroup(name="abc", driver="d"))
        assert txn.node_group_by_name("ABC").driver == "d"


def test_remove_missing_is_not_an_error(store):
    with store.txn() as txn:
        txn.remove("ghost")
        assert txn.list() == []


def test_remove_invalid_name(store):
    with store.txn() as txn:
        with pytest.raises(ValueError, match="invalid name"):
            txn.remove("../etc")


def test_corrupt_current_file(store):
    (store.root / "current").write_text("not json")
    with store.txn() as txn:
        with pytest.raises(ValueError):
            txn.current("foo")


def test_default_pointing_at_missing_builder(store):
    with store.txn() as txn:
        txn.set_current("foo", "gone", False, True)
        (store.root / "current").unlink()
        assert txn.current("foo") is None
        record = json.loads((store.root / "current").read_text())
        assert record == {"Key": "foo", "Name": "gone", "Global": False}