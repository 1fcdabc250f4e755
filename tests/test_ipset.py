import pytest

from predip.addresspool import AddressPool
from predip.errors import ConflictError, PoolExhausted
from predip.ipset import IPSetManager, holder_key
from predip.store import InMemoryObjectStore

NS = "openstack"


@pytest.fixture
def pool():
    return AddressPool.from_strings("10.0.0.1", "10.0.0.5")


def _table(store, name="designate-designate"):
    return store.get_record(NS, name).data


def test_sequential_allocation_is_deterministic(store, pool):
    mgr = IPSetManager(store, "designate-designate", NS)
    got = [mgr.allocate_ip(pool, holder_key(i)) for i in range(4)]
    assert got == ["10.0.0.1", "10.0.0.2", "10.0.0.3", "10.0.0.4"]
    assert len(set(got)) == 4


def test_record_created_lazily_with_ipset_labels(store, pool):
    mgr = IPSetManager(store, "designate-designate", NS)
    assert mgr.snapshot() == ({}, None)
    mgr.allocate_ip(pool, "pod_0")
    rec = store.get_record(NS, "designate-designate")
    assert rec.labels == {"app.kubernetes.io/name": "designate", "app.kubernetes.io/component": "ipset"}
    assert rec.data == {"pod_0": "10.0.0.1"}


def test_allocation_is_idempotent(store, pool):
    mgr = IPSetManager(store, "designate-designate", NS)
    first = mgr.allocate_ip(pool, "k")
    second = mgr.allocate_ip(pool, "k")
    assert first == second == "10.0.0.1"
    assert store.writes["record"] == 1


def test_exhaustion_writes_nothing(store, pool):
    mgr = IPSetManager(store, "designate-designate", NS)
    for i in range(4):
        mgr.allocate_ip(pool, holder_key(i))
    before = store.get_record(NS, "designate-designate")

    with pytest.raises(PoolExhausted):
        mgr.allocate_ip(pool, holder_key(4))

    after = store.get_record(NS, "designate-designate")
    assert after.version == before.version
    assert after.data == before.data
    assert store.writes["record"] == 4


def test_release_absent_address_is_noop(store, pool):
    mgr = IPSetManager(store, "designate-designate", NS)
    assert mgr.release_ip("10.0.0.1") is False  # no record at all

    mgr.allocate_ip(pool, "pod_0")
    writes = store.writes["record"]
    assert mgr.release_ip("10.0.0.3") is False
    assert store.writes["record"] == writes


def test_release_frees_address_for_another_holder(store, pool):
    mgr = IPSetManager(store, "designate-designate", NS)
    for i in range(3):
        mgr.allocate_ip(pool, holder_key(i))

    assert mgr.release_ip("10.0.0.2") is True
    assert _table(store) == {"pod_0": "10.0.0.1", "pod_2": "10.0.0.3"}
    assert not mgr.is_allocated("10.0.0.2")

    assert mgr.allocate_ip(pool, "pod_9") == "10.0.0.2"
    assert mgr.is_allocated("10.0.0.2")


def test_existing_entries_are_preserved(store, pool):
    mgr = IPSetManager(store, "designate-designate", NS)
    mgr.allocate_ip(pool, "pod_0")
    mgr.allocate_ip(pool, "pod_1")
    mgr.allocate_ip(pool, "pod_2")
    assert _table(store) == {"pod_0": "10.0.0.1", "pod_1": "10.0.0.2", "pod_2": "10.0.0.3"}


def test_sibling_pool_addresses_are_excluded(store, pool):
    p1 = IPSetManager(store, "pool-one", NS, siblings=["pool-two"])
    p2 = IPSetManager(store, "pool-two", NS, siblings=["pool-one"])

    assert p1.allocate_ip(pool, "a") == "10.0.0.1"
    assert p2.allocate_ip(pool, "b") == "10.0.0.2"
    assert p2.allocate_ip(pool, "c") == "10.0.0.3"

    p1.release_ip("10.0.0.1")
    assert p2.allocate_ip(pool, "d") == "10.0.0.1"


def test_own_name_in_siblings_is_ignored(store):
    mgr = IPSetManager(store, "pool-one", NS, siblings=["pool-one", "pool-two", ""])
    assert [s.name for s in mgr.siblings] == ["pool-two"]


class _BrokenSiblingStore(InMemoryObjectStore):
    def get_record(self, namespace, name):
        if name == "broken":
            raise RuntimeError("boom")
        return super().get_record(namespace, name)


def test_unreadable_sibling_excludes_nothing(pool):
    store = _BrokenSiblingStore()
    mgr = IPSetManager(store, "pool-one", NS, siblings=["broken"])
    assert mgr.allocate_ip(pool, "a") == "10.0.0.1"


class _RacingStore(InMemoryObjectStore):
    """Runs ``race`` once, right before the next record update is applied."""

    race = None

    def update_record(self, record):
        race, self.race = self.race, None
        if race is not None:
            race()
        return super().update_record(record)


def test_conflicting_writers_converge_to_union(pool):
    store = _RacingStore()
    a = IPSetManager(store, "designate-designate", NS)
    b = IPSetManager(store, "designate-designate", NS)
    a.allocate_ip(pool, "pod_0")

    store.race = lambda: b.allocate_ip(pool, "pod_2")
    with pytest.raises(ConflictError):
        a.allocate_ip(pool, "pod_1")

    # The winner's entry is intact; the loser's retry merges on top of it.
    assert _table(store) == {"pod_0": "10.0.0.1", "pod_2": "10.0.0.2"}
    assert a.allocate_ip(pool, "pod_1") == "10.0.0.3"
    assert _table(store) == {"pod_0": "10.0.0.1", "pod_2": "10.0.0.2", "pod_1": "10.0.0.3"}


def test_concurrent_creation_is_a_conflict(store, pool):
    store.inject_conflict("record", 1)
    mgr = IPSetManager(store, "designate-designate", NS)
    with pytest.raises(ConflictError):
        mgr.allocate_ip(pool, "pod_0")
    assert mgr.allocate_ip(pool, "pod_0") == "10.0.0.1"
