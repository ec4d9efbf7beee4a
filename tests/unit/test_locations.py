import threading

from services.locations import LocationStore
from utils.locks import KeyedLock


def test_last_write_wins():
    store = LocationStore()
    store.update(7, 12.0, 77.0)
    store.update(7, 12.5, 77.5)

    location = store.get(7)
    assert (location.lat, location.lng) == (12.5, 77.5)
    assert len(store) == 1


def test_unknown_partner_has_no_location():
    assert LocationStore().get(42) is None


def test_forget_and_clear():
    store = LocationStore()
    store.update(7, 1.0, 1.0)
    store.update(8, 2.0, 2.0)

    store.forget(7)
    assert store.get(7) is None

    store.clear()
    assert len(store) == 0


def test_keyed_lock_releases_idle_keys():
    locks = KeyedLock()
    with locks.hold(1):
        with locks.hold(2):
            assert len(locks) == 2
    assert len(locks) == 0


def test_keyed_lock_serializes_same_key():
    locks = KeyedLock()
    counter = {"value": 0}

    def bump():
        for _ in range(200):
            with locks.hold("order-1"):
                current = counter["value"]
                counter["value"] = current + 1

    threads = [threading.Thread(target=bump) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert counter["value"] == 800
    assert len(locks) == 0
