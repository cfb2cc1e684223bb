"""Tests for the per-entity lock manager."""

import threading

import pytest

from library_circulation.circulation.locks import (
    LockManager,
    LockTimeout,
    book_key,
    member_key,
    reservation_key,
    transaction_key,
)


def test_key_helpers():
    assert book_key(7) == "book:7"
    assert member_key(3) == "member:3"
    assert transaction_key(11) == "transaction:11"
    assert reservation_key(2) == "reservation:2"


def test_hold_acquires_sorted_unique_keys():
    locks = LockManager()

    with locks.hold("member:1", "book:2", "member:1") as held:
        assert held == ("book:2", "member:1")
        assert locks.is_held("book:2")
        assert locks.is_held("member:1")

    assert not locks.is_held("book:2")
    assert not locks.is_held("member:1")


def test_timeout_releases_partial_acquisition():
    locks = LockManager(timeout=0.05)
    blocker_ready = threading.Event()
    release_blocker = threading.Event()

    def blocker():
        with locks.hold("member:1"):
            blocker_ready.set()
            release_blocker.wait(5)

    thread = threading.Thread(target=blocker)
    thread.start()
    blocker_ready.wait(5)
    try:
        with pytest.raises(LockTimeout) as exc_info:
            with locks.hold("book:1", "member:1"):
                pass
        assert exc_info.value.key == "member:1"
        # book:1 was taken first and must have been given back
        assert not locks.is_held("book:1")
    finally:
        release_blocker.set()
        thread.join()


def test_explicit_timeout_overrides_default():
    locks = LockManager(timeout=10)

    with locks.hold("book:1"):
        waiter_result = []

        def waiter():
            try:
                with locks.hold("book:1", timeout=0.01):
                    waiter_result.append("acquired")
            except LockTimeout as e:
                waiter_result.append(e.timeout)

        thread = threading.Thread(target=waiter)
        thread.start()
        thread.join(5)

    assert waiter_result == [0.01]


def test_lock_serializes_critical_sections():
    locks = LockManager()
    counter = {"value": 0}

    def bump():
        for _ in range(200):
            with locks.hold("book:1"):
                current = counter["value"]
                counter["value"] = current + 1

    threads = [threading.Thread(target=bump) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert counter["value"] == 800


def test_registry_drops_released_keys():
    locks = LockManager(timeout=0.05)

    for book_id in range(50):
        with locks.hold(book_key(book_id), member_key(book_id)):
            assert len(locks) == 2

    assert len(locks) == 0


def test_registry_keeps_key_while_waiter_queued():
    locks = LockManager(timeout=5)
    waiter_started = threading.Event()

    def waiter():
        waiter_started.set()
        with locks.hold("book:1"):
            pass

    with locks.hold("book:1"):
        thread = threading.Thread(target=waiter)
        thread.start()
        waiter_started.wait(5)
        assert locks.is_held("book:1")
    thread.join(5)

    assert len(locks) == 0
    assert not locks.is_held("book:1")


def test_timed_out_key_is_dropped():
    locks = LockManager(timeout=0.01)

    with locks.hold("member:1"):
        failures = []

        def contender():
            try:
                with locks.hold("book:9", "member:1"):
                    pass
            except LockTimeout as e:
                failures.append(e.key)

        thread = threading.Thread(target=contender)
        thread.start()
        thread.join(5)
        assert failures == ["member:1"]
        assert len(locks) == 1

    assert len(locks) == 0
