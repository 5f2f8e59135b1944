"""Tests for behavioral_auth.core.locks."""
import threading

import pytest

from behavioral_auth.core.errors import ConcurrentWriteConflict
from behavioral_auth.core.locks import UserLockRegistry


def test_same_user_shares_lock():
    registry = UserLockRegistry()
    assert registry.lock_for('alice') is registry.lock_for('alice')
    assert registry.lock_for('alice') is not registry.lock_for('bob')


def test_hold_is_reentrant():
    registry = UserLockRegistry()
    with registry.hold('alice'):
        with registry.hold('alice'):
            pass


def test_contended_hold_times_out():
    registry = UserLockRegistry(wait_timeout=0.05)
    held = threading.Event()
    done = threading.Event()

    def holder():
        with registry.hold('alice'):
            held.set()
            done.wait(2)

    thread = threading.Thread(target=holder)
    thread.start()
    held.wait(2)
    try:
        with pytest.raises(ConcurrentWriteConflict):
            with registry.hold('alice'):
                pass
        with registry.hold('bob'):
            pass
    finally:
        done.set()
        thread.join()
