"""
Tests for the session lock.
"""

import pytest

from vpntunnel.errors import SessionActive
from vpntunnel.lock import SessionLock


class TestSessionLock:
    """Test lock exclusion between invocations."""

    def test_second_holder_is_refused(self, tmp_path):
        path = tmp_path / "session.lock"
        first = SessionLock(path)
        second = SessionLock(path)

        first.acquire(blocking=False)
        try:
            with pytest.raises(SessionActive):
                second.acquire(blocking=False)
            assert not second.held
        finally:
            first.release()

        second.acquire(blocking=False)
        assert second.held
        second.release()

    def test_reentrant(self, tmp_path):
        lock = SessionLock(tmp_path / "session.lock")

        lock.acquire(blocking=False)
        lock.acquire(blocking=True)
        lock.release()
        assert lock.held

        lock.release()
        assert not lock.held

    def test_release_when_not_held(self, tmp_path):
        SessionLock(tmp_path / "session.lock").release()

    def test_hold_context(self, tmp_path):
        path = tmp_path / "nested" / "session.lock"
        lock = SessionLock(path)

        with lock.hold():
            assert lock.held
            assert path.read_text().isdigit()

        assert not lock.held
