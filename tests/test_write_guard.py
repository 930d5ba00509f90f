"""Tests for utils.write_guard: per-window durable write cap."""

from __future__ import annotations

from utils.write_guard import WriteGuard


class ManualClock:
    def __init__(self):
        self.t = 0.0

    def __call__(self):
        return self.t


class TestWriteGuard:
    def test_allows_up_to_cap(self):
        guard = WriteGuard(max_writes=3, clock=ManualClock())
        assert [guard.allow("fuel") for _ in range(4)] == [True, True, True, False]
        assert guard.window_count == 3

    def test_cap_is_shared_across_keys(self):
        guard = WriteGuard(max_writes=2, clock=ManualClock())
        assert guard.allow("fuel") is True
        assert guard.allow("oil") is True
        assert guard.allow("water") is False

    def test_window_resets_after_expiry(self):
        clock = ManualClock()
        guard = WriteGuard(max_writes=1, window_seconds=60, clock=clock)
        assert guard.allow("fuel") is True
        assert guard.allow("fuel") is False
        clock.t = 59.9
        assert guard.allow("fuel") is False
        clock.t = 60.0
        assert guard.allow("fuel") is True
        assert guard.window_count == 1

    def test_defaults(self):
        guard = WriteGuard()
        assert guard.max_writes == 12
        assert guard.window_seconds == 60.0

    def test_refusal_logged_once_per_key(self, caplog):
        guard = WriteGuard(max_writes=1, clock=ManualClock())
        guard.allow("fuel")
        with caplog.at_level("WARNING", logger="utils.write_guard"):
            guard.allow("oil")
            guard.allow("oil")
        assert len([r for r in caplog.records if "oil" in r.getMessage()]) == 1
