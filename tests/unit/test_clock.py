"""Test WallClock and ManualClock."""

from datetime import datetime, timedelta, timezone

import pytest

from ecommerce.core.clock import ManualClock, WallClock


class TestWallClock:
    def test_now_returns_utc(self):
        now = WallClock().now()
        assert now.tzinfo == timezone.utc

    def test_now_is_recent(self):
        diff = abs((datetime.now(timezone.utc) - WallClock().now()).total_seconds())
        assert diff < 1.0


class TestManualClock:
    def test_default_start(self):
        assert ManualClock().now() == datetime(2025, 1, 1, tzinfo=timezone.utc)

    def test_fixture_start(self, manual_clock):
        assert manual_clock.now() == datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

    def test_time_stands_still(self, manual_clock):
        assert manual_clock.now() == manual_clock.now()

    def test_set_time_advances(self, manual_clock):
        later = datetime(2025, 3, 2, tzinfo=timezone.utc)
        manual_clock.set_time(later)
        assert manual_clock.now() == later

    def test_set_time_cannot_go_backwards(self, manual_clock):
        with pytest.raises(ValueError, match="cannot go backwards"):
            manual_clock.set_time(datetime(2025, 2, 1, tzinfo=timezone.utc))

    def test_set_time_same_time_ok(self, manual_clock):
        same = manual_clock.now()
        manual_clock.set_time(same)
        assert manual_clock.now() == same

    def test_advance_accumulates(self, manual_clock):
        start = manual_clock.now()
        manual_clock.advance(timedelta(seconds=1))
        manual_clock.advance(timedelta(milliseconds=2500))
        assert (manual_clock.now() - start).total_seconds() == pytest.approx(3.5)
