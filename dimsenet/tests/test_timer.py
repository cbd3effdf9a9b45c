"""Tests for the Timer."""

import logging
import time

from dimsenet.timer import Timer


LOGGER = logging.getLogger("dimsenet")
LOGGER.setLevel(logging.CRITICAL)


class TestTimer:
    """Tests for Timer."""

    def test_init(self):
        """Test a new timer."""
        timer = Timer(10)
        assert timer.timeout == 10
        assert not timer.expired
        assert not timer.is_running
        assert timer.remaining == 10

    def test_no_timeout(self):
        """Test a timer that never expires."""
        timer = Timer(None)
        timer.start()
        assert timer.remaining == 1
        time.sleep(0.05)
        assert not timer.expired

    def test_expiry(self):
        """Test the timer expiring."""
        timer = Timer(0.05)
        timer.start()
        assert timer.is_running
        assert not timer.expired
        time.sleep(0.1)
        assert timer.expired
        assert timer.remaining < 0

    def test_stop(self):
        """Test stopping the timer freezes the remaining time."""
        timer = Timer(0.2)
        timer.start()
        timer.stop()
        assert not timer.is_running
        remaining = timer.remaining
        time.sleep(0.25)
        assert timer.remaining == remaining
        assert not timer.expired

    def test_restart(self):
        """Test restarting the timer."""
        timer = Timer(0.1)
        timer.start()
        time.sleep(0.15)
        assert timer.expired
        timer.restart()
        assert not timer.expired
        assert timer.is_running

    def test_reset(self):
        """Test resetting the timer."""
        timer = Timer(0.05)
        timer.start()
        time.sleep(0.1)
        timer.reset()
        assert not timer.expired
        assert not timer.is_running
        assert timer.remaining == 0.05

    def test_change_timeout(self):
        """Test changing the timeout of a running timer."""
        timer = Timer(0.05)
        timer.start()
        timer.timeout = 10
        time.sleep(0.1)
        assert not timer.expired
