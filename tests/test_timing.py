"""Tests for clocks, deadlines and interrupt handling."""

import signal

import pytest

from agentctl.core.exceptions import Cancelled
from agentctl.core.timing import Deadline, SystemClock, cancel_on_interrupt


class TestSystemClock:
    """Tests for SystemClock."""

    def test_cancel_interrupts_sleep(self):
        clock = SystemClock()
        clock.cancel()

        assert clock.cancelled
        with pytest.raises(Cancelled):
            clock.sleep(60)

    def test_zero_sleep_ignores_cancel(self):
        clock = SystemClock()
        clock.cancel()

        clock.sleep(0)


class TestDeadline:
    """Tests for Deadline."""

    def test_unbounded(self, clock):
        deadline = Deadline(clock, None)
        clock.advance(10_000)

        assert deadline.unbounded
        assert not deadline.expired()
        assert deadline.remaining() is None
        assert deadline.cap(42) == 42

    def test_cap_and_expiry(self, clock):
        deadline = Deadline(clock, 10)
        clock.advance(7)

        assert deadline.cap(5) == 3
        deadline.sleep(5)
        assert clock.sleeps == [3]
        assert deadline.expired()
        assert deadline.remaining() == 0.0


class TestCancelOnInterrupt:
    """Tests for cancel_on_interrupt."""

    def test_first_interrupt_cancels_clock(self):
        clock = SystemClock()
        previous = signal.getsignal(signal.SIGINT) or signal.default_int_handler

        with cancel_on_interrupt(clock):
            handler = signal.getsignal(signal.SIGINT)
            assert handler is not previous

            handler(signal.SIGINT, None)

            assert clock.cancelled
            assert signal.getsignal(signal.SIGINT) is previous

        assert signal.getsignal(signal.SIGINT) is previous

    def test_handler_restored_on_error(self):
        previous = signal.getsignal(signal.SIGINT) or signal.default_int_handler

        with pytest.raises(RuntimeError):
            with cancel_on_interrupt(SystemClock()):
                raise RuntimeError("boom")

        assert signal.getsignal(signal.SIGINT) is previous

    def test_clock_without_cancel_left_alone(self):
        previous = signal.getsignal(signal.SIGINT)

        with cancel_on_interrupt(object()):
            assert signal.getsignal(signal.SIGINT) is previous
