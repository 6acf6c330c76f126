from unittest import mock

from ringtrack.timer import TIMEOUT_INTERVAL, Timer, real_time_us


class _Clock:
    def __init__(self, us):
        self.us = us

    def __call__(self):
        return self.us * 1000

    def advance(self, us):
        self.us += us


def test_real_time_us_truncates_nanoseconds():
    with mock.patch("time.time_ns", return_value=5_000_123_456):
        assert real_time_us() == 5_000_123


def test_new_timer_is_paused_and_does_not_advance():
    clock = _Clock(1_000_000)
    with mock.patch("time.time_ns", new=clock):
        timer = Timer()
        assert timer.paused() is True
        before = timer.get_time()
        clock.advance(10_000)
        assert timer.get_time() == before == 0


def test_start_measures_elapsed_time():
    clock = _Clock(2_000_000)
    with mock.patch("time.time_ns", new=clock):
        timer = Timer()
        assert timer.start() == 0
        assert timer.paused() is False
        clock.advance(500)
        assert timer.get_time() == 500


def test_paused_period_is_excluded():
    clock = _Clock(0)
    with mock.patch("time.time_ns", new=clock):
        timer = Timer()
        timer.start()
        clock.advance(100)
        timer.pause()
        clock.advance(1000)
        assert timer.get_time() == 100
        timer.start()
        clock.advance(50)
        assert timer.get_time() == 150


def test_pause_returns_current_time():
    clock = _Clock(777)
    with mock.patch("time.time_ns", new=clock):
        timer = Timer()
        clock.advance(23)
        assert timer.pause() == 800


def test_time_out_after_interval():
    clock = _Clock(0)
    with mock.patch("time.time_ns", new=clock):
        timer = Timer(timeout=100)
        timer.start()
        clock.advance(100)
        assert timer.time_out() is False
        clock.advance(1)
        assert timer.time_out() is True


def test_reset_zeroes_and_restores_default_timeout():
    clock = _Clock(0)
    with mock.patch("time.time_ns", new=clock):
        timer = Timer(timeout=5)
        timer.start()
        clock.advance(300)
        timer.reset()
        assert timer.timeout_interval == TIMEOUT_INTERVAL
        assert timer.get_time() == 0
        clock.advance(40)
        assert timer.get_time() == 40