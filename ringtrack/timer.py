"""Pausable stopwatch measuring microseconds."""

from __future__ import annotations

import time

TIMEOUT_INTERVAL = 40000


def real_time_us():
    """Return the current wall-clock time in microseconds."""
    return time.time_ns() // 1000


class Timer:
    """Stopwatch that can be paused and resumed; created paused."""

    def __init__(self, timeout=TIMEOUT_INTERVAL):
        self.reset()
        self.timeout_interval = timeout
        self.pause()

    def reset(self, timeout=TIMEOUT_INTERVAL):
        """Set the timeout and zero the measured time."""
        self.timeout_interval = timeout
        self._start_time = real_time_us()
        self._pause_time = self._start_time

    def paused(self):
        return not self._running

    def pause(self):
        """Stop measuring; return the moment of pausing."""
        self._running = False
        self._pause_time = real_time_us()
        return self._pause_time

    def start(self):
        """Resume measuring; return the time measured so far."""
        self._start_time += real_time_us() - self._pause_time
        self._running = True
        return self.get_time()

    def get_time(self):
        """Microseconds measured, excluding paused periods."""
        if self._running:
            return real_time_us() - self._start_time
        return self._pause_time - self._start_time

    def time_out(self):
        return self.get_time() > self.timeout_interval