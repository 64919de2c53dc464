import time


class SystemClock:
    """Wall-clock time as integer seconds since the Unix epoch."""

    def now(self):
        return int(time.time())
