"""
A generic timer class suitable for use as the DICOM UL's ARTIM timer.
"""

import logging
import time


LOGGER = logging.getLogger(__name__)


class Timer:
    """A generic expiry timer.

    Used by the state machine to monitor the association request, local
    response and release timeouts.

    A `timeout` of ``None`` means the timer never expires and
    :attr:`remaining` always returns ``1``.

    References
    ----------

    * DICOM Standard, Part 8, Section 9.1.5
    """

    def __init__(self, timeout: float | None) -> None:
        """Create a new :class:`Timer`.

        Parameters
        ---------
        timeout : float or None
            The number of seconds before the timer expires. A value of
            ``None`` means the timer never expires.
        """
        self._start_time: float | None = None
        self._end_time: float | None = None
        self.timeout = timeout

    @property
    def expired(self) -> bool:
        """Return ``True`` if the timer has been started and has expired."""
        if self.timeout is None or self._start_time is None:
            return False

        return self.remaining < 0

    @property
    def is_running(self) -> bool:
        """Return ``True`` if the timer has been started and not stopped."""
        return self._start_time is not None and self._end_time is None

    @property
    def remaining(self) -> float:
        """Return the number of seconds remaining until expiry.

        Returns ``1`` if the timer is set to never expire. The value will be
        negative after expiry.
        """
        if self.timeout is None:
            return 1

        if self._start_time is None:
            return self.timeout

        end = self._end_time if self._end_time is not None else time.monotonic()
        return self.timeout - (end - self._start_time)

    def restart(self) -> None:
        """Restart the timer."""
        self.start()

    def start(self) -> None:
        """Reset and start the timer running."""
        self._start_time = time.monotonic()
        self._end_time = None

    def stop(self) -> None:
        """Stop the timer."""
        if self._start_time is not None and self._end_time is None:
            self._end_time = time.monotonic()

    def reset(self) -> None:
        """Stop the timer and clear its start time."""
        self._start_time = None
        self._end_time = None

    @property
    def timeout(self) -> float | None:
        """Get or set the number of seconds before the timer expires."""
        return self._timeout

    @timeout.setter
    def timeout(self, value: float | None) -> None:
        self._timeout = value
