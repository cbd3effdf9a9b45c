"""Utilities for the tests."""

import os
import socket
import time
from typing import Callable


PORTS: dict[str | None, tuple[int, int]] = {}


def get_port(src: str = "local") -> int:
    """Return a probably-open port that each worker can use"""
    worker_id = os.environ.get("PYTEST_XDIST_WORKER")
    if worker_id in PORTS:
        return PORTS[worker_id][0] if src == "local" else PORTS[worker_id][1]

    # local, peer
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as l:
        l.bind(("localhost", 0))
        l.listen(1)

        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as r:
            r.bind(("localhost", 0))
            r.listen(1)

            PORTS[worker_id] = (l.getsockname()[1], r.getsockname()[1])

    return get_port(src)


def sleep(duration: float) -> None:
    """Sleep for at least `duration` seconds."""
    now = time.perf_counter()
    end = now + duration
    while now < end:
        now = time.perf_counter()


def wait_for(condition: Callable[[], bool], timeout: float = 5) -> bool:
    """Poll `condition` until it returns ``True`` or `timeout` seconds pass.

    Returns the final result of `condition`.
    """
    end = time.perf_counter() + timeout
    while time.perf_counter() < end:
        if condition():
            return True

        time.sleep(0.01)

    return condition()
