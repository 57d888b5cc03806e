from __future__ import annotations

import itertools
import threading
import time
from typing import Callable


class IdGenerator:
    """
    Issues ids of the form ``PREFIX_<epoch millis>_<sequence>``.

    The sequence is process-wide: every instance draws from the same counter,
    so two generators never hand out the same id even within one millisecond.
    """

    DEFAULT_PREFIX = "ID"

    _sequence = itertools.count(1)
    _sequence_lock = threading.Lock()

    def __init__(self, clock_ms: Callable[[], int] = lambda: int(time.time() * 1000)) -> None:
        self._clock_ms = clock_ms

    def generateId(self, prefix: str = DEFAULT_PREFIX) -> str:
        prefix = (prefix or "").strip() or self.DEFAULT_PREFIX
        with IdGenerator._sequence_lock:
            sequence = next(IdGenerator._sequence)
        return f"{prefix.upper()}_{self._clock_ms()}_{sequence}"

    def generateMemberId(self) -> str:
        return self.generateId("MEM")

    def generateLoanId(self) -> str:
        return self.generateId("LOAN")

    def generateEventId(self) -> str:
        return self.generateId("EVT")
