"""Base class for periodically sampled resource collectors."""

import abc
import logging
import time
from collections.abc import Callable
from typing import Any

from peaktop.errors import CollectorFailure, FailureKind, classify

LOGGER = logging.getLogger(__name__)


class Collector(abc.ABC):
    """
    A unit responsible for one resource domain's sampling.

    Collectors own no scheduling logic. All previous-reading state lives on
    the instance and is only touched from the thread running ``sample()``.
    """

    name: str = "collector"

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        """
        Initialize the collector.

        Args:
            clock: Monotonic time source used to timestamp readings.
        """
        self._clock = clock
        self._failures: list[CollectorFailure] = []
        self._last_failures: tuple[CollectorFailure, ...] = ()

    @property
    def last_failures(self) -> tuple[CollectorFailure, ...]:
        """Classified failures recorded during the most recent completed cycle."""
        return self._last_failures

    def open(self) -> None:
        """
        Acquire counter handles and one-time values before the first sample.

        Raises:
            CollectorInitError: If the OS subsystem this collector needs is unavailable.
        """

    def close(self) -> None:
        """Discard all previous-reading state."""

    def sample(self) -> Any:
        """Run one sampling cycle and return the new immutable snapshot value."""
        self._failures = []
        try:
            return self._sample()
        finally:
            self._last_failures = tuple(self._failures)

    @abc.abstractmethod
    def _sample(self) -> Any:
        """Collector-specific sampling step."""

    def _record(self, kind: FailureKind, source: str, message: str = "") -> None:
        self._failures.append(CollectorFailure(kind, source, message))

    def _record_exception(self, source: str, exc: BaseException) -> FailureKind:
        """Classify, log and record an exception from one counter source."""
        kind = classify(exc)
        self._record(kind, source, str(exc))
        LOGGER.debug("%s: %s failed (%s): %s", self.name, source, kind.value, exc)
        return kind
