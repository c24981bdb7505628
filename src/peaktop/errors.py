"""Failure taxonomy for the telemetry collectors."""

from dataclasses import dataclass
from enum import Enum

import psutil


class FailureKind(Enum):
    """Categories of contained, non-fatal collector failures."""

    TRANSIENT = "transient"
    PERMISSION_DENIED = "permission_denied"
    ENUMERATION_RACE = "enumeration_race"
    CLOCK_ANOMALY = "clock_anomaly"
    INIT_FAILURE = "init_failure"
    TIMEOUT = "timeout"
    NO_SUCH_PROCESS = "no_such_process"
    UNEXPECTED = "unexpected"


@dataclass(slots=True, frozen=True)
class CollectorFailure:
    """A single classified failure observed during one collector cycle."""

    kind: FailureKind
    source: str  # metric name, pid, or "cycle"
    message: str = ""


class CollectorInitError(Exception):
    """Raised by a collector's open() when a required OS subsystem is unavailable."""


def classify(exc: BaseException) -> FailureKind:
    """
    Map an exception raised by an OS counter source to a FailureKind.

    psutil.ZombieProcess subclasses NoSuchProcess, so both count as an
    enumeration race. TimeoutError is an OSError subclass and is checked
    before the generic OSError branch.
    """
    if isinstance(exc, psutil.AccessDenied | PermissionError):
        return FailureKind.PERMISSION_DENIED
    if isinstance(exc, psutil.NoSuchProcess | ProcessLookupError):
        return FailureKind.ENUMERATION_RACE
    if isinstance(exc, psutil.TimeoutExpired | TimeoutError):
        return FailureKind.TIMEOUT
    if isinstance(exc, psutil.Error | OSError):
        return FailureKind.TRANSIENT
    return FailureKind.UNEXPECTED
