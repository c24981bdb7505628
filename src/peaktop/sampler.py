"""Delta-based rate derivation for cumulative and instantaneous counters."""

from collections.abc import Hashable, Iterable
from dataclasses import dataclass
from typing import Generic, TypeVar

K = TypeVar("K", bound=Hashable)


@dataclass(slots=True, frozen=True)
class Reading:
    """A captured counter value, its timestamp, and the rate derived when it was taken."""

    value: float
    timestamp: float
    rate: float | None = None  # None means "unknown": first sighting or counter reset


def derive(
    previous: Reading | None,
    value: float,
    timestamp: float,
    *,
    cumulative: bool = True,
) -> Reading:
    """
    Derive a new Reading from the previous one and a fresh observation.

    Args:
        previous: The last reading for this counter, or None on first sighting.
        value: The current raw counter value.
        timestamp: When the value was captured (seconds, monotonic).
        cumulative: Whether the counter only ever grows. A shrinking
            cumulative counter was reset and yields no rate this cycle.

    Returns:
        The reading to keep for the next cycle. Its ``rate`` is the derived
        rate, or None when no rate can be derived.
    """
    if previous is None:
        return Reading(value, timestamp)

    elapsed = timestamp - previous.timestamp
    if elapsed <= 0:
        # Coalesced tick or clock step: keep the old baseline and its rate
        return previous

    delta = value - previous.value
    if cumulative and delta < 0:
        return Reading(value, timestamp)

    return Reading(value, timestamp, delta / elapsed)


class RateSampler(Generic[K]):
    """
    Keyed map of previous readings used to turn successive counter values into rates.

    The map belongs to exactly one collector and is never shared.
    """

    def __init__(self, *, cumulative: bool = True) -> None:
        self._cumulative = cumulative
        self._readings: dict[K, Reading] = {}

    def __len__(self) -> int:
        return len(self._readings)

    def __contains__(self, key: object) -> bool:
        return key in self._readings

    def observe(self, key: K, value: float, timestamp: float) -> float | None:
        """Update a single key and return its derived rate (None if unknown)."""
        reading = derive(
            self._readings.get(key), value, timestamp, cumulative=self._cumulative
        )
        self._readings[key] = reading
        return reading.rate

    def observe_cycle(
        self, observations: Iterable[tuple[K, float, float]]
    ) -> dict[K, float | None]:
        """
        Derive rates for one full polling cycle.

        The reading map is rebuilt from scratch: keys absent from
        ``observations`` are dropped, so state never outgrows one cycle.

        Args:
            observations: (key, value, timestamp) triples seen this cycle.

        Returns:
            Mapping of key to derived rate (None if unknown).
        """
        readings: dict[K, Reading] = {}
        rates: dict[K, float | None] = {}
        for key, value, timestamp in observations:
            reading = derive(
                self._readings.get(key), value, timestamp, cumulative=self._cumulative
            )
            readings[key] = reading
            rates[key] = reading.rate
        self._readings = readings
        return rates

    def reset(self) -> None:
        """Discard all previous readings."""
        self._readings = {}
