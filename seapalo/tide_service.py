"""
Tide Height Synthesizer.

Sums harmonic constituents into a water level series and tags high and low
water. Height at time t (hours since 2000-01-01T00:00Z) is

    h(t) = Z0 + sum_i f_i * A_i * cos(speed_i * t + u_i - phase_i)

where f and u are the nodal corrections (1 and 0 unless enabled). Nodal
corrections vary on an 18.61 year cycle and are evaluated once at the
window midpoint.

Confidence is scaled between spring and neap tides by the lunar day.

References:
- Nodal corrections: Schureman, P. (1958) "Manual of Harmonic Analysis and Prediction of Tides"
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .astronomy import julian_centuries, lunar_node_longitude, nodal_corrections, to_utc
from .exceptions import InvalidRequest
from .lunar import LunarPhaseResult, spring_weight
from .tiles import TidalConstituent

logger = logging.getLogger(__name__)

EPOCH = datetime(2000, 1, 1)

# Sampling step for refined high/low detection
EXTREMA_STEP_MINUTES = 3


class ExtremaType(str, Enum):
    HIGH = "high"
    LOW = "low"


@dataclass(frozen=True)
class PredictionPoint:
    time: datetime
    level: float  # metres
    extrema_type: Optional[ExtremaType]
    confidence: float


def hours_since_epoch(times: Sequence[datetime]) -> np.ndarray:
    """Hours since 2000-01-01T00:00Z for each datetime (naive = UTC)."""
    return np.array([(to_utc(t) - EPOCH).total_seconds() / 3600.0 for t in times])


def _tag_extrema(heights: np.ndarray) -> List[Optional[ExtremaType]]:
    """
    Label interior samples that are local maxima or minima.

    A sample is high when strictly above its left neighbour and not below its
    right neighbour, so a flat top is tagged once at its first sample.
    """
    tags: List[Optional[ExtremaType]] = [None] * len(heights)
    for i in range(1, len(heights) - 1):
        left, here, right = heights[i - 1], heights[i], heights[i + 1]
        if here > left and here >= right:
            tags[i] = ExtremaType.HIGH
        elif here < left and here <= right:
            tags[i] = ExtremaType.LOW
    return tags


def _refine_vertex(h1: float, h2: float, h3: float, step_hours: float) -> Tuple[float, float]:
    """
    Vertex of the parabola through three samples spaced `step_hours` apart.

    Returns:
        (offset from the middle sample in hours, height at the vertex).
        A degenerate (straight) fit returns the middle sample unchanged.
    """
    denom = h1 - 2 * h2 + h3
    if abs(denom) <= 1e-10:
        return 0.0, float(h2)
    t_offset = 0.5 * (h1 - h3) / denom * step_hours
    height = h2 - (h1 - h3) ** 2 / (8 * denom)
    return float(t_offset), float(height)


class TideSynthesizer:
    """
    Harmonic tide synthesis over constituent sets.

    Stateless apart from configuration: the same inputs always give the same
    output, and nothing here reads the current time.
    """

    def __init__(
        self,
        datum_offset_m: float = 0.0,
        nodal_corrections: bool = False,
        base_confidence: float = 0.85,
        spring_factor: float = 1.10,
        neap_factor: float = 0.90,
    ):
        self.datum_offset_m = datum_offset_m
        self.nodal_corrections = nodal_corrections
        self.base_confidence = base_confidence
        self.spring_factor = spring_factor
        self.neap_factor = neap_factor

    def _nodal_factors(self, midpoint: datetime) -> Dict[str, Tuple[float, float]]:
        if not self.nodal_corrections:
            return {}
        return nodal_corrections(lunar_node_longitude(julian_centuries(midpoint)))

    def heights(self, constituents: Sequence[TidalConstituent], times: Sequence[datetime]) -> np.ndarray:
        """
        Water level in metres at each time (vectorized over time).

        Args:
            constituents: Location-specific constituents
            times: Datetimes (UTC or timezone-aware), in order

        Returns:
            Array of heights relative to the configured datum
        """
        if not times:
            return np.array([])

        t_hours = hours_since_epoch(times)
        heights = np.full(len(t_hours), self.datum_offset_m, dtype=float)

        midpoint = times[0] + (times[-1] - times[0]) / 2
        nodal = self._nodal_factors(midpoint)

        for const in constituents:
            f, u = nodal.get(const.name.upper(), (1.0, 0.0))
            phase_arg = const.speed * t_hours + u - const.phase
            heights += f * const.amplitude * np.cos(np.radians(phase_arg))

        return heights

    def confidence(self, lunar_phase: LunarPhaseResult) -> float:
        """Base confidence scaled between the neap and spring factors, in [0, 1]."""
        weight = spring_weight(lunar_phase.lunar_day)
        factor = self.neap_factor + (self.spring_factor - self.neap_factor) * weight
        return round(min(1.0, max(0.0, self.base_confidence * factor)), 3)

    def synthesize(
        self,
        constituents: Sequence[TidalConstituent],
        lunar_phase: LunarPhaseResult,
        start: datetime,
        end: datetime,
        step_minutes: float,
    ) -> List[PredictionPoint]:
        """
        Level series over [start, end] at a fixed step, with extrema tagged.

        The last sample equals `end` when the span is a whole number of steps.

        Raises:
            InvalidRequest: If the step is not positive or end precedes start
        """
        if step_minutes is None or step_minutes <= 0:
            raise InvalidRequest(f"Step must be a positive number of minutes, got {step_minutes}")
        if end < start:
            raise InvalidRequest("End of the prediction window precedes its start")

        step = timedelta(minutes=step_minutes)
        count = int((end - start) / step) + 1
        times = [start + i * step for i in range(count)]

        heights = self.heights(constituents, times)
        tags = _tag_extrema(heights)
        confidence = self.confidence(lunar_phase)

        return [
            PredictionPoint(time=t, level=round(float(h), 3), extrema_type=tag, confidence=confidence)
            for t, h, tag in zip(times, heights, tags)
        ]

    def level_at(
        self,
        constituents: Sequence[TidalConstituent],
        lunar_phase: LunarPhaseResult,
        instant: datetime,
    ) -> PredictionPoint:
        """Level at a single instant (never tagged as an extremum)."""
        height = self.heights(constituents, [instant])[0]
        return PredictionPoint(
            time=instant,
            level=round(float(height), 3),
            extrema_type=None,
            confidence=self.confidence(lunar_phase),
        )

    def find_extrema(
        self,
        constituents: Sequence[TidalConstituent],
        lunar_phase: LunarPhaseResult,
        start: datetime,
        end: datetime,
    ) -> List[PredictionPoint]:
        """
        High and low water events within [start, end].

        Samples every 3 minutes, then refines each extremum by fitting a
        parabola through it and its two neighbours.
        """
        if end < start:
            raise InvalidRequest("End of the prediction window precedes its start")

        step = timedelta(minutes=EXTREMA_STEP_MINUTES)
        count = int((end - start) / step) + 1
        times = [start + i * step for i in range(count)]
        heights = self.heights(constituents, times)
        tags = _tag_extrema(heights)
        confidence = self.confidence(lunar_phase)
        step_hours = EXTREMA_STEP_MINUTES / 60.0

        events = []
        for idx, tag in enumerate(tags):
            if tag is None:
                continue

            t_offset, height = _refine_vertex(heights[idx - 1], heights[idx], heights[idx + 1], step_hours)

            event_time = times[idx] + timedelta(hours=t_offset)
            event_time = min(max(event_time, start), end).replace(microsecond=0)
            events.append(PredictionPoint(
                time=event_time,
                level=round(height, 3),
                extrema_type=tag,
                confidence=confidence,
            ))

        logger.debug(f"Found {len(events)} extrema between {start.isoformat()} and {end.isoformat()}")
        return events
