"""
Lunar phase calculator.

Converts an instant to the Moon's age, the waxing/waning flag and the 1-15
lunar day (kham) used to scale prediction confidence between spring and neap
tides.

The phase is evaluated once per civil day, at the close of that day (next
local midnight) in a fixed UTC offset. A day on which new or full moon
happens is therefore already counted as lunar day 1 of the new half-cycle.

References:
- Meeus, J. (1991) "Astronomical Algorithms", chapter 47-49
"""
import logging
import math
import threading
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from .astronomy import julian_centuries, lunar_elements, to_utc

logger = logging.getLogger(__name__)

SYNODIC_MONTH = 29.530588853
HALF_SYNODIC_MONTH = SYNODIC_MONTH / 2


@dataclass(frozen=True)
class LunarPhaseResult:
    age_days: float
    is_waxing: bool
    lunar_day: int
    phase_angle: float


def elongation(dt: datetime) -> float:
    """
    Moon's elongation from the Sun in degrees [0, 360), 0 = new, 180 = full.

    Mean elongation plus the dominant periodic terms of the lunar and solar
    longitudes (equation of centre, evection, variation and the annual
    equation).
    """
    T = julian_centuries(dt)
    D, M, Mp = lunar_elements(T)
    D_r, M_r, Mp_r = math.radians(D), math.radians(M), math.radians(Mp)

    angle = (D
             + 6.289 * math.sin(Mp_r)
             - 2.100 * math.sin(M_r)
             + 1.274 * math.sin(2 * D_r - Mp_r)
             + 0.658 * math.sin(2 * D_r)
             + 0.214 * math.sin(2 * Mp_r)
             - 0.110 * math.sin(D_r))
    return angle % 360.0


def spring_weight(lunar_day: int) -> float:
    """1.0 at spring tides (lunar day 1 and 15), 0.0 at neap (around day 8)."""
    return abs(math.cos(math.pi * (lunar_day - 1) / 14.0))


class LunarPhaseCalculator:
    """
    Lunar phase for a civil day at a fixed UTC offset.

    The calculator holds no mutable state apart from the lazily loaded
    reference ephemeris, so results depend only on the instant.
    """

    def __init__(self, utc_offset_hours: float = 7.0):
        self.utc_offset = timedelta(hours=utc_offset_hours)
        self._ephemeris = None
        self._timescale = None
        self._ephemeris_lock = threading.Lock()

    def evaluation_instant(self, instant: datetime) -> datetime:
        """
        UTC instant (naive) at which the phase of `instant`'s civil day is read.

        Naive datetimes are taken to be UTC.
        """
        local = to_utc(instant) + self.utc_offset
        next_midnight = datetime(local.year, local.month, local.day) + timedelta(days=1)
        return next_midnight - self.utc_offset

    def lunar_phase(self, instant: datetime) -> LunarPhaseResult:
        return self._phase_at(self.evaluation_instant(instant))

    def lunar_phase_for_date(self, day: date) -> LunarPhaseResult:
        """
        Lunar phase for a calendar date taken as a civil day at this
        calculator's offset, whatever timezone the caller is in.
        """
        next_midnight = datetime(day.year, day.month, day.day) + timedelta(days=1)
        return self._phase_at(next_midnight - self.utc_offset)

    def _phase_at(self, evaluated: datetime) -> LunarPhaseResult:
        angle = elongation(evaluated)
        age = angle / 360.0 * SYNODIC_MONTH
        # Float noise can push 359.9999... to exactly one synodic month
        if age >= SYNODIC_MONTH:
            age = 0.0

        is_waxing = age <= HALF_SYNODIC_MONTH
        if is_waxing:
            day = math.floor(age) + 1
        else:
            day = math.floor(age - HALF_SYNODIC_MONTH) + 1
        day = max(1, min(15, day))

        return LunarPhaseResult(
            age_days=age,
            is_waxing=is_waxing,
            lunar_day=day,
            phase_angle=angle,
        )

    def reference_phase_angle(self, instant: datetime) -> Optional[float]:
        """
        Phase angle from the DE421 ephemeris (Skyfield) at the same evaluation
        instant, for checking the series approximation.

        Returns None when the ephemeris cannot be loaded.
        """
        if not self._load_ephemeris():
            return None

        from skyfield import almanac

        when = self.evaluation_instant(instant).replace(tzinfo=timezone.utc)
        t = self._timescale.from_datetime(when)
        return float(almanac.moon_phase(self._ephemeris, t).degrees)

    def _load_ephemeris(self) -> bool:
        with self._ephemeris_lock:
            if self._ephemeris is None:
                from skyfield.api import load

                try:
                    self._ephemeris = load("de421.bsp")
                    self._timescale = load.timescale()
                except OSError:
                    logger.warning("Reference ephemeris de421.bsp could not be loaded")
                    return False
        return True
