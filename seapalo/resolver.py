"""
Location Constituent Resolver.

Derives amplitude and phase for each catalog constituent at a coordinate in
Thai waters. Reference stations of the same basin within the search radius
are blended by inverse-distance weighting. Where no station is in range the
regional approximation for the basin is used instead.

Station and regional values are harmonic constants relative to MSL
(amplitude in metres, Greenwich phase lag in degrees).
"""
import cmath
import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from .constituents import standard_constituents
from .exceptions import OutOfRegion
from .tiles import Location, TidalConstituent

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0

# IDW parameters
IDW_POWER = 2
MAX_STATIONS = 3
# Closer than this a station is used verbatim
SNAP_DISTANCE_KM = 0.1

# Amplitudes below 1 mm are dropped from the output
MIN_AMPLITUDE_M = 0.001

GULF = "gulf_of_thailand"
ANDAMAN = "andaman_sea"

ANDAMAN_MAX_LON = 99.0
ANDAMAN_MAX_LAT = 15.0
UPPER_GULF_MIN_LAT = 12.0

HarmonicTable = Dict[str, Tuple[float, float]]


@dataclass(frozen=True)
class ReferenceStation:
    name: str
    lat: float
    lon: float
    basin: str
    constants: HarmonicTable


# =============================================================================
# Regional approximations
# =============================================================================

UPPER_GULF: HarmonicTable = {
    'K1': (0.45, 120.0), 'O1': (0.38, 110.0), 'P1': (0.15, 115.0), 'Q1': (0.08, 105.0),
    'M2': (0.25, 180.0), 'S2': (0.12, 175.0), 'N2': (0.06, 170.0), 'K2': (0.04, 178.0),
    'MF': (0.08, 0.0), 'MM': (0.05, 0.0),
    'M4': (0.12, 90.0), 'MS4': (0.06, 95.0), 'MN4': (0.03, 85.0),
}

LOWER_GULF: HarmonicTable = {
    'K1': (0.55, 115.0), 'O1': (0.42, 105.0), 'P1': (0.18, 110.0), 'Q1': (0.09, 100.0),
    'M2': (0.35, 185.0), 'S2': (0.16, 180.0), 'N2': (0.08, 175.0), 'K2': (0.05, 183.0),
    'MF': (0.06, 0.0), 'MM': (0.04, 0.0),
    'M4': (0.08, 92.0), 'MS4': (0.04, 97.0),
}

ANDAMAN_SEA: HarmonicTable = {
    'M2': (0.85, 200.0), 'S2': (0.42, 195.0), 'N2': (0.18, 190.0), 'K2': (0.12, 198.0),
    'K1': (0.45, 125.0), 'O1': (0.32, 115.0), 'P1': (0.15, 120.0), 'Q1': (0.07, 110.0),
    'MF': (0.05, 0.0), 'MM': (0.03, 0.0),
    'M4': (0.06, 100.0), 'MS4': (0.03, 105.0),
}


# =============================================================================
# Reference stations
# =============================================================================

REFERENCE_STATIONS: Tuple[ReferenceStation, ...] = (
    ReferenceStation('Bangkok Bar', 13.54, 100.58, GULF, {
        'K1': (0.62, 118.0), 'O1': (0.45, 104.0), 'P1': (0.20, 116.0), 'Q1': (0.09, 98.0),
        'M2': (0.38, 172.0), 'S2': (0.16, 198.0), 'N2': (0.08, 160.0), 'K2': (0.05, 196.0),
        'MF': (0.07, 358.0), 'MM': (0.05, 4.0),
        'M4': (0.10, 88.0), 'MS4': (0.05, 121.0), 'MN4': (0.03, 72.0),
    }),
    ReferenceStation('Si Racha', 13.17, 100.92, GULF, {
        'K1': (0.60, 116.0), 'O1': (0.44, 102.0), 'P1': (0.19, 114.0), 'Q1': (0.09, 96.0),
        'M2': (0.34, 165.0), 'S2': (0.15, 190.0), 'N2': (0.07, 152.0), 'K2': (0.04, 188.0),
        'MF': (0.06, 359.0), 'MM': (0.04, 3.0),
        'M4': (0.07, 84.0), 'MS4': (0.04, 115.0), 'MN4': (0.02, 70.0),
    }),
    ReferenceStation('Sattahip', 12.65, 100.88, GULF, {
        'K1': (0.58, 113.0), 'O1': (0.43, 100.0), 'P1': (0.19, 111.0), 'Q1': (0.09, 94.0),
        'M2': (0.24, 150.0), 'S2': (0.10, 176.0), 'N2': (0.05, 138.0), 'K2': (0.03, 174.0),
        'MF': (0.05, 1.0), 'MM': (0.03, 2.0),
        'M4': (0.04, 80.0), 'MS4': (0.02, 108.0),
    }),
    ReferenceStation('Laem Ngop', 12.17, 102.40, GULF, {
        'K1': (0.55, 108.0), 'O1': (0.41, 96.0), 'P1': (0.18, 106.0), 'Q1': (0.08, 90.0),
        'M2': (0.30, 140.0), 'S2': (0.12, 166.0), 'N2': (0.06, 128.0), 'K2': (0.03, 164.0),
        'MF': (0.05, 2.0), 'MM': (0.03, 1.0),
        'M4': (0.03, 76.0), 'MS4': (0.02, 102.0),
    }),
    ReferenceStation('Ko Lak', 11.79, 99.82, GULF, {
        'K1': (0.56, 112.0), 'O1': (0.42, 99.0), 'P1': (0.18, 110.0), 'Q1': (0.08, 93.0),
        'M2': (0.20, 205.0), 'S2': (0.08, 228.0), 'N2': (0.04, 192.0), 'K2': (0.02, 226.0),
        'MF': (0.05, 0.0), 'MM': (0.03, 0.0),
        'M4': (0.03, 95.0), 'MS4': (0.01, 120.0),
    }),
    ReferenceStation('Chumphon', 10.45, 99.25, GULF, {
        'K1': (0.50, 106.0), 'O1': (0.39, 94.0), 'P1': (0.17, 104.0), 'Q1': (0.08, 88.0),
        'M2': (0.28, 232.0), 'S2': (0.11, 256.0), 'N2': (0.06, 218.0), 'K2': (0.03, 254.0),
        'MF': (0.04, 1.0), 'MM': (0.03, 359.0),
        'M4': (0.02, 110.0), 'MS4': (0.01, 135.0),
    }),
    ReferenceStation('Ko Samui', 9.53, 99.93, GULF, {
        'K1': (0.47, 102.0), 'O1': (0.37, 90.0), 'P1': (0.16, 100.0), 'Q1': (0.07, 84.0),
        'M2': (0.36, 244.0), 'S2': (0.15, 268.0), 'N2': (0.07, 230.0), 'K2': (0.04, 266.0),
        'MF': (0.04, 0.0), 'MM': (0.02, 0.0),
        'M4': (0.02, 118.0), 'MS4': (0.01, 142.0),
    }),
    ReferenceStation('Songkhla', 7.23, 100.58, GULF, {
        'K1': (0.32, 88.0), 'O1': (0.26, 78.0), 'P1': (0.11, 86.0), 'Q1': (0.05, 72.0),
        'M2': (0.30, 270.0), 'S2': (0.12, 294.0), 'N2': (0.06, 256.0), 'K2': (0.03, 292.0),
        'MF': (0.03, 0.0), 'MM': (0.02, 0.0),
        'M4': (0.01, 130.0),
    }),
    ReferenceStation('Ranong', 9.95, 98.60, ANDAMAN, {
        'M2': (1.05, 62.0), 'S2': (0.50, 98.0), 'N2': (0.21, 44.0), 'K2': (0.14, 96.0),
        'K1': (0.22, 330.0), 'O1': (0.10, 318.0), 'P1': (0.07, 328.0), 'Q1': (0.02, 305.0),
        'MF': (0.04, 0.0), 'MM': (0.03, 0.0),
        'M4': (0.05, 150.0), 'MS4': (0.04, 198.0),
    }),
    ReferenceStation('Ko Taphao Noi', 7.83, 98.43, ANDAMAN, {
        'M2': (0.86, 45.0), 'S2': (0.41, 80.0), 'N2': (0.17, 27.0), 'K2': (0.11, 78.0),
        'K1': (0.24, 325.0), 'O1': (0.09, 312.0), 'P1': (0.08, 323.0), 'Q1': (0.02, 300.0),
        'MF': (0.04, 0.0), 'MM': (0.03, 0.0),
        'M4': (0.03, 132.0), 'MS4': (0.02, 180.0),
    }),
    ReferenceStation('Krabi', 8.05, 98.90, ANDAMAN, {
        'M2': (0.90, 50.0), 'S2': (0.43, 85.0), 'N2': (0.18, 32.0), 'K2': (0.12, 83.0),
        'K1': (0.25, 327.0), 'O1': (0.10, 314.0), 'P1': (0.08, 325.0), 'Q1': (0.02, 302.0),
        'MF': (0.04, 0.0), 'MM': (0.03, 0.0),
        'M4': (0.04, 140.0), 'MS4': (0.03, 186.0),
    }),
)


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in kilometres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = phi2 - phi1
    dlmb = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def classify_basin(lat: float, lon: float) -> str:
    if lon < ANDAMAN_MAX_LON and lat < ANDAMAN_MAX_LAT:
        return ANDAMAN
    return GULF


def regional_table(lat: float, lon: float) -> HarmonicTable:
    """Regional approximation for the basin containing a coordinate."""
    if classify_basin(lat, lon) == ANDAMAN:
        return ANDAMAN_SEA
    if lat > UPPER_GULF_MIN_LAT:
        return UPPER_GULF
    return LOWER_GULF


class ConstituentResolver:
    """
    Resolve location-specific constituents inside a rectangular region.

    Results depend only on (lat, lon) and the constructor arguments.
    """

    def __init__(
        self,
        region: Tuple[float, float, float, float] = (97.0, 5.0, 106.0, 21.0),
        station_radius_km: float = 80.0,
        stations: Sequence[ReferenceStation] = REFERENCE_STATIONS,
    ):
        self.region = region
        self.station_radius_km = station_radius_km
        self.stations = tuple(stations)

    def in_region(self, lat: float, lon: float) -> bool:
        west, south, east, north = self.region
        return south <= lat <= north and west <= lon <= east

    def check_region(self, lat: float, lon: float) -> None:
        """Raise OutOfRegion unless the coordinate is inside the supported box."""
        if not self.in_region(lat, lon):
            raise OutOfRegion(lat, lon)

    def nearest_station(self, location: Location) -> Optional[Tuple[ReferenceStation, float]]:
        """Closest station of the same basin and its distance in km, if any."""
        candidates = self._stations_by_distance(location.lat, location.lon)
        return candidates[0] if candidates else None

    def resolve(self, location: Location) -> List[TidalConstituent]:
        """
        Constituents at a location, in catalog order.

        Raises:
            OutOfRegion: If the location is outside the supported region
        """
        self.check_region(location.lat, location.lon)

        nearby = [
            (station, distance)
            for station, distance in self._stations_by_distance(location.lat, location.lon)
            if distance <= self.station_radius_km
        ][:MAX_STATIONS]

        if not nearby:
            logger.debug(f"No station within {self.station_radius_km} km of "
                         f"({location.lat}, {location.lon}), using regional model")
            table = regional_table(location.lat, location.lon)
        elif nearby[0][1] < SNAP_DISTANCE_KM:
            table = nearby[0][0].constants
        else:
            table = self._interpolate(nearby)

        return self._to_constituents(table)

    def _stations_by_distance(self, lat: float, lon: float) -> List[Tuple[ReferenceStation, float]]:
        basin = classify_basin(lat, lon)
        ranked = [
            (station, haversine_km(lat, lon, station.lat, station.lon))
            for station in self.stations
            if station.basin == basin
        ]
        # Tie-break on name so equal distances stay deterministic
        ranked.sort(key=lambda item: (item[1], item[0].name))
        return ranked

    @staticmethod
    def _interpolate(nearby: Sequence[Tuple[ReferenceStation, float]]) -> HarmonicTable:
        """
        Inverse-distance weighting of amplitude; phase from the weighted sum of
        amplitude vectors so that 359 and 1 degrees blend to 0.
        """
        weights = [1.0 / distance ** IDW_POWER for _, distance in nearby]
        total = sum(weights)

        names = set()
        for station, _ in nearby:
            names.update(station.constants)

        table: HarmonicTable = {}
        for name in names:
            amplitude = 0.0
            vector = 0j
            for (station, _), weight in zip(nearby, weights):
                amp, phase = station.constants.get(name, (0.0, 0.0))
                amplitude += weight * amp
                vector += weight * amp * cmath.exp(1j * math.radians(phase))
            phase = math.degrees(cmath.phase(vector)) if abs(vector) > 0 else 0.0
            table[name] = (amplitude / total, phase)
        return table

    @staticmethod
    def _to_constituents(table: HarmonicTable) -> List[TidalConstituent]:
        constituents = []
        for spec in standard_constituents():
            if spec.name not in table:
                continue
            amplitude, phase = table[spec.name]
            amplitude = round(amplitude, 4)
            if amplitude < MIN_AMPLITUDE_M:
                continue
            constituents.append(TidalConstituent(
                name=spec.name,
                amplitude=amplitude,
                phase=round(phase % 360.0, 2) % 360.0,
                speed=spec.speed,
            ))
        return constituents
