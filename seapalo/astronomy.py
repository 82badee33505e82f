"""
Astronomical arguments shared by the lunar phase calculator and the
tide synthesizer.

References:
- Meeus, J. (1991) "Astronomical Algorithms", chapters 7, 22 and 47
- Schureman, P. (1958) "Manual of Harmonic Analysis and Prediction of Tides"
"""
from datetime import datetime, timezone
from typing import Dict, Tuple

import numpy as np

J2000 = 2451545.0
DAYS_PER_CENTURY = 36525.0


def to_utc(dt: datetime) -> datetime:
    """Return a naive UTC datetime. Naive input is taken to be UTC already."""
    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def julian_day(dt: datetime) -> float:
    """
    Julian Day for a datetime (Meeus formula 7.1).

    Args:
        dt: datetime object (UTC or timezone-aware)

    Returns:
        Julian Day as a float
    """
    dt_utc = to_utc(dt)

    y = dt_utc.year
    m = dt_utc.month
    d = dt_utc.day + (
        dt_utc.hour + dt_utc.minute / 60 + (dt_utc.second + dt_utc.microsecond / 1e6) / 3600
    ) / 24.0

    if m <= 2:
        y -= 1
        m += 12

    a = int(y / 100)
    b = 2 - a + int(a / 4)

    return int(365.25 * (y + 4716)) + int(30.6001 * (m + 1)) + d + b - 1524.5


def julian_centuries(dt: datetime) -> float:
    """Julian centuries from J2000.0 (JD 2451545.0)."""
    return (julian_day(dt) - J2000) / DAYS_PER_CENTURY


def lunar_node_longitude(T: float) -> float:
    """
    Mean longitude of the Moon's ascending node N, in degrees [0, 360).

    Args:
        T: Julian centuries from J2000.0
    """
    N = (125.0445550 - 1934.1361849 * T
         + 0.0020762 * T**2 + T**3 / 467410.0 - T**4 / 60616000.0)
    return N % 360.0


def lunar_elements(T: float) -> Tuple[float, float, float]:
    """
    Mean elongation of the Moon (D), mean anomaly of the Sun (M) and mean
    anomaly of the Moon (M'), in degrees [0, 360). Meeus chapter 47.
    """
    D = (297.8501921 + 445267.1114034 * T - 0.0018819 * T**2
         + T**3 / 545868.0 - T**4 / 113065000.0)
    M = 357.5291092 + 35999.0502909 * T - 0.0001536 * T**2 + T**3 / 24490000.0
    Mp = (134.9633964 + 477198.8675055 * T + 0.0087414 * T**2
          + T**3 / 69699.0 - T**4 / 14712000.0)
    return D % 360.0, M % 360.0, Mp % 360.0


def _signed(angle: float) -> float:
    """Normalize an angle in degrees to (-180, 180]."""
    angle = angle % 360.0
    return angle - 360.0 if angle > 180.0 else angle


def nodal_corrections(N: float) -> Dict[str, Tuple[float, float]]:
    """
    Nodal amplitude factors (f) and phase corrections (u, degrees).

    Uses Schureman's expressions for the lunar orbit inclination. Solar
    constituents and anything not listed carry no correction.

    Args:
        N: Mean longitude of lunar ascending node (degrees)

    Returns:
        Dictionary mapping upper-case constituent names to (f, u)
    """
    N_rad = np.radians(N)
    tan_half_N = np.tan(N_rad / 2)

    # Inclination of lunar orbit to the equator, 18.3 deg to 28.6 deg over 18.61 years
    cosI = 0.9136 - 0.0356 * np.cos(N_rad)
    I = np.arccos(np.clip(cosI, -1, 1))
    sinI = np.sin(I)
    sin2I = np.sin(2 * I)
    cosI_half = np.cos(I / 2)
    sinI_half = np.sin(I / 2)

    # Schureman eqs 163-164: tan((N - xi + nu) / 2) = 1.01883 tan(N / 2)
    # and tan((N - xi - nu) / 2) = 0.64412 tan(N / 2)
    a = np.arctan(1.01883 * tan_half_N)
    b = np.arctan(0.64412 * tan_half_N)
    nu = a - b
    xi = N_rad - a - b

    # K1 and K2 lunisolar arguments (Schureman eqs 224, 232)
    nup = np.arctan2(sin2I * np.sin(nu), sin2I * np.cos(nu) + 0.3347)
    nupp2 = np.arctan2(sinI ** 2 * np.sin(2 * nu), sinI ** 2 * np.cos(2 * nu) + 0.0727)

    f_m2 = float(cosI_half ** 4 / 0.9154)
    u_m2 = _signed(np.degrees(2 * xi - 2 * nu))
    f_o1 = float(sinI * cosI_half ** 2 / 0.3800)
    u_o1 = _signed(np.degrees(2 * xi - nu))
    f_oo1 = float(sinI * sinI_half ** 2 / 0.0164)
    u_oo1 = _signed(np.degrees(-2 * xi - nu))
    f_j1 = float(sin2I / 0.7214)
    u_j1 = _signed(np.degrees(-nu))
    f_k1 = float(np.sqrt(0.8965 * sin2I ** 2 + 0.6001 * sin2I * np.cos(nu) + 0.1006))
    u_k1 = _signed(-np.degrees(nup))
    f_k2 = float(np.sqrt(19.0444 * sinI ** 4 + 2.7702 * sinI ** 2 * np.cos(2 * nu) + 0.0981))
    u_k2 = _signed(-np.degrees(nupp2))
    f_mf = float(sinI ** 2 / 0.1578)
    u_mf = _signed(np.degrees(-2 * xi))
    f_mm = float((2.0 / 3.0 - sinI ** 2) / 0.5021)

    corrections = {
        'M2': (f_m2, u_m2),
        'N2': (f_m2, u_m2),
        '2N2': (f_m2, u_m2),
        'MU2': (f_m2, u_m2),
        'NU2': (f_m2, u_m2),
        'L2': (f_m2, u_m2),
        'LAMBDA2': (f_m2, u_m2),
        'EPS2': (f_m2, u_m2),
        'K1': (f_k1, u_k1),
        'M1': (f_k1, u_k1),
        'J1': (f_j1, u_j1),
        'O1': (f_o1, u_o1),
        'Q1': (f_o1, u_o1),
        'RHO1': (f_o1, u_o1),
        'OO1': (f_oo1, u_oo1),
        'K2': (f_k2, u_k2),
        'MKS2': (f_m2 * f_k2, u_m2 + u_k2),
        'M3': (f_m2 ** 1.5, 1.5 * u_m2),
        'M4': (f_m2 ** 2, 2 * u_m2),
        'MN4': (f_m2 ** 2, 2 * u_m2),
        'MS4': (f_m2, u_m2),
        'M6': (f_m2 ** 3, 3 * u_m2),
        'M8': (f_m2 ** 4, 4 * u_m2),
        'MF': (f_mf, u_mf),
        'MSF': (f_m2, -u_m2),
        'MSQM': (f_mf, u_mf),
        'MTM': (f_mf, u_mf),
        'MM': (f_mm, 0.0),
    }
    return corrections
