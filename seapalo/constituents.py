"""
Standard tidal constituent catalog.

Names follow IHO conventions, speeds are in degrees per hour. Doodson
coefficients are given as (tau, s, h, p, N, p', constant phase) and are
used to classify each constituent into its tidal species.

References:
- Schureman, P. (1958) "Manual of Harmonic Analysis and Prediction of Tides"
- Parker, B. (2007) "Tidal Analysis and Prediction", NOAA Special Publication NOS CO-OPS 3
"""
from dataclasses import dataclass
from typing import Dict, Tuple


@dataclass(frozen=True)
class ConstituentSpec:
    """Catalog entry for a single harmonic constituent."""

    name: str
    speed: float  # degrees per hour
    doodson: Tuple[int, int, int, int, int, int, int]
    description: str

    @property
    def species(self) -> int:
        """Number of cycles per lunar day (0 = long period, 1 = diurnal, ...)."""
        return self.doodson[0]


_CATALOG = (
    # Principal semidiurnal
    ConstituentSpec('M2', 28.9841042, (2, 0, 0, 0, 0, 0, 0), 'Principal lunar semidiurnal'),
    ConstituentSpec('S2', 30.0, (2, 2, -2, 0, 0, 0, 0), 'Principal solar semidiurnal'),
    ConstituentSpec('N2', 28.4397295, (2, -1, 0, 1, 0, 0, 0), 'Larger lunar elliptic semidiurnal'),
    # Principal diurnal
    ConstituentSpec('K1', 15.0410686, (1, 1, 0, 0, 0, 0, -90), 'Lunisolar diurnal'),
    ConstituentSpec('O1', 13.9430356, (1, -1, 0, 0, 0, 0, 90), 'Principal lunar diurnal'),
    ConstituentSpec('P1', 14.9589314, (1, 1, -2, 0, 0, 0, 90), 'Principal solar diurnal'),
    ConstituentSpec('K2', 30.0821373, (2, 2, 0, 0, 0, 0, 0), 'Lunisolar semidiurnal'),
    ConstituentSpec('Q1', 13.3986609, (1, -2, 0, 1, 0, 0, 90), 'Larger lunar elliptic diurnal'),
    # Shallow water
    ConstituentSpec('M4', 57.9682084, (4, 0, 0, 0, 0, 0, 0), 'Shallow water overtide of principal lunar'),
    ConstituentSpec('MS4', 58.9841042, (4, 2, -2, 0, 0, 0, 0), 'Shallow water quarter diurnal'),
    ConstituentSpec('MN4', 57.4238337, (4, -1, 0, 1, 0, 0, 0), 'Shallow water quarter diurnal'),
    # Secondary semidiurnal
    ConstituentSpec('2N2', 27.8953548, (2, -2, 0, 2, 0, 0, 0), 'Lunar elliptic semidiurnal second order'),
    ConstituentSpec('MU2', 27.9682084, (2, -2, 2, 0, 0, 0, 0), 'Variational'),
    ConstituentSpec('NU2', 28.5125831, (2, -1, 2, -1, 0, 0, 0), 'Larger lunar evectional'),
    ConstituentSpec('L2', 29.5284789, (2, 1, 0, -1, 0, 0, 180), 'Smaller lunar elliptic semidiurnal'),
    ConstituentSpec('T2', 29.9589333, (2, 2, -3, 0, 0, 1, 0), 'Larger solar elliptic'),
    # Secondary diurnal
    ConstituentSpec('J1', 15.5854433, (1, 2, 0, -1, 0, 0, -90), 'Smaller lunar elliptic diurnal'),
    ConstituentSpec('M1', 14.4966939, (1, 0, 0, 0, 0, 0, -90), 'Smaller lunar elliptic diurnal'),
    ConstituentSpec('OO1', 16.1391017, (1, 3, 0, 0, 0, 0, -90), 'Lunar diurnal second order'),
    ConstituentSpec('RHO1', 13.4715145, (1, -2, 2, -1, 0, 0, 90), 'Larger lunar evectional diurnal'),
    # Long period
    ConstituentSpec('MF', 1.0980331, (0, 2, 0, 0, 0, 0, 0), 'Lunisolar fortnightly'),
    ConstituentSpec('MM', 0.5443747, (0, 1, 0, -1, 0, 0, 0), 'Lunar monthly'),
    ConstituentSpec('SSA', 0.0821373, (0, 0, 2, 0, 0, 0, 0), 'Solar semiannual'),
    ConstituentSpec('SA', 0.0410686, (0, 0, 1, 0, 0, 0, 0), 'Solar annual'),
    ConstituentSpec('MSF', 1.0158958, (0, 2, -2, 0, 0, 0, 0), 'Lunisolar synodic fortnightly'),
    # Higher harmonics
    ConstituentSpec('M3', 43.4761563, (3, 0, 0, 0, 0, 0, 0), 'Lunar terdiurnal'),
    ConstituentSpec('M6', 86.9523126, (6, 0, 0, 0, 0, 0, 0), 'Shallow water overtide of principal lunar'),
    ConstituentSpec('M8', 115.9364168, (8, 0, 0, 0, 0, 0, 0), 'Shallow water eighth diurnal'),
    ConstituentSpec('S4', 60.0, (4, 4, -4, 0, 0, 0, 0), 'Shallow water overtide of principal solar'),
    ConstituentSpec('S1', 15.0, (1, 1, -1, 0, 0, 0, 0), 'Solar diurnal'),
    ConstituentSpec('EPS2', 27.4238337, (2, -3, 2, 1, 0, 0, 0), 'Lunar elliptic semidiurnal minor'),
    ConstituentSpec('LAMBDA2', 29.4556253, (2, 1, -2, 1, 0, 0, 180), 'Smaller lunar evectional'),
    ConstituentSpec('MKS2', 29.0662415, (2, 0, 2, 0, 0, 0, 0), 'Shallow water semidiurnal'),
    ConstituentSpec('R2', 30.0410667, (2, 2, -1, 0, 0, -1, 180), 'Smaller solar elliptic'),
    ConstituentSpec('MSQM', 2.1139217, (0, 4, -2, 0, 0, 0, 0), 'Lunisolar quarter monthly'),
    ConstituentSpec('MTM', 1.6424078, (0, 3, 0, -1, 0, 0, 0), 'Lunar terannual monthly'),
)

_BY_NAME: Dict[str, ConstituentSpec] = {spec.name: spec for spec in _CATALOG}


def standard_constituents() -> Tuple[ConstituentSpec, ...]:
    """Return the catalog in its fixed order."""
    return _CATALOG


def get_constituent(name: str) -> ConstituentSpec:
    """
    Look up a catalog entry by name (case-insensitive).

    Raises:
        KeyError: If the constituent is not in the catalog
    """
    return _BY_NAME[name.upper()]


def catalog_index(name: str) -> int:
    """Position of a constituent in catalog order."""
    return _CATALOG.index(get_constituent(name))
