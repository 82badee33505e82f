"""
Unit tests for the location constituent resolver.
"""
import pytest

from seapalo.constituents import catalog_index
from seapalo.exceptions import OutOfRegion
from seapalo.resolver import (
    ANDAMAN,
    ANDAMAN_SEA,
    GULF,
    LOWER_GULF,
    UPPER_GULF,
    ConstituentResolver,
    ReferenceStation,
    classify_basin,
    haversine_km,
)
from seapalo.tiles import Location

# Bang Saen, Chonburi
BANG_SAEN = Location(13.3611, 100.9847, "Bang Saen")


@pytest.fixture
def resolver():
    """Resolver with the default Thai waters region and stations."""
    return ConstituentResolver()


def as_table(constituents):
    return {c.name: (c.amplitude, c.phase) for c in constituents}


class TestRegion:
    """Tests for the supported region check."""

    def test_outside_region_rejected(self, resolver):
        """(0, 0) is far outside Thai waters."""
        with pytest.raises(OutOfRegion):
            resolver.resolve(Location(0.0, 0.0))

    def test_out_of_region_is_value_error(self, resolver):
        """OutOfRegion can be caught as ValueError."""
        with pytest.raises(ValueError):
            resolver.resolve(Location(30.0, 100.0))

    def test_region_edges_inclusive(self, resolver):
        """Corners of the box are accepted."""
        assert resolver.in_region(5.0, 97.0)
        assert resolver.in_region(21.0, 106.0)
        assert not resolver.in_region(4.99, 100.0)


class TestBasins:
    """Tests for basin classification."""

    def test_phuket_is_andaman(self):
        assert classify_basin(7.88, 98.39) == ANDAMAN

    def test_bangkok_is_gulf(self):
        assert classify_basin(13.5, 100.5) == GULF

    def test_north_of_andaman_limit_is_gulf(self):
        """West of 99E but north of 15N is not treated as Andaman."""
        assert classify_basin(16.0, 98.0) == GULF


class TestResolve:
    """Tests for constituent resolution."""

    def test_deterministic(self, resolver):
        """Same coordinate gives identical constituents."""
        assert resolver.resolve(BANG_SAEN) == resolver.resolve(BANG_SAEN)

    def test_catalog_order(self, resolver):
        """Output follows catalog order."""
        indices = [catalog_index(c.name) for c in resolver.resolve(BANG_SAEN)]
        assert indices == sorted(indices)

    def test_values_in_range(self, resolver):
        """Amplitudes are at least 1 mm, phases in [0, 360), speeds positive."""
        for c in resolver.resolve(BANG_SAEN):
            assert c.amplitude >= 0.001
            assert 0.0 <= c.phase < 360.0
            assert c.speed > 0

    def test_names_unique(self, resolver):
        names = [c.name for c in resolver.resolve(BANG_SAEN)]
        assert len(names) == len(set(names))

    def test_station_location_verbatim(self, resolver):
        """A coordinate at a station takes that station's constants."""
        station = next(s for s in resolver.stations if s.name == 'Si Racha')
        table = as_table(resolver.resolve(Location(station.lat, station.lon)))
        for name, (amp, phase) in station.constants.items():
            assert table[name][0] == pytest.approx(amp)
            assert table[name][1] == pytest.approx(phase)

    def test_nearest_station(self, resolver):
        """Si Racha is the closest station to Bang Saen."""
        station, distance = resolver.nearest_station(BANG_SAEN)
        assert station.name == 'Si Racha'
        assert 15 < distance < 30

    def test_andaman_uses_andaman_stations(self, resolver):
        """Stations are never borrowed across the peninsula."""
        station, _ = resolver.nearest_station(Location(8.5, 98.7))
        assert station.basin == ANDAMAN


class TestRegionalFallback:
    """Tests for the regional approximation away from stations."""

    @pytest.mark.parametrize("lat,lon,expected", [
        (20.0, 105.0, UPPER_GULF),
        (6.0, 103.0, LOWER_GULF),
        (5.5, 97.5, ANDAMAN_SEA),
    ])
    def test_far_from_stations(self, resolver, lat, lon, expected):
        """Without stations in range the basin's regional table is used."""
        table = as_table(resolver.resolve(Location(lat, lon)))
        assert set(table) == set(expected)
        for name, (amp, phase) in expected.items():
            assert table[name][0] == pytest.approx(amp)
            assert table[name][1] == pytest.approx(phase)

    def test_zero_radius_always_regional(self):
        """A zero search radius disables station interpolation."""
        resolver = ConstituentResolver(station_radius_km=0.0)
        table = as_table(resolver.resolve(BANG_SAEN))
        assert table['M2'] == pytest.approx(UPPER_GULF['M2'])


class TestInterpolation:
    """Tests for inverse-distance weighting."""

    def test_phase_wraps_through_zero(self):
        """359 and 1 degrees at equal distance blend to 0, not 180."""
        stations = [
            ReferenceStation('East', 10.0, 100.1, GULF, {'M2': (0.5, 359.0)}),
            ReferenceStation('West', 10.0, 99.9, GULF, {'M2': (0.5, 1.0)}),
        ]
        resolver = ConstituentResolver(stations=stations)
        (m2,) = resolver.resolve(Location(10.0, 100.0))
        assert min(m2.phase, 360.0 - m2.phase) < 0.01
        assert m2.amplitude == pytest.approx(0.5)

    def test_closer_station_dominates(self):
        """The nearer station pulls the amplitude towards its own."""
        stations = [
            ReferenceStation('Near', 10.0, 100.05, GULF, {'K1': (0.6, 100.0)}),
            ReferenceStation('Far', 10.0, 99.7, GULF, {'K1': (0.2, 100.0)}),
        ]
        resolver = ConstituentResolver(stations=stations)
        (k1,) = resolver.resolve(Location(10.0, 100.0))
        assert 0.5 < k1.amplitude < 0.6

    def test_tiny_amplitudes_dropped(self):
        """Constituents below 1 mm are omitted."""
        stations = [
            ReferenceStation('Only', 10.0, 100.0, GULF, {'M2': (0.3, 10.0), 'M8': (0.0004, 5.0)}),
        ]
        resolver = ConstituentResolver(stations=stations)
        names = [c.name for c in resolver.resolve(Location(10.0, 100.0))]
        assert names == ['M2']


class TestHaversine:
    """Tests for great-circle distance."""

    def test_one_degree_latitude(self):
        """One degree of latitude is about 111 km."""
        assert haversine_km(10.0, 100.0, 11.0, 100.0) == pytest.approx(111.19, abs=0.1)

    def test_zero_distance(self):
        assert haversine_km(13.0, 100.0, 13.0, 100.0) == 0.0
