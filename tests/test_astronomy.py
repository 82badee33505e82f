"""
Unit tests for astronomical helpers.
"""
from datetime import datetime, timedelta, timezone

import pytest

from seapalo.astronomy import (
    julian_centuries,
    julian_day,
    lunar_elements,
    lunar_node_longitude,
    nodal_corrections,
    to_utc,
)


class TestJulianDay:
    """Tests for Julian day conversion."""

    def test_j2000_epoch(self):
        """2000-01-01 12:00 UTC is JD 2451545.0."""
        assert julian_day(datetime(2000, 1, 1, 12)) == pytest.approx(2451545.0)

    def test_meeus_example(self):
        """Meeus example 7.a: 1957 October 4.81 = JD 2436116.31."""
        dt = datetime(1957, 10, 4) + timedelta(days=0.81)
        assert julian_day(dt) == pytest.approx(2436116.31, abs=1e-6)

    def test_timezone_aware_input(self):
        """Aware datetimes are converted to UTC first."""
        bangkok = timezone(timedelta(hours=7))
        aware = datetime(2024, 1, 11, 7, 0, tzinfo=bangkok)
        assert julian_day(aware) == pytest.approx(julian_day(datetime(2024, 1, 11, 0, 0)))

    def test_julian_centuries_zero_at_epoch(self):
        """T is zero at J2000.0."""
        assert julian_centuries(datetime(2000, 1, 1, 12)) == pytest.approx(0.0)

    def test_to_utc_strips_tzinfo(self):
        """to_utc returns a naive UTC datetime."""
        aware = datetime(2024, 1, 1, 7, tzinfo=timezone(timedelta(hours=7)))
        assert to_utc(aware) == datetime(2024, 1, 1, 0)
        assert to_utc(datetime(2024, 1, 1)) == datetime(2024, 1, 1)


class TestMeanLongitudes:
    """Tests for the lunar node and Meeus lunar elements."""

    def test_node_in_range(self):
        """N is normalised to [0, 360)."""
        for T in (-0.5, 0.0, 0.24, 1.0):
            assert 0.0 <= lunar_node_longitude(T) < 360.0

    def test_node_at_epoch(self):
        """N at J2000.0 matches the polynomial constant."""
        assert lunar_node_longitude(0.0) == pytest.approx(125.0445550)

    def test_node_regresses(self):
        """The node moves westward, about 19.34 degrees per Julian year."""
        year = 1.0 / 100.0
        step = (lunar_node_longitude(0.0) - lunar_node_longitude(year)) % 360.0
        assert step == pytest.approx(19.34, abs=0.01)

    def test_lunar_elements_in_range(self):
        """D, M and M' are normalised to [0, 360)."""
        for value in lunar_elements(0.24):
            assert 0.0 <= value < 360.0


class TestNodalCorrections:
    """Tests for nodal amplitude factors and phase corrections."""

    @pytest.mark.parametrize("N", [0.0, 90.0, 180.0, 270.0])
    def test_m2_factor_near_unity(self, N):
        """M2 f stays within a few percent of 1 over the nodal cycle."""
        f, u = nodal_corrections(N)['M2']
        assert 0.95 < f < 1.05
        assert -3.0 < u < 3.0

    def test_k1_factor_range(self):
        """K1 f varies by roughly +-12% over the nodal cycle."""
        factors = [nodal_corrections(N)['K1'][0] for N in range(0, 360, 10)]
        assert 0.85 < min(factors) < 0.95
        assert 1.05 < max(factors) < 1.15

    def test_solar_constituents_not_listed(self):
        """Pure solar constituents carry no correction."""
        corrections = nodal_corrections(45.0)
        assert 'S2' not in corrections
        assert 'P1' not in corrections
