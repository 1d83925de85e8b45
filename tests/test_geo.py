from __future__ import annotations

import pytest

from trip_tracker.geo import haversine_km, haversine_m, mps_to_kmh, path_length_km


def test_haversine_same_point_is_zero() -> None:
    assert haversine_km(12.97, 77.59, 12.97, 77.59) == 0.0


def test_haversine_one_degree_of_latitude() -> None:
    # 2 * pi * 6371 / 360
    assert haversine_km(0.0, 0.0, 1.0, 0.0) == pytest.approx(111.19493, abs=1e-4)
    assert haversine_m(0.0, 0.0, 1.0, 0.0) == pytest.approx(111_194.93, abs=0.1)


def test_haversine_is_symmetric() -> None:
    a = haversine_km(12.97, 77.59, 19.07, 72.87)
    b = haversine_km(19.07, 72.87, 12.97, 77.59)
    assert a == pytest.approx(b)


def test_haversine_antipodal_points() -> None:
    assert haversine_km(0.0, 0.0, 0.0, 180.0) == pytest.approx(3.141592653589793 * 6371.0)


def test_haversine_collinear_points_add_up() -> None:
    # three points in order on one meridian
    a, b, c = (10.0, 77.0), (11.0, 77.0), (12.0, 77.0)
    assert haversine_km(*a, *c) == pytest.approx(haversine_km(*a, *b) + haversine_km(*b, *c))


def test_path_length_short_paths() -> None:
    assert path_length_km([]) == 0.0
    assert path_length_km([(12.97, 77.59)]) == 0.0


def test_path_length_sums_consecutive_legs() -> None:
    path = [(12.97, 77.59), (12.98, 77.60), (12.99, 77.61)]
    expected = haversine_km(12.97, 77.59, 12.98, 77.60) + haversine_km(12.98, 77.60, 12.99, 77.61)
    assert path_length_km(path) == pytest.approx(expected)


def test_mps_to_kmh() -> None:
    assert mps_to_kmh(None) == 0.0
    assert mps_to_kmh(5.0) == pytest.approx(18.0)
    assert mps_to_kmh(7.0) == pytest.approx(25.2)
