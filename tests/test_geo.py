import pytest

from photoindex.utils.geo import bounding_box, haversine_m


def test_haversine_known_distances():
    assert haversine_m(0, 0, 0, 0) == 0
    # One degree of latitude
    assert haversine_m(10, 20, 11, 20) == pytest.approx(111_195, rel=1e-3)
    # Amsterdam - Paris
    assert haversine_m(52.3676, 4.9041, 48.8566, 2.3522) == pytest.approx(430_000, rel=0.01)


def test_haversine_missing_coordinate():
    assert haversine_m(None, 0, 0, 0) is None
    assert haversine_m(0, 0, 0, None) is None


def test_bounding_box_contains_the_circle():
    (min_lat, max_lat), lon_ranges = bounding_box(52.0, 5.0, 10_000)

    assert min_lat < 52.0 < max_lat
    assert len(lon_ranges) == 1
    west, east = lon_ranges[0]
    assert haversine_m(52.0, 5.0, 52.0, west) >= 10_000 * 0.99
    assert haversine_m(52.0, 5.0, max_lat, 5.0) == pytest.approx(10_000, rel=1e-6)


def test_bounding_box_near_pole_spans_all_longitudes():
    (min_lat, max_lat), lon_ranges = bounding_box(89.99, 0.0, 5_000)
    assert max_lat == 90.0
    assert lon_ranges == []


@pytest.mark.parametrize("lon", [179.99, -179.99])
def test_bounding_box_wraps_antimeridian(lon):
    _, lon_ranges = bounding_box(0.0, lon, 5_000)

    assert len(lon_ranges) == 2
    for west, east in lon_ranges:
        assert -180.0 <= west <= east <= 180.0
