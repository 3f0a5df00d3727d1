from fractions import Fraction

import pytest
from exifread.utils import Ratio

from photoindex.parser.exif_reader import read_embedded_exif, tags_to_exif
from photoindex.parser.schema import ExifInfo

from conftest import make_image


class FakeTag:
    """Stand-in for exifread.classes.IfdTag (printable, with .values)."""

    def __init__(self, values, printable=None):
        self.values = values
        self.printable = printable if printable is not None else str(values)

    def __str__(self):
        return self.printable


def test_tags_to_exif_maps_camera_and_gps():
    tags = {
        "Image Make": FakeTag("Canon", "Canon"),
        "Image Model": FakeTag("EOS R5", "EOS R5"),
        "EXIF ExposureTime": FakeTag([Fraction(1, 125)], "1/125"),
        "EXIF FNumber": FakeTag([Fraction(28, 10)], "14/5"),
        "EXIF ISOSpeedRatings": FakeTag([200], "200"),
        "EXIF FocalLength": FakeTag([Fraction(50, 1)], "50"),
        "EXIF DateTimeOriginal": FakeTag("2021:05:01 08:30:00", "2021:05:01 08:30:00"),
        "GPS GPSLatitude": FakeTag([Fraction(52), Fraction(22), Fraction(3)]),
        "GPS GPSLatitudeRef": FakeTag("N", "N"),
        "GPS GPSLongitude": FakeTag([Fraction(4), Fraction(54), Fraction(15)]),
        "GPS GPSLongitudeRef": FakeTag("W", "W"),
        "GPS GPSAltitude": FakeTag([Fraction(10)]),
        "GPS GPSAltitudeRef": FakeTag([1]),
    }

    exif = tags_to_exif(tags)

    assert exif.camera_make == "Canon"
    assert exif.exposure_time == pytest.approx(1 / 125)
    assert exif.f_number == pytest.approx(2.8)
    assert exif.iso == 200
    assert exif.focal_length == pytest.approx(50)
    assert exif.date_taken.month == 5
    assert exif.gps_latitude == pytest.approx(52 + 22 / 60 + 3 / 3600)
    assert exif.gps_longitude == pytest.approx(-(4 + 54 / 60 + 15 / 3600))
    assert exif.gps_altitude == pytest.approx(-10)


def test_tags_without_known_fields():
    assert tags_to_exif({}) is None
    assert tags_to_exif({"Image Orientation": FakeTag([1])}) is None


def test_image_without_exif_block(tmp_path):
    image = make_image(tmp_path / "plain.png")
    assert read_embedded_exif(image) is None


def test_missing_file_is_not_fatal(tmp_path):
    assert read_embedded_exif(tmp_path / "missing.jpg") is None


def test_zero_denominator_rational_drops_only_that_field():
    tags = {
        "EXIF FNumber": FakeTag([Ratio(0, 0)], "0/0"),
        "EXIF ISOSpeedRatings": FakeTag([100], "100"),
    }

    exif = tags_to_exif(tags)

    assert exif.f_number is None
    assert exif.iso == 100


def test_zero_denominator_gps_component_drops_the_position():
    tags = {
        "EXIF ISOSpeedRatings": FakeTag([100], "100"),
        "GPS GPSLatitude": FakeTag([Ratio(52, 1), Ratio(0, 0), Ratio(0, 1)]),
        "GPS GPSLatitudeRef": FakeTag("N", "N"),
        "GPS GPSLongitude": FakeTag([Ratio(4, 1), Ratio(54, 1), Ratio(0, 1)]),
        "GPS GPSLongitudeRef": FakeTag("E", "E"),
        "GPS GPSAltitude": FakeTag([Ratio(0, 0)]),
    }

    exif = tags_to_exif(tags)

    assert exif.gps_latitude is None and exif.gps_longitude is None
    assert exif.gps_altitude is None
    assert exif.iso == 100


def test_unset_camera_date_is_ignored():
    tags = {
        "EXIF DateTimeOriginal": FakeTag("0000:00:00 00:00:00", "0000:00:00 00:00:00"),
        "EXIF ISOSpeedRatings": FakeTag([100], "100"),
    }

    exif = tags_to_exif(tags)

    assert exif.date_taken is None
    assert exif.iso == 100


def test_exif_info_tolerates_bad_fields():
    exif = ExifInfo.model_validate({
        "DateTimeOriginal": "not a date",
        "FNumber": "f/?",
        "ISOSpeedRatings": float("inf"),
        "FocalLength": "35",
        "GPSLatitude": 123.0,
        "GPSLongitude": 4.89,
    })

    assert exif.date_taken is None
    assert exif.f_number is None
    assert exif.iso is None
    assert exif.focal_length == pytest.approx(35)
    assert not exif.has_gps
