"""
Embedded EXIF fallback.

Used when an image has no exif.json sidecar: pulls the camera, exposure and
GPS tags straight from the file with exifread and maps them onto ExifInfo.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import exifread
from pydantic import ValidationError

from photoindex.parser.schema import ExifInfo

logger = logging.getLogger(__name__)

# exifread tag name → ExifInfo field
_SCALAR_TAGS = {
    "Image Make": "camera_make",
    "Image Model": "camera_model",
    "EXIF ExposureTime": "exposure_time",
    "EXIF FNumber": "f_number",
    "EXIF ISOSpeedRatings": "iso",
    "EXIF FocalLength": "focal_length",
    "EXIF DateTimeOriginal": "date_taken",
}


def _ratio(value) -> Optional[float]:
    """Float value of an EXIF rational; None for 0/0 and other unusable values."""
    try:
        return float(value)
    except (ZeroDivisionError, ValueError):
        return None
    except TypeError:
        # exifread < 3 Ratio has no __float__
        den = getattr(value, "den", 0)
        return value.num / den if den else None


def _dms_to_degrees(values: List[Any], ref: str) -> Optional[float]:
    if not values or len(values) < 3:
        return None
    parts = [_ratio(v) for v in values[:3]]
    if any(p is None for p in parts):
        return None
    degrees = parts[0] + parts[1] / 60.0 + parts[2] / 3600.0
    if ref.upper() in ("S", "W"):
        degrees = -degrees
    return degrees


def _first_value(tag) -> Any:
    values = getattr(tag, "values", None)
    if isinstance(values, (list, tuple)):
        return values[0] if values else None
    return values


def tags_to_exif(tags: Dict[str, Any]) -> Optional[ExifInfo]:
    """Map an exifread tag dictionary onto ExifInfo."""
    data: Dict[str, Any] = {}
    for tag_name, field_name in _SCALAR_TAGS.items():
        tag = tags.get(tag_name)
        if tag is None:
            continue
        if field_name in ("camera_make", "camera_model", "date_taken"):
            data[field_name] = str(tag)
        else:
            value = _first_value(tag)
            data[field_name] = _ratio(value) if value is not None else None

    lat = tags.get("GPS GPSLatitude")
    lon = tags.get("GPS GPSLongitude")
    if lat is not None and lon is not None:
        data["gps_latitude"] = _dms_to_degrees(lat.values, str(tags.get("GPS GPSLatitudeRef", "N")))
        data["gps_longitude"] = _dms_to_degrees(lon.values, str(tags.get("GPS GPSLongitudeRef", "E")))

    alt = tags.get("GPS GPSAltitude")
    if alt is not None:
        altitude = _ratio(_first_value(alt))
        alt_ref = tags.get("GPS GPSAltitudeRef")
        # AltitudeRef 1 = below sea level
        if altitude is not None and alt_ref is not None and _first_value(alt_ref) == 1:
            altitude = -altitude
        data["gps_altitude"] = altitude

    if not data:
        return None
    try:
        exif = ExifInfo.model_validate(data)
    except ValidationError as e:
        logger.debug(f"Embedded EXIF rejected: {e.error_count()} invalid fields")
        return None
    return None if exif.is_empty else exif


def read_embedded_exif(file_path: Path) -> Optional[ExifInfo]:
    """Extract EXIF metadata from the image file itself."""
    try:
        with open(file_path, "rb") as f:
            tags = exifread.process_file(f, details=False)
    except (OSError, ValueError, KeyError, IndexError) as e:
        logger.debug(f"EXIF extraction failed for {file_path}: {e}")
        return None
    if not tags:
        return None
    try:
        return tags_to_exif(tags)
    except (ArithmeticError, ValueError, TypeError) as e:
        logger.debug(f"EXIF tags of {file_path} could not be mapped: {e}")
        return None
