"""
Sidecar Schema - typed DTOs for the AI-generated companion metadata.

These models are the contract between the sidecar reader and the database
writer. Unknown JSON fields are ignored; missing fields default to empty
collections or None so a partially written sidecar still validates.
"""

import logging
import math
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from photoindex.errors import ErrorKind

logger = logging.getLogger(__name__)

_LENIENT = ConfigDict(extra="ignore", populate_by_name=True)

_EXIF_DATE_FORMATS = ("%Y:%m:%d %H:%M:%S", "%Y-%m-%d %H:%M:%S", "%Y:%m:%d %H:%M", "%Y:%m:%d")
_RATIONAL = re.compile(r"^(-?\d+(?:\.\d+)?)\s*/\s*(\d+(?:\.\d+)?)$")


def _to_float(value: Any) -> Optional[float]:
    """Accept numbers, numeric strings and EXIF rationals such as '1/250'."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None
    text = str(value).strip()
    rational = _RATIONAL.match(text)
    if rational:
        den = float(rational.group(2))
        return float(rational.group(1)) / den if den else None
    # "f/2.8", "35 mm", "ISO 100"
    match = re.search(r"-?\d+(?:\.\d+)?", text)
    if not match:
        raise ValueError(f"not a number: {value!r}")
    return float(match.group(0))


def _lenient_float(value: Any) -> Optional[float]:
    """_to_float for EXIF fields: unusable values become None instead of failing the model."""
    try:
        return _to_float(value)
    except (ValueError, TypeError):
        return None


class BoundingBox(BaseModel):
    """Detector bounding box in image pixel coordinates."""
    model_config = _LENIENT

    x_min: float = 0
    y_min: float = 0
    x_max: float = 0
    y_max: float = 0


class Detection(BaseModel):
    """One detected person, object or scene."""
    model_config = _LENIENT

    label: str = Field(..., validation_alias=AliasChoices("label", "name", "userid", "scene"))
    confidence: float = Field(1.0, ge=0.0, le=1.0)
    bounding_box: Optional[BoundingBox] = Field(
        None, validation_alias=AliasChoices("bounding_box", "boundingBox", "box")
    )

    @model_validator(mode="before")
    @classmethod
    def _corner_fields(cls, data: Any) -> Any:
        # Detector services report x_min/y_min/x_max/y_max at top level
        if isinstance(data, str):
            return {"label": data}
        if isinstance(data, dict) and "x_min" in data and "bounding_box" not in data and "boundingBox" not in data:
            data = dict(data)
            data["bounding_box"] = {k: data.get(k, 0) for k in ("x_min", "y_min", "x_max", "y_max")}
        return data

    @field_validator("label")
    @classmethod
    def _strip_label(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("empty label")
        return value


class DescriptionInfo(BaseModel):
    """Description, keywords and classifications for one language."""
    model_config = _LENIENT

    short_description: str = Field("", validation_alias=AliasChoices("short_description", "short"))
    long_description: str = Field("", validation_alias=AliasChoices("long_description", "long"))
    keywords: List[str] = Field(default_factory=list)
    has_nudity: bool = False
    has_explicit_content: bool = False
    picture_type: Optional[str] = None
    style_type: Optional[str] = None
    overall_mood: Optional[str] = Field(
        None, validation_alias=AliasChoices("overall_mood", "overall_mood_of_image", "mood")
    )
    language: Optional[str] = None

    @field_validator("short_description", "long_description", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return "" if value is None else value

    @field_validator("keywords", mode="before")
    @classmethod
    def _split_keywords(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [k for k in (p.strip() for p in value.split(",")) if k]
        return value

    @field_validator("keywords")
    @classmethod
    def _dedupe_keywords(cls, value: List[str]) -> List[str]:
        return dedupe_casefold(value)

    @property
    def is_empty(self) -> bool:
        return not (self.short_description or self.long_description or self.keywords)


class ExifInfo(BaseModel):
    """Camera and capture data. GPS latitude/longitude are pair-or-neither."""
    model_config = _LENIENT

    camera_make: Optional[str] = Field(None, validation_alias=AliasChoices("camera_make", "make", "Make", "CameraMake"))
    camera_model: Optional[str] = Field(None, validation_alias=AliasChoices("camera_model", "model", "Model", "CameraModel"))
    gps_latitude: Optional[float] = Field(None, validation_alias=AliasChoices("gps_latitude", "latitude", "GPSLatitude"))
    gps_longitude: Optional[float] = Field(None, validation_alias=AliasChoices("gps_longitude", "longitude", "GPSLongitude"))
    gps_altitude: Optional[float] = Field(None, validation_alias=AliasChoices("gps_altitude", "altitude", "GPSAltitude"))
    exposure_time: Optional[float] = Field(None, validation_alias=AliasChoices("exposure_time", "ExposureTime"))
    f_number: Optional[float] = Field(None, validation_alias=AliasChoices("f_number", "FNumber", "aperture"))
    iso: Optional[int] = Field(None, validation_alias=AliasChoices("iso", "ISO", "ISOSpeedRatings", "PhotographicSensitivity"))
    focal_length: Optional[float] = Field(None, validation_alias=AliasChoices("focal_length", "FocalLength"))
    date_taken: Optional[datetime] = Field(
        None, validation_alias=AliasChoices("date_taken", "DateTimeOriginal", "date_time_original", "DateTime")
    )

    @field_validator("gps_latitude", "gps_longitude", "gps_altitude", "exposure_time",
                     "f_number", "focal_length", mode="before")
    @classmethod
    def _numeric(cls, value):
        return _lenient_float(value)

    @field_validator("iso", mode="before")
    @classmethod
    def _iso(cls, value):
        if isinstance(value, list):
            value = value[0] if value else None
        number = _lenient_float(value)
        if number is None or not 0 <= number < 2 ** 31:
            return None
        return int(round(number))

    @field_validator("camera_make", "camera_model", mode="before")
    @classmethod
    def _text(cls, value):
        if value is None:
            return None
        text = str(value).strip().strip("\x00")
        return text or None

    @field_validator("date_taken", mode="before")
    @classmethod
    def _exif_date(cls, value):
        if value is None or value == "":
            return None
        if isinstance(value, datetime):
            return value.replace(tzinfo=None)
        text = str(value).strip().strip("\x00")
        for fmt in _EXIF_DATE_FORMATS:
            try:
                return datetime.strptime(text, fmt)
            except ValueError:
                continue
        try:
            return datetime.fromisoformat(text).replace(tzinfo=None)
        except ValueError:
            # Cameras write "0000:00:00 00:00:00" when the clock was never set
            logger.debug(f"Ignoring unparseable EXIF date: {value!r}")
            return None

    @field_validator("gps_latitude")
    @classmethod
    def _latitude_range(cls, value):
        if value is not None and not -90.0 <= value <= 90.0:
            logger.debug(f"Ignoring out-of-range latitude: {value}")
            return None
        return value

    @field_validator("gps_longitude")
    @classmethod
    def _longitude_range(cls, value):
        if value is not None and not -180.0 <= value <= 180.0:
            logger.debug(f"Ignoring out-of-range longitude: {value}")
            return None
        return value

    @model_validator(mode="after")
    def _gps_pair(self):
        if (self.gps_latitude is None) != (self.gps_longitude is None):
            self.gps_latitude = None
            self.gps_longitude = None
        return self

    @property
    def has_gps(self) -> bool:
        return self.gps_latitude is not None and self.gps_longitude is not None

    @property
    def is_empty(self) -> bool:
        return all(v is None for v in self.model_dump().values())


class SidecarIssue(BaseModel):
    """A non-fatal problem met while reading one sidecar stream."""
    stream: str
    kind: ErrorKind
    detail: str = ""


class SidecarMetadata(BaseModel):
    """Everything the sidecar reader recovered for one image."""

    image_path: str
    language: str
    description: DescriptionInfo = Field(default_factory=DescriptionInfo)
    default_description: Optional[DescriptionInfo] = None
    people: List[Detection] = Field(default_factory=list)
    objects: List[Detection] = Field(default_factory=list)
    scenes: List[Detection] = Field(default_factory=list)
    exif: Optional[ExifInfo] = None
    issues: List[SidecarIssue] = Field(default_factory=list)

    def issue_kinds(self, stream: str) -> List[ErrorKind]:
        return [i.kind for i in self.issues if i.stream == stream]

    @property
    def effective_description(self) -> DescriptionInfo:
        """Requested-language description, or the default language's when untranslated."""
        if self.description.is_empty and self.default_description is not None:
            return self.default_description
        return self.description

    @property
    def is_empty(self) -> bool:
        return (
            self.description.is_empty
            and (self.default_description is None or self.default_description.is_empty)
            and not (self.people or self.objects or self.scenes)
            and (self.exif is None or self.exif.is_empty)
        )


class ImageRecord(BaseModel):
    """File facts plus parsed sidecars, ready to be written as one Images row."""

    path: str = Field(..., description="Absolute, NFC-normalized file path (unique key)")
    file_name: str
    folder_path: Optional[str] = None
    file_size: int = 0
    modified_at: Optional[datetime] = None
    width: Optional[int] = None
    height: Optional[int] = None
    sidecar: SidecarMetadata
    image_data: Optional[str] = Field(None, description="Base64 file bytes when embedding is enabled")


def dedupe_casefold(values: List[str]) -> List[str]:
    """Strip, drop empties and de-duplicate case-insensitively, keeping first spelling."""
    seen = set()
    result = []
    for value in values:
        text = str(value).strip()
        key = text.casefold()
        if not text or key in seen:
            continue
        seen.add(key)
        result.append(text)
    return result


def dedupe_detections(detections: List[Detection]) -> Dict[str, float]:
    """Collapse detections to label -> best confidence, case-insensitively."""
    best: Dict[str, Detection] = {}
    for d in detections:
        key = d.label.casefold()
        if key not in best or d.confidence > best[key].confidence:
            best[key] = d
    return {d.label: d.confidence for d in best.values()}
