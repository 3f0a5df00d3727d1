"""
Sidecar Reader - reads the AI-generated companion metadata of an image.

Each image may carry up to five JSON streams next to it, addressed as
``<image path><separator><stream>`` (an NTFS alternate data stream on
Windows, a plain companion file elsewhere):

    description.json   short/long description, keywords, flags (per language)
    people.json        recognized faces
    objects.json       detected objects
    scenes.json        scene classification
    exif.json          camera / GPS / capture data

Every stream is read and validated independently. Problems are recorded as
SidecarIssue entries and the affected category comes back empty; nothing in
here raises for a missing or malformed sidecar.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from photoindex.errors import ErrorKind
from photoindex.parser.exif_reader import read_embedded_exif
from photoindex.parser.schema import (
    DescriptionInfo,
    Detection,
    ExifInfo,
    SidecarIssue,
    SidecarMetadata,
)
from photoindex.utils.settings import DEFAULT_LANGUAGE

logger = logging.getLogger(__name__)

DESCRIPTION_STREAM = "description.json"
PEOPLE_STREAM = "people.json"
OBJECTS_STREAM = "objects.json"
SCENES_STREAM = "scenes.json"
EXIF_STREAM = "exif.json"

ALL_STREAMS = (DESCRIPTION_STREAM, PEOPLE_STREAM, OBJECTS_STREAM, SCENES_STREAM, EXIF_STREAM)

# Envelope keys used by detector services, in order of preference
_ENVELOPES = {
    PEOPLE_STREAM: ("predictions", "people", "faces"),
    OBJECTS_STREAM: ("predictions", "objects"),
    SCENES_STREAM: ("predictions", "scenes"),
}

_DESCRIPTION_FIELDS = {
    "short_description", "long_description", "short", "long", "keywords",
    "has_nudity", "has_explicit_content", "picture_type", "style_type",
    "overall_mood", "overall_mood_of_image",
}


class SidecarReader:
    """Reads and validates the sidecar streams of one image at a time."""

    def __init__(
        self,
        default_language: str = DEFAULT_LANGUAGE,
        separator: str = ":",
        read_embedded_exif: bool = True,
    ):
        self.default_language = default_language
        self.separator = separator
        self.read_embedded_exif = read_embedded_exif

    @classmethod
    def from_settings(cls, settings) -> "SidecarReader":
        return cls(
            default_language=settings.default_language,
            separator=settings.sidecar_separator,
            read_embedded_exif=settings.read_embedded_exif,
        )

    def sidecar_path(self, image_path, stream: str) -> str:
        return f"{image_path}{self.separator}{stream}"

    def read(self, image_path, language: Optional[str] = None) -> SidecarMetadata:
        """
        Read all sidecar streams for an image.

        Args:
            image_path: Path of the image (str or Path)
            language: Requested description language (default language if None)

        Returns:
            SidecarMetadata; categories that could not be read are empty and
            the reason is listed in ``issues``.
        """
        language = language or self.default_language
        issues: List[SidecarIssue] = []

        description, default_description = self._read_description(image_path, language, issues)
        people = self._read_detections(image_path, PEOPLE_STREAM, issues)
        objects = self._read_detections(image_path, OBJECTS_STREAM, issues)
        scenes = self._read_detections(image_path, SCENES_STREAM, issues)
        exif = self._read_exif(image_path, issues)

        for issue in issues:
            if issue.kind == ErrorKind.PARSE_ERROR:
                logger.warning(f"[SIDECAR] {image_path}{self.separator}{issue.stream}: {issue.detail}")

        return SidecarMetadata(
            image_path=str(image_path),
            language=language,
            description=description,
            default_description=default_description,
            people=people,
            objects=objects,
            scenes=scenes,
            exif=exif,
            issues=issues,
        )

    def read_detections(self, image_path) -> Dict[str, List[Detection]]:
        """Re-read only the detector streams (bounding boxes are not indexed)."""
        issues: List[SidecarIssue] = []
        return {
            "people": self._read_detections(image_path, PEOPLE_STREAM, issues),
            "objects": self._read_detections(image_path, OBJECTS_STREAM, issues),
            "scenes": self._read_detections(image_path, SCENES_STREAM, issues),
        }

    # ── streams ─────────────────────────────────────────

    def _load_stream(self, image_path, stream: str, issues: List[SidecarIssue]) -> Optional[Any]:
        """Load one JSON stream. Returns None (and records why) when unusable."""
        path = self.sidecar_path(image_path, stream)
        try:
            with open(path, "r", encoding="utf-8-sig") as f:
                text = f.read()
        except FileNotFoundError:
            issues.append(SidecarIssue(stream=stream, kind=ErrorKind.NOT_FOUND))
            return None
        except UnicodeDecodeError as e:
            issues.append(SidecarIssue(stream=stream, kind=ErrorKind.PARSE_ERROR, detail=f"not UTF-8: {e}"))
            return None
        except OSError as e:
            issues.append(SidecarIssue(stream=stream, kind=ErrorKind.NOT_FOUND, detail=str(e)))
            return None

        if not text.strip():
            issues.append(SidecarIssue(stream=stream, kind=ErrorKind.PARSE_ERROR, detail="empty document"))
            return None
        try:
            return json.loads(text)
        except ValueError as e:
            issues.append(SidecarIssue(stream=stream, kind=ErrorKind.PARSE_ERROR, detail=f"invalid JSON: {e}"))
            return None

    def _read_description(
        self, image_path, language: str, issues: List[SidecarIssue]
    ) -> Tuple[DescriptionInfo, Optional[DescriptionInfo]]:
        doc = self._load_stream(image_path, DESCRIPTION_STREAM, issues)
        if doc is None:
            return DescriptionInfo(language=language), None
        if not isinstance(doc, dict):
            issues.append(SidecarIssue(
                stream=DESCRIPTION_STREAM, kind=ErrorKind.PARSE_ERROR,
                detail=f"expected an object, got {type(doc).__name__}",
            ))
            return DescriptionInfo(language=language), None

        if _DESCRIPTION_FIELDS.intersection(doc):
            # Flat document: written in the default language
            entries = {self.default_language.casefold(): (self.default_language, doc)}
        else:
            entries = {
                str(key).casefold(): (str(key), value)
                for key, value in doc.items()
                if isinstance(value, dict)
            }

        wanted = language.casefold()
        fallback = self.default_language.casefold()
        requested = self._validate_entry(entries.get(wanted), issues)
        if wanted == fallback:
            default = requested
        else:
            default = self._validate_entry(entries.get(fallback), issues)

        if default is None:
            # Last resort: any language present, so the row keeps searchable text
            for key, entry in entries.items():
                if key not in (wanted, fallback):
                    default = self._validate_entry(entry, issues)
                    if default is not None:
                        break

        if requested is None or requested.is_empty:
            if default is not None and not default.is_empty:
                issues.append(SidecarIssue(
                    stream=DESCRIPTION_STREAM, kind=ErrorKind.PARTIAL_LANGUAGE,
                    detail=f"{language} missing, using {default.language}",
                ))
            requested = DescriptionInfo(language=language)

        return requested, default

    def _validate_entry(self, entry, issues: List[SidecarIssue]) -> Optional[DescriptionInfo]:
        if entry is None:
            return None
        name, payload = entry
        try:
            info = DescriptionInfo.model_validate(payload)
        except ValidationError as e:
            issues.append(SidecarIssue(
                stream=DESCRIPTION_STREAM, kind=ErrorKind.PARSE_ERROR,
                detail=f"{name}: {e.error_count()} invalid fields",
            ))
            return None
        return info.model_copy(update={"language": name})

    def _read_detections(self, image_path, stream: str, issues: List[SidecarIssue]) -> List[Detection]:
        doc = self._load_stream(image_path, stream, issues)
        if doc is None:
            return []

        items = _unwrap_detections(doc, _ENVELOPES[stream])
        if items is None:
            issues.append(SidecarIssue(stream=stream, kind=ErrorKind.PARSE_ERROR,
                                       detail="unrecognized document shape"))
            return []

        detections = []
        skipped = 0
        for item in items:
            try:
                detections.append(Detection.model_validate(item))
            except ValidationError:
                skipped += 1
        if skipped:
            issues.append(SidecarIssue(stream=stream, kind=ErrorKind.PARSE_ERROR,
                                       detail=f"{skipped} invalid entries skipped"))
        return detections

    def _read_exif(self, image_path, issues: List[SidecarIssue]) -> Optional[ExifInfo]:
        doc = self._load_stream(image_path, EXIF_STREAM, issues)
        if doc is None:
            if self.read_embedded_exif and EXIF_STREAM in _missing_streams(issues):
                return read_embedded_exif(Path(image_path))
            return None
        if not isinstance(doc, dict):
            issues.append(SidecarIssue(stream=EXIF_STREAM, kind=ErrorKind.PARSE_ERROR,
                                       detail=f"expected an object, got {type(doc).__name__}"))
            return None
        try:
            return ExifInfo.model_validate(doc)
        except ValidationError as e:
            issues.append(SidecarIssue(stream=EXIF_STREAM, kind=ErrorKind.PARSE_ERROR,
                                       detail=f"{e.error_count()} invalid fields"))
            return None


def _missing_streams(issues: List[SidecarIssue]) -> set:
    return {i.stream for i in issues if i.kind == ErrorKind.NOT_FOUND}


def _unwrap_detections(doc: Any, envelopes: Sequence[str]) -> Optional[list]:
    """Return the list of detection entries inside a detector document."""
    if isinstance(doc, list):
        return doc
    if not isinstance(doc, dict):
        return None
    for key in envelopes:
        value = doc.get(key)
        if isinstance(value, list) and value:
            return value
    for key in envelopes:
        if isinstance(doc.get(key), list):
            return []
    # Single classification result, e.g. {"scene": "beach", "confidence": 0.9}
    if "label" in doc or "scene" in doc:
        return [doc]
    if doc.get("success") is False or doc.get("count") == 0:
        return []
    return None
