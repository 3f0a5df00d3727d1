"""
ResultHydrator - executes a compiled query and assembles SearchResult objects.

Per-image category lists are fetched with one keyed secondary query per
junction table (chunked IN lists), then merged into the rows in the order
the main query returned them.
"""

import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from photoindex.db.sqlite_client import SQLiteDB
from photoindex.parser.schema import Detection, ExifInfo
from photoindex.parser.sidecar_reader import SidecarReader
from photoindex.search.query_builder import CompiledQuery
from photoindex.search.query_spec import QuerySpec

logger = logging.getLogger(__name__)

_IN_CHUNK = 500

_EXIF_COLUMNS = (
    "camera_make", "camera_model", "gps_latitude", "gps_longitude", "gps_altitude",
    "exposure_time", "f_number", "iso", "focal_length", "date_taken",
)


class SearchResult(BaseModel):
    """One matched image with its resolved categories and EXIF."""

    id: int
    path: str
    file_name: str
    folder_path: Optional[str] = None
    file_size: Optional[int] = None
    modified_at: Optional[datetime] = None
    width: Optional[int] = None
    height: Optional[int] = None
    short_description: str = ""
    long_description: str = ""
    description_language: Optional[str] = Field(None, description="Language the description text is in")
    keywords: List[str] = Field(default_factory=list)
    people: List[str] = Field(default_factory=list)
    objects: List[str] = Field(default_factory=list)
    scenes: List[str] = Field(default_factory=list)
    has_nudity: bool = False
    has_explicit_content: bool = False
    picture_type: Optional[str] = None
    style_type: Optional[str] = None
    overall_mood: Optional[str] = None
    exif: Optional[ExifInfo] = None
    distance_meters: Optional[float] = None
    image_data: Optional[str] = None
    detections: Optional[Dict[str, List[Detection]]] = None


class ResultHydrator:
    """Run a CompiledQuery and hydrate rows into SearchResult objects."""

    def __init__(self, sidecar_reader: Optional[SidecarReader] = None):
        self.sidecar_reader = sidecar_reader or SidecarReader()

    def execute(self, db: SQLiteDB, compiled: CompiledQuery,
                spec: Optional[QuerySpec] = None) -> List[SearchResult]:
        """
        Execute the query. Zero matches give an empty list, never an error.

        Args:
            db: Open database (read-only is fine)
            compiled: Output of QueryBuilder.compile()
            spec: Source spec, for hydration options (include_detections)
        """
        rows = db.conn.execute(compiled.sql, compiled.params).fetchall()
        if not rows:
            logger.info("[SEARCH] 0 results")
            return []

        ids = [row["id"] for row in rows]
        keywords = self._keywords_by_image(db, ids)
        people = self._values_by_image(db, "ImagePeople", "name", ids)
        objects = self._values_by_image(db, "ImageObjects", "label", ids)
        scenes = self._values_by_image(db, "ImageScenes", "scene", ids)

        include_detections = spec is not None and spec.include_detections
        results = []
        for row in rows:
            image_id = row["id"]
            language = self._description_language(row)
            results.append(SearchResult(
                id=image_id,
                path=row["path"],
                file_name=row["file_name"],
                folder_path=row["folder_path"],
                file_size=row["file_size"],
                modified_at=row["modified_at"],
                width=row["width"],
                height=row["height"],
                short_description=row["short_description"] or row["default_short_description"] or "",
                long_description=row["long_description"] or row["default_long_description"] or "",
                description_language=language,
                keywords=self._pick_keywords(keywords.get(image_id, {}), language),
                people=people.get(image_id, []),
                objects=objects.get(image_id, []),
                scenes=scenes.get(image_id, []),
                has_nudity=bool(row["has_nudity"]),
                has_explicit_content=bool(row["has_explicit_content"]),
                picture_type=row["picture_type"],
                style_type=row["style_type"],
                overall_mood=row["overall_mood"],
                exif=self._exif(row),
                distance_meters=row["distance_meters"],
                image_data=row["image_data"],
                detections=self.sidecar_reader.read_detections(row["path"]) if include_detections else None,
            ))

        logger.info(f"[SEARCH] {len(results)} results")
        return results

    # ── row helpers ─────────────────────────────────────

    @staticmethod
    def _description_language(row) -> Optional[str]:
        if row["short_description"] or row["long_description"]:
            return row["description_language"]
        if row["default_short_description"] or row["default_long_description"]:
            return row["default_language"]
        return row["description_language"]

    @staticmethod
    def _exif(row) -> Optional[ExifInfo]:
        if row["exif_image_id"] is None:
            return None
        return ExifInfo.model_validate({c: row[c] for c in _EXIF_COLUMNS})

    @staticmethod
    def _pick_keywords(by_language: Dict[Optional[str], List[str]], language: Optional[str]) -> List[str]:
        """Keywords of the description's language, else every stored keyword."""
        if language in by_language:
            return by_language[language]
        merged: List[str] = []
        for values in by_language.values():
            merged.extend(v for v in values if v not in merged)
        return merged

    # ── secondary keyed queries ─────────────────────────

    @staticmethod
    def _chunks(ids: List[int]):
        for start in range(0, len(ids), _IN_CHUNK):
            yield ids[start:start + _IN_CHUNK]

    def _values_by_image(self, db: SQLiteDB, table: str, column: str, ids: List[int]) -> Dict[int, List[str]]:
        result: Dict[int, List[str]] = defaultdict(list)
        for chunk in self._chunks(ids):
            placeholders = ",".join("?" * len(chunk))
            cursor = db.conn.execute(
                f"SELECT image_id, {column} FROM {table} WHERE image_id IN ({placeholders}) "
                f"ORDER BY image_id, confidence DESC, {column}",
                chunk,
            )
            for image_id, value in cursor:
                result[image_id].append(value)
        return result

    def _keywords_by_image(self, db: SQLiteDB, ids: List[int]) -> Dict[int, Dict[Any, List[str]]]:
        result: Dict[int, Dict[Any, List[str]]] = defaultdict(lambda: defaultdict(list))
        for chunk in self._chunks(ids):
            placeholders = ",".join("?" * len(chunk))
            cursor = db.conn.execute(
                f"SELECT image_id, keyword, language FROM ImageKeywords "
                f"WHERE image_id IN ({placeholders}) ORDER BY image_id, rowid",
                chunk,
            )
            for image_id, keyword, language in cursor:
                result[image_id][language].append(keyword)
        return result
