"""
QueryBuilder - compiles a QuerySpec into one parameterized SQL statement.

Structure of the generated WHERE clause:
    (<group 1: p1 OR p2 ...>) AND (<group 2: ...>) AND <flag> AND <range> ...

Each non-empty category array becomes exactly one parenthesized OR group.
Tag categories (keywords/people/objects/scenes) are EXISTS sub-queries on
their junction table, so an image with several matching tags is still
returned once. Descriptions fall back to the default-language columns when
the indexed language is empty.

Geo filtering is two-phase: a bounding box on the indexed GPS columns,
then the exact haversine_m() distance (registered by SQLiteDB).
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from photoindex.errors import ImageIndexError, invalid_spec
from photoindex.search import wildcard
from photoindex.search.query_spec import QuerySpec, SortField
from photoindex.utils.geo import bounding_box

logger = logging.getLogger(__name__)

FLOAT_TOLERANCE = 1e-6

# field -> (column, single-value rule, value kind)
#   "exact": one value means equality (discrete camera settings)
#   "min":   one value means column >= value
RANGE_COLUMNS: Dict[str, Tuple[str, str, str]] = {
    "iso": ("e.iso", "exact", "int"),
    "exposure_time": ("e.exposure_time", "exact", "float"),
    "f_number": ("e.f_number", "exact", "float"),
    "focal_length": ("e.focal_length", "min", "float"),
    "width": ("i.width", "min", "float"),
    "height": ("i.height", "min", "float"),
    "gps_altitude": ("e.gps_altitude", "min", "float"),
    "gps_latitude": ("e.gps_latitude", "min", "float"),
    "gps_longitude": ("e.gps_longitude", "min", "float"),
    "date_taken": ("e.date_taken", "min", "date"),
}

# Tag junction tables: category -> (table, value column, has confidence)
TAG_TABLES: Dict[str, Tuple[str, str, bool]] = {
    "keywords": ("ImageKeywords", "keyword", False),
    "people": ("ImagePeople", "name", True),
    "objects": ("ImageObjects", "label", True),
    "scenes": ("ImageScenes", "scene", True),
}

# Plain single-column wildcard categories
COLUMN_PATTERNS: Dict[str, str] = {
    "picture_types": "i.picture_type",
    "style_types": "i.style_type",
    "overall_moods": "i.overall_mood",
    "camera_make": "e.camera_make",
    "camera_model": "e.camera_model",
}

SHORT_DESCRIPTION_SQL = "COALESCE(NULLIF(i.short_description, ''), i.default_short_description)"
LONG_DESCRIPTION_SQL = "COALESCE(NULLIF(i.long_description, ''), i.default_long_description)"

SORT_COLUMNS: Dict[SortField, str] = {
    SortField.PATH: "i.path",
    SortField.FILE_NAME: "i.file_name COLLATE NOCASE",
    SortField.MODIFIED_AT: "i.modified_at",
    SortField.FILE_SIZE: "i.file_size",
    SortField.DATE_TAKEN: "e.date_taken",
    SortField.DESCRIPTION: f"{SHORT_DESCRIPTION_SQL} COLLATE NOCASE",
    SortField.DISTANCE: "distance_meters",
}

_BASE_COLUMNS = """
    i.id, i.path, i.file_name, i.folder_path, i.file_size, i.modified_at,
    i.width, i.height,
    i.short_description, i.long_description, i.description_language,
    i.default_short_description, i.default_long_description, i.default_language,
    i.has_nudity, i.has_explicit_content, i.picture_type, i.style_type, i.overall_mood,
    e.image_id AS exif_image_id, e.camera_make, e.camera_model,
    e.gps_latitude, e.gps_longitude, e.gps_altitude,
    e.exposure_time, e.f_number, e.iso, e.focal_length, e.date_taken"""


@dataclass
class CompiledQuery:
    """SQL text plus positional parameters, ready for cursor.execute()."""
    sql: str
    params: List[Any]
    where_clauses: List[str] = field(default_factory=list)
    # (dimension name, number of OR-ed patterns) per category group, in SQL order
    groups: List[Tuple[str, int]] = field(default_factory=list)
    has_distance: bool = False


class QueryBuilder:
    """Translate QuerySpec objects to SQL. Stateless; one instance can be shared."""

    def compile(self, spec: QuerySpec) -> CompiledQuery:
        """
        Validate and compile a QuerySpec.

        Raises:
            ImageIndexError(INVALID_SPEC): contradictory flags, malformed
                wildcards, inverted or over-long ranges, bad geo input.
        """
        where: List[str] = []
        params: List[Any] = []
        groups: List[Tuple[str, int]] = []

        self._add_pattern_groups(spec, where, params, groups)
        self._add_flags(spec, where)
        self._add_ranges(spec, where, params)
        distance_sql, distance_params = self._add_geo(spec, where, params)

        if spec.order_by == SortField.DISTANCE and distance_sql is None:
            raise invalid_spec("order_by=distance requires geo_location")

        image_data_sql = "i.image_data" if spec.include_image_data else "NULL AS image_data"
        select_params = list(distance_params)
        distance_column = f"{distance_sql} AS distance_meters" if distance_sql else "NULL AS distance_meters"

        where_sql = " AND ".join(where) if where else "1=1"
        sql = f"""
            SELECT {_BASE_COLUMNS},
                {image_data_sql},
                {distance_column}
            FROM Images i
            LEFT JOIN ExifMetadata e ON e.image_id = i.id
            WHERE {where_sql}
            ORDER BY {self._order_by(spec)}"""

        all_params = select_params + params
        if spec.limit is not None or spec.offset:
            sql += "\n            LIMIT ? OFFSET ?"
            all_params += [spec.limit if spec.limit is not None else -1, spec.offset]

        logger.debug(f"[QUERY] compiled {len(where)} predicates, {len(groups)} groups")
        return CompiledQuery(
            sql=sql,
            params=all_params,
            where_clauses=where,
            groups=groups,
            has_distance=distance_sql is not None,
        )

    # ── wildcard groups ─────────────────────────────────

    @staticmethod
    def _effective_patterns(name: str, patterns: List[str]) -> List[str]:
        """Validate patterns and drop match-all ones; an all-'*' array means no constraint."""
        for pattern in patterns:
            try:
                wildcard.validate(pattern)
            except ImageIndexError as e:
                raise invalid_spec(f"{name}: {e.detail}") from e
        return [p for p in patterns if not wildcard.is_match_all(p)]

    def _add_pattern_groups(self, spec: QuerySpec, where: List[str], params: List[Any],
                            groups: List[Tuple[str, int]]) -> None:
        # any: every pattern may hit any tag table or a description
        patterns = self._effective_patterns("any", spec.any)
        if patterns:
            clauses = []
            for pattern in patterns:
                like = wildcard.to_like(pattern)
                alternatives = []
                for category in TAG_TABLES:
                    sql, sql_params = self._tag_exists(category, like, spec.min_confidence)
                    alternatives.append(sql)
                    params.extend(sql_params)
                alternatives.append(self._description_like())
                contains = wildcard.to_contains_like(pattern)
                params.extend([contains, contains])
                clauses.append("(" + " OR ".join(alternatives) + ")")
            self._append_group(where, groups, "any", clauses)

        for category in TAG_TABLES:
            patterns = self._effective_patterns(category, getattr(spec, category))
            if not patterns:
                continue
            clauses = []
            for pattern in patterns:
                sql, sql_params = self._tag_exists(category, wildcard.to_like(pattern), spec.min_confidence)
                clauses.append(sql)
                params.extend(sql_params)
            self._append_group(where, groups, category, clauses)

        patterns = self._effective_patterns("description_search", spec.description_search)
        if patterns:
            clauses = []
            for pattern in patterns:
                contains = wildcard.to_contains_like(pattern)
                clauses.append(self._description_like())
                params.extend([contains, contains])
            self._append_group(where, groups, "description_search", clauses)

        for name, column in COLUMN_PATTERNS.items():
            patterns = self._effective_patterns(name, getattr(spec, name))
            if not patterns:
                continue
            clauses = []
            for pattern in patterns:
                clauses.append(f"{wildcard.folded(column)} LIKE ? {wildcard.LIKE_ESCAPE_CLAUSE}")
                params.append(wildcard.to_like(pattern))
            self._append_group(where, groups, name, clauses)

        patterns = self._effective_patterns("path_like", spec.path_like)
        if patterns:
            clauses = []
            for pattern in patterns:
                clauses.append(f"{wildcard.folded('i.path')} LIKE ? {wildcard.LIKE_ESCAPE_CLAUSE}")
                params.append(wildcard.to_contains_like(pattern))
            self._append_group(where, groups, "path_like", clauses)

    @staticmethod
    def _append_group(where: List[str], groups: List[Tuple[str, int]], name: str, clauses: List[str]) -> None:
        where.append("(" + " OR ".join(clauses) + ")")
        groups.append((name, len(clauses)))

    @staticmethod
    def _tag_exists(category: str, like: str, min_confidence: Optional[float]) -> Tuple[str, List[Any]]:
        table, column, has_confidence = TAG_TABLES[category]
        sql = (
            f"EXISTS (SELECT 1 FROM {table} t WHERE t.image_id = i.id "
            f"AND {wildcard.folded('t.' + column)} LIKE ? {wildcard.LIKE_ESCAPE_CLAUSE}"
        )
        params: List[Any] = [like]
        if has_confidence and min_confidence is not None:
            sql += " AND t.confidence >= ?"
            params.append(min_confidence)
        return sql + ")", params

    @staticmethod
    def _description_like() -> str:
        escape = wildcard.LIKE_ESCAPE_CLAUSE
        short = wildcard.folded(SHORT_DESCRIPTION_SQL)
        long = wildcard.folded(LONG_DESCRIPTION_SQL)
        return f"({short} LIKE ? {escape} OR {long} LIKE ? {escape})"

    # ── flags / ranges / geo ────────────────────────────

    @staticmethod
    def _add_flags(spec: QuerySpec, where: List[str]) -> None:
        for column, has_flag, no_flag in (
            ("has_nudity", spec.has_nudity, spec.no_nudity),
            ("has_explicit_content", spec.has_explicit_content, spec.no_explicit_content),
        ):
            if has_flag and no_flag:
                raise invalid_spec(f"both has_ and no_ set for {column}")
            if has_flag:
                where.append(f"i.{column} = 1")
            elif no_flag:
                where.append(f"i.{column} = 0")

    def _add_ranges(self, spec: QuerySpec, where: List[str], params: List[Any]) -> None:
        for name, (column, single_rule, kind) in RANGE_COLUMNS.items():
            values = list(getattr(spec, name))
            if not values:
                continue
            if len(values) > 2:
                raise invalid_spec(f"{name}: expected [min, max] or a single value, got {len(values)} values")
            bound = [self._range_value(v, kind) for v in values]
            # Dates compare as wall-clock ISO text whether aware or naive
            if len(bound) == 2 and bound[0] > bound[1]:
                raise invalid_spec(f"{name}: min {bound[0]} is greater than max {bound[1]}")

            if len(bound) == 2:
                if kind == "float" and single_rule == "exact":
                    bound = [bound[0] - FLOAT_TOLERANCE, bound[1] + FLOAT_TOLERANCE]
                where.append(f"{column} BETWEEN ? AND ?")
                params.extend(bound)
            elif single_rule == "exact" and kind == "float":
                where.append(f"ABS({column} - ?) <= {FLOAT_TOLERANCE}")
                params.append(bound[0])
            elif single_rule == "exact":
                where.append(f"{column} = ?")
                params.append(bound[0])
            else:
                where.append(f"{column} >= ?")
                params.append(bound[0])

    @staticmethod
    def _range_value(value: Any, kind: str) -> Any:
        if kind == "date":
            if isinstance(value, datetime):
                # Stored as naive local ISO text, see SQLiteDB._iso
                return value.replace(tzinfo=None).isoformat(timespec="seconds")
            return str(value)
        if kind == "int" and float(value).is_integer():
            return int(value)
        return float(value)

    @staticmethod
    def _add_geo(spec: QuerySpec, where: List[str], params: List[Any]) -> Tuple[Optional[str], List[Any]]:
        if spec.geo_location is None:
            if spec.geo_distance_meters is not None:
                raise invalid_spec("geo_distance_meters requires geo_location")
            return None, []

        lat, lon = spec.geo_location
        if not -90.0 <= lat <= 90.0 or not -180.0 <= lon <= 180.0:
            raise invalid_spec(f"geo_location out of range: ({lat}, {lon})")
        distance = spec.effective_geo_distance

        # Phase 1: index-friendly box
        (min_lat, max_lat), lon_ranges = bounding_box(lat, lon, distance)
        where.append("e.gps_latitude BETWEEN ? AND ?")
        params.extend([min_lat, max_lat])
        if lon_ranges:
            where.append("(" + " OR ".join("e.gps_longitude BETWEEN ? AND ?" for _ in lon_ranges) + ")")
            for west, east in lon_ranges:
                params.extend([west, east])
        else:
            where.append("e.gps_longitude IS NOT NULL")

        # Phase 2: exact great-circle distance
        distance_sql = "haversine_m(e.gps_latitude, e.gps_longitude, ?, ?)"
        where.append(f"{distance_sql} <= ?")
        params.extend([lat, lon, distance])
        return distance_sql, [lat, lon]

    @staticmethod
    def _order_by(spec: QuerySpec) -> str:
        direction = "DESC" if spec.descending else "ASC"
        if spec.order_by == SortField.PATH:
            return f"i.path {direction}"
        expr = SORT_COLUMNS[spec.order_by]
        # Missing values sort last in either direction
        bare = expr.replace(" COLLATE NOCASE", "")
        return f"({bare}) IS NULL, {expr} {direction}, i.path ASC"
