"""
Command-line entry point.

Usage:
    photoindex index [DIR ...] [--path-filter PATTERN] [--embed-images]
    photoindex search --keywords "sun*" --iso 50 200 --order-by date_taken
    photoindex status
    photoindex watch
    photoindex config show | add-dirs DIR ... | set-language LANG | set-index-path PATH

Results and summaries are printed as JSON on stdout; logs go to stderr.
Exit codes: 0 ok, 1 other error, 2 invalid query or argument, 3 database
unavailable or rebuild in progress.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

import yaml

from photoindex.errors import ErrorKind, ImageIndexError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INVALID = 2
EXIT_UNAVAILABLE = 3

_EXIT_CODES = {
    ErrorKind.INVALID_SPEC: EXIT_INVALID,
    ErrorKind.REBUILD_IN_PROGRESS: EXIT_UNAVAILABLE,
    ErrorKind.DATABASE_UNAVAILABLE: EXIT_UNAVAILABLE,
    ErrorKind.SCHEMA_ERROR: EXIT_UNAVAILABLE,
}

# CLI option -> QuerySpec field, for the wildcard arrays
_PATTERN_OPTIONS = {
    "any": "any",
    "keywords": "keywords",
    "people": "people",
    "objects": "objects",
    "scenes": "scenes",
    "description": "description_search",
    "picture_type": "picture_types",
    "style_type": "style_types",
    "mood": "overall_moods",
    "camera_make": "camera_make",
    "camera_model": "camera_model",
    "path_like": "path_like",
}

_RANGE_OPTIONS = (
    "iso", "exposure_time", "f_number", "focal_length", "width", "height",
    "gps_altitude", "gps_latitude", "gps_longitude",
)


def _print_json(data) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2, default=str))


def _load_config(args):
    from photoindex.utils.config import AppConfig

    if args.config:
        return AppConfig(path=Path(args.config))
    return AppConfig()


def _settings(args, cfg, **overrides):
    return cfg.to_settings(database_path=args.db, language=args.language, **overrides)


# ── Subcommand handlers (lazy imports) ──────────────────────────────

def cmd_index(args, cfg) -> int:
    """Full rebuild of the index."""
    from photoindex.pipeline.ingest_engine import Indexer

    settings = _settings(
        args, cfg,
        image_directories=args.directories or None,
        path_filters=args.path_filter or None,
        embed_images=True if args.embed_images else None,
        recurse=False if args.no_recurse else None,
    )
    if not settings.image_directories:
        logger.error("No image directories configured; pass DIR or use 'config add-dirs'")
        return EXIT_INVALID
    result = Indexer(settings).rebuild()
    _print_json(result.to_dict())
    return EXIT_OK


def build_query_spec(args):
    """QuerySpec from parsed search arguments."""
    from photoindex.search.query_spec import QuerySpec

    values = {}
    for option, field_name in _PATTERN_OPTIONS.items():
        patterns = getattr(args, option)
        if patterns:
            values[field_name] = patterns
    for option in _RANGE_OPTIONS:
        bounds = getattr(args, option)
        if bounds:
            values[option] = bounds
    if args.date_taken:
        values["date_taken"] = args.date_taken
    if args.geo:
        values["geo_location"] = tuple(args.geo)
    for flag in ("has_nudity", "no_nudity", "has_explicit_content", "no_explicit_content",
                 "descending", "include_image_data", "include_detections"):
        if getattr(args, flag):
            values[flag] = True
    for option in ("geo_distance_meters", "min_confidence", "limit", "order_by"):
        value = getattr(args, option)
        if value is not None:
            values[option] = value
    if args.offset:
        values["offset"] = args.offset
    return QuerySpec.model_validate(values)


def cmd_search(args, cfg) -> int:
    """Search the index and print results as a JSON array."""
    from pydantic import ValidationError

    from photoindex.api_search import find_images

    try:
        spec = build_query_spec(args)
    except ValidationError as e:
        logger.error(f"Invalid query: {e}")
        return EXIT_INVALID

    settings = _settings(args, cfg)
    results = find_images(
        settings, spec,
        force_rebuild=args.force_rebuild,
        never_rebuild=args.never_rebuild,
    )
    _print_json([r.model_dump(mode="json", exclude_none=True) for r in results])
    return EXIT_OK


def cmd_status(args, cfg) -> int:
    """Freshness decision and database statistics."""
    from photoindex.pipeline.freshness import FreshnessEvaluator

    _print_json(FreshnessEvaluator(_settings(args, cfg)).status())
    return EXIT_OK


def cmd_watch(args, cfg) -> int:
    """Watch the image directories and rebuild after changes."""
    from photoindex.pipeline.freshness import FreshnessEvaluator
    from photoindex.pipeline.watcher import IndexWatcher

    evaluator = FreshnessEvaluator(_settings(args, cfg))
    IndexWatcher(evaluator, quiet_period_s=args.quiet_period).run_forever()
    return EXIT_OK


def cmd_config(args, cfg) -> int:
    """Show or change persistent preferences (user-settings.yaml)."""
    from photoindex.utils import config as config_mod

    if args.config_command == "show":
        data = {
            "index": cfg.section("index"),
            "user_settings_path": str(cfg.user_settings_path) if cfg.user_settings_path else None,
        }
        print(yaml.safe_dump(data, allow_unicode=True, sort_keys=True), end="")
    elif args.config_command == "add-dirs":
        _print_json(config_mod.add_image_directories(cfg, args.directories))
    elif args.config_command == "set-language":
        try:
            _print_json(config_mod.set_meta_language(cfg, args.language_name))
        except ValueError as e:
            logger.error(str(e))
            return EXIT_INVALID
    elif args.config_command == "set-index-path":
        _print_json(str(config_mod.set_index_path(cfg, args.path)))
    return EXIT_OK


# ── Main ────────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    from photoindex.search.query_spec import SortField

    parser = argparse.ArgumentParser(prog="photoindex", description="Sidecar metadata image index")
    parser.add_argument("--config", help="Path to config.yaml")
    parser.add_argument("--db", help="Database file (overrides config)")
    parser.add_argument("--language", help="Description language (overrides config)")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="-v info, -vv debug")
    sub = parser.add_subparsers(dest="command", required=True)

    # Index
    p = sub.add_parser("index", help="Rebuild the index")
    p.add_argument("directories", nargs="*", help="Image directories (default: configured)")
    p.add_argument("--path-filter", action="append", help="Only index matching paths (repeatable)")
    p.add_argument("--embed-images", action="store_true", help="Store image bytes in the index")
    p.add_argument("--no-recurse", action="store_true", help="Do not descend into sub-directories")

    # Search
    p = sub.add_parser("search", help="Query the index")
    for option in _PATTERN_OPTIONS:
        p.add_argument(f"--{option.replace('_', '-')}", dest=option, nargs="+", metavar="PATTERN")
    for option in _RANGE_OPTIONS:
        p.add_argument(f"--{option.replace('_', '-')}", dest=option, nargs="+", type=float, metavar="N",
                       help="[min max] or a single value")
    p.add_argument("--date-taken", nargs="+", metavar="ISO_DATE")
    p.add_argument("--has-nudity", action="store_true")
    p.add_argument("--no-nudity", action="store_true")
    p.add_argument("--has-explicit-content", action="store_true")
    p.add_argument("--no-explicit-content", action="store_true")
    p.add_argument("--min-confidence", type=float)
    p.add_argument("--geo", nargs=2, type=float, metavar=("LAT", "LON"))
    p.add_argument("--geo-distance-meters", type=float)
    p.add_argument("--order-by", choices=[f.value for f in SortField])
    p.add_argument("--descending", action="store_true")
    p.add_argument("--limit", type=int)
    p.add_argument("--offset", type=int, default=0)
    p.add_argument("--include-image-data", action="store_true")
    p.add_argument("--include-detections", action="store_true")
    p.add_argument("--force-rebuild", action="store_true")
    p.add_argument("--never-rebuild", action="store_true")

    # Status / Watch
    sub.add_parser("status", help="Index freshness and statistics")
    p = sub.add_parser("watch", help="Rebuild when image folders change")
    p.add_argument("--quiet-period", type=float, default=2.0, help="Seconds without changes before rebuilding")

    # Config
    p = sub.add_parser("config", help="Persistent preferences")
    config_sub = p.add_subparsers(dest="config_command", required=True)
    config_sub.add_parser("show", help="Print effective index settings")
    cp = config_sub.add_parser("add-dirs", help="Add image directories")
    cp.add_argument("directories", nargs="+")
    cp = config_sub.add_parser("set-language", help="Set the description language")
    cp.add_argument("language_name")
    cp = config_sub.add_parser("set-index-path", help="Set the database file location")
    cp.add_argument("path")

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.WARNING
    if args.verbose == 1:
        level = logging.INFO
    elif args.verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    handlers = {
        "index": cmd_index,
        "search": cmd_search,
        "status": cmd_status,
        "watch": cmd_watch,
        "config": cmd_config,
    }

    try:
        cfg = _load_config(args)
        return handlers[args.command](args, cfg)
    except ImageIndexError as e:
        logger.error(str(e))
        return _EXIT_CODES.get(e.kind, EXIT_ERROR)
    except ValueError as e:
        # pydantic ValidationError from settings, unknown language, ...
        logger.error(str(e))
        return EXIT_INVALID


if __name__ == "__main__":
    sys.exit(main())
