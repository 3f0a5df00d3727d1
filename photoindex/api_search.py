"""
Library entry point for searching the photo index.

    settings = AppConfig().to_settings()
    results = find_images(settings, QuerySpec(keywords=["sun*"]))

Runs FreshnessEvaluator -> QueryBuilder -> ResultHydrator. The query is
compiled before the database is touched, so an invalid query never causes
a rebuild.
"""

import logging
import threading
from typing import List, Optional, Union

from pydantic import ValidationError

from photoindex.errors import invalid_spec
from photoindex.parser.sidecar_reader import SidecarReader
from photoindex.pipeline.fingerprint import DatabaseFingerprint
from photoindex.pipeline.freshness import FreshnessEvaluator
from photoindex.search.hydrator import ResultHydrator, SearchResult
from photoindex.search.query_builder import QueryBuilder
from photoindex.search.query_spec import QuerySpec
from photoindex.utils.settings import IndexSettings

logger = logging.getLogger(__name__)


def find_images(
    settings: IndexSettings,
    spec: Union[QuerySpec, dict, None] = None,
    force_rebuild: bool = False,
    never_rebuild: bool = False,
    fingerprint: Optional[DatabaseFingerprint] = None,
    cancel_event: Optional[threading.Event] = None,
) -> List[SearchResult]:
    """
    Search the index, rebuilding it first when stale.

    Args:
        settings: Index settings (roots, language, database path, ...)
        spec: QuerySpec or a dict of its fields; None matches everything
        force_rebuild / never_rebuild: freshness overrides
        fingerprint: build configuration to require (derived from settings if None)

    Raises:
        ImageIndexError: INVALID_SPEC, REBUILD_IN_PROGRESS or DATABASE_UNAVAILABLE
    """
    if spec is None:
        spec = QuerySpec()
    elif isinstance(spec, dict):
        try:
            spec = QuerySpec.model_validate(spec)
        except ValidationError as e:
            locations = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
            raise invalid_spec(f"invalid query fields: {', '.join(locations)}") from e

    compiled = QueryBuilder().compile(spec)

    evaluator = FreshnessEvaluator(settings)
    db = evaluator.get_ready_database(
        fingerprint=fingerprint,
        force_rebuild=force_rebuild,
        never_rebuild=never_rebuild,
        cancel_event=cancel_event,
    )
    try:
        hydrator = ResultHydrator(SidecarReader.from_settings(settings))
        return hydrator.execute(db, compiled, spec)
    finally:
        db.close()
