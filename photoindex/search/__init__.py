"""
Search module for structured multi-category queries.

- QuerySpec: wildcard arrays, content flags, numeric/date ranges, geo distance
- QueryBuilder: QuerySpec -> parameterized SQL
- ResultHydrator: rows -> SearchResult with category lists and EXIF
"""

from .hydrator import ResultHydrator, SearchResult
from .query_builder import CompiledQuery, QueryBuilder
from .query_spec import QuerySpec, SortField

__all__ = ['QuerySpec', 'SortField', 'QueryBuilder', 'CompiledQuery', 'ResultHydrator', 'SearchResult']
