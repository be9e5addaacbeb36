"""Listing queries: request parsing, filter predicates and the query engine."""

from entityforge.query.engine import QueryEngine
from entityforge.query.request import QueryRequest, QueryResult

__all__ = ["QueryEngine", "QueryRequest", "QueryResult"]
