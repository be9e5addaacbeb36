"""Context-filtered schema views and their single-flight cache."""

from entityforge.views.cache import SchemaViewCache
from entityforge.views.filter import CONTEXTS, filter_for_context

__all__ = ["CONTEXTS", "SchemaViewCache", "filter_for_context"]
