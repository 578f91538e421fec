"""Graph domain: Neo4j connection, schema, repository and vector search.

Exports are loaded lazily so importing a single submodule does not pull in
the whole graph layer.
"""

from __future__ import annotations

from importlib import import_module

__all__ = [
    "ConnectionManager",
    "DimensionInsight",
    "FeedbackOutcome",
    "GraphRepository",
    "IndexManager",
    "SearchScope",
    "SimilarPerson",
    "SimilaritySearch",
    "is_connectivity_error",
    "is_transient_conflict",
]


_EXPORT_TO_MODULE = {
    "ConnectionManager": "matchgraph.graph.connection",
    "is_connectivity_error": "matchgraph.graph.connection",
    "is_transient_conflict": "matchgraph.graph.connection",
    "IndexManager": "matchgraph.graph.schema",
    "FeedbackOutcome": "matchgraph.graph.store",
    "GraphRepository": "matchgraph.graph.store",
    "DimensionInsight": "matchgraph.graph.search",
    "SearchScope": "matchgraph.graph.search",
    "SimilarPerson": "matchgraph.graph.search",
    "SimilaritySearch": "matchgraph.graph.search",
}


def __getattr__(name: str):
    module_name = _EXPORT_TO_MODULE.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module = import_module(module_name)
    return getattr(module, name)
