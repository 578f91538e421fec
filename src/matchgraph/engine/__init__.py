"""Engine domain: insight ingestion and duplicate detection."""

from matchgraph.engine.dedup import DuplicatePolicy
from matchgraph.engine.dedup import EmbeddingSimilarityPolicy
from matchgraph.engine.dedup import NeverDuplicate
from matchgraph.engine.dedup import NormalizedTextPolicy
from matchgraph.engine.ingestion import DimensionRecorder
from matchgraph.engine.ingestion import RecordOutcome

__all__ = [
    "DimensionRecorder",
    "DuplicatePolicy",
    "EmbeddingSimilarityPolicy",
    "NeverDuplicate",
    "NormalizedTextPolicy",
    "RecordOutcome",
]
