"""Models domain: people, dimensions, matches and supporting nodes."""

from __future__ import annotations

from matchgraph.models.nodes import Account
from matchgraph.models.nodes import Agent
from matchgraph.models.nodes import ALL_DIMENSIONS
from matchgraph.models.nodes import clean_value
from matchgraph.models.nodes import DesiredDimension
from matchgraph.models.nodes import Dimension
from matchgraph.models.nodes import dimension_for
from matchgraph.models.nodes import DimensionKind
from matchgraph.models.nodes import DimensionNode
from matchgraph.models.nodes import dimensions_of
from matchgraph.models.nodes import LABEL_TO_DIMENSION
from matchgraph.models.nodes import normalize_value
from matchgraph.models.nodes import Person
from matchgraph.models.nodes import PersonaDimension
from matchgraph.models.nodes import PersonStatus
from matchgraph.models.nodes import Place
from matchgraph.models.relations import AccountLinkStatus
from matchgraph.models.relations import ACTIVE_STATUSES
from matchgraph.models.relations import Clue
from matchgraph.models.relations import FeedbackEntry
from matchgraph.models.relations import HasAccount
from matchgraph.models.relations import Match
from matchgraph.models.relations import MatchStatus
from matchgraph.models.relations import MEETING_STATUSES
from matchgraph.models.relations import PlaceRole
from matchgraph.models.relations import TERMINAL_STATUSES

__all__ = [
    # Nodes
    "ALL_DIMENSIONS",
    "Account",
    "Agent",
    "DesiredDimension",
    "Dimension",
    "DimensionKind",
    "DimensionNode",
    "LABEL_TO_DIMENSION",
    "Person",
    "PersonStatus",
    "PersonaDimension",
    "Place",
    "clean_value",
    "dimension_for",
    "dimensions_of",
    "normalize_value",
    # Relations
    "ACTIVE_STATUSES",
    "AccountLinkStatus",
    "Clue",
    "FeedbackEntry",
    "HasAccount",
    "MEETING_STATUSES",
    "Match",
    "MatchStatus",
    "PlaceRole",
    "TERMINAL_STATUSES",
]
