"""matchgraph: graph-backed matching and introduction coordination."""

from matchgraph.service import MatchmakingService

__all__ = ["MatchmakingService"]
