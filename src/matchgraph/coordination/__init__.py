"""Coordination domain: the introduction protocol and its time-driven sweep."""

from matchgraph.coordination.events import AcceptProposal
from matchgraph.coordination.events import AcknowledgeMeeting
from matchgraph.coordination.events import CancelMatch
from matchgraph.coordination.events import ConfirmMeeting
from matchgraph.coordination.events import CoordinationEvent
from matchgraph.coordination.events import CounterPropose
from matchgraph.coordination.events import DeclineProposal
from matchgraph.coordination.events import parse_event
from matchgraph.coordination.events import ProposeMeeting
from matchgraph.coordination.events import ProvideClue
from matchgraph.coordination.events import RelayMessage
from matchgraph.coordination.events import SubmitFeedback
from matchgraph.coordination.machine import AdvanceOutcome
from matchgraph.coordination.machine import AdvanceResult
from matchgraph.coordination.machine import LinkHook
from matchgraph.coordination.machine import MatchCoordinator
from matchgraph.coordination.session import ConversationSession
from matchgraph.coordination.sweep import MatchSweeper
from matchgraph.coordination.sweep import ReminderDue
from matchgraph.coordination.sweep import SweepReport

__all__ = [
    # Events
    "AcceptProposal",
    "AcknowledgeMeeting",
    "CancelMatch",
    "ConfirmMeeting",
    "CoordinationEvent",
    "CounterPropose",
    "DeclineProposal",
    "ProposeMeeting",
    "ProvideClue",
    "RelayMessage",
    "SubmitFeedback",
    "parse_event",
    # Machine
    "AdvanceOutcome",
    "AdvanceResult",
    "ConversationSession",
    "LinkHook",
    "MatchCoordinator",
    # Sweep
    "MatchSweeper",
    "ReminderDue",
    "SweepReport",
]
