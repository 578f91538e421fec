"""Pydantic models for the node types of the matching graph.

People own dimension nodes.  Each dimension belongs to a closed enum
(``PersonaDimension`` or ``DesiredDimension``) whose members map to a fixed
Neo4j label and a fixed vector index name, so schema identifiers are never
built from caller-supplied strings.
"""

from __future__ import annotations

import json
import re
from datetime import datetime
from datetime import timezone
from enum import Enum
from typing import Any
from typing import Union

from pydantic import BaseModel
from pydantic import Field
from pydantic import field_validator

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class PersonStatus(str, Enum):
    """Lifecycle status of a person."""

    onboarding = "onboarding"
    unverified_member = "unverified_member"
    verification_pending = "verification_pending"
    active = "active"
    matched = "matched"
    inactive = "inactive"


class DimensionKind(str, Enum):
    """Which side of a person a dimension describes."""

    persona = "persona"
    desired = "desired"


class _DimensionMixin:
    """Shared accessors for the two dimension enums.

    Both enums subclass ``str``, so ``PersonaDimension.profile`` compares equal
    to ``DesiredDimension.profile``; key collections on ``index_name``.
    """

    @property
    def kind(self) -> DimensionKind:
        raise NotImplementedError

    @property
    def label(self) -> str:
        return _DIMENSION_LABELS[self.kind][self.value]  # type: ignore[attr-defined]

    @property
    def index_name(self) -> str:
        return f"{self.kind.value}_{self.value}_vector_index"  # type: ignore[attr-defined]

    @property
    def is_profile(self) -> bool:
        return self.value == "profile"  # type: ignore[attr-defined]


class PersonaDimension(_DimensionMixin, str, Enum):
    """Traits describing who the person is."""

    profile = "profile"
    demographic = "demographic"
    characteristic = "characteristic"
    routine = "routine"
    goal = "goal"
    experience = "experience"
    emotional_state = "emotional_state"

    @property
    def kind(self) -> DimensionKind:
        return DimensionKind.persona


class DesiredDimension(_DimensionMixin, str, Enum):
    """Preferences describing who the person wants to meet."""

    profile = "profile"
    who = "who"
    what = "what"
    how = "how"

    @property
    def kind(self) -> DimensionKind:
        return DimensionKind.desired


Dimension = Union[PersonaDimension, DesiredDimension]

_DIMENSION_LABELS: dict[DimensionKind, dict[str, str]] = {
    DimensionKind.persona: {
        "profile": "PersonaProfile",
        "demographic": "PersonaDemographic",
        "characteristic": "PersonaCharacteristic",
        "routine": "PersonaRoutine",
        "goal": "PersonaGoal",
        "experience": "PersonaExperience",
        "emotional_state": "PersonaEmotionalState",
    },
    DimensionKind.desired: {
        "profile": "DesiredProfile",
        "who": "DesiredWho",
        "what": "DesiredWhat",
        "how": "DesiredHow",
    },
}

_KIND_TO_ENUM: dict[DimensionKind, type[PersonaDimension] | type[DesiredDimension]] = {
    DimensionKind.persona: PersonaDimension,
    DimensionKind.desired: DesiredDimension,
}

ALL_DIMENSIONS: tuple[Dimension, ...] = (*PersonaDimension, *DesiredDimension)
LABEL_TO_DIMENSION: dict[str, Dimension] = {d.label: d for d in ALL_DIMENSIONS}


def dimension_for(kind: DimensionKind | str, name: str) -> Dimension:
    """Resolve a (kind, name) pair to its dimension enum member.

    Raises ``ValueError`` for an unknown kind or a name outside the kind's
    closed set.
    """
    kind = DimensionKind(kind)
    enum_cls = _KIND_TO_ENUM[kind]
    try:
        return enum_cls(name)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        msg = f"Invalid {kind.value} dimension: {name!r} (expected one of {allowed})"
        raise ValueError(msg) from None


def dimensions_of(kind: DimensionKind | str, *, include_profile: bool = False) -> list[Dimension]:
    """Return the members of one kind, profile excluded unless asked for."""
    enum_cls = _KIND_TO_ENUM[DimensionKind(kind)]
    return [d for d in enum_cls if include_profile or not d.is_profile]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_WHITESPACE_RE = re.compile(r"\s+")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def clean_value(text: str) -> str:
    """Collapse internal whitespace and strip the ends."""
    return _WHITESPACE_RE.sub(" ", text).strip()


def normalize_value(text: str) -> str:
    """Merge key for non-profile dimension values."""
    return clean_value(text).casefold()


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------


class Person(BaseModel):
    """A participant in the introduction service (label ``Person``)."""

    id: str = Field(
        min_length=1,
        description="Stable external identifier (unique).",
    )
    name: str | None = Field(
        default=None,
        description="Display name.",
    )
    status: PersonStatus = Field(
        default=PersonStatus.active,
        description="Lifecycle status; mirrors non-terminal match membership.",
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Free-form attributes, stored as a JSON string.",
    )
    created_at: datetime = Field(
        default_factory=_utcnow,
        description="When the person was first recorded.",
    )
    updated_at: datetime = Field(
        default_factory=_utcnow,
        description="Last modification time.",
    )

    @field_validator("metadata", mode="before")
    @classmethod
    def _decode_metadata(cls, value: object) -> object:
        if isinstance(value, str):
            return json.loads(value) if value else {}
        return value if value is not None else {}


class DimensionNode(BaseModel):
    """One extracted attribute value owned by a person."""

    dimension: str = Field(
        description="Dimension name within its kind (e.g. 'goal', 'who').",
    )
    kind: DimensionKind = Field(
        description="Persona or desired side.",
    )
    value: str = Field(
        description="Whitespace-normalized text of the insight.",
    )
    embedding: list[float] = Field(
        default_factory=list,
        description="Vector embedding of the value.",
    )
    evidence: str | None = Field(
        default=None,
        description="Latest evidence recorded on the ownership edge.",
    )
    created_at: datetime | None = Field(
        default=None,
        description="When the node was created.",
    )


class Account(BaseModel):
    """A platform account (label ``Account``), merged on (platform, identifier)."""

    platform: str = Field(min_length=1, description="Platform name, e.g. 'telegram'.")
    identifier: str = Field(min_length=1, description="Platform-specific account id.")
    username: str | None = Field(default=None, description="Handle on the platform.")
    display_name: str | None = Field(default=None, description="Visible name.")
    channel_id: str | None = Field(default=None, description="Direct channel id, if any.")


class Agent(BaseModel):
    """A facilitating agent (label ``Agent``), merged on ``agent_id``."""

    agent_id: str = Field(min_length=1, description="Unique agent identifier.")
    name: str | None = Field(default=None, description="Agent display name.")
    username: str | None = Field(default=None, description="Agent handle.")
    description: str | None = Field(default=None, description="Free-text description.")


class Place(BaseModel):
    """A venue (label ``Place``), merged on ``name``."""

    name: str = Field(min_length=1, description="Unique venue name.")
    venue_type: str | None = Field(default=None, description="Kind of venue.")
    description: str | None = Field(default=None, description="Free-text description.")
    address: str | None = Field(default=None, description="Street address.")
    url: str | None = Field(default=None, description="Website.")
