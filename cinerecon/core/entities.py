"""
Domain types for entity reconciliation.

Entity        - a movie or person record of uncertain uniqueness
MatchCandidate - two entities under evaluation, with the evidence gathered
MergeRecord   - audit entry for one applied merge
Verdict       - the classifier's decision about a candidate

All of these are plain in-memory objects. Persistence lives in
cinerecon.services.store.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

from cinerecon.core.errors import SelfPairError


class EntityKind(str, Enum):
    """Supported entity kinds."""
    MOVIE = "movie"
    PERSON = "person"


class VerdictKind(str, Enum):
    """Match verdicts, strongest first."""
    IDENTICAL = "identical"
    SAME_ENTITY = "same_entity"
    SAME_ENTITY_VARIANT = "same_entity_variant"
    AMBIGUOUS = "ambiguous"
    DISTINCT = "distinct"


# Fields stored directly on Entity rather than in Entity.attributes
CORE_FIELDS = ("title", "alt_title", "year")


def is_empty(value: Any) -> bool:
    """True for None, blank strings and empty collections."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return len(value) == 0
    return False


@dataclass
class Entity:
    """
    A movie or person record.

    `year` is the temporal anchor: release year for movies, birth year for
    persons. `external_ids` holds opaque catalog identifiers such as
    "tmdb:505885" or "imdb:tt0123456". `version` is bumped by the store on
    every write and lets apply_merge detect a stale snapshot.
    """

    id: str
    title: str
    kind: EntityKind = EntityKind.MOVIE
    year: Optional[int] = None
    alt_title: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)
    external_ids: Set[str] = field(default_factory=set)
    aliases: List[str] = field(default_factory=list)
    source: Optional[str] = None
    active: bool = True
    canonical_id: Optional[str] = None
    version: int = 0

    def get_field(self, name: str) -> Any:
        """Read a core field or a named attribute."""
        if name in CORE_FIELDS:
            return getattr(self, name)
        return self.attributes.get(name)

    def set_field(self, name: str, value: Any) -> None:
        if name in CORE_FIELDS:
            setattr(self, name, value)
        else:
            self.attributes[name] = value

    def shared_external_ids(self, other: "Entity") -> Set[str]:
        return self.external_ids & other.external_ids

    def populated_field_count(self) -> int:
        """Number of non-empty fields, used to prefer the more complete record."""
        count = sum(1 for name in CORE_FIELDS if not is_empty(getattr(self, name)))
        count += sum(1 for value in self.attributes.values() if not is_empty(value))
        return count + len(self.external_ids)

    def copy(self) -> "Entity":
        return Entity(
            id=self.id,
            title=self.title,
            kind=self.kind,
            year=self.year,
            alt_title=self.alt_title,
            attributes=dict(self.attributes),
            external_ids=set(self.external_ids),
            aliases=list(self.aliases),
            source=self.source,
            active=self.active,
            canonical_id=self.canonical_id,
            version=self.version,
        )


def pair_key(id_a: str, id_b: str) -> Tuple[str, str]:
    """Order-independent key for a pair of entity ids."""
    return (id_a, id_b) if id_a <= id_b else (id_b, id_a)


@dataclass(frozen=True)
class MatchCandidate:
    """
    Pairing of two entities under evaluation.

    Ephemeral: produced and consumed within one reconciliation pass.
    `key_a` / `key_b` are the normalized keys that produced the best score.
    """

    entity_a: Entity
    entity_b: Entity
    title_similarity: int
    temporal_delta: Optional[int]
    auxiliary_signal: bool = False
    key_a: str = ""
    key_b: str = ""
    evidence: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.entity_a.id == self.entity_b.id:
            raise SelfPairError(f"Cannot pair entity {self.entity_a.id} with itself")
        if not 0 <= self.title_similarity <= 100:
            raise ValueError(f"title_similarity out of range: {self.title_similarity}")

    @property
    def pair_key(self) -> Tuple[str, str]:
        return pair_key(self.entity_a.id, self.entity_b.id)

    @property
    def anchors_absent(self) -> bool:
        return self.entity_a.year is None and self.entity_b.year is None

    @property
    def shared_identifiers(self) -> Set[str]:
        return self.entity_a.shared_external_ids(self.entity_b)


@dataclass(frozen=True)
class Verdict:
    """Classifier decision: kind, confidence 0-100 and a human-readable reason."""

    kind: VerdictKind
    confidence: int
    reason: str

    @property
    def is_match(self) -> bool:
        return self.kind in (VerdictKind.IDENTICAL, VerdictKind.SAME_ENTITY)


@dataclass(frozen=True)
class MergeRecord:
    """
    Immutable audit entry for one applied merge.

    `field_decisions` holds JSON-ready dicts, one per resolved field.
    """

    winner_id: str
    loser_id: str
    verdict: VerdictKind
    confidence: int
    reason: str
    field_decisions: Tuple[Dict[str, Any], ...] = ()
    approved_by: str = "auto"
    merged_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "winner_id": self.winner_id,
            "loser_id": self.loser_id,
            "verdict": self.verdict.value,
            "confidence": self.confidence,
            "reason": self.reason,
            "approved_by": self.approved_by,
            "merged_at": self.merged_at.isoformat(),
            "field_decisions": [dict(d) for d in self.field_decisions],
        }
