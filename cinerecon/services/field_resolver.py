"""
Field resolution for confirmed same-entity pairs.

For each field, independently:
- winner populated, loser empty (or equal)  -> keep winner
- winner empty, loser populated             -> adopt loser
- both populated and different              -> higher-trust source wins,
                                              the other value is recorded
                                              as a discarded alternative
- both empty                                -> stays empty

A populated field is never overwritten with an empty one and no value is
ever invented. External identifiers and aliases are unioned.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from cinerecon.core.entities import CORE_FIELDS, Entity, is_empty

logger = logging.getLogger(__name__)

# Surfaces whose discarded values are kept as aliases of the winner
TITLE_FIELDS = ("title", "alt_title")


class FieldOutcome(str, Enum):
    """How one field was resolved."""
    KEPT_WINNER = "kept_winner"
    ADOPTED_LOSER = "adopted_loser"
    CONFLICT_KEPT_WINNER = "conflict_kept_winner"
    CONFLICT_TOOK_LOSER = "conflict_took_loser"
    BOTH_EMPTY = "both_empty"


@dataclass(frozen=True)
class FieldDecision:
    """Audit entry for a single resolved field."""

    field: str
    outcome: FieldOutcome
    value: Any
    discarded: Any = None
    value_source: Optional[str] = None
    discarded_source: Optional[str] = None

    @property
    def is_conflict(self) -> bool:
        return self.outcome in (
            FieldOutcome.CONFLICT_KEPT_WINNER,
            FieldOutcome.CONFLICT_TOOK_LOSER,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "outcome": self.outcome.value,
            "value": _jsonable(self.value),
            "discarded": _jsonable(self.discarded),
            "value_source": self.value_source,
            "discarded_source": self.discarded_source,
        }


@dataclass
class ResolvedRecord:
    """Result of resolving a winner/loser pair."""

    winner_id: str
    loser_id: str
    values: Dict[str, Any]
    decisions: List[FieldDecision]
    external_ids: Set[str] = field(default_factory=set)
    aliases: List[str] = field(default_factory=list)

    @property
    def discarded_alternatives(self) -> List[FieldDecision]:
        return [d for d in self.decisions if d.is_conflict]

    def apply_to(self, winner: Entity) -> Entity:
        """Return a copy of winner carrying the resolved values."""
        merged = winner.copy()
        for name, value in self.values.items():
            merged.set_field(name, value)
        merged.external_ids = set(self.external_ids)
        merged.aliases = list(self.aliases)
        return merged


def _jsonable(value: Any) -> Any:
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if isinstance(value, tuple):
        return list(value)
    return value


def _same_value(a: Any, b: Any) -> bool:
    if isinstance(a, str) and isinstance(b, str):
        return a.strip().casefold() == b.strip().casefold()
    return a == b


class FieldResolver:
    """
    Resolves per-field values for a merge using a caller-supplied source
    trust order (most trusted first). Unknown sources rank below every
    listed source.
    """

    def __init__(self, source_trust_order: Sequence[str] = ()):
        self.source_trust_order = list(source_trust_order)
        self._rank = {source: i for i, source in enumerate(self.source_trust_order)}

    def trust_rank(self, source: Optional[str]) -> int:
        """Lower is more trusted."""
        if source is None:
            return len(self._rank) + 1
        return self._rank.get(source, len(self._rank))

    def resolve(
        self,
        winner: Entity,
        loser: Entity,
        field_list: Sequence[str],
    ) -> ResolvedRecord:
        """
        Resolve every field in field_list.

        The loser's source only wins a conflict when it is strictly more
        trusted than the winner's source.
        """
        values: Dict[str, Any] = {}
        decisions: List[FieldDecision] = []
        loser_more_trusted = self.trust_rank(loser.source) < self.trust_rank(winner.source)

        aliases: List[str] = []
        for alias in list(winner.aliases) + list(loser.aliases):
            if alias and alias not in aliases:
                aliases.append(alias)

        for name in field_list:
            w_value = winner.get_field(name)
            l_value = loser.get_field(name)
            w_empty, l_empty = is_empty(w_value), is_empty(l_value)

            if w_empty and l_empty:
                decision = FieldDecision(name, FieldOutcome.BOTH_EMPTY, w_value)
            elif l_empty or (not w_empty and _same_value(w_value, l_value)):
                decision = FieldDecision(
                    name, FieldOutcome.KEPT_WINNER, w_value, value_source=winner.source,
                )
            elif w_empty:
                decision = FieldDecision(
                    name, FieldOutcome.ADOPTED_LOSER, l_value, value_source=loser.source,
                )
            elif loser_more_trusted:
                decision = FieldDecision(
                    name,
                    FieldOutcome.CONFLICT_TOOK_LOSER,
                    l_value,
                    discarded=w_value,
                    value_source=loser.source,
                    discarded_source=winner.source,
                )
            else:
                decision = FieldDecision(
                    name,
                    FieldOutcome.CONFLICT_KEPT_WINNER,
                    w_value,
                    discarded=l_value,
                    value_source=winner.source,
                    discarded_source=loser.source,
                )

            if decision.is_conflict:
                logger.debug(
                    f"Field conflict on {name} ({winner.id} <- {loser.id}): "
                    f"kept {decision.value!r}, discarded {decision.discarded!r}"
                )
                if name in TITLE_FIELDS and decision.discarded not in aliases:
                    aliases.append(decision.discarded)

            values[name] = decision.value
            decisions.append(decision)

        # Titles not resolved above still survive as aliases
        for name in TITLE_FIELDS:
            if name in field_list:
                continue
            l_value = loser.get_field(name)
            if (
                not is_empty(l_value)
                and not _same_value(l_value, winner.get_field(name) or "")
                and l_value not in aliases
            ):
                aliases.append(l_value)

        return ResolvedRecord(
            winner_id=winner.id,
            loser_id=loser.id,
            values=values,
            decisions=decisions,
            external_ids=set(winner.external_ids) | set(loser.external_ids),
            aliases=aliases,
        )


def merge_field_list(winner: Entity, loser: Entity) -> List[str]:
    """Core fields plus every attribute either record carries."""
    attribute_names = sorted(set(winner.attributes) | set(loser.attributes))
    return list(CORE_FIELDS) + [n for n in attribute_names if n not in CORE_FIELDS]


def pick_canonical(
    a: Entity,
    b: Entity,
    source_trust_order: Sequence[str] = (),
) -> Tuple[Entity, Entity]:
    """
    Pick which record survives a merge.

    Prefers: more populated fields > more trusted source > smaller id.

    Returns:
        (winner, loser)
    """
    resolver = FieldResolver(source_trust_order)

    def score(e: Entity) -> tuple:
        return (
            e.populated_field_count(),
            -resolver.trust_rank(e.source),
        )

    score_a, score_b = score(a), score(b)
    if score_a > score_b or (score_a == score_b and a.id <= b.id):
        return (a, b)
    return (b, a)
