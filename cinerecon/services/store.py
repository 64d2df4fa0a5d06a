"""
Entity stores: where the pool is read from and merges are written to.

The reconciliation core itself never does I/O; it works on Entity copies
handed out by a store. Two implementations:

- InMemoryEntityStore: dict-backed, guarded by a lock
- SqlEntityStore: SQLAlchemy session over the entities / merge_records /
  review_rejections tables

apply_merge is the only write path for merges. It is one atomic step: the
loser is retired with a compare-and-set on the active flag, and the winner is
only written if its stored version still matches the snapshot the merge was
resolved from. A second merge of a retired record, or a merge resolved from a
stale read of the winner, fails closed.
"""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import update
from sqlalchemy.orm import Session

from cinerecon.core.entities import (
    Entity,
    EntityKind,
    MergeRecord,
    VerdictKind,
    pair_key,
)
from cinerecon.core.errors import UnknownEntityError
from cinerecon.core.models import EntityRow, MergeRecordRow, ReviewRejectionRow

logger = logging.getLogger(__name__)


class EntityStore(ABC):
    """Interface shared by all entity stores."""

    @abstractmethod
    def add(self, entity: Entity) -> None:
        """Insert or replace a record."""

    def add_all(self, entities: Iterable[Entity]) -> None:
        for entity in entities:
            self.add(entity)

    @abstractmethod
    def get(self, entity_id: str) -> Entity:
        """
        Return a detached copy of one record.

        Raises:
            UnknownEntityError: If the id is not in the store
        """

    @abstractmethod
    def all_entities(self) -> List[Entity]:
        """Every record, active or retired, as detached copies."""

    def active_entities(self) -> List[Entity]:
        return [e for e in self.all_entities() if e.active]

    @abstractmethod
    def apply_merge(self, winner: Entity, loser_id: str, record: MergeRecord) -> bool:
        """
        Write the resolved winner, retire the loser and append the record.

        Returns:
            True if applied; False if the winner or loser was already
            retired, or the stored winner no longer has winner.version,
            in which case nothing is changed
        """

    @abstractmethod
    def merge_records(self) -> List[MergeRecord]:
        """Audit trail in the order merges were applied."""

    @abstractmethod
    def record_rejection(
        self,
        id_a: str,
        id_b: str,
        reviewer: Optional[str] = None,
        note: Optional[str] = None,
    ) -> None:
        """Remember that a reviewer declared a pair distinct."""

    @abstractmethod
    def rejection(self, id_a: str, id_b: str) -> Optional[Dict[str, Optional[str]]]:
        """Reviewer and note recorded for a rejected pair, or None."""

    @abstractmethod
    def rejected_pairs(self) -> Set[Tuple[str, str]]:
        """Pair keys previously rejected by a reviewer."""


class InMemoryEntityStore(EntityStore):
    """
    Dict-backed store.

    Usage:
        store = InMemoryEntityStore(entities)
        store.get("m1")
    """

    def __init__(self, entities: Optional[Iterable[Entity]] = None):
        self._lock = threading.Lock()
        self._entities: Dict[str, Entity] = {}
        self._records: List[MergeRecord] = []
        self._rejections: Dict[Tuple[str, str], Dict[str, Optional[str]]] = {}
        if entities:
            self.add_all(entities)

    def add(self, entity: Entity) -> None:
        with self._lock:
            stored = entity.copy()
            existing = self._entities.get(entity.id)
            if existing is not None:
                stored.version = max(existing.version + 1, entity.version)
            self._entities[entity.id] = stored

    def get(self, entity_id: str) -> Entity:
        with self._lock:
            entity = self._entities.get(entity_id)
            if entity is None:
                raise UnknownEntityError(entity_id)
            return entity.copy()

    def all_entities(self) -> List[Entity]:
        with self._lock:
            return [e.copy() for e in self._entities.values()]

    def apply_merge(self, winner: Entity, loser_id: str, record: MergeRecord) -> bool:
        with self._lock:
            stored_winner = self._entities.get(winner.id)
            stored_loser = self._entities.get(loser_id)
            if stored_winner is None:
                raise UnknownEntityError(winner.id)
            if stored_loser is None:
                raise UnknownEntityError(loser_id)

            if not stored_winner.active or not stored_loser.active:
                return False
            if stored_winner.version != winner.version:
                return False

            updated = winner.copy()
            updated.active = True
            updated.canonical_id = None
            updated.version = stored_winner.version + 1
            self._entities[winner.id] = updated

            stored_loser.active = False
            stored_loser.canonical_id = winner.id
            stored_loser.version += 1
            self._records.append(record)
            return True

    def merge_records(self) -> List[MergeRecord]:
        with self._lock:
            return list(self._records)

    def record_rejection(self, id_a, id_b, reviewer=None, note=None) -> None:
        with self._lock:
            self._rejections.setdefault(
                pair_key(id_a, id_b), {"reviewer": reviewer, "note": note}
            )

    def rejection(self, id_a: str, id_b: str) -> Optional[Dict[str, Optional[str]]]:
        with self._lock:
            found = self._rejections.get(pair_key(id_a, id_b))
            return dict(found) if found is not None else None

    def rejected_pairs(self) -> Set[Tuple[str, str]]:
        with self._lock:
            return set(self._rejections)


def row_to_entity(row: EntityRow) -> Entity:
    """Convert a database row into a detached Entity."""
    return Entity(
        id=row.id,
        title=row.title or "",
        kind=EntityKind(row.kind),
        year=row.year,
        alt_title=row.alt_title,
        attributes=dict(row.attributes or {}),
        external_ids=set(row.external_ids or []),
        aliases=list(row.aliases or []),
        source=row.source,
        active=bool(row.is_active),
        canonical_id=row.canonical_id,
        version=row.version or 0,
    )


def _entity_values(entity: Entity) -> Dict:
    return {
        "kind": entity.kind.value,
        "title": entity.title or "",
        "alt_title": entity.alt_title,
        "year": entity.year,
        "attributes": dict(entity.attributes),
        "external_ids": sorted(entity.external_ids),
        "aliases": list(entity.aliases),
        "source": entity.source,
    }


class SqlEntityStore(EntityStore):
    """
    Store backed by a SQLAlchemy session.

    Each apply_merge commits its own transaction. The loser is retired with
    UPDATE ... WHERE is_active, and the winner is written with
    UPDATE ... WHERE is_active AND version = :snapshot_version; if either
    update matches no row the transaction is rolled back and the merge is
    reported as not applied.
    """

    def __init__(self, session: Session):
        self.session = session

    def add(self, entity: Entity) -> None:
        row = self.session.get(EntityRow, entity.id)
        if row is None:
            row = EntityRow(id=entity.id, version=entity.version)
            self.session.add(row)
        else:
            row.version = max((row.version or 0) + 1, entity.version)
        for name, value in _entity_values(entity).items():
            setattr(row, name, value)
        row.is_active = entity.active
        row.canonical_id = entity.canonical_id
        self.session.commit()

    def get(self, entity_id: str) -> Entity:
        row = self.session.get(EntityRow, entity_id)
        if row is None:
            raise UnknownEntityError(entity_id)
        return row_to_entity(row)

    def all_entities(self) -> List[Entity]:
        rows = self.session.query(EntityRow).order_by(EntityRow.id).all()
        return [row_to_entity(r) for r in rows]

    def active_entities(self) -> List[Entity]:
        rows = (
            self.session.query(EntityRow)
            .filter(EntityRow.is_active.is_(True))
            .order_by(EntityRow.id)
            .all()
        )
        return [row_to_entity(r) for r in rows]

    def apply_merge(self, winner: Entity, loser_id: str, record: MergeRecord) -> bool:
        for entity_id in (winner.id, loser_id):
            if self.session.get(EntityRow, entity_id) is None:
                raise UnknownEntityError(entity_id)

        try:
            retired = self.session.execute(
                update(EntityRow)
                .where(EntityRow.id == loser_id, EntityRow.is_active.is_(True))
                .values(
                    is_active=False,
                    canonical_id=winner.id,
                    version=EntityRow.version + 1,
                    updated_at=datetime.utcnow(),
                )
            )
            if retired.rowcount != 1:
                self.session.rollback()
                return False

            written = self.session.execute(
                update(EntityRow)
                .where(
                    EntityRow.id == winner.id,
                    EntityRow.is_active.is_(True),
                    EntityRow.version == winner.version,
                )
                .values(
                    version=winner.version + 1,
                    updated_at=datetime.utcnow(),
                    **_entity_values(winner),
                )
            )
            if written.rowcount != 1:
                self.session.rollback()
                return False

            self.session.add(
                MergeRecordRow(
                    winner_id=record.winner_id,
                    loser_id=record.loser_id,
                    verdict=record.verdict.value,
                    confidence=record.confidence,
                    reason=record.reason,
                    approved_by=record.approved_by,
                    field_decisions=[dict(d) for d in record.field_decisions],
                    merged_at=record.merged_at,
                )
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        # Drop cached row state so later reads see the committed values
        self.session.expire_all()
        return True

    def merge_records(self) -> List[MergeRecord]:
        rows = self.session.query(MergeRecordRow).order_by(MergeRecordRow.id).all()
        return [
            MergeRecord(
                winner_id=r.winner_id,
                loser_id=r.loser_id,
                verdict=VerdictKind(r.verdict),
                confidence=r.confidence,
                reason=r.reason or "",
                field_decisions=tuple(r.field_decisions or ()),
                approved_by=r.approved_by or "auto",
                merged_at=r.merged_at,
            )
            for r in rows
        ]

    def record_rejection(self, id_a, id_b, reviewer=None, note=None) -> None:
        a, b = pair_key(id_a, id_b)
        existing = self.session.query(ReviewRejectionRow).filter(
            ReviewRejectionRow.entity_id_a == a,
            ReviewRejectionRow.entity_id_b == b,
        ).first()
        if existing:
            return
        self.session.add(
            ReviewRejectionRow(entity_id_a=a, entity_id_b=b, reviewer=reviewer, note=note)
        )
        self.session.commit()

    def rejection(self, id_a: str, id_b: str) -> Optional[Dict[str, Optional[str]]]:
        a, b = pair_key(id_a, id_b)
        row = self.session.query(ReviewRejectionRow).filter(
            ReviewRejectionRow.entity_id_a == a,
            ReviewRejectionRow.entity_id_b == b,
        ).first()
        if row is None:
            return None
        return {"reviewer": row.reviewer, "note": row.note}

    def rejected_pairs(self) -> Set[Tuple[str, str]]:
        rows = self.session.query(
            ReviewRejectionRow.entity_id_a,
            ReviewRejectionRow.entity_id_b,
        ).all()
        return {(a, b) for a, b in rows}
