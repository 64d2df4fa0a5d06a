"""
SQLAlchemy models for the reference entity store.

Tables:
- entities: movie and person records, retired in place when merged
- merge_records: audit trail of applied merges
- review_rejections: pairs a reviewer marked as distinct
"""
from datetime import datetime

from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, Index, Integer, JSON, String,
    Text, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class EntityRow(Base):
    """
    A movie or person record.

    Loser records of a merge are never deleted: is_active is cleared and
    canonical_id points at the surviving record.
    """
    __tablename__ = "entities"

    id = Column(String(100), primary_key=True)
    kind = Column(String(20), nullable=False, default="movie")
    title = Column(String(500), nullable=False, default="")
    alt_title = Column(String(500))
    year = Column(Integer, index=True)

    attributes = Column(JSON, nullable=False, default=dict)
    external_ids = Column(JSON, nullable=False, default=list)
    aliases = Column(JSON, nullable=False, default=list)
    source = Column(String(100))

    is_active = Column(Boolean, nullable=False, default=True, index=True)
    canonical_id = Column(String(100))
    version = Column(Integer, nullable=False, default=0)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<EntityRow(id={self.id!r}, title={self.title!r}, year={self.year})>"


class MergeRecordRow(Base):
    """One applied merge, with per-field decisions for audit."""
    __tablename__ = "merge_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    winner_id = Column(String(100), nullable=False, index=True)
    loser_id = Column(String(100), nullable=False, index=True)

    verdict = Column(String(30), nullable=False)
    confidence = Column(Integer, nullable=False)
    reason = Column(Text)
    approved_by = Column(String(100))  # "auto" or reviewer name

    field_decisions = Column(JSON, nullable=False, default=list)
    merged_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_merge_records_pair", "winner_id", "loser_id"),
    )


class ReviewRejectionRow(Base):
    """A pair a reviewer decided is not the same entity."""
    __tablename__ = "review_rejections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_id_a = Column(String(100), nullable=False)
    entity_id_b = Column(String(100), nullable=False)
    reviewer = Column(String(100))
    note = Column(Text)
    rejected_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("entity_id_a", "entity_id_b", name="uq_review_rejection_pair"),
        CheckConstraint("entity_id_a < entity_id_b", name="ck_review_rejection_order"),
    )
