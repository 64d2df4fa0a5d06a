"""
Human review decisions for queued candidate pairs.

Decisions are read back from the review CSV written by
ReconciliationReport.write_review_csv (the reviewer fills in the
decision/winner_id/reviewer/note columns) or from a JSON list of objects
with the same keys. Rows with a blank decision are ignored.
"""

import csv
import io
import json
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ValidationError, field_validator, model_validator

from cinerecon.core.entities import pair_key
from cinerecon.core.errors import ReconciliationError

logger = logging.getLogger(__name__)


class ApprovalDecision(str, Enum):
    """What a reviewer decided for a pair."""
    APPROVE = "approve"
    REJECT = "reject"
    DEFER = "defer"


class ReviewDecision(BaseModel):
    """One reviewer decision about an unordered pair."""

    entity_a_id: str
    entity_b_id: str
    decision: ApprovalDecision
    winner_id: Optional[str] = None
    reviewer: Optional[str] = None
    note: Optional[str] = None

    @field_validator("decision", mode="before")
    @classmethod
    def normalize_decision(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("winner_id", "reviewer", "note", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def validate_pair(self) -> "ReviewDecision":
        if self.entity_a_id == self.entity_b_id:
            raise ValueError("a decision must name two different entities")
        if self.winner_id is not None and self.winner_id not in (
            self.entity_a_id,
            self.entity_b_id,
        ):
            raise ValueError("winner_id must be one of the pair")
        return self

    @property
    def pair_key(self):
        return pair_key(self.entity_a_id, self.entity_b_id)


def parse_review_decisions(rows: List[Dict[str, Any]]) -> Dict[tuple, ReviewDecision]:
    """
    Validate raw decision rows, keyed by pair.

    A later row for the same pair overrides an earlier one.

    Raises:
        ReconciliationError: If a row is not a mapping or a filled-in row is invalid
    """
    decisions: Dict[tuple, ReviewDecision] = {}
    for line, row in enumerate(rows, start=1):
        if not isinstance(row, dict):
            raise ReconciliationError(
                f"Invalid review decision on row {line}: expected an object, got {type(row).__name__}"
            )
        if not str(row.get("decision") or "").strip():
            continue
        try:
            decision = ReviewDecision.model_validate(
                {key: row.get(key) for key in ReviewDecision.model_fields}
            )
        except ValidationError as e:
            raise ReconciliationError(f"Invalid review decision on row {line}: {e}") from e
        decisions[decision.pair_key] = decision
    return decisions


def load_review_decisions(path: Union[str, Path]) -> Dict[tuple, ReviewDecision]:
    """Load decisions from a .csv or .json file."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")

    if path.suffix.lower() == ".json":
        try:
            rows = json.loads(text)
        except json.JSONDecodeError as e:
            raise ReconciliationError(f"Decisions file {path} is not valid JSON: {e}") from e
        if not isinstance(rows, list):
            raise ReconciliationError(f"Decisions file {path} must contain a JSON list")
    else:
        rows = list(csv.DictReader(io.StringIO(text)))

    decisions = parse_review_decisions(rows)
    logger.info(f"Loaded {len(decisions)} review decisions from {path}")
    return decisions
