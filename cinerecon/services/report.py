"""
Reconciliation report: verdicts split into auto-apply and needs-review.

Provides:
- A per-pair entry carrying the candidate, its verdict and the proposed
  surviving record
- CSV export of the review queue for human reviewers
- JSON export of the full report
"""

import csv
import io
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from cinerecon.core.entities import MatchCandidate, Verdict, VerdictKind
from cinerecon.matching.classifier import MatchClassifier, MatchPolicy
from cinerecon.services.field_resolver import pick_canonical

logger = logging.getLogger(__name__)


REVIEW_COLUMNS = [
    "entity_a_id",
    "entity_b_id",
    "title_a",
    "title_b",
    "year_a",
    "year_b",
    "verdict",
    "confidence",
    "reason",
    "title_similarity",
    "temporal_delta",
    "shared_identifiers",
    "proposed_winner_id",
    "decision",
    "winner_id",
    "reviewer",
    "note",
]


@dataclass
class ReportEntry:
    """One classified candidate pair."""

    candidate: MatchCandidate
    verdict: Verdict
    auto_apply: bool
    proposed_winner_id: str

    @property
    def pair_key(self):
        return self.candidate.pair_key

    @property
    def proposed_loser_id(self) -> str:
        a, b = self.candidate.entity_a.id, self.candidate.entity_b.id
        return b if self.proposed_winner_id == a else a

    def to_dict(self) -> Dict[str, Any]:
        c = self.candidate
        return {
            "entity_a_id": c.entity_a.id,
            "entity_b_id": c.entity_b.id,
            "title_a": c.entity_a.title,
            "title_b": c.entity_b.title,
            "year_a": c.entity_a.year,
            "year_b": c.entity_b.year,
            "verdict": self.verdict.kind.value,
            "confidence": self.verdict.confidence,
            "reason": self.verdict.reason,
            "title_similarity": c.title_similarity,
            "temporal_delta": c.temporal_delta,
            "shared_identifiers": sorted(c.shared_identifiers),
            "evidence": dict(c.evidence),
            "auto_apply": self.auto_apply,
            "proposed_winner_id": self.proposed_winner_id,
        }

    def to_review_row(self) -> Dict[str, Any]:
        """Flat row for the review CSV; decision columns are left blank."""
        row = self.to_dict()
        return {
            "entity_a_id": row["entity_a_id"],
            "entity_b_id": row["entity_b_id"],
            "title_a": row["title_a"] or "",
            "title_b": row["title_b"] or "",
            "year_a": row["year_a"] if row["year_a"] is not None else "",
            "year_b": row["year_b"] if row["year_b"] is not None else "",
            "verdict": row["verdict"],
            "confidence": row["confidence"],
            "reason": row["reason"],
            "title_similarity": row["title_similarity"],
            "temporal_delta": row["temporal_delta"] if row["temporal_delta"] is not None else "",
            "shared_identifiers": ";".join(row["shared_identifiers"]),
            "proposed_winner_id": row["proposed_winner_id"],
            "decision": "",
            "winner_id": "",
            "reviewer": "",
            "note": "",
        }


@dataclass
class ReconciliationReport:
    """
    Result of a reconciliation pass.

    Every entry lands in exactly one of auto_apply or needs_review.
    Distinct pairs are reviewable too; a reviewer may reject them so later
    sweeps skip the pair.
    """

    entries: List[ReportEntry] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def auto_apply(self) -> List[ReportEntry]:
        return [e for e in self.entries if e.auto_apply]

    @property
    def needs_review(self) -> List[ReportEntry]:
        return [e for e in self.entries if not e.auto_apply]

    @property
    def distinct(self) -> List[ReportEntry]:
        return [e for e in self.entries if e.verdict.kind == VerdictKind.DISTINCT]

    def find(self, id_a: str, id_b: str) -> Optional[ReportEntry]:
        """Look up the entry for an unordered pair of ids."""
        key = tuple(sorted((id_a, id_b)))
        for entry in self.entries:
            if entry.pair_key == key:
                return entry
        return None

    def summary(self) -> Dict[str, Any]:
        by_verdict: Dict[str, int] = {kind.value: 0 for kind in VerdictKind}
        for entry in self.entries:
            by_verdict[entry.verdict.kind.value] += 1
        return {
            "total_pairs": len(self.entries),
            "auto_apply": len(self.auto_apply),
            "needs_review": len(self.needs_review),
            "distinct": len(self.distinct),
            "by_verdict": by_verdict,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "created_at": self.created_at.isoformat(),
            "summary": self.summary(),
            "auto_apply": [e.to_dict() for e in self.auto_apply],
            "needs_review": [e.to_dict() for e in self.needs_review],
        }

    def review_rows(self) -> List[Dict[str, Any]]:
        return [e.to_review_row() for e in self.needs_review]

    def to_review_csv(self) -> str:
        """Render the review queue as CSV text."""
        output = io.StringIO()
        writer = csv.DictWriter(output, fieldnames=REVIEW_COLUMNS)
        writer.writeheader()
        for row in self.review_rows():
            writer.writerow(row)
        return output.getvalue()

    def write_review_csv(self, path: Union[str, Path]) -> int:
        """
        Write the review queue to a CSV file.

        Returns:
            Number of rows written
        """
        rows = self.needs_review
        Path(path).write_text(self.to_review_csv(), encoding="utf-8", newline="")
        logger.info(f"Wrote {len(rows)} review rows to {path}")
        return len(rows)

    def write_json(self, path: Union[str, Path]) -> None:
        Path(path).write_text(
            json.dumps(self.to_dict(), indent=2, default=str),
            encoding="utf-8",
        )
        logger.info(f"Wrote reconciliation report to {path}")


def build_report(
    candidates: Iterable[MatchCandidate],
    classifier: MatchClassifier,
    source_trust_order: Sequence[str] = (),
    policy: Optional[MatchPolicy] = None,
) -> ReconciliationReport:
    """Classify candidates and partition them into a report."""
    policy = policy or classifier.policy
    entries = []
    for candidate in candidates:
        verdict = classifier.classify(candidate)
        logger.debug(
            f"{candidate.entity_a.id}/{candidate.entity_b.id}: "
            f"{verdict.kind.value} ({verdict.confidence}) - {verdict.reason}"
        )
        winner, _ = pick_canonical(candidate.entity_a, candidate.entity_b, source_trust_order)
        entries.append(
            ReportEntry(
                candidate=candidate,
                verdict=verdict,
                auto_apply=policy.is_auto_apply(verdict),
                proposed_winner_id=winner.id,
            )
        )
    return ReconciliationReport(entries=entries)
