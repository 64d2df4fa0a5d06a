"""
Merge Executor.

Applies field resolution to the surviving record and retires the
duplicate, only for pairs approved by the auto-apply policy or by a human
reviewer. Each merge is one atomic store operation, and each merge's
outcome is reported independently: a failure or conflict on one pair never
stops the rest of the batch.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from cinerecon.core.entities import Entity, MergeRecord, Verdict, pair_key
from cinerecon.core.errors import SelfPairError
from cinerecon.services.field_resolver import (
    FieldResolver,
    ResolvedRecord,
    merge_field_list,
)
from cinerecon.services.report import ReconciliationReport, ReportEntry
from cinerecon.services.review import ApprovalDecision, ReviewDecision
from cinerecon.services.store import EntityStore

logger = logging.getLogger(__name__)


class MergeStatus(str, Enum):
    """Outcome of one merge attempt."""
    MERGED = "merged"
    DRY_RUN = "dry_run"
    SKIPPED_RETIRED = "skipped_retired"
    CONFLICT = "conflict"
    SKIPPED_NOT_APPROVED = "skipped_not_approved"
    REJECTED = "rejected"
    DEFERRED = "deferred"
    FAILED = "failed"


@dataclass
class MergeOutcome:
    """Per-pair result of a merge batch."""

    entity_a_id: str
    entity_b_id: str
    status: MergeStatus
    winner_id: Optional[str] = None
    loser_id: Optional[str] = None
    record: Optional[MergeRecord] = None
    resolved: Optional[ResolvedRecord] = None
    message: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.status == MergeStatus.MERGED

    def to_dict(self) -> Dict:
        return {
            "entity_a_id": self.entity_a_id,
            "entity_b_id": self.entity_b_id,
            "status": self.status.value,
            "winner_id": self.winner_id,
            "loser_id": self.loser_id,
            "message": self.message,
            "record": self.record.to_dict() if self.record else None,
        }


class MergeExecutor:
    """
    Applies approved merges to an EntityStore.

    Usage:
        executor = MergeExecutor(store, FieldResolver(trust_order))
        outcomes = executor.apply_auto(report)
    """

    def __init__(
        self,
        store: EntityStore,
        resolver: Optional[FieldResolver] = None,
        field_list: Optional[Sequence[str]] = None,
        dry_run: bool = False,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.store = store
        self.resolver = resolver or FieldResolver()
        self.field_list = list(field_list) if field_list else None
        self.dry_run = dry_run
        self.clock = clock

    def apply(
        self,
        winner_id: str,
        loser_id: str,
        verdict: Verdict,
        approved_by: str = "auto",
    ) -> MergeOutcome:
        """
        Merge loser into winner.

        Records are re-read from the store so that a merge earlier in the
        same batch is seen. If either record is already retired the merge
        is skipped and nothing changes. If the winner is rewritten by
        another merge between the read and the write, the store refuses the
        stale snapshot and the outcome is CONFLICT; the pair can be retried
        on a later run.

        Raises:
            SelfPairError: If winner_id and loser_id are the same
        """
        if winner_id == loser_id:
            raise SelfPairError(f"Cannot merge entity {winner_id} into itself")

        outcome = MergeOutcome(
            entity_a_id=winner_id,
            entity_b_id=loser_id,
            status=MergeStatus.FAILED,
            winner_id=winner_id,
            loser_id=loser_id,
        )

        winner = self.store.get(winner_id)
        loser = self.store.get(loser_id)
        if not winner.active or not loser.active:
            retired = loser_id if not loser.active else winner_id
            outcome.status = MergeStatus.SKIPPED_RETIRED
            outcome.message = f"{retired} is already retired"
            logger.warning(f"Merge {loser_id} -> {winner_id} skipped: {outcome.message}")
            return outcome

        fields = self.field_list or merge_field_list(winner, loser)
        resolved = self.resolver.resolve(winner, loser, fields)
        merged = resolved.apply_to(winner)
        record = MergeRecord(
            winner_id=winner_id,
            loser_id=loser_id,
            verdict=verdict.kind,
            confidence=verdict.confidence,
            reason=verdict.reason,
            field_decisions=tuple(d.to_dict() for d in resolved.decisions),
            approved_by=approved_by,
            merged_at=self.clock(),
        )
        outcome.record = record
        outcome.resolved = resolved

        if self.dry_run:
            outcome.status = MergeStatus.DRY_RUN
            logger.info(f"[dry run] Would merge {loser_id} -> {winner_id}")
            return outcome

        if not self.store.apply_merge(merged, loser_id, record):
            if self.store.get(winner_id).active and self.store.get(loser_id).active:
                outcome.status = MergeStatus.CONFLICT
                outcome.message = f"{winner_id} changed since it was read"
            else:
                outcome.status = MergeStatus.SKIPPED_RETIRED
                outcome.message = "record retired concurrently"
            logger.warning(f"Merge {loser_id} -> {winner_id} skipped: {outcome.message}")
            return outcome

        outcome.status = MergeStatus.MERGED
        logger.info(
            f"Merged {loser_id} -> {winner_id} ({verdict.kind.value}, "
            f"confidence {verdict.confidence}, "
            f"{len(resolved.discarded_alternatives)} conflicts, approved by {approved_by})"
        )
        return outcome

    def _apply_entry(
        self,
        entry: ReportEntry,
        winner_id: str,
        approved_by: str,
    ) -> MergeOutcome:
        a, b = entry.candidate.entity_a.id, entry.candidate.entity_b.id
        loser_id = b if winner_id == a else a
        try:
            outcome = self.apply(winner_id, loser_id, entry.verdict, approved_by)
        except Exception as e:
            logger.warning(f"Merge failed for {a}/{b}: {e}")
            outcome = MergeOutcome(
                entity_a_id=winner_id,
                entity_b_id=loser_id,
                status=MergeStatus.FAILED,
                winner_id=winner_id,
                loser_id=loser_id,
                message=str(e),
            )
        outcome.entity_a_id, outcome.entity_b_id = a, b
        return outcome

    def apply_auto(self, report: ReconciliationReport) -> List[MergeOutcome]:
        """Apply every auto-apply entry of a report."""
        outcomes = [
            self._apply_entry(entry, entry.proposed_winner_id, "auto")
            for entry in report.auto_apply
        ]
        self._log_batch("Auto-apply", outcomes)
        return outcomes

    def apply_reviewed(
        self,
        report: ReconciliationReport,
        decisions: Dict[tuple, ReviewDecision],
    ) -> List[MergeOutcome]:
        """
        Apply reviewer decisions to the needs-review entries of a report.

        Approved pairs are merged (the reviewer may override the proposed
        winner), rejected pairs are remembered by the store so later sweeps
        skip them, deferred and undecided pairs are left untouched.
        """
        outcomes = []
        for entry in report.needs_review:
            a, b = entry.candidate.entity_a.id, entry.candidate.entity_b.id
            decision = decisions.get(pair_key(a, b))

            if decision is None:
                outcomes.append(
                    MergeOutcome(a, b, MergeStatus.SKIPPED_NOT_APPROVED, message="no decision")
                )
                continue

            if decision.decision == ApprovalDecision.DEFER:
                outcomes.append(MergeOutcome(a, b, MergeStatus.DEFERRED, message=decision.note))
                continue

            if decision.decision == ApprovalDecision.REJECT:
                if not self.dry_run:
                    self.store.record_rejection(a, b, decision.reviewer, decision.note)
                logger.info(f"Pair {a}/{b} rejected by {decision.reviewer or 'reviewer'}")
                outcomes.append(MergeOutcome(a, b, MergeStatus.REJECTED, message=decision.note))
                continue

            winner_id = decision.winner_id or entry.proposed_winner_id
            outcomes.append(
                self._apply_entry(entry, winner_id, decision.reviewer or "reviewer")
            )

        self._log_batch("Reviewed", outcomes)
        return outcomes

    @staticmethod
    def _log_batch(label: str, outcomes: List[MergeOutcome]) -> None:
        counts: Dict[str, int] = {}
        for outcome in outcomes:
            counts[outcome.status.value] = counts.get(outcome.status.value, 0) + 1
        summary = ", ".join(f"{n} {status}" for status, n in sorted(counts.items())) or "nothing to do"
        logger.info(f"{label} merges complete: {summary}")
