"""
Reconciliation Service.

Wires the pieces together for one store:
normalize -> match -> classify -> report -> (approve) -> merge.

Scans are deterministic for a given store state, tables and settings, so
a report can be regenerated instead of persisted between a review export
and the later apply step.
"""

import logging
from typing import Dict, List, Optional, Sequence

from cinerecon.core.config import Settings, get_settings
from cinerecon.core.entities import Entity
from cinerecon.core.tables import ReconciliationTables, load_tables
from cinerecon.matching.candidate_matcher import CandidateMatcher
from cinerecon.matching.classifier import DEFAULT_TRANSLITERATION_FOLDS, MatchClassifier
from cinerecon.matching.normalizer import TitleNormalizer
from cinerecon.services.field_resolver import FieldResolver
from cinerecon.services.merge_executor import MergeExecutor, MergeOutcome
from cinerecon.services.report import ReconciliationReport, build_report
from cinerecon.services.review import ReviewDecision
from cinerecon.services.store import EntityStore

logger = logging.getLogger(__name__)


class ReconciliationService:
    """
    Entry point for matching single records and sweeping a store.

    Usage:
        service = ReconciliationService.from_settings(store)
        report = service.scan()
        outcomes = service.apply_auto(report)
    """

    def __init__(
        self,
        store: EntityStore,
        settings: Optional[Settings] = None,
        tables: Optional[ReconciliationTables] = None,
        field_list: Optional[Sequence[str]] = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.tables = tables or ReconciliationTables()
        self.policy = self.settings.match_policy()

        self.trust_order = list(
            self.tables.source_trust_order
            if self.tables.source_trust_order is not None
            else self.settings.source_trust_order
        )
        self.normalizer = TitleNormalizer(self.tables.aliases)
        self.matcher = CandidateMatcher(
            self.normalizer,
            temporal_window=self.settings.exact_temporal_window,
        )

        # Known variants arrive as raw titles; the classifier compares keys
        known_variants = set()
        for a, b in self.tables.known_variants:
            key_a, key_b = self.normalizer.normalize(a), self.normalizer.normalize(b)
            if key_a and key_b and key_a != key_b:
                known_variants.add((key_a, key_b))
        folds = DEFAULT_TRANSLITERATION_FOLDS + tuple(self.tables.transliteration_folds)

        self.classifier = MatchClassifier(self.policy, known_variants, folds)
        self.resolver = FieldResolver(self.trust_order)
        self.field_list = list(field_list) if field_list else None

    @classmethod
    def from_settings(
        cls,
        store: EntityStore,
        settings: Optional[Settings] = None,
    ) -> "ReconciliationService":
        """Build a service using the tables file named in settings, if any."""
        settings = settings or get_settings()
        return cls(store, settings=settings, tables=load_tables(settings.tables_path))

    def match_record(self, record: Entity) -> Optional[ReconciliationReport]:
        """
        Find and classify the best match for one incoming record.

        The record is compared against the store's active records using the
        exact temporal window. Returns None when nothing survives filtering.
        """
        pool = [e for e in self.store.active_entities() if e.id != record.id]
        candidate = self.matcher.find_best_match(record, pool)
        if candidate is None:
            return None
        return build_report([candidate], self.classifier, self.trust_order, self.policy)

    def scan(
        self,
        window: Optional[int] = None,
        min_similarity: Optional[int] = None,
    ) -> ReconciliationReport:
        """
        Sweep the store's active records for duplicates.

        Pairs a reviewer previously rejected are skipped.
        """
        window = self.settings.audit_temporal_window if window is None else window
        min_similarity = (
            self.settings.sweep_min_similarity if min_similarity is None else min_similarity
        )
        pool = self.store.active_entities()
        rejected = self.store.rejected_pairs()

        candidates = self.matcher.find_candidates(
            pool,
            window=window,
            min_similarity=min_similarity,
            skip_pairs=rejected,
        )
        report = build_report(candidates, self.classifier, self.trust_order, self.policy)

        summary = report.summary()
        logger.info(
            f"Reconciliation scan complete: {len(pool)} active records, "
            f"{summary['total_pairs']} pairs classified, "
            f"{summary['auto_apply']} auto-apply, "
            f"{summary['needs_review']} need review, "
            f"{len(rejected)} previously rejected pairs skipped"
        )
        return report

    def executor(self, dry_run: bool = False) -> MergeExecutor:
        return MergeExecutor(
            self.store,
            self.resolver,
            field_list=self.field_list,
            dry_run=dry_run,
        )

    def apply_auto(
        self,
        report: ReconciliationReport,
        dry_run: bool = False,
    ) -> List[MergeOutcome]:
        return self.executor(dry_run).apply_auto(report)

    def apply_reviewed(
        self,
        report: ReconciliationReport,
        decisions: Dict[tuple, ReviewDecision],
        dry_run: bool = False,
    ) -> List[MergeOutcome]:
        return self.executor(dry_run).apply_reviewed(report, decisions)
