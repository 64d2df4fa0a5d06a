"""
Command line entry point.

Usage:
    cinerecon scan --input records.json --review-csv review.csv
    cinerecon scan --input records.json --window 2 --report-out report.json
    cinerecon apply --input records.json --decisions review.csv --output merged.json
    cinerecon apply --input records.json --dry-run --merge-log merges.json
    cinerecon apply --input records.json --database-url sqlite:///recon.db
    cinerecon scan --database-url sqlite:///recon.db --review-csv review.csv

Input is a JSON list of records (or an object with a "records" list):

    [{"id": "m1", "title": "Vikramarkudu", "year": 2006,
      "external_ids": {"tmdb": 81012}, "source": "tmdb"}]

`apply` re-runs the same deterministic scan as `scan`, so a review CSV
produced by `scan` can be filled in and fed back with --decisions.

With --database-url the records live in the SQL entity store and merges
persist between runs. Input records whose id is already stored are left
alone, so re-loading the same file never revives a retired record.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from cinerecon.core.config import get_settings
from cinerecon.core.entities import Entity, EntityKind
from cinerecon.core.database import session_scope
from cinerecon.core.errors import ReconciliationError, UnknownEntityError
from cinerecon.core.tables import load_tables
from cinerecon.services.merge_executor import MergeStatus
from cinerecon.services.reconciliation_service import ReconciliationService
from cinerecon.services.review import load_review_decisions
from cinerecon.services.store import EntityStore, InMemoryEntityStore, SqlEntityStore

logger = logging.getLogger(__name__)


class EntityIn(BaseModel):
    """One input record. Loose on purpose: bad values degrade, they don't fail."""

    id: str
    title: Optional[str] = ""
    kind: EntityKind = EntityKind.MOVIE
    year: Optional[int] = None
    alt_title: Optional[str] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)
    external_ids: List[str] = Field(default_factory=list)
    aliases: List[str] = Field(default_factory=list)
    source: Optional[str] = None
    active: bool = True
    canonical_id: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        if isinstance(v, int):
            return str(v)
        return v

    @field_validator("title", mode="before")
    @classmethod
    def title_or_blank(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("year", mode="before")
    @classmethod
    def parse_year(cls, v: Any) -> Optional[int]:
        # "TBA", "", "19xx" and friends become a missing anchor
        if v is None or isinstance(v, bool):
            return None
        if isinstance(v, int):
            return v
        try:
            number = float(str(v).strip())
        except ValueError:
            return None
        return int(number) if number.is_integer() else None

    @field_validator("external_ids", mode="before")
    @classmethod
    def flatten_ids(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, dict):
            return [f"{k}:{val}" for k, val in v.items() if val not in (None, "")]
        return [str(item) for item in v]

    @field_validator("aliases", mode="before")
    @classmethod
    def aliases_or_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    def to_entity(self) -> Entity:
        return Entity(
            id=self.id,
            title=self.title or "",
            kind=self.kind,
            year=self.year,
            alt_title=self.alt_title,
            attributes=dict(self.attributes),
            external_ids=set(self.external_ids),
            aliases=list(self.aliases),
            source=self.source,
            active=self.active,
            canonical_id=self.canonical_id,
        )


def load_records(path: Union[str, Path]) -> List[Entity]:
    """
    Read input records, skipping (and logging) any that cannot be used.

    Raises:
        ReconciliationError: If the file is not valid JSON or has no record list
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ReconciliationError(f"Input file {path} is not valid JSON: {e}") from e

    if isinstance(data, dict):
        data = data.get("records")
    if not isinstance(data, list):
        raise ReconciliationError(f"Input file {path} must contain a list of records")

    entities: List[Entity] = []
    seen = set()
    for index, raw in enumerate(data):
        if not isinstance(raw, dict) or raw.get("id") in (None, ""):
            logger.warning(f"Skipping record #{index}: missing id")
            continue
        try:
            entity = EntityIn.model_validate(raw).to_entity()
        except ValidationError as e:
            logger.warning(f"Skipping record #{index} ({raw.get('id')}): {e}")
            continue
        if entity.id in seen:
            logger.warning(f"Skipping record #{index}: duplicate id {entity.id}")
            continue
        seen.add(entity.id)
        entities.append(entity)

    logger.info(f"Loaded {len(entities)} records from {path}")
    return entities


def entity_to_dict(entity: Entity) -> Dict[str, Any]:
    return {
        "id": entity.id,
        "kind": entity.kind.value,
        "title": entity.title,
        "alt_title": entity.alt_title,
        "year": entity.year,
        "attributes": entity.attributes,
        "external_ids": sorted(entity.external_ids),
        "aliases": entity.aliases,
        "source": entity.source,
        "active": entity.active,
        "canonical_id": entity.canonical_id,
    }


def _write_json(path: Union[str, Path], payload: Any) -> None:
    Path(path).write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")


def _load_new_records(store: EntityStore, path: Union[str, Path]) -> int:
    added = 0
    for entity in load_records(path):
        try:
            store.get(entity.id)
        except UnknownEntityError:
            store.add(entity)
            added += 1
            continue
        logger.debug(f"Record {entity.id} already stored, keeping the stored copy")
    return added


def _build_service(args, store: EntityStore) -> ReconciliationService:
    settings = get_settings()
    tables = load_tables(args.tables or settings.tables_path)
    if args.input:
        added = _load_new_records(store, args.input)
        logger.info(f"Added {added} new records to the entity store")
    return ReconciliationService(store, settings=settings, tables=tables)


def run_scan(args, store: EntityStore) -> int:
    service = _build_service(args, store)
    report = service.scan(window=args.window)

    if args.report_out:
        report.write_json(args.report_out)
    if args.review_csv:
        report.write_review_csv(args.review_csv)

    print(json.dumps(report.summary(), indent=2))
    return 0


def run_apply(args, store: EntityStore) -> int:
    service = _build_service(args, store)
    report = service.scan(window=args.window)

    outcomes = []
    if not args.no_auto:
        outcomes.extend(service.apply_auto(report, dry_run=args.dry_run))
    if args.decisions:
        decisions = load_review_decisions(args.decisions)
        outcomes.extend(service.apply_reviewed(report, decisions, dry_run=args.dry_run))

    if args.output:
        _write_json(args.output, [entity_to_dict(e) for e in service.store.all_entities()])
        logger.info(f"Wrote records to {args.output}")
    if args.merge_log:
        _write_json(args.merge_log, [o.to_dict() for o in outcomes])
        logger.info(f"Wrote merge log to {args.merge_log}")

    counts: Dict[str, int] = {}
    for outcome in outcomes:
        counts[outcome.status.value] = counts.get(outcome.status.value, 0) + 1
    print(json.dumps({"dry_run": args.dry_run, "outcomes": counts}, indent=2))

    return 1 if any(o.status == MergeStatus.FAILED for o in outcomes) else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cinerecon",
        description="Find and merge duplicate movie and person records",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(sub):
        sub.add_argument("--input", default=None, help="JSON file of records")
        sub.add_argument(
            "--database-url", default=None,
            help="Use the SQL entity store at this SQLAlchemy URL instead of memory"
        )
        sub.add_argument(
            "--tables", default=None,
            help="Reconciliation tables JSON (overrides TABLES_PATH)"
        )
        sub.add_argument(
            "--window", type=int, default=None,
            help="Temporal window in years for the sweep (default: AUDIT_TEMPORAL_WINDOW)"
        )

    scan = subparsers.add_parser("scan", help="Classify duplicate candidates")
    add_common(scan)
    scan.add_argument("--report-out", default=None, help="Write the full report as JSON")
    scan.add_argument("--review-csv", default=None, help="Write the review queue as CSV")
    scan.set_defaults(func=run_scan)

    apply = subparsers.add_parser("apply", help="Apply approved merges")
    add_common(apply)
    apply.add_argument(
        "--decisions", default=None,
        help="Filled-in review CSV or JSON with approve/reject/defer decisions"
    )
    apply.add_argument(
        "--no-auto", action="store_true",
        help="Do not apply auto-apply merges; only reviewed decisions"
    )
    apply.add_argument(
        "--dry-run", action="store_true",
        help="Compute merges without changing any record"
    )
    apply.add_argument("--output", default=None, help="Write updated records as JSON")
    apply.add_argument("--merge-log", default=None, help="Write merge outcomes as JSON")
    apply.set_defaults(func=run_apply)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.input and not args.database_url:
        parser.error("one of --input or --database-url is required")

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        if args.database_url:
            with session_scope(args.database_url) as session:
                return args.func(args, SqlEntityStore(session))
        return args.func(args, InMemoryEntityStore())
    except ReconciliationError as e:
        logger.error(f"{args.command} failed: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
