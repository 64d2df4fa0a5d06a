"""
Caller-supplied lookup tables for reconciliation.

The matching code carries no domain knowledge of its own. Alias tables,
known title variants and the source trust order are passed in from here.

Example tables file:

    {
        "aliases": {"ntr": "n t rama rao", "chiru": "chiranjeevi"},
        "known_variants": [["kashmora", "kaashmora"]],
        "source_trust_order": ["curated", "tmdb", "ai_generated"]
    }
"""
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional, Tuple, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from cinerecon.core.errors import AliasTableError

logger = logging.getLogger(__name__)


class TablesFile(BaseModel):
    """Schema of a reconciliation tables JSON file."""
    aliases: Dict[str, str] = Field(default_factory=dict)
    known_variants: List[Tuple[str, str]] = Field(default_factory=list)
    source_trust_order: Optional[List[str]] = None
    transliteration_folds: List[Tuple[str, str]] = Field(default_factory=list)

    @field_validator("aliases")
    @classmethod
    def validate_aliases(cls, v: Dict[str, str]) -> Dict[str, str]:
        for key in v:
            if not key.strip():
                raise ValueError("alias keys must not be blank")
        return v


@dataclass(frozen=True)
class ReconciliationTables:
    """Alias table, known title variant pairs and optional trust order."""

    aliases: Dict[str, str] = field(default_factory=dict)
    known_variants: FrozenSet[Tuple[str, str]] = frozenset()
    source_trust_order: Optional[Tuple[str, ...]] = None
    transliteration_folds: Tuple[Tuple[str, str], ...] = ()

    @classmethod
    def from_dict(cls, data: Dict) -> "ReconciliationTables":
        try:
            parsed = TablesFile.model_validate(data)
        except ValidationError as e:
            raise AliasTableError(f"Invalid reconciliation tables: {e}") from e

        return cls(
            aliases=dict(parsed.aliases),
            known_variants=frozenset(
                tuple(sorted((a, b))) for a, b in parsed.known_variants
            ),
            source_trust_order=(
                tuple(parsed.source_trust_order)
                if parsed.source_trust_order is not None
                else None
            ),
            transliteration_folds=tuple(parsed.transliteration_folds),
        )


def load_tables(path: Optional[Union[str, Path]]) -> ReconciliationTables:
    """
    Load reconciliation tables from a JSON file.

    Returns empty tables when no path is given.

    Raises:
        AliasTableError: If the file is not valid JSON or fails validation
    """
    if not path:
        return ReconciliationTables()

    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise AliasTableError(f"Tables file {path} is not valid JSON: {e}") from e

    tables = ReconciliationTables.from_dict(data)
    logger.info(
        f"Loaded reconciliation tables from {path}: "
        f"{len(tables.aliases)} aliases, {len(tables.known_variants)} known variants"
    )
    return tables
