"""
Title and name normalization for comparison.

Produces a NormalizedKey: lowercase, letters/digits only, single spaces,
with a caller-supplied alias table applied to whole words. Keys are lossy
and only ever used for comparison, never persisted as identifiers.

Example:
    "S.P. Bhayankar"  -> "sp bhayankar"
    "Amélie"          -> "amelie"
    "Chiru" + {"chiru": "chiranjeevi"} -> "chiranjeevi"
"""

import logging
import re
import unicodedata
from functools import lru_cache
from typing import Dict, Mapping, Optional

from cinerecon.core.errors import AliasTableError

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+", re.UNICODE)

DEFAULT_CACHE_SIZE = 10000


def _is_mark(ch: str) -> bool:
    return unicodedata.category(ch).startswith("M")


def fold_diacritics(text: str) -> str:
    """
    Strip accents from Latin letters.

    Marks are only dropped after an ASCII base character so that vowel
    signs in Indic scripts survive.
    """
    decomposed = unicodedata.normalize("NFKD", text)
    kept = []
    previous = ""
    for ch in decomposed:
        if _is_mark(ch):
            if previous.isascii():
                continue
        else:
            previous = ch
        kept.append(ch)
    return unicodedata.normalize("NFC", "".join(kept))


def _strip_punctuation(text: str) -> str:
    # Marks survive only when attached to a kept non-ASCII letter
    out = []
    for ch in text:
        if ch.isalnum():
            out.append(ch)
        elif _is_mark(ch):
            if out and not out[-1].isascii():
                out.append(ch)
        elif ch.isspace():
            out.append(" ")
    return "".join(out)


def _base_normalize(text: Optional[str]) -> str:
    if not text:
        return ""
    folded = fold_diacritics(str(text).casefold())
    cleaned = _strip_punctuation(folded)
    return _WHITESPACE.sub(" ", cleaned).strip()


def compile_alias_table(aliases: Optional[Mapping[str, str]]) -> Dict[str, str]:
    """
    Normalize alias keys/values and resolve alias chains.

    {"a": "b", "b": "c"} becomes {"a": "c", "b": "c"} so that applying the
    table once is enough and normalization stays idempotent.

    Raises:
        AliasTableError: If the table contains a cycle
    """
    if not aliases:
        return {}

    table: Dict[str, str] = {}
    for raw_key, raw_value in aliases.items():
        key = _base_normalize(raw_key)
        if not key:
            raise AliasTableError(f"Alias key {raw_key!r} normalizes to an empty string")
        table[key] = _base_normalize(raw_value)

    resolved: Dict[str, str] = {}
    for key in table:
        seen = {key}
        value = table[key]
        while value in table and value != table[value]:
            if value in seen:
                raise AliasTableError(f"Alias cycle detected at {key!r}")
            seen.add(value)
            value = table[value]
        resolved[key] = value

    # A key whose value maps onto itself is a no-op
    resolved = {k: v for k, v in resolved.items() if k != v}

    for key in resolved:
        word = re.compile(r"(?<!\w)" + re.escape(key) + r"(?!\w)", re.UNICODE)
        for value in resolved.values():
            if word.search(value):
                raise AliasTableError(
                    f"Alias value {value!r} contains alias key {key!r}; "
                    "substitution would never settle"
                )
    return resolved


class TitleNormalizer:
    """
    Normalizer bound to one alias table.

    Alias keys may be single words or multi-word phrases; they only match
    whole words. Longer phrases win over shorter ones. Results are memoized
    in a bounded LRU cache of cache_size entries.
    """

    def __init__(
        self,
        aliases: Optional[Mapping[str, str]] = None,
        cache_size: int = DEFAULT_CACHE_SIZE,
    ):
        self.aliases = compile_alias_table(aliases)
        self._pattern = None
        if self.aliases:
            phrases = sorted(self.aliases, key=len, reverse=True)
            self._pattern = re.compile(
                r"(?<!\w)(" + "|".join(re.escape(p) for p in phrases) + r")(?!\w)",
                re.UNICODE,
            )
        self._cached = lru_cache(maxsize=cache_size)(self._normalize)

    def normalize(self, text: Optional[str]) -> str:
        """Return the NormalizedKey for text. Empty or None yields ""."""
        if not text:
            return ""
        return self._cached(text)

    def _apply_aliases(self, key: str) -> str:
        # Substitutions can create new matches at word seams; repeat to a fixpoint
        limit = (key.count(" ") + 2) * (len(self.aliases) + 1)
        for _ in range(limit + 1):
            replaced = self._pattern.sub(lambda m: self.aliases[m.group(1)], key)
            replaced = _WHITESPACE.sub(" ", replaced).strip()
            if replaced == key:
                return key
            key = replaced
        raise AliasTableError(f"Alias substitution does not settle for {key!r}")

    def _normalize(self, text: str) -> str:
        key = _base_normalize(text)
        if self._pattern is not None and key:
            key = self._apply_aliases(key)
        return key


_default_normalizer = TitleNormalizer()


def normalize(text: Optional[str], aliases: Optional[Mapping[str, str]] = None) -> str:
    """
    Convenience function: normalize text with an optional alias table.

    normalize(normalize(x)) == normalize(x) for any x.
    """
    if aliases:
        return TitleNormalizer(aliases).normalize(text)
    return _default_normalizer.normalize(text)
