"""Rule compilation and matching logic (core domain)."""

from __future__ import annotations

from dataclasses import dataclass
import re
import unicodedata
from typing import Iterable, List, Sequence

from core.models import FilterRule

_APOSTROPHES = re.compile(r"[’ʼ]")
# Collapse spaces/tabs but keep line breaks.
_INLINE_WHITESPACE = re.compile(r"[^\S\r\n]+")


@dataclass(frozen=True)
class RuleSet:
    """Normalized phrase rules, partitioned for per-item matching."""

    exclude_phrases: List[str]
    include_phrases: List[str]

    def __len__(self) -> int:
        return len(self.exclude_phrases) + len(self.include_phrases)


def normalize_for_match(text: str) -> str:
    """Canonical case/apostrophe form used on both sides of a match."""

    text = unicodedata.normalize("NFC", text)
    return _APOSTROPHES.sub("'", text).casefold().strip()


def compile_boilerplate(fragments: Iterable[str]) -> List[re.Pattern]:
    return [re.compile(re.escape(fragment), re.IGNORECASE) for fragment in fragments if fragment]


def clean_text(text: str, boilerplate: Sequence[re.Pattern] = ()) -> str:
    """Strip known insertion artifacts and tidy whitespace, preserving newlines."""

    for pattern in boilerplate:
        text = pattern.sub(" ", text)
    text = _APOSTROPHES.sub("'", text)
    return _INLINE_WHITESPACE.sub(" ", text).strip()


def build_rule_set(rules: Iterable[FilterRule]) -> RuleSet:
    """Normalize rule phrases and split them by classification.

    Phrases are normalized here rather than trusted from the store, so
    inconsistent casing or apostrophes in stored rules still match.
    """

    exclude: List[str] = []
    include: List[str] = []
    for rule in rules:
        phrase = normalize_for_match(rule.phrase)
        if not phrase:
            continue
        (exclude if rule.is_exclusion else include).append(phrase)
    return RuleSet(exclude_phrases=exclude, include_phrases=include)


def passes_filter(normalized_text: str, rule_set: RuleSet) -> bool:
    """Return True when the text should alert.

    Matching logic:
    - If any exclude phrase is a substring, the item is filtered out.
    - Otherwise at least one include phrase must be a substring.
    - With no include phrases nothing passes.
    """

    if any(phrase in normalized_text for phrase in rule_set.exclude_phrases):
        return False
    return any(phrase in normalized_text for phrase in rule_set.include_phrases)
