"""Fish-oriented interpretation of ranked classifier output.

Takes the (label, score) ranking produced by an image classifier, keeps the
top entries, flags labels that plausibly name a fish, and attaches
best-effort genus/species strings to them. The heuristics are deliberately
crude string operations; both the relevance test and the name extraction
are pluggable so a taxonomy lookup can replace them later.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from fishid.ml.image_classifier import ClassificationEntry

DEFAULT_TOP_K: int = 5

FISH_KEYWORDS: frozenset[str] = frozenset(
    {"fish", "salmon", "tuna", "bass", "shark", "trout", "cod", "marine", "aquatic"}
)

HIGH_CONFIDENCE_THRESHOLD: float = 0.7
MEDIUM_CONFIDENCE_THRESHOLD: float = 0.4


class ConfidenceTier(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


def confidence_tier(score: float) -> ConfidenceTier:
    """Bucket a score into the badge tier shown next to each result."""
    if score > HIGH_CONFIDENCE_THRESHOLD:
        return ConfidenceTier.HIGH
    if score > MEDIUM_CONFIDENCE_THRESHOLD:
        return ConfidenceTier.MEDIUM
    return ConfidenceTier.LOW


@dataclass(frozen=True)
class TaxonomyGuess:
    """Names derived from a fish-relevant label."""

    genus: str
    species: str
    common_name: str


@dataclass(frozen=True)
class IdentificationRecord:
    """A classification result with optional derived taxonomic fields.

    ``genus``, ``species`` and ``common_name`` are either all set (the label
    was judged fish-relevant) or all ``None``.
    """

    label: str
    score: float
    species: str | None = None
    genus: str | None = None
    common_name: str | None = None

    @property
    def is_fish(self) -> bool:
        return self.species is not None

    @property
    def tier(self) -> ConfidenceTier:
        return confidence_tier(self.score)


@dataclass(frozen=True)
class Interpretation:
    """Ordered identification records plus the aggregate fish signal."""

    records: tuple[IdentificationRecord, ...]

    @property
    def fish_detected(self) -> bool:
        """False when no record carries a species, including the empty case."""
        return any(record.species is not None for record in self.records)

    def __len__(self) -> int:
        return len(self.records)


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class RelevancePredicate(Protocol):
    """Decides whether a label plausibly refers to a fish."""

    def __call__(self, label: str) -> bool: ...


class TaxonomyExtractor(Protocol):
    """Derives genus/species/common name strings from a label."""

    def __call__(self, label: str) -> TaxonomyGuess: ...


class KeywordRelevance:
    """Case-insensitive substring match against a keyword set.

    No stemming and no word-boundary checks: "catfishery" matches "fish".
    """

    def __init__(self, keywords: Iterable[str] = FISH_KEYWORDS) -> None:
        self._keywords = tuple(sorted(keyword.lower() for keyword in keywords))

    @property
    def keywords(self) -> tuple[str, ...]:
        return self._keywords

    def __call__(self, label: str) -> bool:
        lowered = label.lower()
        return any(keyword in lowered for keyword in self._keywords)


class WhitespaceTaxonomy:
    """Genus is the first token, species the first two tokens of the label."""

    def __call__(self, label: str) -> TaxonomyGuess:
        tokens = label.split()
        genus = tokens[0] if tokens else label
        species = f"{tokens[0]} {tokens[1]}" if len(tokens) >= 2 else label
        return TaxonomyGuess(genus=genus, species=species, common_name=label)


# ---------------------------------------------------------------------------
# Interpreter
# ---------------------------------------------------------------------------


class FishResultInterpreter:
    """Turns a ranked classification into identification records.

    Stateless and synchronous. Entries are assumed to arrive sorted by
    descending score and are never re-sorted or re-scored.
    """

    def __init__(
        self,
        is_relevant: RelevancePredicate | None = None,
        extract_taxonomy: TaxonomyExtractor | None = None,
        *,
        default_top_k: int = DEFAULT_TOP_K,
    ) -> None:
        self._is_relevant: RelevancePredicate = is_relevant or KeywordRelevance()
        self._extract_taxonomy: TaxonomyExtractor = extract_taxonomy or WhitespaceTaxonomy()
        self._default_top_k = default_top_k

    def interpret(
        self,
        entries: Sequence[ClassificationEntry],
        top_k: int | None = None,
    ) -> Interpretation:
        """Truncate to ``top_k`` entries and annotate the fish-relevant ones.

        A negative ``top_k`` is treated as zero.
        """
        limit = self._default_top_k if top_k is None else max(top_k, 0)
        records = tuple(self._to_record(entry) for entry in entries[:limit])
        return Interpretation(records=records)

    def _to_record(self, entry: ClassificationEntry) -> IdentificationRecord:
        if not self._is_relevant(entry.label):
            return IdentificationRecord(label=entry.label, score=entry.score)

        guess = self._extract_taxonomy(entry.label)
        return IdentificationRecord(
            label=entry.label,
            score=entry.score,
            species=guess.species,
            genus=guess.genus,
            common_name=guess.common_name,
        )
