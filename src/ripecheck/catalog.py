"""Fruit catalog: per-fruit reference text used to enrich classifications.

The catalog is a JSON document loaded once at startup. It is immutable
afterwards and a load failure only leaves it empty, so every enrichment call
falls back to the generic text for the ripeness category.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from ripecheck.ml.ripeness import RipenessCategory

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

logger = logging.getLogger(__name__)

PACKAGED_CATALOG = Path(__file__).parent / "data" / "fruit-metadata.json"

UNKNOWN_FRUIT = "unknown"

# Matched against filenames when neither a catalog name nor a variant matches.
FALLBACK_FRUITS: tuple[str, ...] = (
    "apple",
    "banana",
    "orange",
    "strawberry",
    "grape",
    "blueberry",
    "pear",
    "peach",
    "plum",
    "mango",
    "kiwi",
    "pineapple",
    "watermelon",
    "cherry",
)

_FALLBACK_TERMS = {fruit: fruit for fruit in FALLBACK_FRUITS}

GENERIC_RECOMMENDATIONS: dict[RipenessCategory, str] = {
    RipenessCategory.UNRIPE: "Keep in storage for ripening",
    RipenessCategory.RIPE: "Display for immediate sale",
    RipenessCategory.OVERRIPE: "Discount and prioritize for sale",
    RipenessCategory.SPOILED: "Remove from inventory",
}

GENERIC_INDICATORS: dict[RipenessCategory, str] = {
    RipenessCategory.UNRIPE: "Firm texture, bright color, may be hard",
    RipenessCategory.RIPE: "Slight give when pressed, vibrant color, sweet aroma",
    RipenessCategory.OVERRIPE: "Soft spots, darker coloration, very sweet smell",
    RipenessCategory.SPOILED: "Mushy texture, discoloration, mold, fermented smell",
}

_SEPARATORS = re.compile(r"[\s_\-.]+")


def _normalize(value: str) -> str:
    return _SEPARATORS.sub(" ", value).strip()


class QualityAxis(StrEnum):
    FRESH = "fresh"
    ROTTEN = "rotten"


def quality_axis(category: RipenessCategory) -> QualityAxis:
    """Collapse a ripeness category onto the catalog's fresh/rotten axis."""
    if category in (RipenessCategory.UNRIPE, RipenessCategory.RIPE):
        return QualityAxis.FRESH
    return QualityAxis.ROTTEN


# ---------------------------------------------------------------------------
# Document schema
# ---------------------------------------------------------------------------


class _CatalogModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class AxisText(_CatalogModel):
    """Text for each side of the fresh/rotten axis. Either side may be absent."""

    fresh: str | None = None
    rotten: str | None = None

    def for_axis(self, axis: QualityAxis) -> str | None:
        return self.fresh if axis is QualityAxis.FRESH else self.rotten


class FruitCatalogEntry(_CatalogModel):
    """Reference data for one fruit type, keyed by lowercase name."""

    name: str
    display_name: str | None = None
    quality_indicators: AxisText = Field(default_factory=AxisText)
    storage_recommendations: AxisText = Field(default_factory=AxisText)
    variants: tuple[str, ...] = ()

    @field_validator("name")
    @classmethod
    def _lowercase_name(cls, value: str) -> str:
        value = value.strip().lower()
        if not value:
            raise ValueError("fruit name must not be empty")
        return value

    @field_validator("variants")
    @classmethod
    def _lowercase_variants(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(v.strip().lower() for v in value if v.strip())


class ModelMetadata(_CatalogModel):
    """Describes the model the catalog was written for."""

    input_size: int = Field(default=224, ge=1)
    class_mapping: dict[str, str] = Field(default_factory=dict)
    description: str | None = None


class CatalogDocument(_CatalogModel):
    fruits: list[FruitCatalogEntry] = Field(default_factory=list)
    metadata: ModelMetadata = Field(default_factory=ModelMetadata)


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CatalogLookup:
    """Result of a catalog lookup: an entry, or an explicit not-found."""

    fruit_type: str
    entry: FruitCatalogEntry | None

    @property
    def found(self) -> bool:
        return self.entry is not None


class FruitCatalog:
    """Immutable fruit catalog with memoized lookups."""

    def __init__(
        self,
        entries: Iterable[FruitCatalogEntry] = (),
        metadata: ModelMetadata | None = None,
    ) -> None:
        self._entries: dict[str, FruitCatalogEntry] = {entry.name: entry for entry in entries}
        # Match terms use the same separator folding as filenames.
        self._names = {_normalize(name): name for name in self._entries}
        self._aliases = {
            _normalize(variant): entry.name for entry in self._entries.values() for variant in entry.variants
        }
        self._metadata = metadata or ModelMetadata()
        # Append-only. Racing first lookups of one key store equal values.
        self._cache: dict[str, CatalogLookup] = {}

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def metadata(self) -> ModelMetadata:
        return self._metadata

    def entries(self) -> list[FruitCatalogEntry]:
        return list(self._entries.values())

    def lookup(self, fruit_type: str) -> CatalogLookup:
        """Return the catalog entry for a fruit type. Never raises."""
        key = fruit_type.strip().lower()
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        result = CatalogLookup(fruit_type=key, entry=self._entries.get(key))
        self._cache[key] = result
        return result

    def extract_fruit_type(self, filename: str | None) -> str:
        """Guess the fruit type from a filename.

        Tried in order: catalog names, catalog variant aliases, then
        :data:`FALLBACK_FRUITS`. Names and filenames are compared with
        ``_``, ``-``, ``.`` and whitespace folded to single spaces. A term is
        ignored where every occurrence sits inside a longer matching term from
        any tier, so "pineapple" is never read as "apple". Within a tier the
        longest remaining term wins.
        """
        if not filename:
            return UNKNOWN_FRUIT

        basename = filename.replace("\\", "/").rsplit("/", 1)[-1].lower()
        text = _normalize(basename)

        tiers = (self._names, self._aliases, _FALLBACK_TERMS)
        hits = {term for tier in tiers for term in tier if term and term in text}
        for tier in tiers:
            standalone = [term for term in tier if term in hits and not _is_shadowed(text, term, hits)]
            if standalone:
                return tier[max(standalone, key=len)]
        return UNKNOWN_FRUIT

    def display_name(self, fruit_type: str) -> str:
        lookup = self.lookup(fruit_type)
        if lookup.entry is not None and lookup.entry.display_name:
            return lookup.entry.display_name
        return fruit_type[:1].upper() + fruit_type[1:]

    def recommendation(self, category: RipenessCategory, fruit_type: str) -> str:
        """Storage/inventory action for a category, fruit-specific when available."""
        category = RipenessCategory(category)
        entry = self.lookup(fruit_type).entry
        if entry is not None:
            text = entry.storage_recommendations.for_axis(quality_axis(category))
            if text:
                return text
        return GENERIC_RECOMMENDATIONS[category]

    def indicators(self, category: RipenessCategory, fruit_type: str) -> str:
        """Visual/tactile cues for a category, fruit-specific when available."""
        category = RipenessCategory(category)
        entry = self.lookup(fruit_type).entry
        if entry is not None:
            text = entry.quality_indicators.for_axis(quality_axis(category))
            if text:
                return text
        return GENERIC_INDICATORS[category]


def _occurrences(text: str, term: str) -> Iterator[tuple[int, int]]:
    start = text.find(term)
    while start != -1:
        yield start, start + len(term)
        start = text.find(term, start + 1)


def _is_shadowed(text: str, term: str, hits: Iterable[str]) -> bool:
    """True when every occurrence of ``term`` lies inside a longer hit."""
    covers = [
        span for other in hits if len(other) > len(term) and term in other for span in _occurrences(text, other)
    ]
    return all(any(lo <= start and end <= hi for lo, hi in covers) for start, end in _occurrences(text, term))


def load_catalog(path: str | Path | None = None) -> FruitCatalog:
    """Load the catalog document, returning an empty catalog on any failure.

    Args:
        path: JSON document to read. None reads the catalog shipped with ripecheck.
    """
    source = Path(path) if path is not None else PACKAGED_CATALOG
    try:
        document = CatalogDocument.model_validate_json(source.read_bytes())
    except (OSError, ValidationError) as exc:
        logger.warning("Could not load fruit catalog from %s (%s); using generic text only", source, exc)
        return FruitCatalog()

    logger.info("Loaded %d fruit catalog entries from %s", len(document.fruits), source)
    return FruitCatalog(document.fruits, document.metadata)
