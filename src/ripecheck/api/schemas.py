"""Pydantic response schemas for the RipeCheck API.

Responses are serialized in camelCase, the shape the shop-floor UI and
dashboard consume.
"""

from __future__ import annotations

from datetime import datetime  # noqa: TC003

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ripecheck.ml.ripeness import RipenessCategory  # noqa: TC001
from ripecheck.pipeline import ClassificationResult  # noqa: TC001


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CategoryConfidence(_CamelModel):
    """Confidence percentage for one ripeness category."""

    category: RipenessCategory
    confidence: float


class ClassifyResponse(_CamelModel):
    """A finished ripeness classification."""

    fruit_type: str = Field(description="Fruit guessed from the filename, or 'unknown'")
    fruit_display_name: str
    ripeness: RipenessCategory
    confidence: float = Field(description="Percentage for the selected category")
    all_confidences: list[CategoryConfidence] = Field(description="One entry per ripeness category")
    recommended_action: str
    ripeness_indicators: str
    timestamp: datetime
    raw_score: float | None = Field(default=None, description="Binary rottenness score as a percentage")
    source: str | None = None

    @classmethod
    def from_result(cls, result: ClassificationResult) -> ClassifyResponse:
        return cls(
            fruit_type=result.fruit_type,
            fruit_display_name=result.fruit_display_name,
            ripeness=result.ripeness,
            confidence=result.confidence,
            all_confidences=[
                CategoryConfidence(category=entry.category, confidence=entry.confidence)
                for entry in result.all_confidences
            ],
            recommended_action=result.recommended_action,
            ripeness_indicators=result.ripeness_indicators,
            timestamp=result.timestamp,
            raw_score=result.raw_score,
            source=result.source,
        )


class HistoryResponse(_CamelModel):
    """Recent classifications, oldest first."""

    capacity: int
    results: list[ClassifyResponse]


class FruitInfo(_CamelModel):
    name: str
    display_name: str
    variants: list[str]


class FruitsResponse(_CamelModel):
    fruits: list[FruitInfo]


class HealthResponse(_CamelModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    model: str
    synthetic_model: bool
    catalog_size: int
    history_size: int
    concurrent_requests: int
    queue_depth: int


class ModelInfo(_CamelModel):
    """Information about an available model."""

    name: str
    output: str = Field(description="Model output: 'binary' or 'multiclass'")
    status: str = Field(description="Model status: 'active' or 'available'")
    license: str


class CatalogModelMetadata(_CamelModel):
    input_size: int
    class_mapping: dict[str, str]
    description: str | None = None


class ModelsResponse(_CamelModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]
    synthetic_fallback: bool = Field(description="True when the active runtime generates scores")
    catalog_metadata: CatalogModelMetadata


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
