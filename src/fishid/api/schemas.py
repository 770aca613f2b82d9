"""Pydantic request/response schemas for the FishID API."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from fishid.interpretation import ConfidenceTier

if TYPE_CHECKING:
    from fishid.interpretation import IdentificationRecord, Interpretation

NO_FISH_MESSAGE = "This might not be a fish image. The AI couldn't detect any fish species."


class ImageTag(BaseModel):
    """A single classification tag with confidence score."""

    label: str
    confidence: float = Field(ge=0.0, le=1.0)


class ClassifyImageResponse(BaseModel):
    """Response for image classification endpoint."""

    model: str
    tags: list[ImageTag]


class IdentificationResult(BaseModel):
    """One ranked label, with genus/species when it looks like a fish."""

    model_config = ConfigDict(populate_by_name=True)

    label: str
    score: float = Field(ge=0.0, le=1.0)
    tier: ConfidenceTier = Field(description="Confidence badge: 'high' (>0.7), 'medium' (>0.4), or 'low'")
    species: str | None = None
    genus: str | None = None
    common_name: str | None = Field(default=None, alias="commonName")

    @classmethod
    def from_record(cls, record: IdentificationRecord) -> IdentificationResult:
        return cls(
            label=record.label,
            score=record.score,
            tier=record.tier,
            species=record.species,
            genus=record.genus,
            common_name=record.common_name,
        )


class IdentifyResponse(BaseModel):
    """Response for the fish identification endpoints."""

    model: str
    results: list[IdentificationResult]
    fish_detected: bool
    message: str | None = Field(default=None, description="Advisory shown when no fish was detected")

    @classmethod
    def from_interpretation(cls, interpretation: Interpretation, model: str) -> IdentifyResponse:
        return cls(
            model=model,
            results=[IdentificationResult.from_record(record) for record in interpretation.records],
            fish_detected=interpretation.fish_detected,
            message=None if interpretation.fish_detected else NO_FISH_MESSAGE,
        )


class IdentifyDataUriRequest(BaseModel):
    """Identification request carrying the image as a data URI."""

    image: str = Field(description="base64 data URI, e.g. 'data:image/jpeg;base64,...'")
    top_k: int | None = Field(default=None, ge=1, le=100)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about an available model."""

    name: str
    task: str = "image_classification"
    status: str = Field(description="Model status: 'active' or 'available'")
    license: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
    code: str
    retryable: bool = False
