"""API route definitions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, Query, Request, UploadFile, status

from fishid.api.middleware import verify_api_key
from fishid.api.schemas import (
    ClassifyImageResponse,
    ErrorResponse,
    HealthResponse,
    IdentifyDataUriRequest,
    IdentifyResponse,
    ImageTag,
    ModelInfo,
    ModelsResponse,
)
from fishid.ml.model_manager import MODEL_REGISTRY
from fishid.ml.preprocessing import decode_data_uri, validate_content_type

if TYPE_CHECKING:
    from fishid.config import Settings
    from fishid.identifier import FishIdentifier
    from fishid.ml.inference import InferencePool
    from fishid.ml.model_manager import ModelManager

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

_ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    status.HTTP_415_UNSUPPORTED_MEDIA_TYPE: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}

TopK = Annotated[int | None, Query(ge=1, le=100, description="Number of ranked labels to return")]


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_identifier(request: Request) -> FishIdentifier:
    identifier: FishIdentifier = request.app.state.identifier
    return identifier


async def _read_upload(file: UploadFile) -> bytes:
    validate_content_type(file.content_type)
    return await file.read()


@router.post(
    "/identify",
    response_model=IdentifyResponse,
    response_model_exclude_none=True,
    responses=_ERROR_RESPONSES,
    summary="Identify fish in an image",
)
async def identify(request: Request, file: UploadFile, top_k: TopK = None) -> IdentifyResponse:
    """Classify an uploaded image and annotate fish-like labels with genus/species."""
    identifier = _get_identifier(request)
    image_bytes = await _read_upload(file)
    interpretation = await identifier.identify(image_bytes, top_k or _get_settings(request).top_k)
    return IdentifyResponse.from_interpretation(interpretation, identifier.model_name)


@router.post(
    "/identify/data-uri",
    response_model=IdentifyResponse,
    response_model_exclude_none=True,
    responses=_ERROR_RESPONSES,
    summary="Identify fish in a data-URI encoded image",
)
async def identify_data_uri(request: Request, body: IdentifyDataUriRequest) -> IdentifyResponse:
    """Same as /identify, for clients that hold the image as a data URI."""
    identifier = _get_identifier(request)
    image_bytes = decode_data_uri(body.image)
    interpretation = await identifier.identify(image_bytes, body.top_k or _get_settings(request).top_k)
    return IdentifyResponse.from_interpretation(interpretation, identifier.model_name)


@router.post(
    "/classify-image",
    response_model=ClassifyImageResponse,
    responses=_ERROR_RESPONSES,
    summary="Classify an image with tags",
)
async def classify_image(request: Request, file: UploadFile, top_k: TopK = None) -> ClassifyImageResponse:
    """Return the classifier's raw ranked tags, without fish interpretation."""
    identifier = _get_identifier(request)
    image_bytes = await _read_upload(file)
    entries = await identifier.classify(image_bytes)
    limit = top_k or _get_settings(request).top_k
    return ClassifyImageResponse(
        model=identifier.model_name,
        tags=[ImageTag(label=entry.label, confidence=entry.score) for entry in entries[:limit]],
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool: InferencePool = request.app.state.inference_pool
    model_manager: ModelManager = request.app.state.model_manager
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        models_loaded=model_manager.get_loaded_models(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return available classification models and which one is active."""
    settings = _get_settings(request)
    return ModelsResponse(
        models=[
            ModelInfo(
                name=spec.name,
                status="active" if spec.name == settings.classification_model else "available",
                license=spec.license,
            )
            for spec in MODEL_REGISTRY.values()
        ]
    )
