"""API route definitions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, Form, HTTPException, Request, UploadFile, status

from ripecheck.api.middleware import reject_oversized_upload, verify_api_key
from ripecheck.api.schemas import (
    CatalogModelMetadata,
    ClassifyResponse,
    ErrorResponse,
    FruitInfo,
    FruitsResponse,
    HealthResponse,
    HistoryResponse,
    ModelInfo,
    ModelsResponse,
)
from ripecheck.errors import InferenceError, PreprocessError
from ripecheck.ml.model_manager import MODEL_REGISTRY

if TYPE_CHECKING:
    from ripecheck.config import Settings
    from ripecheck.pipeline import ClassificationPipeline


router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_pipeline(request: Request) -> ClassificationPipeline:
    pipeline: ClassificationPipeline = request.app.state.pipeline
    return pipeline


@router.post(
    "/classify",
    response_model=ClassifyResponse,
    dependencies=[Depends(reject_oversized_upload)],
    responses={
        413: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Classify the ripeness of a fruit image",
)
async def classify(
    request: Request,
    file: UploadFile,
    filename: Annotated[str | None, Form()] = None,
) -> ClassifyResponse:
    """Classify an uploaded fruit photo.

    The fruit type is guessed from ``filename`` when given, otherwise from the
    uploaded file's name.
    """
    settings = _get_settings(request)
    pipeline = _get_pipeline(request)

    content = await file.read()
    if len(content) > settings.max_file_size:
        raise HTTPException(
            status_code=413,
            detail=f"File exceeds {settings.max_file_size} bytes",
        )

    try:
        result = await pipeline.classify(content, filename=filename or file.filename)
    except PreprocessError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except InferenceError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Inference failed: {exc}",
        ) from exc
    except TimeoutError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Inference queue is full, retry shortly",
        ) from exc

    return ClassifyResponse.from_result(result)


@router.get(
    "/history",
    response_model=HistoryResponse,
    summary="Recent classifications",
)
async def history(request: Request) -> HistoryResponse:
    """Return the in-memory classification window, oldest first."""
    buffer = _get_pipeline(request).history
    return HistoryResponse(
        capacity=buffer.capacity,
        results=[ClassifyResponse.from_result(result) for result in buffer.snapshot()],
    )


@router.get(
    "/fruits",
    response_model=FruitsResponse,
    summary="List catalog fruits",
)
async def list_fruits(request: Request) -> FruitsResponse:
    """Return the fruits the catalog has specific guidance for."""
    catalog = _get_pipeline(request).catalog
    return FruitsResponse(
        fruits=[
            FruitInfo(name=entry.name, display_name=catalog.display_name(entry.name), variants=list(entry.variants))
            for entry in catalog.entries()
        ]
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pipeline = _get_pipeline(request)
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        model=pipeline.model.model_name,
        synthetic_model=pipeline.model.synthetic,
        catalog_size=len(pipeline.catalog),
        history_size=len(pipeline.history),
        concurrent_requests=pipeline.pool.active_count,
        queue_depth=pipeline.pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return registered models and which one is serving."""
    settings = _get_settings(request)
    pipeline = _get_pipeline(request)
    metadata = pipeline.catalog.metadata

    models = [
        ModelInfo(
            name=spec.name,
            output=spec.output,
            status="active" if spec.name == settings.ripeness_model else "available",
            license=spec.license,
        )
        for spec in MODEL_REGISTRY.values()
    ]
    return ModelsResponse(
        models=models,
        synthetic_fallback=pipeline.model.synthetic,
        catalog_metadata=CatalogModelMetadata(
            input_size=metadata.input_size,
            class_mapping=metadata.class_mapping,
            description=metadata.description,
        ),
    )
