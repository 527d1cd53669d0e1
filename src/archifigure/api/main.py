"""Archifigure — FastAPI Application.

This module is the single entry point for the web service.  It defines the
FastAPI ``app`` instance, all REST API routes, and the ``main()`` CLI
function that launches the uvicorn server.

Architecture
------------
The service is stateless glue between the browser and three providers:

- **Replicate** runs image generation and 3D mesh generation.  Mesh jobs are
  polled through ``GET /api/prediction``, which filters and orders the
  deployment's prediction list (see :mod:`archifigure.api.predictions`).
- **imgbb** hosts uploaded input images.
- **Supabase** stores projects and saved models
  (see :mod:`archifigure.core.database`).

Failure policy
--------------
- Missing required input: ``400`` with a fixed ``{"error": ...}`` message.
- Provider failure: ``500`` with a generic ``{"error": ...}`` message; the
  cause is logged server-side only.
- ``GET /api/prediction`` fails open: a provider failure yields ``200 []``,
  indistinguishable from an empty deployment.
- Persistence failures become ``[]`` / ``null`` / ``false`` in a
  success-shaped body.

Endpoints
---------
========  ==================================  ================================
Method    Path                                Purpose
========  ==================================  ================================
GET       ``/``                               Health check
POST      ``/api/upload-image``               Host an image on imgbb
POST      ``/api/generate-image``             Text-to-image via Replicate
POST      ``/api/generate-model``             Start a mesh generation
GET       ``/api/prediction``                 Displayable mesh predictions
GET       ``/api/prediction/{id}``            Raw prediction by id
GET       ``/api/projects``                   All projects, newest first
POST      ``/api/projects``                   Find-or-create a project
GET       ``/api/projects/{id}/models``       Models saved under a project
POST      ``/api/projects/{id}/models``       Save a model to a project
GET       ``/api/models``                     All saved models
========  ==================================  ================================

Usage
-----
CLI (installed entry point)::

    archifigure

Direct invocation::

    python -m archifigure.api.main
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.datastructures import UploadFile

from archifigure import __version__
from archifigure.api.models import (
    CreateProjectRequest,
    GenerateImageRequest,
    GenerateModelRequest,
    SaveModelRequest,
)
from archifigure.api.predictions import completed_with_mesh, filter_and_sort_predictions
from archifigure.core import database
from archifigure.core.config import config
from archifigure.core.providers import (
    ImgbbClient,
    ImgbbError,
    ProviderError,
    ReplicateClient,
)

logger = logging.getLogger(__name__)

# Defaults applied to mesh generation parameters the client leaves unset.
DEFAULT_OCTREE_RESOLUTION = 256
DEFAULT_STEPS = 50
DEFAULT_GUIDANCE_SCALE = 5.5
SEED_RANGE = 10000


class ApiError(Exception):
    """An error rendered as ``{"error": ..., "details": ...}`` with a status code."""

    def __init__(self, status_code: int, error: str, details: str | None = None):
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.error}
        if self.details is not None:
            body["details"] = self.details
        return body


# ---------------------------------------------------------------------------
# Application lifecycle: provider clients and store.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the provider clients and persistence store on startup.

    Nothing here touches the network: the Supabase client is created lazily
    on the first database call, and the HTTP clients open a connection per
    request.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control back to the application for the duration of its lifetime.
    """
    app.state.replicate = ReplicateClient.from_config(config)
    app.state.imgbb = ImgbbClient.from_config(config)
    app.state.store = database.default_store
    logger.info(f"Archifigure {__version__} started (deployment {config.replicate_deployment}).")

    yield


# ---------------------------------------------------------------------------
# FastAPI application instance.
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Archifigure",
    description="Image upload, image generation and 3D mesh generation glue API.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def _utc_iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Routes: providers.
# ---------------------------------------------------------------------------


@app.get("/")
async def root() -> dict:
    """Health check endpoint."""
    return {"message": "Archifigure backend is running", "version": __version__}


@app.post("/api/upload-image")
async def upload_image(request: Request) -> dict:
    """Upload the multipart ``image`` file to imgbb.

    Returns:
        Dictionary with the hosted ``url`` and its ``delete_url``.

    Raises:
        ApiError: 400 if no file was sent under ``image`` (no upload is
            attempted), 500 if imgbb rejects or the request fails.
    """
    form = await request.form()
    image = form.get("image")
    if not isinstance(image, UploadFile):
        raise ApiError(400, "No image file provided")

    content = await image.read()
    imgbb: ImgbbClient = request.app.state.imgbb
    try:
        return await imgbb.upload(content)
    except ImgbbError as e:
        logger.error(f"Error uploading image: {e}")
        raise ApiError(500, "Failed to upload image to imgbb") from e
    except ProviderError as e:
        logger.error(f"Error uploading image: {e}")
        raise ApiError(500, "Failed to upload image") from e


@app.post("/api/generate-image")
async def generate_image(request: Request, req: GenerateImageRequest | None = None) -> dict:
    """Run the text-to-image model with the client's ``input`` object.

    Returns:
        The provider's prediction object.

    Raises:
        ApiError: 400 if the body, ``input`` or ``input.prompt`` is missing
            (or ``input`` is not an object), 500 if the provider call fails.
    """
    if req is None or not req.prompt():
        raise ApiError(400, "Input prompt is required")

    replicate: ReplicateClient = request.app.state.replicate
    try:
        return await replicate.create_image_prediction(req.input)
    except ProviderError as e:
        logger.error(f"Error generating prediction: {e}")
        raise ApiError(500, "Failed to generate prediction", details=str(e)) from e


@app.post("/api/generate-model")
async def generate_model(req: GenerateModelRequest | None = None) -> dict:
    """Start a mesh generation for an uploaded image.

    This deployment does not submit anything to the provider: it returns a
    placeholder prediction in the ``processing`` state with every unset
    parameter filled in.

    Returns:
        Prediction dictionary with a time-based ``id``.

    Raises:
        ApiError: 400 if the body or ``image`` is missing.
    """
    if req is None or not req.image:
        raise ApiError(400, "Image URL is required")

    return {
        "id": f"pred-{int(time.time() * 1000)}",
        "status": "processing",
        "input": {
            "image": req.image,
            "octree_resolution": (
                req.octree_resolution
                if req.octree_resolution is not None
                else DEFAULT_OCTREE_RESOLUTION
            ),
            "steps": req.steps if req.steps is not None else DEFAULT_STEPS,
            "guidance_scale": (
                req.guidance_scale if req.guidance_scale is not None else DEFAULT_GUIDANCE_SCALE
            ),
            "seed": req.seed if req.seed is not None else random.randrange(SEED_RANGE),
            "remove_background": req.remove_background is not False,
        },
        "created_at": _utc_iso_now(),
    }


@app.get("/api/prediction")
async def list_predictions(request: Request, background_tasks: BackgroundTasks) -> list[dict]:
    """Return the deployment's displayable predictions.

    Active predictions come first, then the rest newest first.  When any
    succeeded prediction with a mesh is present, storing them is scheduled
    as a background task that runs after the response is sent; its failures
    are logged and never affect this response.

    A provider failure is answered with ``200 []``.

    Returns:
        Filtered and ordered prediction dictionaries.
    """
    replicate: ReplicateClient = request.app.state.replicate
    try:
        raw = await replicate.list_predictions()
    except ProviderError as e:
        logger.error(f"Error fetching predictions: {e}")
        return []

    predictions = filter_and_sort_predictions(raw)

    completed = completed_with_mesh(predictions)
    if completed:
        background_tasks.add_task(
            database.autosave_completed_predictions,
            completed,
            config.autosave_project_name,
            request.app.state.store,
        )

    return predictions


@app.get("/api/prediction/{prediction_id}")
async def get_prediction(prediction_id: str, request: Request) -> dict:
    """Return the provider's raw prediction by id.

    Raises:
        ApiError: 500 if the provider call fails.
    """
    replicate: ReplicateClient = request.app.state.replicate
    try:
        return await replicate.get_prediction(prediction_id)
    except ProviderError as e:
        logger.error(f"Error fetching prediction {prediction_id}: {e}")
        raise ApiError(500, "Failed to fetch prediction") from e


# ---------------------------------------------------------------------------
# Routes: projects and saved models.  The Supabase client is synchronous,
# so these handlers are plain functions run in the threadpool.
# ---------------------------------------------------------------------------


@app.get("/api/projects")
def list_projects(request: Request) -> list[dict]:
    """Return all projects, newest first (``[]`` if the database fails)."""
    return database.get_projects(request.app.state.store)


@app.post("/api/projects")
def create_project(req: CreateProjectRequest, request: Request) -> dict:
    """Find or create a project by case-insensitive name.

    Returns:
        Dictionary with ``success`` and the ``project`` row (``None`` when
        the database call failed).

    Raises:
        ApiError: 400 if the name is missing or blank.
    """
    name = (req.name or "").strip()
    if not name:
        raise ApiError(400, "Project name is required")

    project = database.create_project(name, request.app.state.store)
    return {"success": project is not None, "project": project}


@app.get("/api/projects/{project_id}/models")
def list_project_models(project_id: str, request: Request) -> list[dict]:
    """Return the models saved under a project, newest first."""
    return database.get_project_models(project_id, request.app.state.store)


@app.post("/api/projects/{project_id}/models")
def save_project_model(project_id: str, req: SaveModelRequest, request: Request) -> dict:
    """Save a generated model under a project.

    Returns:
        Dictionary with a single ``success`` flag.
    """
    saved = database.save_model_to_project(
        project_id,
        req.model_url,
        req.thumbnail_url,
        req.input_image,
        req.resolution,
        req.name,
        store=request.app.state.store,
    )
    return {"success": saved}


@app.get("/api/models")
def list_saved_models(request: Request) -> list[dict]:
    """Return every saved model across projects, newest first."""
    return database.get_project_models(store=request.app.state.store)


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host, port and log level from :data:`~archifigure.core.config.config`.
    This function is registered as the ``archifigure`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    uvicorn.run(
        "archifigure.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
