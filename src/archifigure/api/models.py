"""Pydantic request models for the Archifigure API.

Required fields are declared optional, and the generate endpoints accept a
missing body, so that absent input gets the endpoint's fixed ``400``
message rather than FastAPI's ``422`` validation response.  The handlers
check presence themselves.

Models
------
GenerateImageRequest
    Payload for ``POST /api/generate-image``.
GenerateModelRequest
    Payload for ``POST /api/generate-model``.
CreateProjectRequest
    Payload for ``POST /api/projects``.
SaveModelRequest
    Payload for ``POST /api/projects/{project_id}/models``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class GenerateImageRequest(BaseModel):
    """Request body for ``POST /api/generate-image``.

    Attributes:
        input: Model input forwarded verbatim to the image model.  Must
            be an object with a non-empty ``prompt``.
    """

    input: Any = Field(
        default=None,
        description="Model input, e.g. {'prompt': '...', 'aspect_ratio': '1:1'}.",
    )

    def prompt(self) -> str | None:
        if not isinstance(self.input, dict):
            return None
        return self.input.get("prompt") or None


class GenerateModelRequest(BaseModel):
    """Request body for ``POST /api/generate-model``.

    Unset parameters are filled with the deployment defaults when the
    placeholder prediction is built.
    """

    image: str | None = Field(default=None, description="URL of the input image.")
    octree_resolution: int | None = Field(default=None, description="Mesh octree resolution.")
    steps: int | None = Field(default=None, description="Number of inference steps.")
    guidance_scale: float | None = Field(default=None, description="Guidance scale.")
    seed: int | None = Field(default=None, description="Random seed.")
    remove_background: bool | None = Field(
        default=None,
        description="Strip the image background first (default True).",
    )


class CreateProjectRequest(BaseModel):
    """Request body for ``POST /api/projects``."""

    name: str | None = Field(default=None, description="Project name (case-insensitive).")


class SaveModelRequest(BaseModel):
    """Request body for ``POST /api/projects/{project_id}/models``."""

    model_config = ConfigDict(protected_namespaces=())

    model_url: str = Field(..., description="URL of the generated mesh.")
    thumbnail_url: str = Field(..., description="URL of the model thumbnail.")
    input_image: str = Field(..., description="URL of the source image.")
    resolution: int = Field(..., description="Octree resolution used for generation.")
    name: str | None = Field(default=None, description="Display name; defaults to Model-<date>.")
