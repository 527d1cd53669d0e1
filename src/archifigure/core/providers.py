"""HTTP clients for the external generation and hosting providers.

Replicate prediction lookups and text-to-image runs go through the
``replicate`` SDK.  The deployment-filtered prediction list and the imgbb
upload are plain ``httpx`` calls, since the SDK's ``predictions.list`` cannot
filter by deployment.

Transport failures, non-2xx responses and undecodable bodies are all raised
as :class:`ProviderError`; the route handlers decide how each failure is
presented.  A custom httpx transport can be injected into both clients,
which is how the tests serve canned provider responses.
"""

from __future__ import annotations

import base64
import logging
from typing import Any

import httpx
import replicate
from replicate.exceptions import ReplicateError

from archifigure.core.config import ArchifigureConfig

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Raised when a provider call fails or returns an unusable response."""


def _decode(response: httpx.Response, provider: str) -> Any:
    try:
        response.raise_for_status()
        return response.json()
    except httpx.HTTPStatusError as e:
        raise ProviderError(f"{provider} returned HTTP {response.status_code}") from e
    except ValueError as e:
        raise ProviderError(f"{provider} returned a non-JSON body") from e


def _sdk_failure(e: Exception) -> ProviderError:
    if isinstance(e, ReplicateError):
        detail = f": {e.detail}" if e.detail else ""
        return ProviderError(f"Replicate returned HTTP {e.status}{detail}")
    if isinstance(e, httpx.HTTPError):
        return ProviderError(f"Replicate request failed: {e}")
    return ProviderError(f"Replicate returned an unusable prediction: {e}")


class ReplicateClient:
    """Async access to Replicate predictions.

    Args:
        api_token: Replicate API token sent as a bearer token.
        base_url: Root of the Replicate API.
        deployment: ``owner/name`` of the deployment whose predictions are listed.
        image_model: ``owner/name`` of the text-to-image model.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (used by tests).
    """

    def __init__(
        self,
        api_token: str,
        *,
        base_url: str = "https://api.replicate.com",
        deployment: str = "cygnus-holding/hunyuan3d-2",
        image_model: str = "google/imagen-3",
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_token = api_token
        self.base_url = base_url.rstrip("/")
        self.deployment = deployment
        self.image_model = image_model
        self.timeout = timeout
        self._transport = transport
        self.sdk = replicate.Client(
            api_token=api_token,
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(cls, cfg: ArchifigureConfig) -> ReplicateClient:
        return cls(
            cfg.replicate_api_token,
            base_url=cfg.replicate_base_url,
            deployment=cfg.replicate_deployment,
            image_model=cfg.image_model,
            timeout=cfg.request_timeout,
        )

    async def list_predictions(self) -> list[dict]:
        """Fetch the deployment's current predictions (never cached).

        Returns:
            The raw ``results`` list, or ``[]`` when the provider sent none.

        Raises:
            ProviderError: On transport failure, non-2xx status, or bad body.
        """
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Authorization": f"Bearer {self.api_token}"},
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.get(
                    "/v1/predictions",
                    params={"deployment": self.deployment},
                    headers={"Cache-Control": "no-store"},
                )
        except httpx.HTTPError as e:
            raise ProviderError(f"Replicate request failed: {e}") from e

        payload = _decode(response, "Replicate")
        if not isinstance(payload, dict):
            raise ProviderError("Replicate returned an unexpected payload")
        results = payload.get("results") or []
        if not isinstance(results, list):
            raise ProviderError("Replicate returned an unexpected payload")
        return results

    async def get_prediction(self, prediction_id: str) -> dict:
        """Fetch a single prediction by id."""
        try:
            prediction = await self.sdk.predictions.async_get(prediction_id)
        except (ReplicateError, httpx.HTTPError, ValueError) as e:
            raise _sdk_failure(e) from e
        return prediction.dict(exclude_unset=True)

    async def create_image_prediction(self, model_input: dict[str, Any]) -> dict:
        """Run the text-to-image model and wait for its prediction.

        ``wait=True`` asks Replicate to hold the request open until the
        prediction finishes (or its own wait limit expires), so the returned
        prediction normally already carries its output.
        """
        try:
            prediction = await self.sdk.models.predictions.async_create(
                model=self.image_model,
                input=model_input,
                wait=True,
            )
        except (ReplicateError, httpx.HTTPError, ValueError) as e:
            raise _sdk_failure(e) from e
        return prediction.dict(exclude_unset=True)


class ImgbbError(ProviderError):
    """imgbb answered but reported that the upload did not succeed."""


class ImgbbClient:
    """Uploads images to imgbb and returns their hosted URLs."""

    def __init__(
        self,
        api_key: str,
        *,
        upload_url: str = "https://api.imgbb.com/1/upload",
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.upload_url = upload_url
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_config(cls, cfg: ArchifigureConfig) -> ImgbbClient:
        return cls(cfg.imgbb_api_key, upload_url=cfg.imgbb_upload_url, timeout=cfg.request_timeout)

    async def upload(self, content: bytes) -> dict:
        """Upload raw image bytes.

        Returns:
            Dictionary with ``url`` and ``delete_url``.

        Raises:
            ImgbbError: If imgbb reports ``success: false``.
            ProviderError: On any other failure.
        """
        encoded = base64.b64encode(content).decode("ascii")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.upload_url,
                    data={"key": self.api_key, "image": encoded},
                )
        except httpx.HTTPError as e:
            raise ProviderError(f"imgbb request failed: {e}") from e

        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderError("imgbb returned a non-JSON body") from e

        if not isinstance(payload, dict) or not payload.get("success"):
            raise ImgbbError("imgbb reported an unsuccessful upload")

        data = payload.get("data") or {}
        return {"url": data.get("url"), "delete_url": data.get("delete_url")}
