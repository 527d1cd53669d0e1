"""Persistence helpers for the ``projects`` and ``project_models`` tables.

Every :class:`ProjectStore` method returns an :class:`Outcome` instead of
raising, so callers decide explicitly how a failed query is presented.  The
module-level functions encode the fail-open policy used by the HTTP layer:

- ``create_project`` returns ``None`` on failure
- ``get_projects`` and ``get_project_models`` return ``[]`` on failure
- ``save_model_to_project`` returns ``False`` on failure

Auto-save of completed predictions is idempotent: ``project_models`` carries a
unique ``prediction_id`` and rows are upserted with conflicts ignored, so two
overlapping polls cannot store the same prediction twice.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

from supabase import Client, create_client

from archifigure.core.config import ArchifigureConfig, config

logger = logging.getLogger(__name__)

T = TypeVar("T")

PROJECTS_TABLE = "projects"
PROJECT_MODELS_TABLE = "project_models"
DEFAULT_RESOLUTION = 256


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of a persistence call: either a value or an error message."""

    value: T | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> Outcome[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: str) -> Outcome[T]:
        return cls(error=error)

    def unwrap_or(self, default: T) -> T:
        """Return the value, or *default* when the call failed."""
        return self.value if self.ok else default


def _captured(action: str):
    """Turn exceptions raised by a store method into a failed Outcome."""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return Outcome.success(func(*args, **kwargs))
            except Exception as e:
                logger.error(f"Error {action}: {e}")
                return Outcome.failure(str(e))

        return wrapper

    return decorator


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def default_model_name() -> str:
    """Name given to a saved model when none is supplied: ``Model-YYYY-MM-DD``."""
    return f"Model-{datetime.now(timezone.utc).date().isoformat()}"


def _like_pattern(value: str) -> str:
    """Build an ``ilike`` pattern matching *value* case-insensitively.

    ``%`` and ``_`` are escaped.  PostgREST reads ``*`` as ``%`` and offers
    no escape for it, so it is narrowed to the single-character ``_``; the
    exact name is then compared on the returned rows.
    """
    escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped.replace("*", "_")


def create_supabase_client(cfg: ArchifigureConfig = config) -> Client:
    """Create a Supabase client from the configured URL and anonymous key.

    Raises:
        ValueError: If either credential is missing.
    """
    if not cfg.supabase_url or not cfg.supabase_anon_key:
        raise ValueError(
            "Missing Supabase credentials. Set SUPABASE_URL and SUPABASE_ANON_KEY."
        )
    client = create_client(cfg.supabase_url, cfg.supabase_anon_key)
    logger.info(f"Supabase client created for {cfg.supabase_url}")
    return client


class ProjectStore:
    """Query wrapper around the Supabase tables used by the application.

    The client is created on first use and then reused.  A failed creation
    is not cached, so the next call tries again.

    Args:
        client_getter: Callable returning a Supabase client.  Defaults to
            :func:`create_supabase_client`; tests pass a fake.
    """

    def __init__(self, client_getter: Callable[[], Client] = create_supabase_client):
        self._client_getter = client_getter
        self._client: Client | None = None

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = self._client_getter()
        return self._client

    # ==================== PROJECTS ====================

    @_captured("fetching projects")
    def list_projects(self) -> list[dict]:
        response = (
            self.client.table(PROJECTS_TABLE)
            .select("*")
            .order("created_at", desc=True)
            .execute()
        )
        return response.data or []

    @_captured("creating project")
    def create_project(self, name: str) -> dict:
        """Return the project called *name* (case-insensitive), creating it if needed.

        An existing project has its ``updated_at`` refreshed and is returned
        as found, so repeated calls with differently cased names resolve to
        the same row.
        """
        client = self.client
        response = (
            client.table(PROJECTS_TABLE)
            .select("*")
            .ilike("name", _like_pattern(name))
            .execute()
        )
        existing = next(
            (row for row in response.data or [] if row["name"].lower() == name.lower()),
            None,
        )
        if existing is not None:
            client.table(PROJECTS_TABLE).update({"updated_at": _utc_now()}).eq(
                "id", existing["id"]
            ).execute()
            logger.info(f"Reusing project {existing['id']} for name {name!r}")
            return existing

        response = client.table(PROJECTS_TABLE).insert({"name": name}).execute()
        project = response.data[0]
        logger.info(f"Created project {project['id']} ({name!r})")
        return project

    # ==================== PROJECT MODELS ====================

    @_captured("saving model to project")
    def insert_model(
        self,
        project_id: str,
        model_url: str,
        thumbnail_url: str,
        input_image: str,
        resolution: int,
        name: str | None = None,
    ) -> dict:
        data = {
            "project_id": project_id,
            "model_url": model_url,
            "thumbnail_url": thumbnail_url,
            "input_image": input_image,
            "resolution": resolution,
            "name": name or default_model_name(),
            "created_at": _utc_now(),
        }
        response = self.client.table(PROJECT_MODELS_TABLE).insert(data).execute()
        return response.data[0] if response.data else data

    @_captured("fetching project models")
    def list_models(self, project_id: str | None = None) -> list[dict]:
        query = self.client.table(PROJECT_MODELS_TABLE).select("*")
        if project_id:
            query = query.eq("project_id", project_id)
        response = query.order("created_at", desc=True).execute()
        return response.data or []

    @_captured("looking up saved predictions")
    def saved_prediction_ids(self, prediction_ids: list[str]) -> set[str]:
        if not prediction_ids:
            return set()
        response = (
            self.client.table(PROJECT_MODELS_TABLE)
            .select("prediction_id")
            .in_("prediction_id", prediction_ids)
            .execute()
        )
        return {row["prediction_id"] for row in response.data or []}

    @_captured("storing completed predictions")
    def upsert_prediction_models(self, rows: list[dict]) -> int:
        if not rows:
            return 0
        response = (
            self.client.table(PROJECT_MODELS_TABLE)
            .upsert(rows, on_conflict="prediction_id", ignore_duplicates=True)
            .execute()
        )
        return len(response.data or [])


# Process-wide store used when callers do not supply their own.
default_store = ProjectStore()


def create_project(name: str, store: ProjectStore | None = None) -> dict | None:
    """Find or create a project by name; ``None`` if the database call failed."""
    return (store or default_store).create_project(name).unwrap_or(None)


def get_projects(store: ProjectStore | None = None) -> list[dict]:
    """List all projects newest first; ``[]`` if the database call failed."""
    return (store or default_store).list_projects().unwrap_or([])


def save_model_to_project(
    project_id: str,
    model_url: str,
    thumbnail_url: str,
    input_image: str,
    resolution: int,
    name: str | None = None,
    store: ProjectStore | None = None,
) -> bool:
    """Insert a generated model under a project and report success."""
    outcome = (store or default_store).insert_model(
        project_id, model_url, thumbnail_url, input_image, resolution, name
    )
    return outcome.ok


def get_project_models(
    project_id: str | None = None, store: ProjectStore | None = None
) -> list[dict]:
    """List saved models newest first, optionally for one project."""
    return (store or default_store).list_models(project_id).unwrap_or([])


def prediction_to_model_row(prediction: dict[str, Any], project_id: str) -> dict:
    """Build a ``project_models`` row from a succeeded prediction."""
    prediction_input = prediction.get("input") or {}
    image = prediction_input.get("image", "")
    return {
        "project_id": project_id,
        "prediction_id": prediction["id"],
        "model_url": prediction["output"]["mesh"],
        "thumbnail_url": image,
        "input_image": image,
        "resolution": prediction_input.get("octree_resolution") or DEFAULT_RESOLUTION,
        "name": default_model_name(),
        "created_at": _utc_now(),
    }


def store_completed_predictions(
    predictions: Iterable[dict[str, Any]],
    project_name: str,
    store: ProjectStore | None = None,
) -> Outcome[int]:
    """Persist succeeded predictions that are not stored yet.

    The predictions are filed under the project called *project_name*, which
    is created on first use.

    Args:
        predictions: Succeeded predictions carrying ``output.mesh``.
        project_name: Name of the project receiving the rows.
        store: Store to use; defaults to the process-wide store.

    Returns:
        Outcome holding the number of rows written.
    """
    store = store or default_store
    completed = [p for p in predictions if p.get("id") and (p.get("output") or {}).get("mesh")]
    if not completed:
        return Outcome.success(0)

    project = store.create_project(project_name)
    if not project.ok:
        return Outcome.failure(project.error)

    saved = store.saved_prediction_ids([p["id"] for p in completed])
    if not saved.ok:
        return Outcome.failure(saved.error)

    rows = [
        prediction_to_model_row(p, project.value["id"])
        for p in completed
        if p["id"] not in saved.value
    ]
    written = store.upsert_prediction_models(rows)
    if written.ok and written.value:
        logger.info(f"Auto-saved {written.value} completed prediction(s) to {project_name!r}")
    return written


def autosave_completed_predictions(
    predictions: list[dict[str, Any]],
    project_name: str,
    store: ProjectStore | None = None,
) -> None:
    """Background entry point for auto-save; failures are only logged."""
    try:
        outcome = store_completed_predictions(predictions, project_name, store)
    except Exception:
        logger.exception("Auto-save error")
        return
    if not outcome.ok:
        logger.error(f"Auto-save error: {outcome.error}")
