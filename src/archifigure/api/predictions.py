"""Prediction list reconciliation for ``GET /api/prediction``.

The provider owns the prediction lifecycle; this module only decides which
snapshots are fit to show and in what order.  The helpers are pure so the
route handler can stay focused on HTTP concerns.

A raw record is kept only when:

- it is a mapping with a non-empty ``id`` and a recognised ``status``
- ``input.image`` is present and non-empty
- its status is not ``canceled``
- a ``succeeded`` record has an ``output.mesh`` that parses as a URL
- any other record is active (``starting``/``processing``) with no ``error``

Kept records are ordered active-first, then newest-first by ``created_at``.
Python's sort is stable, so records with equal timestamps stay in the order
the provider returned them.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any

from pydantic import AnyUrl, TypeAdapter, ValidationError

ACTIVE_STATUSES = frozenset({"starting", "processing"})
KNOWN_STATUSES = frozenset({"starting", "processing", "succeeded", "failed", "canceled"})

_URL = TypeAdapter(AnyUrl)
_TIMESTAMP = TypeAdapter(datetime)


def is_valid_url(value: Any) -> bool:
    """Return ``True`` if *value* is a string that parses as an absolute URL."""
    if not isinstance(value, str) or not value:
        return False
    try:
        _URL.validate_python(value)
    except ValidationError:
        return False
    return True


def is_active(prediction: dict) -> bool:
    return prediction.get("status") in ACTIVE_STATUSES


def mesh_url(prediction: dict) -> str | None:
    output = prediction.get("output")
    if isinstance(output, dict):
        return output.get("mesh") or None
    return None


def is_displayable(prediction: Any) -> bool:
    """Apply the display filter to a single raw prediction record."""
    if not isinstance(prediction, dict):
        return False

    status = prediction.get("status")
    if not prediction.get("id") or status not in KNOWN_STATUSES:
        return False

    prediction_input = prediction.get("input")
    if not isinstance(prediction_input, dict) or not prediction_input.get("image"):
        return False

    if status == "canceled":
        return False

    if status == "succeeded":
        return is_valid_url(mesh_url(prediction))

    return status in ACTIVE_STATUSES and not prediction.get("error")


def created_at_timestamp(prediction: dict) -> float:
    """Return ``created_at`` as epoch seconds; unparseable values sort oldest."""
    try:
        return _TIMESTAMP.validate_python(prediction.get("created_at")).timestamp()
    except (ValidationError, OverflowError, OSError):
        return float("-inf")


def filter_and_sort_predictions(raw: Iterable[Any]) -> list[dict]:
    """Filter raw provider records and order them for display.

    Args:
        raw: Records as returned by the provider, in provider order.

    Returns:
        Displayable predictions, active ones first, then newest first.
    """
    kept = [p for p in raw if is_displayable(p)]
    return sorted(kept, key=lambda p: (not is_active(p), -created_at_timestamp(p)))


def completed_with_mesh(predictions: Iterable[dict]) -> list[dict]:
    """Select the succeeded predictions that carry a mesh output."""
    return [p for p in predictions if p.get("status") == "succeeded" and mesh_url(p)]
