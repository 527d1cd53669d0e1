"""View-model state for Archifigure clients.

The views consume a single :class:`AppState` object passed to them by
reference.  Each piece of state is a :class:`Store` with explicit
subscribe/notify semantics, so views re-render when a value changes instead
of reading ambient globals.

Persistent preferences (authentication flag and colour theme) are read from
and written through to a key/value ``storage`` mapping, e.g. a browser's
local storage bridged into Python, or a plain ``dict`` in tests.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, MutableMapping
from dataclasses import dataclass, field
from typing import Any, Generic, Literal, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
S = TypeVar("S")

Theme = Literal["light", "dark"]

AUTH_STORAGE_KEY = "passwordAuthenticated"
THEME_STORAGE_KEY = "color-theme"
TERMINAL_STATUSES = frozenset({"succeeded", "failed", "canceled"})


class Store(Generic[T]):
    """A writable value that notifies subscribers when it changes.

    Subscribers are called immediately with the current value and then after
    every ``set``/``update``.
    """

    def __init__(self, value: T):
        self._value = value
        self._subscribers: list[Callable[[T], None]] = []

    def get(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        self._value = value
        for subscriber in list(self._subscribers):
            subscriber(value)

    def update(self, func: Callable[[T], T]) -> None:
        self.set(func(self._value))

    def subscribe(self, subscriber: Callable[[T], None]) -> Callable[[], None]:
        """Register *subscriber* and return a callable that unregisters it."""
        self._subscribers.append(subscriber)
        subscriber(self._value)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe


class DerivedStore(Generic[S, T]):
    """Read-only store whose value is computed from another store."""

    def __init__(self, source: Store[S], func: Callable[[S], T]):
        self._inner: Store[T] = Store(func(source.get()))
        source.subscribe(lambda value: self._inner.set(func(value)))

    def get(self) -> T:
        return self._inner.get()

    def subscribe(self, subscriber: Callable[[T], None]) -> Callable[[], None]:
        return self._inner.subscribe(subscriber)


@dataclass
class SelectedModel:
    """The model currently shown in the viewer."""

    url: str
    input_image: str | None = None
    resolution: int | None = None


@dataclass
class PendingSubmission:
    """A generation the user started whose terminal state is not yet confirmed."""

    id: str
    status: str
    input: dict[str, Any]
    created_at: str
    prompt: str | None = None
    project_id: str | None = None


def is_authenticated(storage: MutableMapping[str, str]) -> bool:
    return storage.get(AUTH_STORAGE_KEY) == "true"


def initial_theme(storage: MutableMapping[str, str], prefers_dark: bool = False) -> Theme:
    """Stored theme if any, otherwise the system preference."""
    stored = storage.get(THEME_STORAGE_KEY)
    if stored in ("light", "dark"):
        return stored
    return "dark" if prefers_dark else "light"


@dataclass
class AppState:
    """All client-side state shared by the views.

    Use :meth:`create` to build an instance from persisted preferences.
    """

    storage: MutableMapping[str, str] = field(default_factory=dict)
    authenticated: Store[bool] = field(default_factory=lambda: Store(False))
    theme: Store[Theme] = field(default_factory=lambda: Store("light"))
    current_project_id: Store[str | None] = field(default_factory=lambda: Store(None))
    projects: Store[list[dict]] = field(default_factory=lambda: Store([]))
    selected_model: Store[SelectedModel | None] = field(default_factory=lambda: Store(None))
    pending_submissions: Store[list[PendingSubmission]] = field(
        default_factory=lambda: Store([])
    )

    def __post_init__(self):
        self.is_dark_mode: DerivedStore[Theme, bool] = DerivedStore(
            self.theme, lambda value: value == "dark"
        )

    @classmethod
    def create(
        cls, storage: MutableMapping[str, str] | None = None, prefers_dark: bool = False
    ) -> AppState:
        """Build state from *storage* and the system dark-mode preference."""
        storage = storage if storage is not None else {}
        return cls(
            storage=storage,
            authenticated=Store(is_authenticated(storage)),
            theme=Store(initial_theme(storage, prefers_dark)),
        )

    # ==================== PREFERENCES ====================

    def set_authenticated(self, value: bool) -> None:
        self.storage[AUTH_STORAGE_KEY] = "true" if value else "false"
        self.authenticated.set(value)

    def set_theme(self, value: Theme) -> None:
        """Apply a theme the user picked and remember it."""
        self.storage[THEME_STORAGE_KEY] = value
        self.theme.set(value)

    def toggle_theme(self) -> None:
        self.set_theme("light" if self.theme.get() == "dark" else "dark")

    def system_theme_changed(self, prefers_dark: bool) -> None:
        """Follow a system preference change unless the user picked a theme."""
        if self.storage.get(THEME_STORAGE_KEY) in ("light", "dark"):
            return
        self.theme.set("dark" if prefers_dark else "light")

    # ==================== PENDING SUBMISSIONS ====================

    def add_pending(self, submission: PendingSubmission) -> None:
        self.pending_submissions.update(
            lambda pending: [p for p in pending if p.id != submission.id] + [submission]
        )

    def remove_pending(self, submission_id: str) -> None:
        self.pending_submissions.update(
            lambda pending: [p for p in pending if p.id != submission_id]
        )

    def reconcile_pending(self, predictions: list[dict]) -> list[PendingSubmission]:
        """Drop pending submissions the provider reports as finished.

        Args:
            predictions: Prediction dictionaries from ``GET /api/prediction``
                or ``GET /api/prediction/{id}``.

        Returns:
            The submissions that were removed.
        """
        finished = {
            p.get("id")
            for p in predictions
            if isinstance(p, dict) and p.get("status") in TERMINAL_STATUSES
        }
        removed = [p for p in self.pending_submissions.get() if p.id in finished]
        if removed:
            self.pending_submissions.update(
                lambda pending: [p for p in pending if p.id not in finished]
            )
            logger.debug(f"Resolved {len(removed)} pending submission(s)")
        return removed
