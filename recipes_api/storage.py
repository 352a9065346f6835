from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence

from .models import Recipe, User


class RecipeRepository(Protocol):
    """Protocol describing the behaviour required by the web layer.

    Every operation takes a ``timeout`` (seconds) that bounds each call the
    backend makes. Failures are reported with the exceptions from
    :mod:`recipes_api.errors`.
    """

    def validate_id(self, recipe_id: str) -> str:
        """Return ``recipe_id`` unchanged or raise :class:`InvalidID`."""

    def list_recipes(self, *, timeout: Optional[float] = None) -> List[Recipe]:
        """Return every stored recipe. Callers must not rely on the order."""

    def get_recipe(self, recipe_id: str, *, timeout: Optional[float] = None) -> Recipe:
        """Return a single recipe or raise :class:`RecipeNotFound`."""

    def add_recipe(
        self,
        *,
        name: str,
        tags: Sequence[str],
        ingredients: Sequence[str],
        instructions: Sequence[str],
        timeout: Optional[float] = None,
    ) -> Recipe:
        """Persist a new recipe and return the stored instance."""

    def update_recipe(
        self,
        recipe_id: str,
        *,
        name: str,
        tags: Sequence[str],
        ingredients: Sequence[str],
        instructions: Sequence[str],
        timeout: Optional[float] = None,
    ) -> Recipe:
        """Replace the mutable fields of an existing recipe."""

    def delete_recipe(self, recipe_id: str, *, timeout: Optional[float] = None) -> int:
        """Remove a recipe and return the number of records removed."""

    def search_by_tag(self, tag: str, *, timeout: Optional[float] = None) -> List[Recipe]:
        """Return the recipes whose tags contain ``tag`` exactly."""

    def ping(self, *, timeout: Optional[float] = None) -> None:
        """Raise :class:`PersistenceError` if the backend is unreachable."""


class UserRepository(Protocol):
    """Credential records consulted by the auth gate."""

    def get_user(self, username: str, *, timeout: Optional[float] = None) -> Optional[User]:
        """Return the user or ``None`` when no such username exists."""

    def add_user(self, username: str, password: str, *, timeout: Optional[float] = None) -> User:
        """Hash ``password`` and store a new user."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def recipe_document(
    *,
    name: str,
    tags: Sequence[str],
    ingredients: Sequence[str],
    instructions: Sequence[str],
) -> Dict[str, Any]:
    """Build the mutable part of a stored recipe document."""

    return {
        "name": name,
        "tags": list(tags),
        "ingredients": list(ingredients),
        "instructions": list(instructions),
    }


def document_to_recipe(doc_id: str, data: Dict[str, Any]) -> Recipe:
    published_at = data.get("published_at")
    if isinstance(published_at, datetime):
        if published_at.tzinfo is None:
            # Stored timestamps are always UTC.
            published_at = published_at.replace(tzinfo=timezone.utc)
    else:
        published_at = None

    return Recipe(
        id=doc_id,
        name=data.get("name", ""),
        tags=list(data.get("tags") or []),
        ingredients=list(data.get("ingredients") or []),
        instructions=list(data.get("instructions") or []),
        published_at=published_at,
    )


__all__ = [
    "RecipeRepository",
    "UserRepository",
    "document_to_recipe",
    "recipe_document",
    "utcnow",
]
