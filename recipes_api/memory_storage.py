from __future__ import annotations

import re
import threading
import uuid
from dataclasses import replace
from typing import Dict, List, Optional, Sequence

from werkzeug.security import generate_password_hash

from .errors import InvalidID, InvalidInput, RecipeNotFound
from .models import Recipe, User
from .storage import RecipeRepository, UserRepository, utcnow

_RECIPE_ID_RE = re.compile(r"[0-9a-f]{32}")


class InMemoryRecipeStorage(RecipeRepository):
    """Process-local recipe storage.

    Used by the test-suite and for local development. The web server may run
    requests on several threads, so every mutation of the collection happens
    under ``self._lock``. Returned recipes are copies; callers cannot change
    stored state by mutating them.
    """

    def __init__(self) -> None:
        self._recipes: Dict[str, Recipe] = {}
        self._lock = threading.Lock()

    def validate_id(self, recipe_id: str) -> str:
        if not _RECIPE_ID_RE.fullmatch(recipe_id or ""):
            raise InvalidID(recipe_id)
        return recipe_id

    def list_recipes(self, *, timeout: Optional[float] = None) -> List[Recipe]:
        with self._lock:
            return [_copy(recipe) for recipe in self._recipes.values()]

    def get_recipe(self, recipe_id: str, *, timeout: Optional[float] = None) -> Recipe:
        self.validate_id(recipe_id)
        with self._lock:
            try:
                return _copy(self._recipes[recipe_id])
            except KeyError:
                raise RecipeNotFound(recipe_id) from None

    def add_recipe(
        self,
        *,
        name: str,
        tags: Sequence[str],
        ingredients: Sequence[str],
        instructions: Sequence[str],
        timeout: Optional[float] = None,
    ) -> Recipe:
        recipe = Recipe(
            id=uuid.uuid4().hex,
            name=name,
            tags=list(tags),
            ingredients=list(ingredients),
            instructions=list(instructions),
            published_at=utcnow(),
        )
        with self._lock:
            self._recipes[recipe.id] = recipe
        return _copy(recipe)

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
        self.validate_id(recipe_id)
        with self._lock:
            if recipe_id not in self._recipes:
                raise RecipeNotFound(recipe_id)
            updated = replace(
                self._recipes[recipe_id],
                name=name,
                tags=list(tags),
                ingredients=list(ingredients),
                instructions=list(instructions),
            )
            self._recipes[recipe_id] = updated
        return _copy(updated)

    def delete_recipe(self, recipe_id: str, *, timeout: Optional[float] = None) -> int:
        self.validate_id(recipe_id)
        with self._lock:
            if self._recipes.pop(recipe_id, None) is None:
                raise RecipeNotFound(recipe_id)
        return 1

    def search_by_tag(self, tag: str, *, timeout: Optional[float] = None) -> List[Recipe]:
        with self._lock:
            return [_copy(recipe) for recipe in self._recipes.values() if tag in recipe.tags]

    def ping(self, *, timeout: Optional[float] = None) -> None:
        return None


class InMemoryUserStorage(UserRepository):
    def __init__(self) -> None:
        self._users: Dict[str, User] = {}
        self._lock = threading.Lock()

    def get_user(self, username: str, *, timeout: Optional[float] = None) -> Optional[User]:
        with self._lock:
            return self._users.get(username)

    def add_user(self, username: str, password: str, *, timeout: Optional[float] = None) -> User:
        user = User(username=username, password_hash=generate_password_hash(password))
        with self._lock:
            if username in self._users:
                raise InvalidInput(f"User '{username}' already exists.")
            self._users[username] = user
        return user


def _copy(recipe: Recipe) -> Recipe:
    return replace(
        recipe,
        tags=list(recipe.tags),
        ingredients=list(recipe.ingredients),
        instructions=list(recipe.instructions),
    )


__all__ = ["InMemoryRecipeStorage", "InMemoryUserStorage"]
