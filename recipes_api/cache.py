from __future__ import annotations

import json
import logging
from typing import List, Optional, Protocol, Sequence

import redis

from .models import Recipe
from .storage import RecipeRepository

logger = logging.getLogger(__name__)

# Unreachable Redis, or a cached payload that no longer decodes into recipes.
_CACHE_ERRORS = (redis.RedisError, ValueError, KeyError, TypeError, AttributeError)


class RecipeCache(Protocol):
    """Versioned cache for the full recipe list.

    Every write bumps the generation. Lists are stored per generation, so a
    list loaded before a write can only ever land under a generation that
    readers have already moved past.
    """

    def generation(self) -> int:
        ...

    def get_list(self, generation: int) -> Optional[List[Recipe]]:
        """Return the list cached for ``generation``, or ``None`` on a miss."""

    def set_list(self, generation: int, recipes: Sequence[Recipe]) -> None:
        ...

    def invalidate(self) -> None:
        ...


class RedisRecipeCache(RecipeCache):
    generation_key = "recipes:generation"

    def __init__(self, client: redis.Redis, ttl: int = 300) -> None:
        self._client = client
        self._ttl = ttl

    @classmethod
    def from_url(cls, url: str, ttl: int = 300, timeout: Optional[float] = None) -> "RedisRecipeCache":
        client = redis.Redis.from_url(url, decode_responses=True, socket_timeout=timeout)
        return cls(client, ttl=ttl)

    def _list_key(self, generation: int) -> str:
        return f"recipes:{generation}"

    def generation(self) -> int:
        return int(self._client.get(self.generation_key) or 0)

    def get_list(self, generation: int) -> Optional[List[Recipe]]:
        raw = self._client.get(self._list_key(generation))
        if raw is None:
            return None
        return [Recipe.from_dict(item) for item in json.loads(raw)]

    def set_list(self, generation: int, recipes: Sequence[Recipe]) -> None:
        payload = json.dumps([recipe.to_dict() for recipe in recipes])
        # Plain SET so an undecodable entry for this generation gets replaced.
        self._client.set(self._list_key(generation), payload, ex=self._ttl)

    def invalidate(self) -> None:
        self._client.incr(self.generation_key)


class CachedRecipeStorage(RecipeRepository):
    """Read-through cache in front of another repository.

    Only :meth:`list_recipes` is served from the cache; every successful write
    moves the cache to a new generation. A failing cache is logged and
    skipped, the backing repository stays authoritative.
    """

    def __init__(self, storage: RecipeRepository, cache: RecipeCache) -> None:
        self._storage = storage
        self._cache = cache

    def validate_id(self, recipe_id: str) -> str:
        return self._storage.validate_id(recipe_id)

    def list_recipes(self, *, timeout: Optional[float] = None) -> List[Recipe]:
        # Read before touching storage; a write racing with this load bumps it.
        try:
            generation = self._cache.generation()
        except _CACHE_ERRORS as exc:
            logger.warning("Recipe cache unavailable, reading from storage: %s", exc)
            return list(self._storage.list_recipes(timeout=timeout))

        try:
            cached = self._cache.get_list(generation)
        except _CACHE_ERRORS as exc:
            logger.warning("Recipe cache read failed, falling back to storage: %s", exc)
            cached = None
        if cached is not None:
            return cached

        recipes = list(self._storage.list_recipes(timeout=timeout))
        try:
            self._cache.set_list(generation, recipes)
        except _CACHE_ERRORS as exc:
            logger.warning("Recipe cache write failed: %s", exc)
        return recipes

    def get_recipe(self, recipe_id: str, *, timeout: Optional[float] = None) -> Recipe:
        return self._storage.get_recipe(recipe_id, timeout=timeout)

    def add_recipe(self, *, timeout: Optional[float] = None, **fields) -> Recipe:
        recipe = self._storage.add_recipe(timeout=timeout, **fields)
        self._invalidate()
        return recipe

    def update_recipe(self, recipe_id: str, *, timeout: Optional[float] = None, **fields) -> Recipe:
        recipe = self._storage.update_recipe(recipe_id, timeout=timeout, **fields)
        self._invalidate()
        return recipe

    def delete_recipe(self, recipe_id: str, *, timeout: Optional[float] = None) -> int:
        removed = self._storage.delete_recipe(recipe_id, timeout=timeout)
        self._invalidate()
        return removed

    def search_by_tag(self, tag: str, *, timeout: Optional[float] = None) -> List[Recipe]:
        return self._storage.search_by_tag(tag, timeout=timeout)

    def ping(self, *, timeout: Optional[float] = None) -> None:
        self._storage.ping(timeout=timeout)

    def _invalidate(self) -> None:
        try:
            self._cache.invalidate()
        except redis.RedisError as exc:
            logger.warning("Recipe cache invalidation failed: %s", exc)


__all__ = ["CachedRecipeStorage", "RecipeCache", "RedisRecipeCache"]
