from __future__ import annotations

from pathlib import Path
import json
import sys
from unittest import mock

import redis

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from recipes_api.cache import CachedRecipeStorage, RedisRecipeCache
from recipes_api.memory_storage import InMemoryRecipeStorage


class DictCache:
    def __init__(self) -> None:
        self.current = 0
        self.lists = {}

    def generation(self):
        return self.current

    def get_list(self, generation):
        return self.lists.get(generation)

    def set_list(self, generation, recipes):
        self.lists[generation] = list(recipes)

    def invalidate(self):
        self.current += 1


class RacingRecipeStorage(InMemoryRecipeStorage):
    """Takes its snapshot, then lets a write land before returning it."""

    def __init__(self) -> None:
        super().__init__()
        self.concurrent_write = None

    def list_recipes(self, *, timeout=None):
        snapshot = super().list_recipes(timeout=timeout)
        if self.concurrent_write is not None:
            write, self.concurrent_write = self.concurrent_write, None
            write()
        return snapshot


def add(storage, name):
    return storage.add_recipe(name=name, tags=[], ingredients=[], instructions=[])


def test_list_reads_through_cache():
    backing = mock.Mock(wraps=InMemoryRecipeStorage())
    cache = DictCache()
    storage = CachedRecipeStorage(backing, cache)
    add(storage, "Cake")

    first = storage.list_recipes()
    second = storage.list_recipes()

    assert [recipe.name for recipe in first] == ["Cake"]
    assert second == first
    assert backing.list_recipes.call_count == 1


def test_writes_invalidate_cached_list():
    cache = DictCache()
    storage = CachedRecipeStorage(InMemoryRecipeStorage(), cache)
    recipe = add(storage, "Cake")
    storage.list_recipes()

    storage.update_recipe(recipe.id, name="Pie", tags=[], ingredients=[], instructions=[])
    assert [item.name for item in storage.list_recipes()] == ["Pie"]

    storage.delete_recipe(recipe.id)
    assert storage.list_recipes() == []
    assert cache.current == 3


def test_write_during_list_load_does_not_leave_stale_list_cached():
    backing = RacingRecipeStorage()
    storage = CachedRecipeStorage(backing, DictCache())
    add(storage, "Cake")
    backing.concurrent_write = lambda: add(storage, "Pie")

    stale = storage.list_recipes()
    fresh = storage.list_recipes()

    assert [recipe.name for recipe in stale] == ["Cake"]
    assert sorted(recipe.name for recipe in fresh) == ["Cake", "Pie"]


def test_cache_failures_fall_back_to_storage():
    cache = mock.Mock()
    cache.generation.return_value = 0
    cache.get_list.side_effect = redis.ConnectionError("refused")
    cache.set_list.side_effect = redis.ConnectionError("refused")
    cache.invalidate.side_effect = redis.ConnectionError("refused")
    storage = CachedRecipeStorage(InMemoryRecipeStorage(), cache)

    add(storage, "Cake")

    assert [recipe.name for recipe in storage.list_recipes()] == ["Cake"]

    cache.generation.side_effect = redis.ConnectionError("refused")
    assert [recipe.name for recipe in storage.list_recipes()] == ["Cake"]


def test_corrupt_cached_payload_falls_back_to_storage():
    client = mock.Mock()
    storage = CachedRecipeStorage(InMemoryRecipeStorage(), RedisRecipeCache(client))
    add(storage, "Cake")

    for corrupt in ("not json", json.dumps([{"name": "Cake"}]), json.dumps(["Cake"])):
        client.get.side_effect = ["4", corrupt]
        assert [recipe.name for recipe in storage.list_recipes()] == ["Cake"]
        assert client.set.call_args.args[0] == "recipes:4"

    client.get.side_effect = None
    client.get.return_value = "garbage"
    assert [recipe.name for recipe in storage.list_recipes()] == ["Cake"]


def test_redis_cache_keys_lists_by_generation():
    recipe = add(InMemoryRecipeStorage(), "Cake")
    client = mock.Mock()
    cache = RedisRecipeCache(client, ttl=30)

    client.get.return_value = None
    assert cache.generation() == 0
    client.get.return_value = "7"
    assert cache.generation() == 7
    client.get.assert_called_with("recipes:generation")

    cache.set_list(7, [recipe])
    key, payload = client.set.call_args.args
    client.get.return_value = payload

    assert key == "recipes:7"
    assert client.set.call_args.kwargs == {"ex": 30}
    assert json.loads(payload)[0]["name"] == "Cake"
    assert cache.get_list(7) == [recipe]
    client.get.assert_called_with("recipes:7")

    cache.invalidate()
    client.incr.assert_called_once_with("recipes:generation")
