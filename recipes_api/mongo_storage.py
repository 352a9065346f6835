from __future__ import annotations

import contextlib
import logging
from typing import Any, Iterator, List, Optional, Sequence

import pymongo
from bson import ObjectId
from pymongo import MongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError
from werkzeug.security import generate_password_hash

from .config import Settings
from .errors import InvalidID, InvalidInput, PersistenceError, RecipeNotFound
from .models import Recipe, User
from .storage import (
    RecipeRepository,
    UserRepository,
    document_to_recipe,
    recipe_document,
    utcnow,
)

logger = logging.getLogger(__name__)


@contextlib.contextmanager
def _bounded(action: str, timeout: Optional[float]) -> Iterator[None]:
    """Apply ``timeout`` to every operation in the block and wrap driver errors."""

    try:
        with pymongo.timeout(timeout):
            yield
    except PyMongoError as exc:
        logger.error("MongoDB %s failed: %s", action, exc)
        raise PersistenceError(f"Failed to {action}: {exc}") from exc


def connect(settings: Settings) -> MongoClient:
    # Retries are disabled so a failed operation surfaces on the first attempt.
    return MongoClient(settings.mongo_uri, retryReads=False, retryWrites=False, tz_aware=True)


class MongoRecipeStorage(RecipeRepository):
    """Recipe storage backed by a MongoDB collection keyed by ObjectId."""

    def __init__(self, *, client: MongoClient, database: str, collection_name: str = "recipes") -> None:
        self._client = client
        self._collection = client[database][collection_name]

    @classmethod
    def from_settings(cls, settings: Settings, client: Optional[MongoClient] = None) -> "MongoRecipeStorage":
        return cls(
            client=client or connect(settings),
            database=settings.mongo_database,
            collection_name=settings.recipes_collection,
        )

    def validate_id(self, recipe_id: str) -> str:
        if not ObjectId.is_valid(recipe_id or ""):
            raise InvalidID(recipe_id)
        return recipe_id

    def _object_id(self, recipe_id: str) -> ObjectId:
        return ObjectId(self.validate_id(recipe_id))

    def list_recipes(self, *, timeout: Optional[float] = None) -> List[Recipe]:
        with _bounded("list recipes", timeout):
            docs = list(self._collection.find({}))
        return [_to_recipe(doc) for doc in docs]

    def get_recipe(self, recipe_id: str, *, timeout: Optional[float] = None) -> Recipe:
        object_id = self._object_id(recipe_id)
        with _bounded("read recipe", timeout):
            doc = self._collection.find_one({"_id": object_id})

        if doc is None:
            raise RecipeNotFound(recipe_id)
        return _to_recipe(doc)

    def add_recipe(
        self,
        *,
        name: str,
        tags: Sequence[str],
        ingredients: Sequence[str],
        instructions: Sequence[str],
        timeout: Optional[float] = None,
    ) -> Recipe:
        doc = recipe_document(name=name, tags=tags, ingredients=ingredients, instructions=instructions)
        doc["_id"] = ObjectId()
        doc["published_at"] = utcnow()

        with _bounded("save recipe", timeout):
            self._collection.insert_one(doc)
        return _to_recipe(doc)

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
        object_id = self._object_id(recipe_id)
        fields = recipe_document(name=name, tags=tags, ingredients=ingredients, instructions=instructions)

        with _bounded("update recipe", timeout):
            doc = self._collection.find_one_and_update(
                {"_id": object_id},
                {"$set": fields},
                return_document=ReturnDocument.AFTER,
            )

        if doc is None:
            raise RecipeNotFound(recipe_id)
        return _to_recipe(doc)

    def delete_recipe(self, recipe_id: str, *, timeout: Optional[float] = None) -> int:
        object_id = self._object_id(recipe_id)
        with _bounded("delete recipe", timeout):
            result = self._collection.delete_one({"_id": object_id})

        if result.deleted_count == 0:
            raise RecipeNotFound(recipe_id)
        return result.deleted_count

    def search_by_tag(self, tag: str, *, timeout: Optional[float] = None) -> List[Recipe]:
        # Equality against an array field matches any element exactly.
        with _bounded("search recipes", timeout):
            docs = list(self._collection.find({"tags": tag}))
        return [_to_recipe(doc) for doc in docs]

    def ping(self, *, timeout: Optional[float] = None) -> None:
        with _bounded("reach MongoDB", timeout):
            self._client.admin.command("ping")


class MongoUserStorage(UserRepository):
    """Users stored with the username as ``_id`` so duplicates are rejected by the server."""

    def __init__(self, *, client: MongoClient, database: str, collection_name: str = "users") -> None:
        self._collection = client[database][collection_name]

    @classmethod
    def from_settings(cls, settings: Settings, client: Optional[MongoClient] = None) -> "MongoUserStorage":
        return cls(
            client=client or connect(settings),
            database=settings.mongo_database,
            collection_name=settings.users_collection,
        )

    def get_user(self, username: str, *, timeout: Optional[float] = None) -> Optional[User]:
        with _bounded("read user", timeout):
            doc = self._collection.find_one({"_id": username})

        if doc is None:
            return None
        return User(username=doc["_id"], password_hash=doc.get("password_hash", ""))

    def add_user(self, username: str, password: str, *, timeout: Optional[float] = None) -> User:
        user = User(username=username, password_hash=generate_password_hash(password))
        with _bounded("save user", timeout):
            try:
                self._collection.insert_one({"_id": username, "password_hash": user.password_hash})
            except DuplicateKeyError:
                raise InvalidInput(f"User '{username}' already exists.") from None
        return user


def _to_recipe(doc: Any) -> Recipe:
    return document_to_recipe(str(doc["_id"]), doc)


__all__ = ["MongoRecipeStorage", "MongoUserStorage", "connect"]
