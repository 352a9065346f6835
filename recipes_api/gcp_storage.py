from __future__ import annotations

import contextlib
import logging
import re
from typing import Iterator, List, Optional, Sequence

from google.api_core import exceptions as gcloud_exceptions
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
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

# Firestore auto-generated document ids.
_DOCUMENT_ID_RE = re.compile(r"[A-Za-z0-9]{20}")


@contextlib.contextmanager
def _translate_errors(action: str) -> Iterator[None]:
    try:
        yield
    except (gcloud_exceptions.GoogleAPICallError, gcloud_exceptions.RetryError) as exc:
        logger.error("Firestore %s failed: %s", action, exc)
        raise PersistenceError(f"Failed to {action}: {exc}") from exc


class FirestoreRecipeStorage(RecipeRepository):
    """Recipe storage backed by a Firestore collection.

    Calls are issued with ``retry=None`` so a single failed request surfaces
    immediately as :class:`PersistenceError`.
    """

    def __init__(
        self,
        *,
        project: Optional[str] = None,
        collection_name: str = "recipes",
        client: Optional[firestore.Client] = None,
    ) -> None:
        self._project = project
        self._collection_name = collection_name

        self._firestore_client = client or firestore.Client(project=project)
        self._collection = self._firestore_client.collection(collection_name)

    @classmethod
    def from_settings(cls, settings: Settings) -> "FirestoreRecipeStorage":
        """Build a storage instance from application settings."""

        return cls(project=settings.gcp_project, collection_name=settings.recipes_collection)

    def validate_id(self, recipe_id: str) -> str:
        if not _DOCUMENT_ID_RE.fullmatch(recipe_id or ""):
            raise InvalidID(recipe_id)
        return recipe_id

    def list_recipes(self, *, timeout: Optional[float] = None) -> List[Recipe]:
        query = self._collection.order_by("published_at", direction=firestore.Query.DESCENDING)
        with _translate_errors("list recipes"):
            docs = list(query.stream(retry=None, timeout=timeout))
        return [document_to_recipe(doc.id, doc.to_dict() or {}) for doc in docs]

    def get_recipe(self, recipe_id: str, *, timeout: Optional[float] = None) -> Recipe:
        doc_ref = self._collection.document(self.validate_id(recipe_id))
        with _translate_errors("read recipe"):
            snapshot = doc_ref.get(retry=None, timeout=timeout)

        if not snapshot.exists:
            raise RecipeNotFound(recipe_id)

        return document_to_recipe(snapshot.id, snapshot.to_dict() or {})

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
        doc["published_at"] = utcnow()

        doc_ref = self._collection.document()
        with _translate_errors("save recipe"):
            doc_ref.set(doc, retry=None, timeout=timeout)

        return document_to_recipe(doc_ref.id, doc)

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
        doc_ref = self._collection.document(self.validate_id(recipe_id))
        update_doc = recipe_document(
            name=name, tags=tags, ingredients=ingredients, instructions=instructions
        )

        with _translate_errors("update recipe"):
            try:
                doc_ref.update(update_doc, retry=None, timeout=timeout)
            except gcloud_exceptions.NotFound:
                raise RecipeNotFound(recipe_id) from None
            snapshot = doc_ref.get(retry=None, timeout=timeout)

        return document_to_recipe(snapshot.id, snapshot.to_dict() or {})

    def delete_recipe(self, recipe_id: str, *, timeout: Optional[float] = None) -> int:
        doc_ref = self._collection.document(self.validate_id(recipe_id))
        # Without the precondition Firestore treats deleting a missing document as success.
        option = self._firestore_client.write_option(exists=True)

        with _translate_errors("delete recipe"):
            try:
                doc_ref.delete(option=option, retry=None, timeout=timeout)
            except gcloud_exceptions.NotFound:
                raise RecipeNotFound(recipe_id) from None
        return 1

    def search_by_tag(self, tag: str, *, timeout: Optional[float] = None) -> List[Recipe]:
        query = self._collection.where(filter=FieldFilter("tags", "array_contains", tag))
        with _translate_errors("search recipes"):
            docs = list(query.stream(retry=None, timeout=timeout))
        return [document_to_recipe(doc.id, doc.to_dict() or {}) for doc in docs]

    def ping(self, *, timeout: Optional[float] = None) -> None:
        with _translate_errors("reach Firestore"):
            list(self._collection.limit(1).stream(retry=None, timeout=timeout))


class FirestoreUserStorage(UserRepository):
    """Users stored one document per username."""

    def __init__(
        self,
        *,
        project: Optional[str] = None,
        collection_name: str = "users",
        client: Optional[firestore.Client] = None,
    ) -> None:
        self._firestore_client = client or firestore.Client(project=project)
        self._collection = self._firestore_client.collection(collection_name)

    @classmethod
    def from_settings(cls, settings: Settings) -> "FirestoreUserStorage":
        return cls(project=settings.gcp_project, collection_name=settings.users_collection)

    def get_user(self, username: str, *, timeout: Optional[float] = None) -> Optional[User]:
        if not username or "/" in username:
            return None

        with _translate_errors("read user"):
            snapshot = self._collection.document(username).get(retry=None, timeout=timeout)

        if not snapshot.exists:
            return None
        data = snapshot.to_dict() or {}
        return User(username=snapshot.id, password_hash=data.get("password_hash", ""))

    def add_user(self, username: str, password: str, *, timeout: Optional[float] = None) -> User:
        if not username or "/" in username:
            raise InvalidInput(f"Invalid username '{username}'.")

        user = User(username=username, password_hash=generate_password_hash(password))
        with _translate_errors("save user"):
            try:
                self._collection.document(username).create(
                    {"password_hash": user.password_hash}, retry=None, timeout=timeout
                )
            except gcloud_exceptions.AlreadyExists:
                raise InvalidInput(f"User '{username}' already exists.") from None
        return user


__all__ = ["FirestoreRecipeStorage", "FirestoreUserStorage"]
