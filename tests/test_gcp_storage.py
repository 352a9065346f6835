from __future__ import annotations

from pathlib import Path
import sys
from datetime import datetime, timezone
from unittest import mock

import pytest
from google.api_core import exceptions as gcloud_exceptions

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from recipes_api.errors import InvalidID, InvalidInput, PersistenceError, RecipeNotFound
from recipes_api.gcp_storage import FirestoreRecipeStorage, FirestoreUserStorage

DOC_ID = "AbCdEfGhIjKlMnOpQrSt"
PUBLISHED = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def snapshot(doc_id=DOC_ID, data=None, exists=True):
    snap = mock.Mock(id=doc_id, exists=exists)
    snap.to_dict.return_value = data
    return snap


def pasta_doc(**overrides):
    doc = {
        "name": "Pasta",
        "tags": ["italian"],
        "ingredients": ["pasta"],
        "instructions": ["Boil."],
        "published_at": PUBLISHED,
    }
    doc.update(overrides)
    return doc


def create_storage():
    client = mock.Mock()
    collection = client.collection.return_value
    return FirestoreRecipeStorage(client=client, collection_name="recipes"), client, collection


def test_add_recipe_sets_timestamp_and_disables_retries():
    storage, client, collection = create_storage()
    doc_ref = collection.document.return_value
    doc_ref.id = DOC_ID
    started = datetime.now(timezone.utc)

    recipe = storage.add_recipe(
        name="Pasta", tags=["italian"], ingredients=["pasta"], instructions=["Boil."], timeout=3.0
    )

    client.collection.assert_called_once_with("recipes")
    stored, = doc_ref.set.call_args.args
    assert stored["tags"] == ["italian"]
    assert stored["published_at"] >= started
    assert doc_ref.set.call_args.kwargs == {"retry": None, "timeout": 3.0}
    assert recipe.id == DOC_ID
    assert recipe.published_at == stored["published_at"]


def test_get_recipe_returns_document():
    storage, _, collection = create_storage()
    doc_ref = collection.document.return_value
    doc_ref.get.return_value = snapshot(data=pasta_doc())

    recipe = storage.get_recipe(DOC_ID, timeout=2.0)

    collection.document.assert_called_once_with(DOC_ID)
    doc_ref.get.assert_called_once_with(retry=None, timeout=2.0)
    assert recipe.name == "Pasta"
    assert recipe.published_at == PUBLISHED


def test_get_missing_recipe_raises_not_found():
    storage, _, collection = create_storage()
    collection.document.return_value.get.return_value = snapshot(exists=False)

    with pytest.raises(RecipeNotFound):
        storage.get_recipe(DOC_ID)


@pytest.mark.parametrize("bad_id", ["short", "a/b/c/d/e/f/g/h/i/j/k", "x" * 21, "", DOC_ID + "\n"])
def test_malformed_ids_never_reach_firestore(bad_id):
    storage, _, collection = create_storage()

    with pytest.raises(InvalidID):
        storage.get_recipe(bad_id)
    with pytest.raises(InvalidID):
        storage.delete_recipe(bad_id)

    collection.document.assert_not_called()


def test_update_uses_update_and_maps_not_found():
    storage, _, collection = create_storage()
    doc_ref = collection.document.return_value
    doc_ref.update.side_effect = gcloud_exceptions.NotFound("No document to update")

    with pytest.raises(RecipeNotFound):
        storage.update_recipe(DOC_ID, name="Ghost", tags=[], ingredients=[], instructions=[])

    doc_ref.set.assert_not_called()


def test_update_leaves_published_at_alone():
    storage, _, collection = create_storage()
    doc_ref = collection.document.return_value
    doc_ref.get.return_value = snapshot(data=pasta_doc(name="Lasagne"))

    recipe = storage.update_recipe(DOC_ID, name="Lasagne", tags=["baked"], ingredients=[], instructions=[])

    fields, = doc_ref.update.call_args.args
    assert "published_at" not in fields
    assert fields["name"] == "Lasagne"
    assert recipe.published_at == PUBLISHED


def test_delete_requires_existing_document():
    storage, client, collection = create_storage()
    doc_ref = collection.document.return_value

    assert storage.delete_recipe(DOC_ID) == 1
    client.write_option.assert_called_once_with(exists=True)
    assert doc_ref.delete.call_args.kwargs["option"] is client.write_option.return_value

    doc_ref.delete.side_effect = gcloud_exceptions.NotFound("No document to delete")
    with pytest.raises(RecipeNotFound):
        storage.delete_recipe(DOC_ID)


def test_search_filters_with_array_contains():
    storage, _, collection = create_storage()
    query = collection.where.return_value
    query.stream.return_value = [snapshot(data=pasta_doc())]

    recipes = storage.search_by_tag("italian", timeout=1.0)

    field_filter = collection.where.call_args.kwargs["filter"]
    assert (field_filter.field_path, field_filter.op_string, field_filter.value) == (
        "tags",
        "array_contains",
        "italian",
    )
    query.stream.assert_called_once_with(retry=None, timeout=1.0)
    assert [recipe.id for recipe in recipes] == [DOC_ID]


def test_api_errors_become_persistence_errors():
    storage, _, collection = create_storage()
    collection.order_by.return_value.stream.side_effect = gcloud_exceptions.ServiceUnavailable("down")

    with pytest.raises(PersistenceError):
        storage.list_recipes()


def test_user_storage_round_trip():
    client = mock.Mock()
    collection = client.collection.return_value
    users = FirestoreUserStorage(client=client)

    user = users.add_user("chef", "s3cret")
    stored, = collection.document.return_value.create.call_args.args
    collection.document.return_value.get.return_value = snapshot(doc_id="chef", data=stored)

    assert stored == {"password_hash": user.password_hash}
    assert users.get_user("chef") == user


def test_user_storage_rejects_duplicates_and_slashes():
    client = mock.Mock()
    collection = client.collection.return_value
    collection.document.return_value.create.side_effect = gcloud_exceptions.AlreadyExists("exists")
    users = FirestoreUserStorage(client=client)

    with pytest.raises(InvalidInput):
        users.add_user("chef", "s3cret")
    with pytest.raises(InvalidInput):
        users.add_user("a/b", "s3cret")
    assert users.get_user("a/b") is None
