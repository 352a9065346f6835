from __future__ import annotations

import logging
from datetime import timedelta
from typing import Callable, Optional, Tuple

from flask import Flask, g, jsonify, request, session
from werkzeug.exceptions import HTTPException

from .auth import (
    AuthGate,
    InMemorySessionStore,
    RedisSessionStore,
    SESSION_TOKEN_KEY,
    SessionStore,
    login_required,
)
from .cache import CachedRecipeStorage, RecipeCache, RedisRecipeCache
from .cli import register_cli
from .config import Settings, configure_logging, load_environment
from .errors import ConfigurationError, PersistenceError, RecipesAPIError
from .gcp_storage import FirestoreRecipeStorage, FirestoreUserStorage
from .memory_storage import InMemoryRecipeStorage, InMemoryUserStorage
from .models import Recipe
from .mongo_storage import MongoRecipeStorage, MongoUserStorage, connect
from .schemas import Credentials, RecipePayload, parse_body
from .storage import RecipeRepository, UserRepository

logger = logging.getLogger(__name__)


def create_app(
    storage: Optional[RecipeRepository] = None,
    *,
    users: Optional[UserRepository] = None,
    sessions: Optional[SessionStore] = None,
    cache: Optional[RecipeCache] = None,
    settings: Optional[Settings] = None,
) -> Flask:
    """Create and configure the Flask application.

    Parameters
    ----------
    storage, users, sessions, cache:
        Optional backends. Anything left as ``None`` is built from
        ``settings`` and checked for connectivity before the app is returned.
    settings:
        Application settings. When ``None`` they are read from the
        environment (and ``.env``, if present).

    Raises
    ------
    ConfigurationError
        When required settings are missing or a backend cannot be reached.
    """

    if settings is None:
        load_environment()
        settings = Settings.from_env()
    settings.validate()
    configure_logging(settings.log_level)

    app = Flask(__name__)
    app.config.setdefault("MAX_CONTENT_LENGTH", 1024 * 1024)
    app.config.update(
        SESSION_COOKIE_NAME="recipes_api",
        SESSION_COOKIE_HTTPONLY=True,
        STORE_TIMEOUT=settings.store_timeout,
    )
    app.secret_key = settings.secret_key
    app.permanent_session_lifetime = timedelta(seconds=settings.session_ttl)
    timeout = settings.store_timeout

    if storage is None or users is None:
        built_storage, built_users = _build_repositories(settings)
        if storage is None:
            storage = built_storage
            _check_reachable(settings.recipes_backend, lambda: built_storage.ping(timeout=timeout))
        if users is None:
            users = built_users

    if sessions is None:
        if settings.session_backend == "redis":
            redis_sessions = RedisSessionStore.from_url(
                settings.redis_url, ttl=settings.session_ttl, timeout=timeout
            )
            _check_reachable("redis sessions", redis_sessions.ping)
            sessions = redis_sessions
        else:
            sessions = InMemorySessionStore(ttl=settings.session_ttl)

    if cache is None and settings.cache_enabled:
        cache = RedisRecipeCache.from_url(settings.redis_url, ttl=settings.cache_ttl, timeout=timeout)
    if cache is not None:
        storage = CachedRecipeStorage(storage, cache)

    app.config["RECIPE_STORAGE"] = storage
    app.config["AUTH_GATE"] = AuthGate(users, sessions, enabled=settings.auth_enabled, timeout=timeout)

    logger.info(
        "Recipes API ready (storage=%s, sessions=%s, auth=%s, cache=%s)",
        settings.recipes_backend,
        settings.session_backend,
        "on" if settings.auth_enabled else "off",
        "on" if cache is not None else "off",
    )

    @app.errorhandler(RecipesAPIError)
    def handle_api_error(exc: RecipesAPIError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.path, exc.message, exc_info=exc)
        return jsonify(error=exc.message), exc.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        # Routing redirects (trailing slashes) are HTTPExceptions too.
        if exc.code is None or exc.code < 400:
            return exc
        return jsonify(error=exc.description), exc.code

    @app.get("/health")
    def health():
        return jsonify(status="ok")

    @app.post("/signin")
    def sign_in():
        gate: AuthGate = app.config["AUTH_GATE"]
        credentials = parse_body(Credentials, request.get_json(silent=True))

        token = gate.sign_in(credentials.username, credentials.password)
        gate.sign_out(session.get(SESSION_TOKEN_KEY))
        session.clear()
        session.permanent = True
        session[SESSION_TOKEN_KEY] = token
        return jsonify(message="User signed in")

    @app.post("/signout")
    def sign_out():
        gate: AuthGate = app.config["AUTH_GATE"]
        gate.sign_out(session.get(SESSION_TOKEN_KEY))
        session.clear()
        return jsonify(message="Signed out")

    @app.post("/recipes")
    @login_required
    def create_recipe():
        storage_backend: RecipeRepository = app.config["RECIPE_STORAGE"]
        payload = parse_body(RecipePayload, request.get_json(silent=True))

        recipe = storage_backend.add_recipe(
            name=payload.name,
            tags=payload.tags,
            ingredients=payload.ingredients,
            instructions=payload.instructions,
            timeout=timeout,
        )
        logger.info("Created recipe %s for %s", recipe.id, g.username)
        return jsonify(recipe.to_dict()), 201

    @app.get("/recipes")
    @login_required
    def list_recipes():
        storage_backend: RecipeRepository = app.config["RECIPE_STORAGE"]
        recipes = storage_backend.list_recipes(timeout=timeout)
        return jsonify([recipe.to_dict() for recipe in recipes])

    @app.get("/recipes/search")
    @login_required
    def search_recipes():
        storage_backend: RecipeRepository = app.config["RECIPE_STORAGE"]
        tag = request.args.get("tag", "")
        recipes = storage_backend.search_by_tag(tag, timeout=timeout)
        return jsonify([recipe.to_dict() for recipe in recipes])

    @app.get("/recipes/<recipe_id>")
    @login_required
    def get_recipe(recipe_id: str):
        storage_backend: RecipeRepository = app.config["RECIPE_STORAGE"]
        recipe = storage_backend.get_recipe(storage_backend.validate_id(recipe_id), timeout=timeout)
        return jsonify(recipe.to_dict())

    @app.put("/recipes/<recipe_id>")
    @login_required
    def update_recipe(recipe_id: str):
        storage_backend: RecipeRepository = app.config["RECIPE_STORAGE"]
        storage_backend.validate_id(recipe_id)
        payload = parse_body(RecipePayload, request.get_json(silent=True))

        updated_recipe = storage_backend.update_recipe(
            recipe_id,
            name=payload.name,
            tags=payload.tags,
            ingredients=payload.ingredients,
            instructions=payload.instructions,
            timeout=timeout,
        )
        logger.info("Updated recipe %s for %s", recipe_id, g.username)
        return jsonify(updated_recipe.to_dict())

    @app.delete("/recipes/<recipe_id>")
    @login_required
    def delete_recipe(recipe_id: str):
        storage_backend: RecipeRepository = app.config["RECIPE_STORAGE"]
        storage_backend.delete_recipe(storage_backend.validate_id(recipe_id), timeout=timeout)
        logger.info("Deleted recipe %s for %s", recipe_id, g.username)
        return jsonify(message="Recipe has been deleted")

    register_cli(app)

    return app


def _build_repositories(settings: Settings) -> Tuple[RecipeRepository, UserRepository]:
    if settings.recipes_backend == "firestore":
        return (
            FirestoreRecipeStorage.from_settings(settings),
            FirestoreUserStorage.from_settings(settings),
        )
    if settings.recipes_backend == "mongo":
        client = connect(settings)
        return (
            MongoRecipeStorage.from_settings(settings, client=client),
            MongoUserStorage.from_settings(settings, client=client),
        )
    return InMemoryRecipeStorage(), InMemoryUserStorage()


def _check_reachable(name: str, ping: Callable[[], None]) -> None:
    try:
        ping()
    except PersistenceError as exc:
        logger.critical("Cannot reach %s backend: %s", name, exc)
        raise ConfigurationError(f"Cannot reach {name} backend: {exc}") from exc


__all__ = ["create_app", "Recipe", "Settings"]
