from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Failure categories surfaced by the storage and auth layers."""

    INVALID_INPUT = "invalid_input"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    PERSISTENCE = "persistence"


HTTP_STATUS = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.PERSISTENCE: 500,
}


class RecipesAPIError(Exception):
    """Base class for errors the web layer translates into responses."""

    kind: ErrorKind = ErrorKind.PERSISTENCE

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.kind]


class InvalidInput(RecipesAPIError):
    kind = ErrorKind.INVALID_INPUT


class InvalidID(InvalidInput):
    def __init__(self, recipe_id: str) -> None:
        super().__init__(f"Invalid recipe id '{recipe_id}'.")
        self.recipe_id = recipe_id


class Unauthorized(RecipesAPIError):
    kind = ErrorKind.UNAUTHORIZED


class RecipeNotFound(RecipesAPIError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, recipe_id: str) -> None:
        super().__init__(f"Recipe '{recipe_id}' does not exist.")
        self.recipe_id = recipe_id


class PersistenceError(RecipesAPIError):
    kind = ErrorKind.PERSISTENCE


class ConfigurationError(Exception):
    """Raised at startup when required settings are missing or unusable."""


__all__ = [
    "ConfigurationError",
    "ErrorKind",
    "HTTP_STATUS",
    "InvalidID",
    "InvalidInput",
    "PersistenceError",
    "RecipeNotFound",
    "RecipesAPIError",
    "Unauthorized",
]
