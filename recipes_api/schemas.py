from __future__ import annotations

from typing import Any, List

from pydantic import BaseModel, ConfigDict, Field, StrictStr, ValidationError

from .errors import InvalidInput


class RecipePayload(BaseModel):
    """Body accepted by create and update.

    ``id`` and ``publishedAt`` are server-owned; if a client sends them they
    are ignored.
    """

    model_config = ConfigDict(extra="ignore")

    name: StrictStr = Field(min_length=1)
    tags: List[StrictStr] = Field(default_factory=list)
    ingredients: List[StrictStr] = Field(default_factory=list)
    instructions: List[StrictStr] = Field(default_factory=list)


class Credentials(BaseModel):
    model_config = ConfigDict(extra="ignore")

    username: StrictStr = Field(min_length=1)
    password: StrictStr = Field(min_length=1)


def parse_body(model: type[BaseModel], data: Any) -> Any:
    """Validate a decoded JSON body, raising :class:`InvalidInput` on failure."""

    if not isinstance(data, dict):
        raise InvalidInput("Request body must be a JSON object")
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'body'}: {error['msg']}"
            for error in exc.errors()
        )
        raise InvalidInput(f"Invalid request body: {details}") from exc


__all__ = ["Credentials", "RecipePayload", "parse_body"]
