from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class Recipe:
    """Domain object representing a stored recipe."""

    id: str
    name: str
    tags: List[str] = field(default_factory=list)
    ingredients: List[str] = field(default_factory=list)
    instructions: List[str] = field(default_factory=list)
    published_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Return the JSON representation used on the wire."""

        return {
            "id": self.id,
            "name": self.name,
            "tags": list(self.tags),
            "ingredients": list(self.ingredients),
            "instructions": list(self.instructions),
            "publishedAt": self.published_at.isoformat() if self.published_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Recipe":
        published_at = data.get("publishedAt")
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            tags=list(data.get("tags") or []),
            ingredients=list(data.get("ingredients") or []),
            instructions=list(data.get("instructions") or []),
            published_at=datetime.fromisoformat(published_at) if published_at else None,
        )


@dataclass
class User:
    """Credential record checked at sign-in."""

    username: str
    password_hash: str


__all__ = ["Recipe", "User"]
