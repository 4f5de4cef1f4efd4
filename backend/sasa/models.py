"""Shared pydantic building blocks for API requests and responses."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Base model: camelCase on the wire, snake_case in Python and storage.

    ``populate_by_name`` lets the same models validate raw database rows,
    whose keys are snake_case.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        """JSON-safe dict with camelCase keys, for WebSocket frames."""
        return self.model_dump(mode="json", by_alias=True)


class PublicUser(ApiModel):
    """User fields safe to show to other users."""

    id: str
    name: str | None = None
    role: str | None = None
    profile_photo_url: str | None = None
