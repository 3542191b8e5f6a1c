"""Shared Pydantic base for API-facing value objects."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Pydantic model that reads and writes camelCase JSON keys.

    Fields are declared in snake_case; ``model_dump(by_alias=True)`` produces
    the camelCase payload the clients consume.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_api(self) -> dict:
        """Dump with camelCase keys, leaving datetimes for the JSON encoder."""
        return self.model_dump(by_alias=True)
