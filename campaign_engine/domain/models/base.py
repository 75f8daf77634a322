"""
Shared model configuration
Campaign payloads arrive from the UI in camelCase; models accept both spellings.
"""
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model accepting camelCase aliases and ORM attribute access."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def to_public_dict(self) -> dict:
        """Serialize for the service boundary (camelCase, JSON-safe)."""
        return self.model_dump(mode="json", by_alias=True)
