"""Base models for ted."""

from pydantic import BaseModel, ConfigDict


class TedBaseModel(BaseModel):
    """Base model for schema descriptors."""

    model_config = ConfigDict(
        populate_by_name=True,
        use_enum_values=True,
        extra="forbid",
    )
