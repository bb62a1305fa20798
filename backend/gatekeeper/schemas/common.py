"""Common schemas."""

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """Base schema reading from ORM objects."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )
