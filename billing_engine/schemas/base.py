"""
Base Schema Classes for Pydantic Models

The HTTP surface speaks camelCase. Every schema generates camelCase aliases
and still accepts the snake_case field names, so request bodies may use
either form; responses are serialized by alias.

RULE: All response schemas that use `from_attributes=True` MUST inherit from BaseResponseSchema.
"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class BaseResponseSchema(BaseModel):
    """
    Base class for all response schemas that read from ORM models.

    Usage:
        class ProjectResponse(BaseResponseSchema):
            id: UUID
            code: str
            customer_id: Optional[UUID] = None    # serialized as customerId
    """
    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        # Allow population by field name or alias
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """
    Base class for create/input schemas.

    These schemas accept string UUIDs from the client and convert to UUID objects.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        # Allow extra fields to be ignored (forward compatibility)
        extra='ignore',
    )


class BaseUpdateSchema(BaseModel):
    """
    Base class for update/patch schemas.

    All fields are optional by default for partial updates.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra='ignore',
    )
