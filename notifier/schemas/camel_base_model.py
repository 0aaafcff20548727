import uuid
from datetime import datetime, date
from enum import Enum
from pydantic import BaseModel, ConfigDict, field_serializer
from pydantic.alias_generators import to_camel


class CamelCaseBaseModel(BaseModel):
    """
    Base model with camelCase field aliases.

    - Input: camelCase keys from job triggers are accepted alongside snake_case.
    - Output: call `model_dump(by_alias=True)` to serialize fields back to camelCase.
    - UUIDs, Enums and datetimes are converted to strings; nested models are
      dumped with their own aliases.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    @field_serializer("*")
    def serialize_any(self, value):
        if isinstance(value, BaseModel):
            return value.model_dump(by_alias=True)

        if isinstance(value, uuid.UUID):
            return str(value)

        if isinstance(value, Enum):
            return value.value

        # datetime must come before date
        if isinstance(value, datetime):
            return value.isoformat()

        if isinstance(value, date):
            return value.isoformat()

        if isinstance(value, (list, tuple, set)):
            return [self.serialize_any(item) for item in value]

        if isinstance(value, dict):
            return {key: self.serialize_any(val) for key, val in value.items()}

        return value
