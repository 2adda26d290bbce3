from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class MessageCreate(BaseModel):
    content: str = Field(min_length=1, max_length=4000)


class MessageResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: int
    investigation_id: str
    author_id: int
    author_name: str
    author_role: str
    content: str
    created_at: datetime
    edited: bool = False
    edited_at: datetime | None = None
