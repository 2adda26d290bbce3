from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .investigation import ChatMessage


class InterviewRequest(BaseModel):
    messages: list[ChatMessage] = Field(min_length=1)


class InterviewTurn(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    next_question: str
    question_count: int = 0
    is_final_question: bool = False
