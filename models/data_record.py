# models/data_record.py
from pydantic import BaseModel, model_validator
from typing import Any, Optional

class MessageRequest(BaseModel):
    topic: str
    key: Optional[str] = None
    message: Any

    @model_validator(mode="after")
    def check_not_empty(self):
        # A null message is only meaningful as a keyed tombstone
        if self.message is None and self.key is None:
            raise ValueError("message may only be null when a key is given")
        return self

class PublishResult(BaseModel):
    topic: str
    partition: int
    offset: int
