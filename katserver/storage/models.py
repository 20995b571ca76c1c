"""
Message data models.

This module defines the Pydantic record stored by the message storage layer.
Every field carries column metadata, so updates write the whole message.
"""

from datetime import datetime
from typing import Annotated, Optional

from pydantic import BaseModel, Field, field_validator

from ..database.schema import Column


class UniMessage(BaseModel):
    """
    Unified message model.

    Messages are stored in one table per message group; ``message_id`` is the
    primary key inside a group.
    """

    message_id: Annotated[Optional[str], Column(primary_key=True)] = Field(
        None, description="Message identifier, unique within its group")
    message_group: Annotated[Optional[str], Column()] = Field(
        None, description="Group the message belongs to; names its table")
    message_type: Annotated[Optional[str], Column()] = Field(
        None, description="Registered message type")
    message_content: Annotated[Optional[str], Column()] = Field(
        None, description="Message payload")
    sender_id: Annotated[Optional[str], Column()] = Field(
        None, description="Identifier of the sender")
    timestamp: Annotated[Optional[datetime], Column()] = Field(
        None, description="Time the message was sent")

    @field_validator('message_id', 'message_group')
    @classmethod
    def blank_to_none(cls, v):
        """Treat blank identifiers as missing."""
        if v is not None and len(v.strip()) == 0:
            return None
        return v

    def is_full_index(self) -> bool:
        """Whether both the group and the id are set."""
        return self.message_group is not None and self.message_id is not None
