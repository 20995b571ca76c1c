"""
Message storage backed by the CRUD executor.

The message group names the table, so each group gets its own table created
on the first message stored in it.
"""

import logging
import threading
from typing import Iterable, List, Set

from ..database.executor import CrudExecutor, Predicate
from ..database.results import OperationResult
from .models import UniMessage

logger = logging.getLogger(__name__)


class MessageStorage:
    """Stores, reads, updates and deletes messages grouped by message group."""

    def __init__(self, executor: CrudExecutor):
        self.executor = executor
        self.executor.register(UniMessage)

    def create_message(self, message: UniMessage) -> OperationResult[None]:
        """
        Store a new message.

        Messages without both a group and an id are not stored.

        Args:
            message: Message to store

        Returns:
            Result of the insert, a no-op success for partial messages
        """
        if not message.is_full_index():
            logger.debug(f"Skipping create of message without full index: {message!r}")
            return OperationResult.success(executed=False)
        return self.executor.create(message.message_group, message)

    def get_message(self, index: UniMessage) -> OperationResult[List[UniMessage]]:
        """
        Read messages of the index's group.

        Reads by ``message_id`` when it is set, otherwise by the first
        non-null field of the index.
        """
        if index.message_id is not None:
            return self.executor.read(index.message_group, index,
                                      where=Predicate('message_id', index.message_id))
        return self.executor.read(index.message_group, index)

    def update_message(self, old: UniMessage, new: UniMessage) -> OperationResult[int]:
        """
        Replace a stored message.

        The update runs in the old message's group and matches the new
        message's first non-null field, its id for any fully indexed message.
        """
        return self.executor.update(old.message_group, new)

    def delete_message(self, index: UniMessage) -> OperationResult[int]:
        """
        Delete a message; the index must carry both the group and the id.
        """
        if not index.is_full_index():
            logger.debug(f"Skipping delete of message without full index: {index!r}")
            return OperationResult.success(0, executed=False)
        return self.executor.delete(index.message_group, index,
                                    where=Predicate('message_id', index.message_id))


class MessageTypeRegistry:
    """Thread-safe set of known message types."""

    def __init__(self, message_types: Iterable[str] = ()):
        self._types: Set[str] = set()
        self._lock = threading.Lock()
        for message_type in message_types:
            self.add_message_type(message_type)

    def add_message_type(self, message_type: str) -> bool:
        """
        Register a message type.

        Returns:
            False when the type was already registered
        """
        if not message_type:
            raise ValueError("Message type must be a non-empty string")
        with self._lock:
            if message_type in self._types:
                return False
            self._types.add(message_type)
        logger.debug(f"Registered message type {message_type}")
        return True

    def has_message_type(self, message_type: str) -> bool:
        return message_type in self._types

    def __contains__(self, message_type: str) -> bool:
        return self.has_message_type(message_type)

    def message_types(self) -> List[str]:
        with self._lock:
            return sorted(self._types)
