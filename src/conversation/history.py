"""
Message History - tree of messages with a single accepted mainline.

All messages are stored by id. A message may have many children
(concurrent replies to the same prompt) but at most one of them is
ACCEPTED, so walking accepted children from the root yields one linear
mainline. History is append-only except for full clears.
"""

from __future__ import annotations

from typing import Any

from src.conversation.models import Message


class MessageHistory:
    """Append-only message tree.

    Keeps an explicit parent -> children index, maintained on ``add``,
    so child lookup does not rescan the whole history. Children are
    kept in insertion order.
    """

    def __init__(self) -> None:
        self._messages: dict[str, Message] = {}
        self._children: dict[str, list[str]] = {}
        self._root_id: str | None = None
        self._latest_accepted_id: str | None = None

    def __len__(self) -> int:
        return len(self._messages)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._messages

    @property
    def root_id(self) -> str | None:
        return self._root_id

    @property
    def latest_accepted_id(self) -> str | None:
        return self._latest_accepted_id

    def add(self, message: Message) -> None:
        """Record a message.

        The first human message becomes the root. Re-adding an existing
        id is rejected since history is append-only.

        Raises:
            ValueError: If the id is already present.
        """
        if message.id in self._messages:
            raise ValueError(f"Message '{message.id}' already recorded")

        self._messages[message.id] = message
        if message.parent_id is not None:
            self._children.setdefault(message.parent_id, []).append(message.id)

        if self._root_id is None and message.is_human:
            self._root_id = message.id
            self._latest_accepted_id = message.id
        elif message.is_accepted:
            self._latest_accepted_id = message.id

    def get(self, message_id: str) -> Message | None:
        return self._messages.get(message_id)

    def children_of(self, message_id: str) -> list[Message]:
        return [self._messages[i] for i in self._children.get(message_id, [])]

    def accepted_child(self, message_id: str) -> Message | None:
        for child in self.children_of(message_id):
            if child.is_accepted:
                return child
        return None

    def all_messages(self) -> list[Message]:
        return list(self._messages.values())

    def mainline(self) -> list[Message]:
        """Walk from the root following the accepted child at each step.

        Bounded by the number of stored messages, so a corrupted parent
        relation can never make the walk loop.
        """
        line: list[Message] = []
        current = self._messages.get(self._root_id) if self._root_id else None
        seen: set[str] = set()

        while current is not None and current.id not in seen and len(line) < len(self._messages):
            seen.add(current.id)
            line.append(current)
            current = self.accepted_child(current.id)

        return line

    def tail(self) -> Message | None:
        """Last message on the mainline."""
        line = self.mainline()
        return line[-1] if line else None

    def clear(self) -> None:
        self._messages.clear()
        self._children.clear()
        self._root_id = None
        self._latest_accepted_id = None

    def stats(self) -> dict[str, Any]:
        return {
            "total_messages": len(self._messages),
            "mainline_length": len(self.mainline()),
            "root_message_id": self._root_id,
            "latest_accepted_message_id": self._latest_accepted_id,
        }

    @classmethod
    def from_messages(cls, messages: list[Message]) -> MessageHistory:
        """Rebuild a history from a persisted message list (insertion order)."""
        history = cls()
        for message in messages:
            history.add(message)
        return history
