"""One-shot request/response mailbox.

Hands a picker's result from the screen that fulfills a request back to
the screen that opened it. The opener owns the token; every token is
fulfilled at most once and consumed at most once.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from loguru import logger

T = TypeVar("T")


class MailboxError(Exception):
    """Raised when a token is unknown or already fulfilled."""


@dataclass
class _Slot(Generic[T]):
    fulfilled: bool = False
    value: T | None = None


@dataclass
class Mailbox(Generic[T]):
    """Token-keyed one-shot mailbox."""

    name: str = "mailbox"
    _slots: dict[str, _Slot[T]] = field(default_factory=dict)

    def open(self) -> str:
        """Open a request and return the token the fulfilling side must echo."""
        token = str(uuid.uuid4())
        self._slots[token] = _Slot()
        logger.bind(mailbox=self.name, token=token).debug("Mailbox request opened")
        return token

    def fulfill(self, token: str, value: T) -> None:
        slot = self._slots.get(token)
        if slot is None:
            raise MailboxError(f"Unknown or consumed token: {token}")
        if slot.fulfilled:
            raise MailboxError(f"Token already fulfilled: {token}")
        slot.fulfilled = True
        slot.value = value
        logger.bind(mailbox=self.name, token=token).debug("Mailbox request fulfilled")

    def consume(self, token: str) -> T | None:
        """Take the value for a token.

        Returns None while the request is still pending. Once a fulfilled
        value is returned the token is discarded, so a second consume also
        returns None.
        """
        slot = self._slots.get(token)
        if slot is None or not slot.fulfilled:
            return None
        del self._slots[token]
        return slot.value

    def cancel(self, token: str) -> None:
        self._slots.pop(token, None)

    def is_pending(self, token: str) -> bool:
        slot = self._slots.get(token)
        return slot is not None and not slot.fulfilled
