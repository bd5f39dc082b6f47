"""Cooperative, idempotent cancellation signal shared down the call chain."""

import asyncio
import logging

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cancellation signal that propagates from parent to child tokens.

    Cancelling a token cancels all of its children. Cancelling twice is a
    no-op: the first reason wins.
    """

    def __init__(self, name: str = "run") -> None:
        """Initialize an un-cancelled token."""
        self.name = name
        self.reason: str | None = None
        self.timed_out = False
        self._event = asyncio.Event()
        self._children: list["CancellationToken"] = []

    @property
    def cancelled(self) -> bool:
        """Whether the token was cancelled."""
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled", *, timed_out: bool = False) -> bool:
        """Cancel this token and its children.

        Args:
            reason: Human-readable cause, reported on interrupted stages
            timed_out: Whether the cause is an exhausted time budget

        Returns:
            True if this call cancelled the token, False if it already was

        """
        if self._event.is_set():
            return False

        self.reason = reason
        self.timed_out = timed_out
        self._event.set()
        logger.debug(f"Cancellation token '{self.name}' cancelled: {reason}")

        for child in self._children:
            child.cancel(reason, timed_out=timed_out)
        return True

    def child(self, name: str) -> "CancellationToken":
        """Create a token cancelled together with this one."""
        token = CancellationToken(name)
        if self.cancelled:
            token.cancel(self.reason or "cancelled", timed_out=self.timed_out)
        else:
            self._children.append(token)
        return token

    def release(self, child: "CancellationToken") -> None:
        """Stop propagating to a child that is no longer in use."""
        if child in self._children:
            self._children.remove(child)

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        await self._event.wait()
