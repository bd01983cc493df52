"""Result channel that hands pairing codes to a synchronous caller."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

# Published once, last: the caller may stop waiting, the account is authenticated.
PAIRING_COMPLETE = ""


class PairingChannel:
    """Ordered single-consumer channel of pairing codes.

    Producers publish codes in arrival order and finish with ``complete()``
    (the ``PAIRING_COMPLETE`` sentinel) or ``fail()``. Publishing never blocks.

    Usage:
        channel = PairingChannel()
        await gateway.connect(channel)
        code = await channel.get()
        if code == PAIRING_COMPLETE:
            ...  # already authenticated
    """

    _END: Any = object()

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False
        self._error: BaseException | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, code: str) -> None:
        """Publish a pairing code."""
        if self._closed:
            raise RuntimeError("Cannot publish to a closed pairing channel")
        self._queue.put_nowait(code)

    def complete(self) -> None:
        """Publish the terminal sentinel. No-op on a closed channel."""
        if self._closed:
            return
        self._queue.put_nowait(PAIRING_COMPLETE)
        self._close()

    def fail(self, error: BaseException) -> None:
        """End the channel without the sentinel. Readers get ``error``."""
        if self._closed:
            return
        self._error = error
        self._close()

    def _close(self) -> None:
        self._closed = True
        self._queue.put_nowait(self._END)

    async def get(self) -> str:
        """Wait for the next value.

        Once completed and drained, keeps returning ``PAIRING_COMPLETE``.

        Raises:
            The error given to ``fail()`` once the queued codes are drained.
        """
        item = await self._queue.get()
        if item is self._END:
            self._queue.put_nowait(self._END)
            if self._error is not None:
                raise self._error
            return PAIRING_COMPLETE
        return item

    def __aiter__(self) -> AsyncIterator[str]:
        return self._iter_values()

    async def _iter_values(self) -> AsyncIterator[str]:
        while True:
            item = await self._queue.get()
            if item is self._END:
                self._queue.put_nowait(self._END)
                if self._error is not None:
                    raise self._error
                return
            yield item
