"""Tests for PairingChannel."""

from __future__ import annotations

import asyncio

import pytest

from gowa_gateway.errors import ConnectError
from gowa_gateway.pairing import PAIRING_COMPLETE, PairingChannel

from .conftest import collect


async def test_codes_then_sentinel_in_order():
    channel = PairingChannel()
    channel.publish("ABC123")
    channel.publish("DEF456")
    channel.complete()

    assert await collect(channel) == ["ABC123", "DEF456", PAIRING_COMPLETE]
    assert channel.closed is True


async def test_complete_without_codes():
    channel = PairingChannel()
    channel.complete()

    assert await channel.get() == PAIRING_COMPLETE
    # Reading past the end keeps reporting completion
    assert await channel.get() == PAIRING_COMPLETE


async def test_complete_is_idempotent():
    channel = PairingChannel()
    channel.complete()
    channel.complete()
    channel.fail(ConnectError("late"))

    assert await collect(channel) == [PAIRING_COMPLETE]


async def test_publish_after_close_rejected():
    channel = PairingChannel()
    channel.complete()

    with pytest.raises(RuntimeError):
        channel.publish("ABC123")


async def test_fail_raises_after_queued_codes():
    channel = PairingChannel()
    channel.publish("ABC123")
    channel.fail(ConnectError("pairing timeout"))

    assert await channel.get() == "ABC123"
    with pytest.raises(ConnectError, match="pairing timeout"):
        await channel.get()
    with pytest.raises(ConnectError):
        await channel.get()


async def test_get_waits_for_producer():
    channel = PairingChannel()
    reader = asyncio.create_task(channel.get())
    await asyncio.sleep(0)
    assert not reader.done()

    channel.publish("ABC123")

    assert await asyncio.wait_for(reader, timeout=1.0) == "ABC123"


def test_publish_never_blocks():
    channel = PairingChannel()
    for i in range(1000):
        channel.publish(f"code-{i}")
    assert channel.closed is False
