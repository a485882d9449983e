"""Tests for the in-flight delivery gate."""

from __future__ import annotations

import asyncio

import pytest

from slack_relay.services.relay.dedup import DeliveryDeduplicator, delivery_key
from slack_relay.services.relay.event_classifier import ChannelKind, EventKind, InboundEvent


def test_delivery_key_uses_channel_and_ts():
    event = InboundEvent(
        kind=EventKind.MESSAGE,
        event_ts="123.456",
        user="U9",
        text="hi",
        channel="C1",
        channel_kind=ChannelKind.CHANNEL,
    )
    assert delivery_key(event) == "C1:123.456"


@pytest.mark.asyncio
async def test_second_acquire_rejected_until_release():
    dedup = DeliveryDeduplicator()
    assert await dedup.try_acquire("C1:1") is True
    assert await dedup.try_acquire("C1:1") is False
    assert await dedup.try_acquire("C1:2") is True

    await dedup.release("C1:1")
    assert await dedup.try_acquire("C1:1") is True


@pytest.mark.asyncio
async def test_concurrent_acquires_single_winner():
    dedup = DeliveryDeduplicator()
    results = await asyncio.gather(*(dedup.try_acquire("C1:1") for _ in range(10)))
    assert results.count(True) == 1


@pytest.mark.asyncio
async def test_hold_releases_on_exit():
    dedup = DeliveryDeduplicator()
    async with dedup.hold("C1:1") as acquired:
        assert acquired is True
        assert "C1:1" in dedup.in_flight
    assert dedup.in_flight == frozenset()


@pytest.mark.asyncio
async def test_hold_releases_on_exception():
    dedup = DeliveryDeduplicator()
    with pytest.raises(RuntimeError):
        async with dedup.hold("C1:1"):
            raise RuntimeError("boom")
    assert dedup.in_flight == frozenset()


@pytest.mark.asyncio
async def test_losing_hold_does_not_release_winner():
    dedup = DeliveryDeduplicator()
    async with dedup.hold("C1:1") as first:
        async with dedup.hold("C1:1") as second:
            assert first is True
            assert second is False
        # The loser leaving must not free the winner's key.
        assert "C1:1" in dedup.in_flight
    assert dedup.in_flight == frozenset()


@pytest.mark.asyncio
async def test_clear():
    dedup = DeliveryDeduplicator()
    await dedup.try_acquire("C1:1")
    dedup.clear()
    assert dedup.in_flight == frozenset()
