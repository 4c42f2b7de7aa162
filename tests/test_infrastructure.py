"""
Tests for the key-value stores and the EmailJS client.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from marketplace_orders.infrastructure.http_clients import EmailJSClient
from marketplace_orders.infrastructure.kv_store import InMemoryKeyValueStore, SQLAlchemyKeyValueStore


class FakeClock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now


@pytest.mark.asyncio
async def test_in_memory_store_expiry():
    clock = FakeClock(100.0)
    store = InMemoryKeyValueStore(clock=clock)

    assert await store.add("k", "v", ttl_seconds=300) is True
    assert await store.add("k", "other", ttl_seconds=300) is False
    assert await store.get("k") == "v"

    clock.now += 301
    assert await store.get("k") is None
    assert await store.add("k", "again", ttl_seconds=300) is True


@pytest.mark.asyncio
async def test_in_memory_store_set_and_delete():
    store = InMemoryKeyValueStore()

    await store.set("k", "v")
    await store.set("k", "w")
    assert await store.get("k") == "w"

    await store.delete("k")
    assert await store.get("k") is None


@pytest.mark.asyncio
async def test_sql_store_expiry(session_factory):
    clock = FakeClock(datetime(2024, 3, 1, tzinfo=timezone.utc))
    store = SQLAlchemyKeyValueStore(session_factory, clock=clock)

    assert await store.add("k", "v", ttl_seconds=300) is True
    assert await store.add("k", "other", ttl_seconds=300) is False
    assert await store.get("k") == "v"

    clock.now += timedelta(seconds=301)
    assert await store.get("k") is None
    assert await store.add("k", "again", ttl_seconds=300) is True
    assert await store.get("k") == "again"


@pytest.mark.asyncio
async def test_sql_store_set_overwrites(session_factory):
    store = SQLAlchemyKeyValueStore(session_factory)

    await store.set("k", "v")
    await store.set("k", "w", ttl_seconds=60)
    assert await store.get("k") == "w"

    await store.delete("k")
    assert await store.get("k") is None


@pytest.mark.asyncio
async def test_email_mock_mode_without_key():
    client = EmailJSClient("https://email.invalid/send", "service", "")

    with patch.object(httpx.AsyncClient, "post", new_callable=AsyncMock) as post:
        assert await client.send_template("tpl", {"to_email": "a@b.c"}) is True

    post.assert_not_awaited()


@pytest.mark.asyncio
async def test_email_payload():
    client = EmailJSClient("https://email.invalid/send", "service", "public-key")
    response = MagicMock(status_code=200, text="OK")

    with patch.object(httpx.AsyncClient, "post", new_callable=AsyncMock, return_value=response) as post:
        assert await client.send_template("tpl", {"to_email": "a@b.c"}) is True

    payload = post.await_args.kwargs["json"]
    assert payload == {
        "service_id": "service",
        "template_id": "tpl",
        "user_id": "public-key",
        "template_params": {"to_email": "a@b.c"},
    }


@pytest.mark.asyncio
async def test_email_rejected_or_unreachable():
    client = EmailJSClient("https://email.invalid/send", "service", "public-key")

    rejected = MagicMock(status_code=400, text="bad template")
    with patch.object(httpx.AsyncClient, "post", new_callable=AsyncMock, return_value=rejected):
        assert await client.send_template("tpl", {}) is False

    error = httpx.ConnectError("no route")
    with patch.object(httpx.AsyncClient, "post", new_callable=AsyncMock, side_effect=error):
        assert await client.send_template("tpl", {}) is False
