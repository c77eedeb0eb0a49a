"""Tests for the Redis lock helpers (mocked Redis)."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "api"))

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from redis.exceptions import LockNotOwnedError

from services.locks import LockUnavailable, hold_lock


def mock_redis(acquired=True):
    lock = MagicMock()
    lock.acquire = AsyncMock(return_value=acquired)
    lock.release = AsyncMock()
    conn = MagicMock()
    conn.lock.return_value = lock
    return conn, lock


@pytest.mark.asyncio
async def test_hold_lock_uses_non_blocking_lock_with_ttl():
    conn, lock = mock_redis()
    with patch("services.locks.get_redis", AsyncMock(return_value=conn)):
        async with hold_lock("purchase:1", ttl=15):
            lock.release.assert_not_awaited()

    conn.lock.assert_called_once_with("lock:purchase:1", timeout=15, blocking=False)
    lock.acquire.assert_awaited_once()
    lock.release.assert_awaited_once()


@pytest.mark.asyncio
async def test_hold_lock_default_ttl():
    conn, _ = mock_redis()
    with patch("services.locks.get_redis", AsyncMock(return_value=conn)):
        async with hold_lock("purchase:2"):
            pass
    assert conn.lock.call_args.kwargs["timeout"] == 30


@pytest.mark.asyncio
async def test_hold_lock_releases_on_error():
    conn, lock = mock_redis()
    with patch("services.locks.get_redis", AsyncMock(return_value=conn)):
        with pytest.raises(RuntimeError):
            async with hold_lock("purchase:1"):
                raise RuntimeError("step failed")
    lock.release.assert_awaited_once()


@pytest.mark.asyncio
async def test_hold_lock_unavailable():
    conn, lock = mock_redis(acquired=False)
    with patch("services.locks.get_redis", AsyncMock(return_value=conn)):
        with pytest.raises(LockUnavailable):
            async with hold_lock("purchase:1"):
                pass
    lock.release.assert_not_awaited()


@pytest.mark.asyncio
async def test_expired_lock_release_does_not_mask_result():
    conn, lock = mock_redis()
    lock.release.side_effect = LockNotOwnedError("expired")
    with patch("services.locks.get_redis", AsyncMock(return_value=conn)):
        async with hold_lock("purchase:1"):
            pass
    lock.release.assert_awaited_once()
