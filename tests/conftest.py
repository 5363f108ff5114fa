"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable

import pytest
import pytest_asyncio

from agent_mail_client.config import ChannelConfig
from agent_mail_client.transport import ConnectionTransport, MockSocketFactory


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the event loop until ``predicate()`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met in time")
        await asyncio.sleep(0.001)


@pytest.fixture
def fast_config() -> ChannelConfig:
    """Config with timers short enough for tests and no heartbeat traffic."""
    return ChannelConfig(
        url="ws://mock/ws",
        timeout=0.5,
        connect_timeout=0.5,
        operation_timeout=0.5,
        heartbeat_interval=3600.0,
        heartbeat_timeout=0.05,
        reconnect_interval=0.01,
    )


@pytest.fixture
def factory() -> MockSocketFactory:
    return MockSocketFactory()


@pytest_asyncio.fixture
async def transport(
    fast_config: ChannelConfig, factory: MockSocketFactory
) -> AsyncIterator[ConnectionTransport]:
    transport = ConnectionTransport(fast_config, socket_factory=factory)
    yield transport
    await transport.disconnect()


@pytest.fixture(name="wait_until")
def wait_until_fixture() -> Callable[..., object]:
    return wait_until
