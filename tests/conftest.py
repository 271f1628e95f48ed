"""Pytest configuration and shared fixtures for streamgate tests."""

import sys
from pathlib import Path

import httpx
import pytest


sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from streamgate.metrics import NoOpMetrics
from streamgate.parser import VastParser
from streamgate.proxy_token import ProxyTokenService
from streamgate.tracker import BeaconTracker

from support import INLINE_VAST, FrozenClock, RecordingTransport


# ==================== Parser Fixtures ====================


@pytest.fixture
def inline_vast() -> str:
    return INLINE_VAST


@pytest.fixture
def parser() -> VastParser:
    return VastParser()


# ==================== Tracking Fixtures ====================


@pytest.fixture
def beacon_transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def beacon_tracker(beacon_transport) -> BeaconTracker:
    return BeaconTracker(httpx.AsyncClient(transport=beacon_transport), metrics=NoOpMetrics())


# ==================== Token Fixtures ====================


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def token_service(clock) -> ProxyTokenService:
    return ProxyTokenService("test-secret", ttl_seconds=3600, clock=clock)
