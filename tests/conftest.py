"""
Shared pytest fixtures.

Async code runs inside one asyncio.run() per test; see tests/support.py for
the harness, the scripted AI double and the seeding helpers.
"""

from __future__ import annotations

import pytest

from newsdesk.core.config import Settings
from tests.support import make_settings


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def auth_headers(settings: Settings) -> dict[str, str]:
    return {"X-API-Key": settings.api_key}
