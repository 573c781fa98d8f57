"""Shared pytest configuration and fixtures for PEroxide tests.

Every fixture builds its own registry, upload directory and application so
that tests never share scan state.  The settle delay is zero and the poll
interval is a few milliseconds to keep pipeline tests fast.
"""
from __future__ import annotations

from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from peroxide.config import Settings
from peroxide.core.detector import IndicatorDetector
from peroxide.core.registry import ScanRegistry
from peroxide.main import create_app
from peroxide.workers.scan_worker import ScanWorker


@pytest.fixture
def upload_dir(tmp_path: Path) -> Path:
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture
def settings(upload_dir: Path) -> Settings:
    return Settings(
        upload_dir=upload_dir,
        max_upload_bytes=1024,
        scan_settle_delay_seconds=0,
        progress_poll_interval_seconds=0.01,
    )


@pytest.fixture
def registry() -> ScanRegistry:
    return ScanRegistry()


@pytest.fixture
def worker(registry: ScanRegistry) -> ScanWorker:
    return ScanWorker(registry, [IndicatorDetector()], settle_delay=0)


@pytest.fixture
def app(settings: Settings):
    return create_app(settings)


@pytest_asyncio.fixture
async def client(app):
    """Async HTTP client connected to the FastAPI app (no network I/O)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
