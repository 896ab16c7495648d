"""Whole-application fixtures: every backend in process, SQLite on disk."""

from __future__ import annotations

from pathlib import Path

import pytest_asyncio

from ecommerce.core.config import load_settings
from ecommerce.main import build_app
from ecommerce.storage.postgres.connection import create_all

CONFIGS = Path(__file__).resolve().parents[2] / "configs"


@pytest_asyncio.fixture
async def app(tmp_path, manual_clock):
    settings = load_settings(
        CONFIGS / "test.toml",
        overrides={"database": {"url": f"sqlite+aiosqlite:///{tmp_path / 'app.db'}"}},
    )
    ctx = build_app(settings, clock=manual_clock)
    await create_all(ctx.engine)
    await ctx.start(consumers=True)
    yield ctx
    await ctx.close()
