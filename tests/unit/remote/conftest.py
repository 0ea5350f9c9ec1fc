"""Helpers for exercising the aiohttp clients against an in-process server."""

from __future__ import annotations

import contextlib
from typing import AsyncIterator

import pytest
from aiohttp import test_utils, web


@contextlib.asynccontextmanager
async def _serve(app: web.Application) -> AsyncIterator[str]:
    server = test_utils.TestServer(app)
    await server.start_server()
    try:
        yield str(server.make_url("")).rstrip("/")
    finally:
        await server.close()


@pytest.fixture
def serve():
    """``async with serve(app) as base_url: ...``"""
    return _serve
