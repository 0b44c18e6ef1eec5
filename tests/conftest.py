"""Pytest fixtures for secure filesystem server tests."""

import asyncio

import pytest
from fastmcp import Client

import server as server_module


@pytest.fixture
def allowed_root(tmp_path):
    """A real (symlink-free) directory to allow, next to space outside it."""
    root = tmp_path / "allowed"
    root.mkdir()
    return root.resolve()


@pytest.fixture
def outside_root(tmp_path):
    outside = tmp_path / "outside"
    outside.mkdir()
    return outside.resolve()


@pytest.fixture
def server_root(allowed_root):
    """Install allowed_root as the server's allow-list for the duration of a test."""
    server_module.allowed_directories.replace_all([str(allowed_root)])
    yield allowed_root
    server_module.allowed_directories.replace_all([])


@pytest.fixture
def call_tool():
    """Call a tool through an in-memory client and return its text result."""

    def _call(name, arguments=None, roots=None):
        async def _run():
            async with Client(server_module.mcp, roots=roots) as client:
                result = await client.call_tool(name, arguments or {}, raise_on_error=False)
                return result.content[0].text if result.content else ""

        return asyncio.run(_run())

    return _call
