"""Unit tests for the audit, rate-limit and roots middleware."""

import asyncio
import logging
from types import SimpleNamespace

import mcp.types as mt
import pytest
from fastmcp.exceptions import ToolError
from mcp.shared.exceptions import McpError

from access import AllowedDirectories
from middleware import AuditMiddleware, RateLimiter, RateLimitMiddleware, RootsMiddleware
from roots import RootsReconciler, RootsSync


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _context(name="read_text_file", arguments=None, fastmcp_context=None):
    return SimpleNamespace(
        message=SimpleNamespace(name=name, arguments=arguments or {}),
        fastmcp_context=fastmcp_context,
    )


async def _ok(context):
    return "ok"


def test_rate_limiter_window():
    clock = FakeClock()
    limiter = RateLimiter(max_calls=2, window=10, clock=clock)
    assert limiter.allow("tool_a")
    assert limiter.allow("tool_a")
    assert not limiter.allow("tool_a")
    assert limiter.allow("tool_b")

    clock.now = 10.5
    assert limiter.allow("tool_a")


def test_rate_limit_middleware_raises_tool_error():
    middleware = RateLimitMiddleware(RateLimiter(max_calls=1, window=60, clock=FakeClock()))
    assert asyncio.run(middleware.on_call_tool(_context(), _ok)) == "ok"
    with pytest.raises(ToolError) as exc_info:
        asyncio.run(middleware.on_call_tool(_context(), _ok))
    assert "Rate limit exceeded" in str(exc_info.value)


def test_audit_middleware_logs_call(caplog):
    with caplog.at_level(logging.INFO, logger="middleware"):
        result = asyncio.run(
            AuditMiddleware().on_call_tool(_context("write_file", {"path": "/a"}), _ok)
        )
    assert result == "ok"
    assert 'Audit: tool write_file called with args {"path": "/a"}' in caplog.text


class _Session:
    def __init__(self, supports_roots):
        self.supports_roots = supports_roots

    def check_client_capability(self, capability):
        return self.supports_roots


def test_roots_middleware_without_directories_raises_tool_error():
    sync = RootsSync(RootsReconciler(AllowedDirectories([])))
    ctx = SimpleNamespace(session=_Session(False), list_roots=None)
    with pytest.raises(ToolError) as exc_info:
        asyncio.run(RootsMiddleware(sync).on_call_tool(_context(fastmcp_context=ctx), _ok))
    assert "No allowed directories available" in str(exc_info.value)


def test_roots_middleware_syncs_then_calls_tool(allowed_root):
    store = AllowedDirectories([])
    sync = RootsSync(RootsReconciler(store))

    async def list_roots():
        return [{"uri": allowed_root.as_uri()}]

    ctx = SimpleNamespace(session=_Session(True), list_roots=list_roots)
    result = asyncio.run(RootsMiddleware(sync).on_call_tool(_context(fastmcp_context=ctx), _ok))
    assert result == "ok"
    assert store.snapshot() == [str(allowed_root)]


def test_roots_changed_notification_marks_stale(allowed_root, outside_root):
    store = AllowedDirectories([])
    sync = RootsSync(RootsReconciler(store))
    middleware = RootsMiddleware(sync)
    offered = [{"uri": allowed_root.as_uri()}]

    async def list_roots():
        return offered

    ctx = SimpleNamespace(session=_Session(True), list_roots=list_roots)
    asyncio.run(middleware.on_call_tool(_context(fastmcp_context=ctx), _ok))
    offered = [{"uri": outside_root.as_uri()}]
    asyncio.run(middleware.on_roots_list_changed(None))
    asyncio.run(middleware.on_call_tool(_context(fastmcp_context=ctx), _ok))
    assert store.snapshot() == [str(outside_root)]


def _initialize(roots_capability):
    capabilities = mt.ClientCapabilities(roots=mt.RootsCapability() if roots_capability else None)
    return SimpleNamespace(message=SimpleNamespace(params=SimpleNamespace(capabilities=capabilities)))


def test_initialize_without_roots_or_directories_fails():
    middleware = RootsMiddleware(RootsSync(RootsReconciler(AllowedDirectories([]))))
    with pytest.raises(McpError) as exc_info:
        asyncio.run(middleware.on_initialize(_initialize(False), _ok))
    assert "No allowed directories available" in str(exc_info.value)


def test_initialize_accepted_with_roots_or_directories(allowed_root):
    empty = RootsMiddleware(RootsSync(RootsReconciler(AllowedDirectories([]))))
    assert asyncio.run(empty.on_initialize(_initialize(True), _ok)) == "ok"
    configured = RootsMiddleware(
        RootsSync(RootsReconciler(AllowedDirectories([str(allowed_root)])))
    )
    assert asyncio.run(configured.on_initialize(_initialize(False), _ok)) == "ok"
