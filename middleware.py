"""
FastMCP middleware: audit logging, per-tool rate limiting, roots sync.
"""

import json
import logging
import time

import mcp.types as mt
from fastmcp.exceptions import ToolError
from fastmcp.server.middleware import Middleware, MiddlewareContext
from mcp.shared.exceptions import McpError

from errors import ConfigurationError
from roots import RootsSync, check_startup

logger = logging.getLogger(__name__)


class RateLimiter:
    """Fixed-window call counter keyed by tool name."""

    def __init__(self, max_calls: int = 100, window: float = 60.0, clock=time.monotonic):
        self.max_calls = max_calls
        self.window = window
        self._clock = clock
        self._windows: dict[str, tuple[int, float]] = {}

    def allow(self, key: str) -> bool:
        now = self._clock()
        count, reset_at = self._windows.get(key, (0, now + self.window))
        if now > reset_at:
            count, reset_at = 0, now + self.window
        if count >= self.max_calls:
            return False
        self._windows[key] = (count + 1, reset_at)
        return True


class AuditMiddleware(Middleware):
    async def on_call_tool(self, context: MiddlewareContext, call_next):
        args = context.message.arguments or {}
        logger.info("Audit: tool %s called with args %s", context.message.name, json.dumps(args, default=str))
        return await call_next(context)


class RateLimitMiddleware(Middleware):
    def __init__(self, limiter: RateLimiter):
        self.limiter = limiter

    async def on_call_tool(self, context: MiddlewareContext, call_next):
        name = context.message.name
        if not self.limiter.allow(f"tool_{name}"):
            logger.warning("Rate limit exceeded for tool: %s", name)
            raise ToolError("Rate limit exceeded. Please try again later.")
        return await call_next(context)


class RootsMiddleware(Middleware):
    """
    Refuse sessions that would leave the server without directories, and bring
    the allow-list up to date with the client's roots before each tool call.
    """

    def __init__(self, sync: RootsSync):
        self.sync = sync

    async def on_initialize(self, context: MiddlewareContext, call_next):
        params = getattr(context.message, "params", context.message)
        capabilities = getattr(params, "capabilities", None)
        supports_roots = getattr(capabilities, "roots", None) is not None
        try:
            check_startup(supports_roots, self.sync.reconciler.allowed)
        except ConfigurationError as e:
            logger.error("%s", e)
            raise McpError(mt.ErrorData(code=mt.INVALID_REQUEST, message=str(e))) from e
        return await call_next(context)

    async def on_call_tool(self, context: MiddlewareContext, call_next):
        ctx = context.fastmcp_context
        if ctx is not None:
            session = ctx.session
            supports_roots = session.check_client_capability(
                mt.ClientCapabilities(roots=mt.RootsCapability())
            )
            try:
                await self.sync.ensure_current(session, supports_roots, ctx.list_roots)
            except ConfigurationError as e:
                logger.error("%s", e)
                raise ToolError(str(e)) from e
        return await call_next(context)

    async def on_roots_list_changed(self, notification: mt.RootsListChangedNotification) -> None:
        logger.info("Client roots changed; allowed directories will be refreshed")
        self.sync.mark_stale()
