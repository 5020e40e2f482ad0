"""Request/response channel over serialized, context-isolated message passing."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable

from .errors import CallTimeoutError, ContextClosedError, EngineRejectedError
from .messages import ResponseMessage
from .registry import CorrelationRegistry
from .wire import encode, decode, to_wire

logger = logging.getLogger(__name__)

ReplyCallback = Callable[[str], None]


class Context(ABC):
    """An isolated execution context reachable only through serialized messages."""

    def __init__(self, name: str):
        self.name = name
        self._reply: ReplyCallback | None = None

    def bind(self, reply: ReplyCallback) -> None:
        """Register the callback the context uses to answer the host."""
        self._reply = reply

    def reply(self, raw: str) -> None:
        if self._reply is None:
            logger.warning("Context %r has no reply route; dropping %d bytes", self.name, len(raw))
            return
        self._reply(raw)

    @abstractmethod
    def post(self, raw: str) -> None:
        """Deliver one serialized message into the context."""

    async def start(self) -> None:
        """Bring the context up. Default: nothing to do."""

    async def close(self) -> None:
        """Tear the context down. Default: nothing to do."""


class Channel:
    """Typed send/call over contexts, with calls correlated through a registry."""

    def __init__(self, registry: CorrelationRegistry | None = None, *, call_timeout_sec: float | None = None):
        self.registry = registry or CorrelationRegistry()
        self.call_timeout_sec = call_timeout_sec
        self._contexts: dict[str, Context] = {}

    def attach(self, context: Context) -> None:
        if context.name in self._contexts:
            raise ValueError(f"Context {context.name!r} is already attached.")
        self._contexts[context.name] = context
        context.bind(lambda raw, name=context.name: self.receive(name, raw))

    async def detach(self, context_name: str) -> None:
        """Close a context and reject every call still waiting on it."""
        context = self._contexts.pop(context_name, None)
        self.registry.reject_context(context_name, lambda: ContextClosedError(context_name))
        if context is not None:
            await context.close()

    def is_attached(self, context_name: str) -> bool:
        return context_name in self._contexts

    def send(self, target: str, message: Any) -> None:
        """Fire-and-forget notification; silently dropped when the target is absent."""
        context = self._contexts.get(target)
        raw = encode(message)
        if context is None:
            logger.debug("No %r context attached; dropping notification", target)
            return
        logger.debug("-> %s %s", target, raw)
        context.post(raw)

    async def call(self, target: str, message: Any) -> Any:
        """Send a request and wait for its correlated response."""
        context = self._contexts.get(target)
        if context is None:
            raise ContextClosedError(target)

        entry = self.registry.register(target)
        payload = to_wire(message)
        payload["id"] = entry.id
        raw = encode(payload)
        logger.debug("-> %s %s", target, raw)
        try:
            context.post(raw)
        except ContextClosedError:
            self.registry.discard(entry.id)
            raise

        if self.call_timeout_sec is None:
            return await entry.future
        try:
            return await asyncio.wait_for(entry.future, timeout=self.call_timeout_sec)
        except asyncio.TimeoutError as exc:
            self.registry.discard(entry.id)
            raise CallTimeoutError(target, self.call_timeout_sec) from exc

    def receive(self, context_name: str, raw: str) -> None:
        """Entry point for responses coming back from a context."""
        logger.debug("<- %s %s", context_name, raw)
        data = decode(raw)
        if not isinstance(data, dict) or "id" not in data:
            logger.warning("Ignoring uncorrelated message from %r: %s", context_name, raw[:200])
            return
        response = ResponseMessage.from_dict(data)
        error = EngineRejectedError(response.error) if response.error is not None else None
        self.registry.settle(response.id, response.result, error)
