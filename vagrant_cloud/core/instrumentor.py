"""
Event instrumentation for client activity.

Events are named ``namespace.event`` (for example ``http.request``) and carry
a params mapping. An InstrumentorCollection times the action it wraps,
scrubs credentials from the params and forwards the event to its
instrumentors and to any matching subscriptions.
"""

import logging
import re
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from vagrant_cloud.core.errors import DataTypeError, ValidationError
from vagrant_cloud.core.log import get_logger

REDACTED = "REDACTED"

# Compared case-insensitively
SENSITIVE_KEYS = frozenset(
    {
        "password",
        "access_token",
        "token",
        "client_secret",
        "authorization",
        "proxy-authorization",
    }
)

Subscriber = Callable[[str, dict[str, Any]], Any]


def redact(value: Any) -> Any:
    """Return a copy of value with credential entries replaced by REDACTED."""
    if isinstance(value, Mapping):
        result = {}
        for key, item in value.items():
            if isinstance(key, str) and key.lower() in SENSITIVE_KEYS and item:
                result[key] = REDACTED
            else:
                result[key] = redact(item)
        return result
    if isinstance(value, (list, tuple)):
        return [redact(item) for item in value]
    return value


class Instrumentor:
    """Receiver of instrumentation events."""

    def instrument(self, name: str, params: dict[str, Any]) -> None:
        raise NotImplementedError


class LoggerInstrumentor(Instrumentor):
    """Writes instrumentation events to a logger."""

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or get_logger("instrumentor")

    def instrument(self, name: str, params: dict[str, Any]) -> None:
        """
        Log an event.

        Args:
            name: Name of event "namespace.event"
            params: Data available with event

        """
        namespace, _, event = name.partition(".")

        if event == "error":
            self.logger.error("%s %s %s", namespace, event.upper(), params.get("error"))
            return

        if self.logger.isEnabledFor(logging.INFO):
            info = self.http_summary(event, params) if namespace == "http" else dict(params)
            self.logger.info("%s %s %s", namespace, event.upper(), self.format_output(info))

        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug("%s %s %s", namespace, event.upper(), self.format_output(params))

    @staticmethod
    def format_output(info: Mapping[str, Any]) -> str:
        """Format event data as ``key=value`` pairs."""
        parts = []
        for key, value in info.items():
            if isinstance(value, Mapping):
                value = ", ".join(f"{k}: {v}" if v is not None else str(k) for k, v in value.items())
            parts.append(f"{key}={value!r}")
        return " ".join(parts)

    @staticmethod
    def http_summary(event: str, params: Mapping[str, Any]) -> dict[str, Any]:
        """Pick the interesting parts of an http event."""
        headers = params.get("headers") or {}
        info: dict[str, Any] = {}
        if event in ("request", "retry"):
            info["method"] = params.get("method")
            info["identifier"] = headers.get("X-Request-Id")
            info["url"] = params.get("url")
            if params.get("query"):
                info["query"] = params["query"]
            if headers:
                info["headers"] = headers
            if event == "retry":
                info["attempt"] = params.get("attempt")
        elif event == "response":
            info["status"] = params.get("status")
            info["identifier"] = params.get("identifier")
            info["body"] = params.get("body")
        else:
            info = dict(params)
        duration = params.get("timing", {}).get("duration") or 0.0
        info["duration"] = f"{int(duration * 1000)}ms"
        return info


class InstrumentorCollection(Instrumentor):
    """
    Fan-out of instrumentation events.

    A LoggerInstrumentor is always part of the collection. Subscriptions
    match events by exact name or by compiled regular expression.
    """

    def __init__(
        self,
        instrumentors: Iterable[Instrumentor] = (),
        logger: logging.Logger | None = None,
    ):
        self._lock = threading.Lock()
        members: list[Instrumentor] = [LoggerInstrumentor(logger)]
        for instrumentor in instrumentors:
            self._validate(instrumentor)
            members.append(instrumentor)
        self.instrumentors: tuple[Instrumentor, ...] = tuple(members)
        self.subscriptions: tuple[tuple[str | re.Pattern, Subscriber], ...] = ()

    def add(self, instrumentor: Instrumentor) -> "InstrumentorCollection":
        """Add a new instrumentor."""
        self._validate(instrumentor)
        with self._lock:
            self.instrumentors = self.instrumentors + (instrumentor,)
        return self

    def remove(self, instrumentor: Instrumentor) -> "InstrumentorCollection":
        """Remove an instrumentor."""
        with self._lock:
            self.instrumentors = tuple(i for i in self.instrumentors if i is not instrumentor)
        return self

    def subscribe(self, event: str | re.Pattern, callback: Subscriber) -> "InstrumentorCollection":
        """
        Subscribe to events.

        Args:
            event: Event name, or compiled pattern matched against names
            callback: Called with (name, params)

        Returns:
            self

        """
        if not callable(callback):
            raise DataTypeError("Callable action is required for subscription")
        if not isinstance(event, (str, re.Pattern)):
            raise ValidationError(f"Event must be a name or a compiled pattern, not `{event!r}`")
        with self._lock:
            self.subscriptions = self.subscriptions + ((event, callback),)
        return self

    def unsubscribe(self, callback: Subscriber) -> "InstrumentorCollection":
        """Remove all subscriptions using callback."""
        with self._lock:
            self.subscriptions = tuple(s for s in self.subscriptions if s[1] is not callback)
        return self

    def instrument(
        self,
        name: str,
        params: Mapping[str, Any] | None = None,
        action: Callable[[], Any] | None = None,
    ) -> Any:
        """
        Run action and publish an event about it.

        Args:
            name: Event name "namespace.event"
            params: Event data
            action: Optional callable to time

        Returns:
            Result of action

        """
        start_time = time.time()
        result = action() if action is not None else None
        complete_time = time.time()

        event_params = redact(params or {})
        event_params["timing"] = {
            "start_time": start_time,
            "complete_time": complete_time,
            "duration": complete_time - start_time,
        }

        with self._lock:
            instrumentors = self.instrumentors
            subscriptions = self.subscriptions

        for instrumentor in instrumentors:
            instrumentor.instrument(name, event_params)
        for event, callback in subscriptions:
            if isinstance(event, re.Pattern):
                if not event.search(name):
                    continue
            elif event != name:
                continue
            callback(name, event_params)

        return result

    @staticmethod
    def _validate(instrumentor: Any) -> None:
        if not callable(getattr(instrumentor, "instrument", None)):
            raise DataTypeError("Instrumentors must implement `instrument`")
