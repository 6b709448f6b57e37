"""Decide whether a request arrived over the encrypted channel."""
from __future__ import annotations

import logging
from typing import Any

from .errors import TransportRestrictionError

logger = logging.getLogger("localdata.transport")

SECURE_SCHEMES = frozenset({"https", "wss"})


class TransportGate:
    """Base gate; subclasses decide what counts as a secure request."""

    def is_secure(self, request: Any) -> bool:
        raise NotImplementedError

    def require_secure(self, request: Any) -> None:
        if not self.is_secure(request):
            raise TransportRestrictionError()


class SchemeTransportGate(TransportGate):
    """Trust the ASGI scheme of the request.

    Behind a TLS-terminating proxy the scheme is rewritten from
    ``X-Forwarded-Proto`` by uvicorn's ``ProxyHeadersMiddleware``.
    """

    def __init__(self, *, allow_insecure: bool = False) -> None:
        self._allow_insecure = allow_insecure
        if allow_insecure:
            logger.warning(
                "Sensitive account operations are allowed over plain HTTP. Only enable"
                " this for local development."
            )

    @property
    def allow_insecure(self) -> bool:
        return self._allow_insecure

    def is_secure(self, request: Any) -> bool:
        if self._allow_insecure:
            return True
        url = getattr(request, "url", None)
        scheme = getattr(url, "scheme", None)
        return isinstance(scheme, str) and scheme.lower() in SECURE_SCHEMES


__all__ = ["SECURE_SCHEMES", "SchemeTransportGate", "TransportGate"]
