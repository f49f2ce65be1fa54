"""HTTP sync handlers: apply a queued operation against a REST endpoint."""

import logging
from typing import Any

import httpx

from flowcore.sync.auth import AuthBackend
from flowcore.sync.queue import HandlerError

logger = logging.getLogger(__name__)

_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE"}


def parse_route(route: str) -> tuple[str, str]:
    """Split 'POST /transactions' into ('POST', '/transactions')."""
    parts = route.split(None, 1)
    if len(parts) != 2 or parts[0].upper() not in _METHODS:
        raise ValueError(f"Invalid route {route!r}, expected 'METHOD /path'")
    return parts[0].upper(), parts[1].strip()


class HttpOperationHandler:
    """Sync handler sending operation data as JSON.

    The path may reference fields of dict data, e.g. ``/categories/{id}``.
    Raises HandlerError on transport errors and HTTP status >= 400, so the
    queue counts the attempt as failed.
    """

    def __init__(
        self,
        base_url: str,
        method: str,
        path: str,
        auth: AuthBackend | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._method = method.upper()
        self._path = path
        self._auth = auth
        self._timeout = timeout
        self._transport = transport

    def _url(self, data: Any) -> str:
        path = self._path
        if "{" in path:
            if not isinstance(data, dict):
                raise HandlerError(f"Path {path!r} needs dict data, got {type(data).__name__}")
            try:
                path = path.format_map(data)
            except KeyError as e:
                raise HandlerError(f"Path {self._path!r} missing field {e}") from e
        return f"{self._base_url}/{path.lstrip('/')}"

    async def __call__(self, data: Any) -> None:
        url = self._url(data)
        headers: dict[str, str] = {}
        if self._auth is not None:
            token = await self._auth.get_access_token()
            if token:
                headers["Authorization"] = f"Bearer {token}"
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.request(self._method, url, json=data, headers=headers)
        except httpx.TimeoutException as e:
            raise HandlerError(f"{self._method} {url}: timeout") from e
        except httpx.HTTPError as e:
            raise HandlerError(f"{self._method} {url}: {e}") from e
        if resp.status_code == 401:
            raise HandlerError(f"{self._method} {url}: not authenticated")
        if resp.status_code >= 400:
            raise HandlerError(f"{self._method} {url}: HTTP {resp.status_code}")
        logger.debug("Synced %s %s -> %d", self._method, url, resp.status_code)


def build_http_handlers(
    base_url: str,
    routes: dict[str, str],
    auth: AuthBackend | None = None,
    timeout: float = 10.0,
) -> dict[str, HttpOperationHandler]:
    """Map operation kind -> handler from {'create_transaction': 'POST /transactions', ...}."""
    handlers: dict[str, HttpOperationHandler] = {}
    for kind, route in routes.items():
        method, path = parse_route(route)
        handlers[kind] = HttpOperationHandler(base_url, method, path, auth=auth, timeout=timeout)
    return handlers
