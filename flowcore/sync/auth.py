"""Access-token lookup for remote sync handlers. Identity flows live outside flowcore."""

import asyncio
import logging
import os
from typing import Protocol, runtime_checkable

import keyring
from keyring.errors import KeyringError

logger = logging.getLogger(__name__)

TOKEN_NAME = "access_token"


@runtime_checkable
class AuthBackend(Protocol):
    """External identity provider as seen by the sync layer."""

    async def get_access_token(self) -> str | None:
        """Current bearer token, or None when signed out."""


def is_keyring_available() -> bool:
    """True when a real OS keyring backend is active (not the fail stub)."""
    try:
        from keyring.backends.fail import Keyring as FailKeyring

        return not isinstance(keyring.get_keyring(), FailKeyring)
    except Exception:
        return False


class KeyringAuthBackend:
    """Token stored in the OS keyring, with an environment variable fallback."""

    def __init__(
        self,
        service_name: str = "flowcore",
        token_env: str = "FLOWCORE_ACCESS_TOKEN",
    ) -> None:
        self._service_name = service_name
        self._token_env = token_env

    async def get_access_token(self) -> str | None:
        """Resolve token: keyring -> os.environ. Keyring I/O runs in a thread."""
        try:
            value = await asyncio.to_thread(
                keyring.get_password, self._service_name, TOKEN_NAME
            )
            if value:
                return value
        except KeyringError:
            logger.debug("keyring lookup failed for %s, falling back to env", self._service_name)
        return os.environ.get(self._token_env) or None

    async def set_token(self, token: str) -> None:
        """Store token in the OS keyring. Raises KeyringError if backend unavailable."""
        await asyncio.to_thread(keyring.set_password, self._service_name, TOKEN_NAME, token)

    async def clear_token(self) -> None:
        """Remove token from keyring. No-op if absent."""
        try:
            await asyncio.to_thread(keyring.delete_password, self._service_name, TOKEN_NAME)
        except KeyringError:
            pass
