"""Connector base classes — retrying fetch and OAuth token handling.

Every connector returns a ConnectorPayload. Transient failures are retried
with exponential backoff; authentication and credential failures are not.
"""

import asyncio
import logging
from abc import ABC, abstractmethod

import httpx

from ..schemas.connector import ConnectorPayload
from ..utils.crypto import CredentialError

log = logging.getLogger(__name__)


class ConnectorError(Exception):
    """The upstream tool returned something we could not use."""


class ConnectorAuthError(ConnectorError):
    """The upstream tool rejected our access token (HTTP 401)."""


class BaseConnector(ABC):
    kind: str = ""

    def __init__(self, window_days: int = 90, timeout: float = 20.0, max_retries: int = 2):
        self.window_days = window_days
        self.timeout = timeout
        self.max_retries = max_retries

    async def fetch(self) -> ConnectorPayload:
        last_err = None
        for attempt in range(self.max_retries + 1):
            try:
                return await self._do_fetch()
            except (ConnectorAuthError, CredentialError):
                raise
            except (ConnectorError, httpx.HTTPError) as e:
                last_err = e
                if attempt < self.max_retries:
                    await asyncio.sleep(2**attempt)
                else:
                    log.warning(f"{self.__class__.__name__} fetch failed: {type(e).__name__}: {e}")
        raise last_err

    @abstractmethod
    async def _do_fetch(self) -> ConnectorPayload:
        pass


class OAuthConnector(BaseConnector):
    """Connector that calls an API with a token from the CredentialManager.

    A 401 from the API forces one token refresh and one more attempt.
    """

    provider: str = ""

    def __init__(self, credentials, installation_id: str, **kwargs):
        super().__init__(**kwargs)
        self.credentials = credentials
        self.installation_id = installation_id

    async def _do_fetch(self) -> ConnectorPayload:
        token = await self.credentials.get_access_token(self.installation_id, self.provider)
        try:
            return await self._fetch_with_token(token.access_token)
        except ConnectorAuthError:
            log.info(f"{self.provider} rejected token v{token.token_version}; forcing refresh")
            token = await self.credentials.get_access_token(
                self.installation_id, self.provider, force_refresh=True
            )
            return await self._fetch_with_token(token.access_token)

    @abstractmethod
    async def _fetch_with_token(self, access_token: str) -> ConnectorPayload:
        pass
