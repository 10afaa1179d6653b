"""Gamertag existence lookup.

Checks whether a gamertag has a public profile by fetching a search page and
looking for a marker string. Used by the web client to warn about typos
before joining; it is not an authentication step.
"""

import logging
from urllib.parse import quote

import aiohttp

from envirovoice.config import LookupConfig

logger = logging.getLogger(__name__)


class GamertagLookup:
    """aiohttp client for the profile search page."""

    def __init__(self, config: LookupConfig, session: aiohttp.ClientSession | None = None) -> None:
        """Initialize lookup client.

        Args:
            config: Lookup configuration
            session: Shared client session (created lazily if omitted)
        """
        self.config = config
        self._session = session
        self._owns_session = session is None

    def url_for(self, tag: str) -> str:
        return self.config.url_template.format(tag=quote(tag, safe=""))

    async def exists(self, tag: str) -> bool:
        """Look up a gamertag.

        Returns:
            True if the search page contains the profile marker

        Raises:
            aiohttp.ClientError: On network or HTTP status errors
            TimeoutError: If the upstream does not answer in time
        """
        session = self._get_session()
        url = self.url_for(tag)
        logger.info("Verifying gamertag", extra={"gamertag": tag})

        async with session.get(url) as resp:
            resp.raise_for_status()
            html = await resp.text()

        return self.config.marker in html

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout_s)
            )
            self._owns_session = True
        return self._session
