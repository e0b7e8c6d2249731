"""
ICS subscription handler for the read-only source feed.

Fetches raw VCALENDAR text; parsing is left to IcsParser.
"""

import requests
from datetime import datetime
from typing import Optional
import logging
import pytz


logger = logging.getLogger(__name__)

USER_AGENT = "calsync/1.0"


class SourceFetchError(Exception):
    """The feed could not be downloaded or is not a calendar."""


def normalize_feed_url(url: str) -> str:
    """Rewrite webcal:// URLs to https://."""
    url = url.strip()
    if url.lower().startswith("webcal://"):
        return "https://" + url[len("webcal://"):]
    return url


class ICSSubscription:
    """
    Handler for one ICS calendar subscription.

    Redirects are followed by requests; basic auth is sent when a username
    is configured.
    """

    def __init__(
        self,
        url: str,
        username: str = "",
        password: str = "",
        timeout: int = 30,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize an ICS subscription.

        Args:
            url: URL to fetch the ICS file from (http, https or webcal)
            username: Optional basic-auth user
            password: Optional basic-auth password
            timeout: Request timeout in seconds
            session: requests session to use (a new one by default)
        """
        if not url or not url.strip():
            raise ValueError("Feed URL must not be empty")
        self.url = normalize_feed_url(url)
        self.timeout = timeout
        self._auth = (username, password) if username else None
        self._session = session or requests.Session()

        self._last_fetch: Optional[datetime] = None
        self._error: Optional[str] = None

    def fetch_text(self) -> str:
        """
        Download the feed.

        Returns:
            The VCALENDAR text.

        Raises:
            SourceFetchError: On network errors, HTTP errors, or a body that
                is not a calendar.
        """
        logger.info("Fetching calendar feed %s", self.url)
        try:
            response = self._session.get(
                self.url,
                timeout=self.timeout,
                auth=self._auth,
                headers={
                    'User-Agent': USER_AGENT,
                    'Accept': 'text/calendar'
                }
            )
            response.raise_for_status()
        except requests.RequestException as e:
            self._error = f"Network error: {e}"
            raise SourceFetchError(f"Could not download {self.url}: {e}") from e

        # Feeds often omit the charset; ICS is UTF-8 by definition
        response.encoding = 'utf-8'
        text = response.text

        if not text.lstrip().upper().startswith("BEGIN:VCALENDAR"):
            self._error = "Response is not a VCALENDAR"
            raise SourceFetchError(f"{self.url} did not return an iCalendar document")

        self._last_fetch = datetime.now(pytz.UTC)
        self._error = None
        logger.info("Fetched %d bytes from %s", len(text), self.url)
        return text

    @property
    def last_fetch(self) -> Optional[datetime]:
        """Get the last successful fetch time."""
        return self._last_fetch

    @property
    def error(self) -> Optional[str]:
        """Get the last error message."""
        return self._error
