"""HTTP client for the remote content API."""
import logging

import requests

logger = logging.getLogger(__name__)


class FetchError(Exception):
    """Raised when a channel's feed cannot be retrieved."""

    def __init__(self, reason: str, url: str | None = None):
        self.reason = reason
        self.url = url
        message = f"{reason} [{url}]" if url else reason
        super().__init__(message)


class ApiFetcher:
    """Fetch the raw items of a channel's API URL.

    Accepts both a bare JSON list and a paginated object of the form
    ``{"results": [...], "next": url}``.
    """

    def __init__(
        self,
        timeout: float = 30,
        user_agent: str = "newsmirror/0.1",
        max_pages: int = 10,
        session: requests.Session | None = None,
    ):
        self.timeout = timeout
        self.max_pages = max_pages
        self.session = session or requests.Session()
        self.session.headers.update({
            "User-Agent": user_agent,
            "Accept": "application/json",
        })

    def fetch(self, url: str) -> list[dict]:
        """Return every item of the feed at ``url``.

        Raises:
            FetchError: on transport errors, HTTP errors or unexpected payloads
        """
        items: list[dict] = []
        next_url: str | None = url
        pages = 0

        while next_url and pages < self.max_pages:
            payload = self._get_json(next_url)
            pages += 1

            if isinstance(payload, list):
                items.extend(payload)
                next_url = None
                break
            if isinstance(payload, dict) and isinstance(payload.get("results"), list):
                items.extend(payload["results"])
                next_url = payload.get("next")
                continue
            raise FetchError(
                f"Unexpected payload type {type(payload).__name__}", next_url
            )

        if next_url:
            logger.warning(f"Stopped after {pages} pages of {url}")

        logger.debug(f"Fetched {len(items)} items from {url} ({pages} page(s))")
        return items

    def _get_json(self, url: str):
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.Timeout:
            raise FetchError(f"Timed out after {self.timeout}s", url) from None
        except requests.HTTPError as e:
            raise FetchError(f"HTTP {e.response.status_code}", url) from e
        except requests.RequestException as e:
            raise FetchError(f"Request failed: {e}", url) from e

        try:
            return response.json()
        except ValueError as e:
            raise FetchError("Response is not valid JSON", url) from e
