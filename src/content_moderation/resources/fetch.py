"""Remote content transport for ``url:`` and ``wiki:`` references."""

from __future__ import annotations

from dataclasses import dataclass
import logging

import requests

from content_moderation.activity import WikiSource
from content_moderation.policy_config.errors import (
    FETCH_FORBIDDEN,
    FETCH_NETWORK,
    FETCH_NOT_FOUND,
    FetchError,
)


logger = logging.getLogger("content_moderation.resources.fetch")

DEFAULT_USER_AGENT = "content-moderation/0.1"


@dataclass
class RemoteContentFetcher:
    timeout_seconds: float = 10.0
    user_agent: str = DEFAULT_USER_AGENT
    session: requests.Session | None = None
    wiki_source: WikiSource | None = None

    def __post_init__(self) -> None:
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self._session = self.session or requests.Session()

    def fetch_url(self, url: str) -> str:
        headers = {"User-Agent": self.user_agent}
        try:
            response = self._session.get(url, timeout=self.timeout_seconds, headers=headers)
        except requests.Timeout as exc:
            raise FetchError(f"timed out fetching {url}", reason=FETCH_NETWORK, source=url) from exc
        except requests.RequestException as exc:
            raise FetchError(f"could not fetch {url}: {str(exc)[:256]}", reason=FETCH_NETWORK, source=url) from exc
        status = response.status_code
        if status == 404:
            raise FetchError(f"{url} was not found", reason=FETCH_NOT_FOUND, source=url)
        if status in {401, 403}:
            raise FetchError(f"access to {url} was denied (http_{status})", reason=FETCH_FORBIDDEN, source=url)
        if status >= 400:
            raise FetchError(f"fetching {url} failed with http_{status}", reason=FETCH_NETWORK, source=url)
        logger.debug("fetched url=%s bytes=%s", url, len(response.text))
        return response.text

    def fetch_wiki(self, page: str, community: str) -> str:
        source = f"wiki:{page}|{community}"
        if self.wiki_source is None:
            raise FetchError(f"no wiki source configured for {source}", reason=FETCH_NETWORK, source=source)
        try:
            text = self.wiki_source.read_page(community, page)
        except FetchError:
            raise
        except LookupError as exc:
            raise FetchError(
                f"wiki page '{page}' in '{community}' was not found",
                reason=FETCH_NOT_FOUND,
                source=source,
            ) from exc
        except PermissionError as exc:
            raise FetchError(
                f"access to wiki page '{page}' in '{community}' was denied",
                reason=FETCH_FORBIDDEN,
                source=source,
            ) from exc
        except OSError as exc:
            raise FetchError(
                f"could not read wiki page '{page}' in '{community}': {exc}",
                reason=FETCH_NETWORK,
                source=source,
            ) from exc
        logger.debug("fetched wiki page=%s community=%s", page, community)
        return text
