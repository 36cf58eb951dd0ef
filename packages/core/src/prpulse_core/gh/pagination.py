"""Page-by-page collection of PyGithub listings.

Iterating a PaginatedList directly hides every page request inside the
iterator, which leaves no place to retry one failed page. fetch_all() asks
for each page explicitly so that a transient failure on page 40 costs one
retried request rather than the whole listing.
"""

from __future__ import annotations

import logging
from typing import Callable

import requests
from github import GithubException

from prpulse_core.errors import UpstreamError
from prpulse_core.retry import RetryPolicy

logger = logging.getLogger(__name__)


def fetch_all(
    paginated,
    per_page: int,
    retry: RetryPolicy,
    description: str = "listing",
    stop: Callable[[object], bool] | None = None,
) -> list:
    """Return every item of ``paginated``, requesting one page at a time.

    Paging ends when a page holds fewer than ``per_page`` items. With
    ``stop``, paging also ends after the first page containing an item for
    which ``stop(item)`` is true; that page is still returned whole and the
    caller filters it.

    Raises UpstreamError if any page fails for good. Items already collected
    by this call are dropped.
    """
    items: list = []
    page_number = 0
    while True:
        try:
            page = retry.call(
                paginated.get_page,
                page_number,
                description=f"{description} (page {page_number + 1})",
            )
        except (GithubException, requests.RequestException) as e:
            raise UpstreamError(f"{description} (page {page_number + 1}) failed: {e}") from e
        items.extend(page)
        logger.debug("%s: page %d returned %d item(s)", description, page_number + 1, len(page))

        if len(page) < per_page:
            break
        if stop is not None and any(stop(item) for item in page):
            break
        page_number += 1

    return items
