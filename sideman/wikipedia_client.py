"""
Wikipedia Client
Full-text search and raw wikitext retrieval through the MediaWiki action API
"""

import logging
from typing import List

from bs4 import BeautifulSoup

from sideman.api_client import ApiClient
from sideman.config import DEFAULT_USER_AGENT
from sideman.errors import NotFoundError
from sideman.models import WikipediaPageContent, WikipediaSearchResult

logger = logging.getLogger(__name__)

WIKIPEDIA_API_URL = 'https://en.wikipedia.org/w/api.php'


def strip_snippet_html(snippet: str) -> str:
    """
    Search snippets come back as HTML with <span class="searchmatch"> markup
    and entities; reduce them to plain single-spaced text.
    """
    if not snippet:
        return ''
    text = BeautifulSoup(snippet, 'html.parser').get_text(' ')
    return ' '.join(text.split())


class WikipediaClient(ApiClient):
    """MediaWiki API client for en.wikipedia.org"""

    service_name = 'wikipedia'

    def __init__(self, user_agent: str = DEFAULT_USER_AGENT, min_interval: float = 0.4,
                 timeout: float = 12, max_retries: int = 3, cache_days: int = 0,
                 force_refresh: bool = False, api_url: str = WIKIPEDIA_API_URL, **kwargs):
        super().__init__(user_agent=user_agent, min_interval=min_interval, timeout=timeout,
                         max_retries=max_retries, base_delay=0.5, cache_days=cache_days,
                         force_refresh=force_refresh, **kwargs)
        self.api_url = api_url

    def search_pages(self, query: str, limit: int = 8) -> List[WikipediaSearchResult]:
        """
        Full-text search

        Args:
            query: Search string, e.g. "Time Out Dave Brubeck album"
            limit: Maximum number of results

        Returns:
            List of WikipediaSearchResult with plain-text snippets
        """
        self.logger.debug(f"wikipedia search query='{query}' limit={limit}")
        params = {
            'action': 'query',
            'list': 'search',
            'srsearch': query,
            'srlimit': limit,
            'format': 'json',
            'utf8': 1,
        }
        data = self._get_json(self.api_url, params=params, context=f"search_pages '{query}'",
                              cache_key=f"search:{query}-{limit}") or {}

        results = [
            WikipediaSearchResult(
                page_id=int(item['pageid']),
                title=item.get('title', ''),
                snippet=strip_snippet_html(item.get('snippet', '')),
            )
            for item in (data.get('query') or {}).get('search') or []
            if 'pageid' in item
        ]
        self.logger.debug(f"wikipedia search results={len(results)}")
        return results

    def fetch_page(self, page_id: int) -> WikipediaPageContent:
        """
        Fetch the current wikitext and canonical URL of a page

        Raises:
            NotFoundError: If the page is missing or has no content
        """
        params = {
            'action': 'query',
            'prop': 'revisions|info',
            'pageids': page_id,
            'rvprop': 'content',
            'rvslots': 'main',
            'inprop': 'url',
            'formatversion': 2,
            'format': 'json',
        }
        context = f"fetch_page {page_id}"
        data = self._get_json(self.api_url, params=params, context=context,
                              cache_key=f"page:{page_id}") or {}

        pages = (data.get('query') or {}).get('pages') or []
        page = pages[0] if pages else None
        if not page or page.get('missing'):
            raise NotFoundError(f"Wikipedia page {page_id} not found",
                                service=self.service_name, context=context)

        revisions = page.get('revisions') or []
        content = ''
        if revisions:
            main_slot = (revisions[0].get('slots') or {}).get('main') or {}
            content = main_slot.get('content') or revisions[0].get('content') or ''
        if not content:
            raise NotFoundError(f"Wikipedia page {page_id} has no content",
                                service=self.service_name, context=context)

        return WikipediaPageContent(
            page_id=int(page.get('pageid', page_id)),
            title=page.get('title', ''),
            full_url=page.get('fullurl', ''),
            wikitext=content,
        )
