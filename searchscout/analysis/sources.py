"""
Keyword Sources

The aggregator fetches each source through a KeywordFetcher: an async
callable taking a source id and returning its ranked keywords, either as
a plain list or as a ParseOutcome carrying per-item parse errors.

RankedKeywordsFetcher is the stock fetcher for domains. It caches each
domain's keyword list and delegates the HTTP call to an injected
transport coroutine, e.g. a DataForSEO client's post():

    fetcher = RankedKeywordsFetcher(client.post, cache)
    aggregator = KeywordAggregator(cache, fetcher)
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from searchscout.analysis.models import RankedKeyword
from searchscout.analysis.parser import STATUS_OK, TASK_STATUS_OK, ParseOutcome, parse_ranked_keywords
from searchscout.cache.keys import domain_keywords_key
from searchscout.cache.persistent_cache import CacheMetadata, PersistentCache
from searchscout.utils.config import get_settings
from searchscout.utils.domain import validate_domain

logger = logging.getLogger(__name__)


FetchResult = Union[List[RankedKeyword], ParseOutcome]
KeywordFetcher = Callable[[str], Awaitable[FetchResult]]
Transport = Callable[[str, List[Dict[str, Any]]], Awaitable[Dict[str, Any]]]

RANKED_KEYWORDS_ENDPOINT = "dataforseo_labs/google/ranked_keywords/live"


class SourceFetchError(Exception):
    """A source's keywords could not be fetched."""

    def __init__(self, message: str, source_id: str = None, status_code: int = None):
        super().__init__(message)
        self.source_id = source_id
        self.status_code = status_code


class RankedKeywordsFetcher:
    """
    Fetches and caches the keywords a domain ranks for.

    Parsed keywords are cached under domain_keywords_<domain>; parse
    errors are not cached, they are only reported on the fetch that saw
    them.
    """

    def __init__(
        self,
        post: Transport,
        cache: PersistentCache,
        location_code: Optional[int] = None,
        language_code: Optional[str] = None,
        limit: Optional[int] = None,
        use_cache: bool = True,
    ):
        """
        Args:
            post: Transport coroutine post(endpoint, payload) -> response dict
            cache: Cache for per-domain keyword lists
            location_code: DataForSEO location (default from settings, 2840 = US)
            language_code: Language code (default from settings)
            limit: Maximum keywords per domain
            use_cache: Read cached keyword lists before calling the API
        """
        settings = get_settings()
        self._post = post
        self._cache = cache
        self.location_code = location_code or settings.DEFAULT_LOCATION_CODE
        self.language_code = language_code or settings.DEFAULT_LANGUAGE_CODE
        self.limit = limit or settings.RANKED_KEYWORDS_LIMIT
        self.use_cache = use_cache

    async def __call__(self, source_id: str) -> FetchResult:
        return await self.fetch(source_id)

    def build_payload(self, domain: str) -> List[Dict[str, Any]]:
        return [{
            "target": domain,
            "location_code": self.location_code,
            "language_code": self.language_code,
            "limit": self.limit,
            "order_by": ["keyword_data.keyword_info.search_volume,desc"],
        }]

    async def fetch(self, domain: str, use_cache: Optional[bool] = None) -> FetchResult:
        """
        Keywords the domain ranks for.

        Raises:
            DomainValidationError: The domain is not valid
            SourceFetchError: The API or its task answered with an error status
        """
        domain = validate_domain(domain)
        key = domain_keywords_key(domain)
        use_cache = self.use_cache if use_cache is None else use_cache

        if use_cache:
            cached = self._cache.get(key)
            if cached is not None:
                try:
                    records = [RankedKeyword.model_validate(k) for k in cached]
                except (ValueError, TypeError) as e:
                    logger.warning(f"Discarding cached keywords for {domain}: {e}")
                    self._cache.remove(key)
                else:
                    logger.debug(f"Using cached keywords for {domain} ({len(records)})")
                    return records

        logger.info(f"Fetching ranked keywords for {domain}")
        response = await self._post(RANKED_KEYWORDS_ENDPOINT, self.build_payload(domain))

        status = response.get("status_code") if isinstance(response, dict) else None
        if status != STATUS_OK:
            message = response.get("status_message", "Unknown error") if isinstance(response, dict) else "Empty response"
            raise SourceFetchError(f"API error: {message}", source_id=domain, status_code=status)

        self._check_tasks(domain, response)

        outcome = parse_ranked_keywords(response, source_id=domain)
        self._cache.save(key, outcome.records)
        logger.info(f"Fetched {len(outcome.records)} keywords for {domain}")
        return outcome

    @staticmethod
    def _check_tasks(domain: str, response: Dict[str, Any]) -> None:
        """Raise on the first failed task; an errored task has no result to parse."""
        for task in response.get("tasks") or []:
            if not isinstance(task, dict):
                continue
            task_status = task.get("status_code")
            if task_status not in TASK_STATUS_OK:
                message = task.get("status_message", "Task error")
                raise SourceFetchError(
                    f"Task error: {message} (status: {task_status})",
                    source_id=domain,
                    status_code=task_status,
                )

    def cache_metadata(self, domain: str) -> Optional[CacheMetadata]:
        """Age of the cached keyword list for a domain."""
        return self._cache.metadata(domain_keywords_key(validate_domain(domain)))

    def clear_cache(self, domain: str) -> None:
        """Forget the cached keyword list for a domain."""
        self._cache.remove(domain_keywords_key(validate_domain(domain)))
