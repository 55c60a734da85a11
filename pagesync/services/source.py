"""Content source adapters.

The sync coordinator only depends on the :class:`ContentSource` capability:
anything with an async ``fetch`` (and ``fetch_page`` for webhooks) can stand
in for the external system of record.
"""

import logging
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Protocol, Sequence

import httpx

from pagesync.services.errors import AdapterError

logger = logging.getLogger(__name__)

_HTTP_TIMEOUT = 15
# Hard ceiling on result pages per fetch, protects against a source that never stops paginating
_MAX_RESULT_PAGES = 500


class FetchResult(NamedTuple):
    records: List[Mapping[str, Any]]
    next_cursor: Optional[str] = None  # None: the source has no incremental support


class ContentSource(Protocol):
    async def fetch(self, datasource_id: str, cursor: Optional[str] = None) -> FetchResult:
        """Return the authoritative record set, or the delta since *cursor*."""
        ...

    async def fetch_page(self, datasource_id: str, page_id: str) -> Mapping[str, Any]:
        ...


class StaticContentSource:
    """In-memory source holding a fixed record list per datasource.

    Useful for fixtures and imports.  Has no incremental support, so every
    sync is a full-set reconciliation.
    """

    def __init__(self, records: Optional[Dict[str, Sequence[Mapping[str, Any]]]] = None):
        self.records: Dict[str, List[Mapping[str, Any]]] = {
            key: list(value) for key, value in (records or {}).items()
        }
        self.fetch_calls = 0

    async def fetch(self, datasource_id: str, cursor: Optional[str] = None) -> FetchResult:
        self.fetch_calls += 1
        return FetchResult(list(self.records.get(datasource_id, [])))

    async def fetch_page(self, datasource_id: str, page_id: str) -> Mapping[str, Any]:
        for record in self.records.get(datasource_id, []):
            if record.get("page_id", record.get("id")) == page_id:
                return record
        raise AdapterError(f"Page '{page_id}' not found in datasource '{datasource_id}'")


class HttpContentSource:
    """Reads pages from a paginated JSON API.

    ``GET {base_url}/datasources/{id}/pages?since=<cursor>&page=<token>`` must
    answer ``{"results": [...], "next_page": <token|null>, "next_cursor": <str|null>}``.
    Result pages are followed until ``next_page`` is empty; the last
    ``next_cursor`` seen becomes the watermark for the next sync.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = _HTTP_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport
        self.headers = {"Accept": "application/json"}
        if token:
            self.headers["Authorization"] = f"Bearer {token}"

    async def fetch(self, datasource_id: str, cursor: Optional[str] = None) -> FetchResult:
        url = f"{self.base_url}/datasources/{datasource_id}/pages"
        records: List[Mapping[str, Any]] = []
        next_cursor: Optional[str] = None
        page_token: Optional[str] = None

        async with self._client() as client:
            for _ in range(_MAX_RESULT_PAGES):
                params = {}
                if cursor:
                    params["since"] = cursor
                if page_token:
                    params["page"] = page_token
                payload = await self._get_json(client, url, params)

                results = payload.get("results") or []
                if not isinstance(results, list):
                    raise AdapterError(f"Malformed response from {url}: 'results' is not a list")
                records.extend(results)
                next_cursor = payload.get("next_cursor") or next_cursor
                page_token = payload.get("next_page")

                logger.debug(
                    "Fetched result page",
                    extra={"datasource_id": datasource_id, "count": len(results), "has_more": bool(page_token)},
                )
                if not page_token:
                    break
            else:
                raise AdapterError(f"Source kept paginating past {_MAX_RESULT_PAGES} result pages")

        logger.info("Fetched %d record(s) for datasource %s", len(records), datasource_id)
        return FetchResult(records, next_cursor)

    async def fetch_page(self, datasource_id: str, page_id: str) -> Mapping[str, Any]:
        url = f"{self.base_url}/datasources/{datasource_id}/pages/{page_id}"
        async with self._client() as client:
            return await self._get_json(client, url, {})

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, headers=self.headers, transport=self.transport)

    async def _get_json(self, client: httpx.AsyncClient, url: str, params: dict) -> Dict[str, Any]:
        """GET *url* and decode the JSON object, mapping every failure to :class:`AdapterError`."""
        try:
            resp = await client.get(url, params=params)
            resp.raise_for_status()
            payload = resp.json()
        except httpx.TimeoutException as exc:
            logger.error("Timeout fetching %s", url)
            raise AdapterError(f"Content source timed out: {url}") from exc
        except httpx.HTTPStatusError as exc:
            logger.error("Content source returned HTTP %s for %s", exc.response.status_code, url)
            raise AdapterError(f"Content source returned HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            logger.error("Error fetching %s: %s", url, exc)
            raise AdapterError(f"Content source unreachable: {exc}") from exc
        except ValueError as exc:
            raise AdapterError(f"Content source returned invalid JSON: {url}") from exc

        if not isinstance(payload, dict):
            raise AdapterError(f"Malformed response from {url}: expected a JSON object")
        return payload
