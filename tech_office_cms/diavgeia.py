import logging
from typing import Dict, Optional

import requests

from .errors import NotFoundError, UpstreamError
from .utils import log_registry_call

logger = logging.getLogger(__name__)

DIAVGEIA_BASE_URL = "https://diavgeia.gov.gr/luminapi/opendata"

SEARCH_PARAMS = ('q', 'ada', 'subject', 'protocol', 'org', 'type',
                 'from_date', 'to_date', 'status', 'sort')


class DiavgeiaClient:
    """
    Read-only client for the Diavgeia open data API.

    One outbound request per call, bounded by ``timeout`` seconds and never
    retried. A 404 on a single decision is reported as NotFoundError; every
    other failure (timeout, connection error, non-2xx status, bad JSON) is an
    UpstreamError.
    """

    def __init__(self, base_url: str = DIAVGEIA_BASE_URL, timeout: int = 15, max_page_size: int = 100):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.max_page_size = max_page_size
        self.search_url = f"{self.base_url}/search"

    def decision_url(self, ada: str) -> str:
        return f"{self.base_url}/decisions/{ada}"

    def _build_search_params(self, params: Dict) -> Dict:
        query = {key: params[key] for key in SEARCH_PARAMS if params.get(key)}

        try:
            page = max(int(params.get('page') or 0), 0)
        except (TypeError, ValueError):
            page = 0
        try:
            size = int(params.get('size') or 20)
        except (TypeError, ValueError):
            size = 20
        query['page'] = page
        query['size'] = min(max(size, 1), self.max_page_size)
        return query

    def _get_json(self, url: str, params: Optional[Dict] = None) -> Dict:
        response = requests.get(
            url,
            params=params,
            headers={'Accept': 'application/json'},
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()

    def search(self, params: Dict) -> Dict:
        """
        Run a search on the registry.

        Args:
            params: q, ada, subject, protocol, org, type, from_date, to_date,
                status, page, size, sort (all optional)

        Returns:
            The registry response, ``{"decisions": [...], "info": {...}}``
        """
        query = self._build_search_params(params)
        target = ', '.join(f"{key}={value}" for key, value in query.items())

        try:
            result = self._get_json(self.search_url, params=query)
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else 'unknown'
            reason = e.response.reason if e.response is not None else ''
            message = f"Diavgeia API error: {status} - {reason}"
            log_registry_call('search', target, False, message)
            raise UpstreamError(message) from e
        except (requests.RequestException, ValueError) as e:
            message = f"Diavgeia API request failed: {str(e)}"
            log_registry_call('search', target, False, message)
            raise UpstreamError(message) from e

        log_registry_call('search', target, True)
        if not isinstance(result, dict):
            raise UpstreamError("Diavgeia API returned an unexpected search response")
        return result

    def get_decision(self, ada: str) -> Dict:
        """
        Fetch one decision by ADA.

        Raises:
            NotFoundError: the registry has no decision with this ADA
            UpstreamError: any other failure
        """
        try:
            result = self._get_json(self.decision_url(ada))
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            if status == 404:
                log_registry_call('get', ada, False, 'not found')
                raise NotFoundError(f"Decision with ADA {ada} not found") from e
            reason = e.response.reason if e.response is not None else ''
            message = f"Diavgeia API error: {status} - {reason}"
            log_registry_call('get', ada, False, message)
            raise UpstreamError(message) from e
        except (requests.RequestException, ValueError) as e:
            message = f"Diavgeia API request failed: {str(e)}"
            log_registry_call('get', ada, False, message)
            raise UpstreamError(message) from e

        log_registry_call('get', ada, True)
        if not isinstance(result, dict):
            raise UpstreamError("Diavgeia API returned an unexpected decision response")
        return result
