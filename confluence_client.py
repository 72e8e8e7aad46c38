"""Confluence REST API client with retry logic and rate limiting."""

import json
import logging
import threading
import time
from typing import Any, Dict, List, Optional

import requests
import urllib3
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from errors import AttachmentDownloadError, FetcherError

logger = logging.getLogger('confluence_markdown_exporter.client')


class ConfluenceClient:
    """Confluence REST API client with authentication, retry logic, and error handling."""

    def __init__(
        self,
        base_url: str,
        auth_type: str = 'basic',
        username: Optional[str] = None,
        password: Optional[str] = None,
        api_token: Optional[str] = None,
        verify_ssl: bool = True,
        timeout: int = 30,
        max_retries: int = 3,
        retry_backoff_factor: float = 2.0,
        rate_limit: float = 0.0
    ):
        """
        Initialize Confluence client with authentication and retry configuration.

        Args:
            base_url: Confluence base URL (e.g., "https://example.atlassian.net/wiki")
            auth_type: "basic" or "bearer" authentication
            username: Username for basic auth
            password: Password or API token for basic auth
            api_token: Personal access token for bearer auth
            verify_ssl: Whether to verify SSL certificates
            timeout: HTTP request timeout in seconds
            max_retries: Maximum retry attempts for transient errors
            retry_backoff_factor: Exponential backoff factor
            rate_limit: Minimum seconds between requests (0.0 = no rate limiting)
        """
        if not base_url:
            raise ValueError("Confluence base_url is required")

        self.base_url = base_url.rstrip('/')
        self.auth_type = auth_type
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_backoff_factor = retry_backoff_factor
        self.rate_limit = rate_limit
        self.last_request_time = 0.0
        self._rate_lock = threading.Lock()

        self.session = requests.Session()

        if auth_type == 'basic':
            if not username or not password:
                raise ValueError("Basic auth requires username and password")
            self.session.auth = (username, password)
            logger.info(f"Initialized Confluence client with Basic auth for {base_url}")
        elif auth_type == 'bearer':
            if not api_token:
                raise ValueError("Bearer auth requires api_token")
            self.session.headers['Authorization'] = f'Bearer {api_token}'
            logger.info(f"Initialized Confluence client with Bearer auth for {base_url}")
        else:
            raise ValueError(f"Unsupported auth_type: {auth_type}")

        self.session.verify = verify_ssl
        if not verify_ssl:
            logger.warning("SSL verification disabled - this is insecure!")
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

        # Retry strategy for idempotent requests
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=retry_backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["HEAD", "GET", "OPTIONS"]
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

        logger.debug(f"Client configured with timeout={timeout}s, max_retries={max_retries}, "
                     f"backoff_factor={retry_backoff_factor}, rate_limit={rate_limit}s")

    def _enforce_rate_limit(self) -> None:
        """Enforce rate limiting if configured."""
        if self.rate_limit <= 0:
            return

        with self._rate_lock:
            time_since_last = time.time() - self.last_request_time
            if time_since_last < self.rate_limit:
                sleep_time = self.rate_limit - time_since_last
                logger.debug(f"Rate limiting: sleeping for {sleep_time:.2f}s")
                time.sleep(sleep_time)
            self.last_request_time = time.time()

    def _url(self, endpoint: str) -> str:
        if endpoint.startswith(('http://', 'https://')):
            return endpoint
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    def _make_request(self, method: str, endpoint: str, **kwargs) -> requests.Response:
        """
        Make HTTP request to Confluence API with rate limiting and error handling.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: API endpoint path (e.g., "/rest/api/content/123") or full URL
            **kwargs: Additional arguments for requests

        Returns:
            Response object

        Raises:
            requests.exceptions.HTTPError: For HTTP errors
            requests.exceptions.Timeout: For timeout errors
            requests.exceptions.RequestException: For other request errors
        """
        self._enforce_rate_limit()

        url = self._url(endpoint)
        start_time = time.time()
        logger.debug(f"API Request: {method} {url}")

        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
            elapsed = time.time() - start_time
            logger.debug(f"API Response: {response.status_code} {url} ({elapsed:.3f}s)")
            response.raise_for_status()
            return response

        except requests.exceptions.Timeout:
            logger.error(f"Request timeout after {self.timeout}s: {method} {url}")
            raise

        except requests.exceptions.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else "unknown"
            logger.error(f"HTTP Error {status_code}: {method} {url}")

            if e.response is not None:
                try:
                    error_data = e.response.json()
                    logger.debug(f"Error details: {json.dumps(error_data, indent=2)}")
                except ValueError:
                    logger.debug(f"Error response: {e.response.text[:500]}")

            raise

        except requests.exceptions.RequestException as e:
            logger.error(f"Request error: {method} {url} - {str(e)}")
            raise

    def get_page(self, page_id: str, expand: Optional[List[str]] = None) -> Dict[str, Any]:
        """
        Fetch single page with specified expansions.

        Args:
            page_id: Confluence page ID
            expand: List of expansions (e.g., ['body.storage', 'body.view', 'version'])

        Returns:
            Page dictionary with expanded fields

        Raises:
            FetcherError: When the request fails
        """
        params = {}
        if expand:
            params['expand'] = ','.join(expand)

        try:
            response = self._make_request('GET', f'/rest/api/content/{page_id}', params=params)
        except requests.exceptions.RequestException as e:
            raise FetcherError(f"Failed to fetch page {page_id}: {e}", details={'page_id': page_id}) from e

        return response.json()

    def get_space_page_ids(self, space_key: str, limit: int = 100) -> List[str]:
        """
        List the ids of all current pages in a space.

        Args:
            space_key: Confluence space key
            limit: Number of pages per request

        Returns:
            Page ids in API order
        """
        logger.info(f"Listing pages in space '{space_key}'")
        page_ids = []
        start = 0

        while True:
            params = {
                'spaceKey': space_key,
                'type': 'page',
                'limit': limit,
                'start': start
            }
            try:
                response = self._make_request('GET', '/rest/api/content', params=params)
            except requests.exceptions.RequestException as e:
                raise FetcherError(f"Failed to list pages in space '{space_key}': {e}",
                                   details={'space_key': space_key}) from e

            data = response.json()
            page_ids.extend(str(result['id']) for result in data.get('results', []))

            if 'next' not in data.get('_links', {}):
                break
            start += limit

        logger.info(f"Found {len(page_ids)} pages in space '{space_key}'")
        return page_ids

    def get_attachments(self, page_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        """
        Get attachments of a specific page.

        Args:
            page_id: Page ID
            limit: Number of attachments per request

        Returns:
            List of attachment dictionaries
        """
        attachments = []
        start = 0

        while True:
            params = {
                'limit': limit,
                'start': start
            }
            response = self._make_request(
                'GET',
                f'/rest/api/content/{page_id}/child/attachment',
                params=params
            )

            data = response.json()
            attachments.extend(data.get('results', []))

            if 'next' not in data.get('_links', {}):
                break
            start += limit

        logger.debug(f"Fetched {len(attachments)} attachments for page {page_id}")
        return attachments

    def download_attachment(self, download_url: str, filename: Optional[str] = None) -> bytes:
        """
        Download attachment from Confluence.

        Args:
            download_url: Download link, absolute or relative to the base URL
            filename: Attachment name used in error messages

        Returns:
            Attachment binary data

        Raises:
            AttachmentDownloadError: When the download fails after retries
        """
        try:
            return self._download_with_retry(download_url)
        except requests.exceptions.RequestException as e:
            raise AttachmentDownloadError(filename or download_url, str(e)) from e

    def _download_with_retry(self, url: str) -> bytes:
        """
        Download file with exponential backoff retry logic.

        Raises:
            requests.exceptions.HTTPError: For HTTP errors after retries
            requests.exceptions.RequestException: For other errors after retries
        """
        for attempt in range(self.max_retries + 1):
            try:
                response = self._make_request('GET', url)
                return response.content

            except requests.exceptions.RequestException as e:
                if not self._is_transient_error(e) or attempt >= self.max_retries:
                    if attempt > 0:
                        logger.error(f"Download failed after {attempt + 1} attempts: {url}")
                    raise

                wait_time = self.retry_backoff_factor * (2 ** attempt)
                logger.warning(
                    f"Download attempt {attempt + 1} failed ({str(e)}), "
                    f"retrying in {wait_time:.1f}s: {url}"
                )
                time.sleep(wait_time)

        raise requests.exceptions.RequestException(f"Download failed: {url}")

    def _is_transient_error(self, exception: Exception) -> bool:
        """
        Determine if an error is transient (should retry) or permanent (fail fast).

        Args:
            exception: The exception to check

        Returns:
            True if error is transient, False if permanent
        """
        response = getattr(exception, 'response', None)
        if response is not None:
            if response.status_code in [429, 500, 502, 503, 504]:
                return True
            if response.status_code in [400, 401, 403, 404]:
                return False

        if isinstance(exception, (requests.exceptions.Timeout, requests.exceptions.ConnectionError)):
            return True

        logger.warning(f"Treating error as permanent (no retry): {type(exception).__name__}")
        return False

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'ConfluenceClient':
        """
        Initialize Confluence client from configuration dictionary.

        Args:
            config: Configuration dictionary with confluence and advanced settings

        Returns:
            ConfluenceClient instance
        """
        confluence_config = config.get('confluence', {})
        advanced_config = config.get('advanced', {})

        return cls(
            base_url=confluence_config.get('base_url'),
            auth_type=confluence_config.get('auth_type', 'basic'),
            username=confluence_config.get('username'),
            password=confluence_config.get('password'),
            api_token=confluence_config.get('api_token'),
            verify_ssl=confluence_config.get('verify_ssl', True),
            timeout=advanced_config.get('request_timeout', 30),
            max_retries=advanced_config.get('max_retries', 3),
            retry_backoff_factor=advanced_config.get('retry_backoff_factor', 2.0),
            rate_limit=advanced_config.get('rate_limit', 0.0)
        )


__all__ = ['ConfluenceClient']
