"""Notion REST API client with pagination, retry logic and error mapping."""

import json
import logging
import time
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urljoin

import requests

from extractors import dig, first_of
from models import NotionBlock, NotionErrorCode, NotionPage

logger = logging.getLogger('notion_note_importer.notion_api')

RETRYABLE_SERVER_STATUSES = (500, 502, 503, 504)

DEFAULT_IMAGE_FORMATS = ('image/jpeg', 'image/png', 'image/gif', 'image/webp')

ERROR_MESSAGES = {
    NotionErrorCode.INVALID_TOKEN: "Invalid Notion token. Please check your NOTION_TOKEN.",
    NotionErrorCode.TOKEN_EXPIRED: "Notion token has expired. Please issue a new integration token.",
    NotionErrorCode.NO_ACCESS: (
        "Access denied. Please make sure the Notion integration is connected to the page/database."
    ),
    NotionErrorCode.PAGE_NOT_FOUND: "Page or database not found. Please check the ID.",
    NotionErrorCode.RATE_LIMITED: "Rate limit exceeded. Please try again later.",
    NotionErrorCode.SERVER_ERROR: "Notion server error. Please try again later.",
}


class NotionApiError(Exception):
    """Error raised for any failed Notion API interaction."""

    def __init__(self, code: NotionErrorCode, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        if self.code in (NotionErrorCode.RATE_LIMITED, NotionErrorCode.NETWORK_ERROR):
            return True
        return self.code == NotionErrorCode.SERVER_ERROR and self.status_code in RETRYABLE_SERVER_STATUSES

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"


def _title_property(properties: Dict[str, Any]) -> Any:
    for value in properties.values():
        if isinstance(value, dict) and value.get('type') == 'title':
            return value.get('title')
    return None


def _join_plain_text(spans: Any) -> Optional[str]:
    if not isinstance(spans, list):
        return None
    text = ''.join(span.get('plain_text', '') for span in spans if isinstance(span, dict))
    return text or None


TITLE_EXTRACTORS = (
    lambda page: _join_plain_text(_title_property(page['properties'])),
    lambda page: _join_plain_text(page['title']),
    dig('child_page', 'title'),
)


def extract_title(page: Dict[str, Any]) -> str:
    """Extract a page or database entry title, falling back to "Untitled"."""
    return first_of(page, TITLE_EXTRACTORS, default='Untitled')


class NotionClient:
    """Notion REST API client with bearer authentication and bounded retries."""

    def __init__(
        self,
        token: str,
        base_url: str = 'https://api.notion.com',
        api_version: str = '2022-06-28',
        timeout: int = 30,
        max_retries: int = 3,
        initial_retry_delay: float = 1.0,
        max_retry_delay: float = 4.0,
        page_size: int = 100,
        supported_image_formats: Optional[List[str]] = None,
        max_image_size: int = 10 * 1024 * 1024,
        image_timeout: int = 30,
        session: Optional[requests.Session] = None,
        download_session: Optional[requests.Session] = None
    ):
        """
        Initialize Notion client.

        Args:
            token: Integration token sent as a bearer credential
            base_url: Notion API base URL
            api_version: Value of the ``Notion-Version`` header
            timeout: HTTP request timeout in seconds
            max_retries: Maximum number of requests issued for one call, first attempt included
            initial_retry_delay: Delay before the first retry in seconds
            max_retry_delay: Upper bound for any retry delay in seconds
            page_size: Page size used when listing block children
            supported_image_formats: MIME types accepted by ``download_image``
            max_image_size: Largest accepted image payload in bytes
            image_timeout: Timeout for image downloads in seconds
            session: Optional pre-built session for API calls
            download_session: Optional pre-built session for file downloads
        """
        if not token:
            raise ValueError("Notion client requires an integration token")
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")

        self.base_url = base_url.rstrip('/') + '/'
        self.timeout = timeout
        self.max_retries = max_retries
        self.initial_retry_delay = initial_retry_delay
        self.max_retry_delay = max_retry_delay
        self.page_size = page_size
        self.supported_image_formats = list(supported_image_formats or DEFAULT_IMAGE_FORMATS)
        self.max_image_size = max_image_size
        self.image_timeout = image_timeout

        self.session = session or requests.Session()
        self.session.headers.update({
            'Authorization': f'Bearer {token}',
            'Notion-Version': api_version,
            'Content-Type': 'application/json',
        })

        # File URLs are pre-signed; Notion credentials must not leak to them.
        self.download_session = download_session or requests.Session()
        self.download_session.headers.update({'User-Agent': 'notion-note-importer/1.0'})

        logger.info(f"Initialized Notion client for {base_url} (API version {api_version})")
        logger.debug(f"Client configured with timeout={timeout}s, max_retries={max_retries}, "
                     f"retry_delay={initial_retry_delay}s..{max_retry_delay}s")

    def _retry_delay(self, attempt: int, response: Optional[requests.Response] = None) -> float:
        """Compute the delay before retry number ``attempt`` (0-based)."""
        delay = self.initial_retry_delay * (2 ** attempt)
        if response is not None:
            retry_after = response.headers.get('Retry-After')
            if retry_after:
                try:
                    delay = float(retry_after)
                except ValueError:
                    logger.debug(f"Ignoring non-numeric Retry-After header: {retry_after}")
        return min(delay, self.max_retry_delay)

    @staticmethod
    def _error_from_response(response: requests.Response) -> NotionApiError:
        """Map an unsuccessful response to a ``NotionApiError``."""
        status = response.status_code
        try:
            body = response.json()
        except ValueError:
            body = {}
        detail = body.get('message') if isinstance(body, dict) else None

        if status == 401:
            text = (detail or response.text or '').lower()
            code = NotionErrorCode.TOKEN_EXPIRED if 'expired' in text else NotionErrorCode.INVALID_TOKEN
        elif status == 403:
            code = NotionErrorCode.NO_ACCESS
        elif status == 404:
            code = NotionErrorCode.PAGE_NOT_FOUND
        elif status == 429:
            code = NotionErrorCode.RATE_LIMITED
        else:
            code = NotionErrorCode.SERVER_ERROR

        message = ERROR_MESSAGES[code]
        if detail:
            message = f"{message} ({detail})"
        return NotionApiError(code, message, status)

    def _make_request(self, method: str, endpoint: str, **kwargs) -> Dict[str, Any]:
        """
        Make an HTTP request to the Notion API with retry and error mapping.

        At most ``max_retries`` requests are sent. Rate limiting, transport
        errors and transient server errors are retried with exponential
        backoff; authentication, permission and not-found errors are raised
        immediately.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: API endpoint path (e.g., "/v1/pages/abc")
            **kwargs: Additional arguments for requests

        Returns:
            Decoded JSON response body

        Raises:
            NotionApiError: When the request fails permanently or retries run out
        """
        url = urljoin(self.base_url, endpoint.lstrip('/'))

        for attempt in range(self.max_retries):
            response = None
            start_time = time.time()
            logger.debug(f"API Request: {method} {url} (attempt {attempt + 1}/{self.max_retries})")

            try:
                response = self.session.request(method, url, timeout=self.timeout, **kwargs)
            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
                error = NotionApiError(NotionErrorCode.NETWORK_ERROR, f"Network error: {str(e)}")
            else:
                elapsed = time.time() - start_time
                logger.debug(f"API Response: {response.status_code} {url} ({elapsed:.3f}s)")

                if 200 <= response.status_code < 300:
                    try:
                        return response.json()
                    except ValueError as e:
                        raise NotionApiError(
                            NotionErrorCode.SERVER_ERROR,
                            f"Invalid JSON response from Notion: {str(e)}",
                            response.status_code
                        )
                error = self._error_from_response(response)

            if not error.retryable:
                logger.error(f"HTTP Error {error.status_code}: {method} {url} - {error.message}")
                raise error

            if attempt + 1 >= self.max_retries:
                logger.error(f"Request failed after {self.max_retries} attempts: {method} {url} - {error.message}")
                raise error

            wait_time = self._retry_delay(attempt, response)
            logger.warning(
                f"{error.code.value}: attempt {attempt + 1}/{self.max_retries} failed, "
                f"retrying in {wait_time:.1f}s: {url}"
            )
            if response is not None:
                response.close()
            time.sleep(wait_time)

        raise NotionApiError(NotionErrorCode.SERVER_ERROR, f"Request failed: {method} {url}")

    def get_page(self, page_id: str) -> NotionPage:
        """
        Fetch page metadata.

        Args:
            page_id: Notion page ID

        Returns:
            NotionPage with extracted title

        Raises:
            NotionApiError: For API errors
        """
        data = self._make_request('GET', f'/v1/pages/{page_id}')
        if 'properties' not in data:
            raise NotionApiError(NotionErrorCode.SERVER_ERROR, "Invalid page response from Notion API")

        page = NotionPage.from_api(data, extract_title(data))
        logger.info(f"Fetched page '{page.title}' ({page.id})")
        return page

    def get_blocks(self, block_id: str, recursive: bool = True) -> List[NotionBlock]:
        """
        Fetch all child blocks of a page or block.

        Pages through the children listing until the cursor is exhausted.
        When ``recursive`` is set, every block with children gets a follow-up
        fetch whose result is attached to ``block.children``.

        Args:
            block_id: Page or block ID
            recursive: Whether to fetch descendants

        Returns:
            Ordered list of top-level blocks

        Raises:
            NotionApiError: For API errors
        """
        blocks: List[NotionBlock] = []
        cursor: Optional[str] = None

        while True:
            params: Dict[str, Any] = {'page_size': self.page_size}
            if cursor:
                params['start_cursor'] = cursor

            data = self._make_request('GET', f'/v1/blocks/{block_id}/children', params=params)

            for raw_block in data.get('results', []):
                if not isinstance(raw_block, dict) or 'type' not in raw_block:
                    continue
                block = NotionBlock.from_api(raw_block)
                if recursive and block.has_children:
                    block.children = self.get_blocks(block.id, recursive=True)
                blocks.append(block)

            cursor = data.get('next_cursor')
            if not data.get('has_more') or not cursor:
                break

        logger.debug(f"Fetched {len(blocks)} child blocks of {block_id}")
        return blocks

    def query_database(
        self,
        database_id: str,
        page_size: int = 20,
        start_cursor: Optional[str] = None,
        filter: Optional[Dict[str, Any]] = None,
        sorts: Optional[List[Dict[str, Any]]] = None
    ) -> Tuple[List[NotionPage], Optional[str]]:
        """
        Query a database for its pages.

        Args:
            database_id: Notion database ID
            page_size: Number of pages to return
            start_cursor: Cursor from a previous call
            filter: Optional Notion filter object
            sorts: Optional Notion sort list

        Returns:
            Tuple of (pages, next_cursor)
        """
        body: Dict[str, Any] = {'page_size': page_size}
        if start_cursor:
            body['start_cursor'] = start_cursor
        if filter:
            body['filter'] = filter
        if sorts:
            body['sorts'] = sorts

        data = self._make_request('POST', f'/v1/databases/{database_id}/query', data=json.dumps(body))

        pages = [
            NotionPage.from_api(item, extract_title(item))
            for item in data.get('results', [])
            if isinstance(item, dict) and 'properties' in item
        ]
        next_cursor = data.get('next_cursor') if data.get('has_more') else None

        logger.info(f"Database query returned {len(pages)} pages for {database_id}")
        return pages, next_cursor

    def download_image(self, url: str) -> Tuple[bytes, str]:
        """
        Download an image from Notion file storage or an external host.

        Args:
            url: Pre-signed or external image URL

        Returns:
            Tuple of (image bytes, MIME type)

        Raises:
            NotionApiError: IMAGE_DOWNLOAD_FAILED on HTTP, format or size errors
        """
        logger.debug(f"Downloading image: {url}")
        try:
            response = self.download_session.get(url, timeout=self.image_timeout)
        except requests.exceptions.RequestException as e:
            raise NotionApiError(
                NotionErrorCode.IMAGE_DOWNLOAD_FAILED, f"Failed to download image: {str(e)}"
            )

        if not 200 <= response.status_code < 300:
            raise NotionApiError(
                NotionErrorCode.IMAGE_DOWNLOAD_FAILED,
                f"Failed to download image: {response.status_code} {response.reason or ''}".strip(),
                response.status_code
            )

        content_type = response.headers.get('Content-Type') or 'image/jpeg'
        mime_type = content_type.split(';')[0].strip().lower()
        if mime_type not in self.supported_image_formats:
            raise NotionApiError(
                NotionErrorCode.IMAGE_DOWNLOAD_FAILED,
                f"Unsupported image format: {mime_type}",
                response.status_code
            )

        content = response.content
        if len(content) > self.max_image_size:
            raise NotionApiError(
                NotionErrorCode.IMAGE_DOWNLOAD_FAILED,
                f"Image too large: {len(content)} bytes (max: {self.max_image_size})",
                response.status_code
            )

        logger.debug(f"Downloaded {len(content)} bytes ({mime_type})")
        return content, mime_type

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'NotionClient':
        """
        Initialize Notion client from configuration dictionary.

        Args:
            config: Configuration dictionary with notion and images sections

        Returns:
            NotionClient instance
        """
        notion_config = config.get('notion', {})
        images_config = config.get('images', {})

        return cls(
            token=notion_config.get('token'),
            base_url=notion_config.get('base_url', 'https://api.notion.com'),
            api_version=notion_config.get('api_version', '2022-06-28'),
            timeout=notion_config.get('timeout', 30),
            max_retries=notion_config.get('max_retries', 3),
            initial_retry_delay=notion_config.get('initial_retry_delay', 1.0),
            max_retry_delay=notion_config.get('max_retry_delay', 4.0),
            page_size=notion_config.get('page_size', 100),
            supported_image_formats=images_config.get('supported_formats'),
            max_image_size=images_config.get('max_size_bytes', 10 * 1024 * 1024),
            image_timeout=images_config.get('timeout', 30)
        )


__all__ = ['NotionClient', 'NotionApiError', 'extract_title']
