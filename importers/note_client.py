"""
note.com API client for the Notion importer.

This module wraps the note.com JSON API calls the importer needs: note
creation and the two-phase presigned image upload. Authentication uses the
browser session cookie and XSRF token captured from a logged-in session.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

from config_loader import resolved_value
from extractors import dig, first_of
from .multipart import MultipartFormBuilder

logger = logging.getLogger('notion_note_importer.importers.note_client')

NOTE_ORIGIN = 'https://note.com'
EDITOR_REFERER = 'https://editor.note.com/'

NOTE_ID_EXTRACTORS = (
    dig('data', 'id'),
    dig('data', 'key'),
    dig('id'),
)

NOTE_KEY_EXTRACTORS = (
    dig('data', 'key'),
    dig('key'),
)


class NoteApiError(Exception):
    """Error raised for failed note.com or storage requests."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass
class PresignedPost:
    """Presign phase response: final image URL, storage endpoint and signing fields."""

    url: str
    action: str
    fields: Dict[str, str] = field(default_factory=dict)


class NoteClient:
    """note.com API client with cookie session authentication."""

    DEFAULT_TIMEOUT = 30

    def __init__(
        self,
        base_url: str = 'https://note.com/api',
        session_cookie: Optional[str] = None,
        xsrf_token: Optional[str] = None,
        all_cookies: Optional[str] = None,
        timeout: int = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
        storage_session: Optional[requests.Session] = None
    ):
        """
        Initialize note.com client.

        Args:
            base_url: API base URL (including the ``/api`` prefix)
            session_cookie: Value of the ``_note_session_v5`` cookie
            xsrf_token: XSRF token sent as ``X-XSRF-TOKEN``
            all_cookies: Full cookie header captured from a browser (takes precedence)
            timeout: Request timeout in seconds
            session: Optional pre-built session for API calls
            storage_session: Optional pre-built session for object storage uploads
        """
        self.base_url = base_url.rstrip('/')
        self.session_cookie = session_cookie or None
        self.xsrf_token = xsrf_token or None
        self.all_cookies = all_cookies or None
        self.timeout = timeout

        self.session = session or requests.Session()
        self.session.headers.update({
            'Accept': 'application/json',
            'User-Agent': 'notion-note-importer/1.0',
        })
        self.session.headers.update(self._auth_headers())

        # Storage uploads are authorized by the signed policy, not by note.com cookies.
        self.storage_session = storage_session or requests.Session()

        logger.debug(f"Initialized note.com client for {self.base_url} (auth: {self.has_auth()})")

    def has_auth(self) -> bool:
        """Return True when a session credential is configured."""
        return bool(self.session_cookie or self.all_cookies)

    def _auth_headers(self) -> Dict[str, str]:
        headers = {}
        if self.all_cookies:
            headers['Cookie'] = '; '.join(
                cookie for cookie in self.all_cookies.split('; ')
                if not cookie.startswith('XSRF-TOKEN=')
            )
        elif self.session_cookie:
            headers['Cookie'] = f'_note_session_v5={self.session_cookie}'

        if self.xsrf_token:
            headers['X-XSRF-TOKEN'] = self.xsrf_token
        return headers

    def _make_request(
        self,
        method: str,
        endpoint: str,
        headers: Optional[Dict[str, str]] = None,
        **kwargs
    ) -> Dict[str, Any]:
        """
        Make an HTTP request to the note.com API.

        Args:
            method: HTTP method
            endpoint: Path below the API base URL (e.g., "/v3/notes")
            headers: Extra request headers
            **kwargs: Additional arguments for requests

        Returns:
            Decoded JSON response (empty dict for empty bodies)

        Raises:
            NoteApiError: For transport or HTTP errors
        """
        url = f"{self.base_url}{endpoint}"
        request_headers = {}
        if method in ('POST', 'PUT'):
            request_headers['Origin'] = NOTE_ORIGIN
            request_headers['Referer'] = f'{NOTE_ORIGIN}/'
        request_headers.update(headers or {})

        logger.debug(f"{method} {url}")
        try:
            response = self.session.request(method, url, headers=request_headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error(f"Request failed: {method} {url} - {str(e)}")
            raise NoteApiError(f"Request to note.com failed: {str(e)}")

        logger.debug(f"Response status: {response.status_code}")

        if response.status_code in (401, 403):
            raise NoteApiError(
                "Authentication error: no access to note.com. Please check the session cookie.",
                response.status_code
            )
        if not 200 <= response.status_code < 300:
            logger.error(f"API error on {endpoint}: {response.status_code} - {response.text[:500]}")
            raise NoteApiError(
                f"API error: {response.status_code} {response.reason or ''} - {response.text[:200]}".strip(),
                response.status_code
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise NoteApiError(f"Invalid JSON response from note.com: {str(e)}", response.status_code)

    def create_note(
        self,
        title: str,
        body: str,
        status: str = 'draft',
        tags: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        """
        Create a note.

        Args:
            title: Note title
            body: Note body markup
            status: "draft" or "published"
            tags: Hashtags to attach

        Returns:
            Raw API response

        Raises:
            NoteApiError: For API errors
        """
        if status not in ('draft', 'published'):
            raise ValueError(f"Invalid note status: {status}")

        payload = {
            'title': title,
            'body': body,
            'status': status,
            'tags': list(tags or []),
        }
        data = self._make_request(
            'POST',
            '/v3/notes',
            headers={'Content-Type': 'application/json'},
            data=json.dumps(payload)
        )
        logger.info(f"Created {status} note '{title}' ({self.extract_note_id(data)})")
        return data

    @staticmethod
    def extract_note_id(response: Dict[str, Any]) -> Optional[str]:
        """Pull the note id out of a creation response."""
        note_id = first_of(response, NOTE_ID_EXTRACTORS)
        return str(note_id) if note_id is not None else None

    @staticmethod
    def extract_note_key(response: Dict[str, Any]) -> Optional[str]:
        return first_of(response, NOTE_KEY_EXTRACTORS)

    def request_presigned_post(self, file_name: str) -> PresignedPost:
        """
        Presign phase: ask note.com for a storage upload policy.

        Args:
            file_name: Name of the file to upload

        Returns:
            PresignedPost with final URL, storage endpoint and ordered fields

        Raises:
            NoteApiError: If the request fails or the response is malformed
        """
        body, content_type = MultipartFormBuilder().add_field('filename', file_name).build()
        data = self._make_request(
            'POST',
            '/v3/images/upload/presigned_post',
            headers={
                'Content-Type': content_type,
                'X-Requested-With': 'XMLHttpRequest',
                'Referer': EDITOR_REFERER,
            },
            data=body
        )

        payload = data.get('data') if isinstance(data, dict) else None
        if not isinstance(payload, dict) or not isinstance(payload.get('post'), dict):
            logger.error(f"Unexpected presign response: {json.dumps(data)[:500]}")
            raise NoteApiError("Failed to obtain presigned upload parameters")

        url = payload.get('url')
        action = payload.get('action')
        if not url or not action:
            raise NoteApiError("Presigned upload response is missing url or action")

        return PresignedPost(
            url=url,
            action=action,
            fields={key: str(value) for key, value in payload['post'].items() if value is not None},
        )

    def upload_to_storage(self, action: str, body: bytes, content_type: str, method: str = 'POST') -> int:
        """
        Storage phase: send the signed multipart form to object storage.

        Args:
            action: Storage endpoint URL
            body: Encoded multipart body
            content_type: Content-Type header with boundary
            method: "POST" or "PUT"

        Returns:
            HTTP status code of the storage response

        Raises:
            NoteApiError: If the storage endpoint rejects the upload
        """
        try:
            response = self.storage_session.request(
                method,
                action,
                data=body,
                headers={'Content-Type': content_type, 'Content-Length': str(len(body))},
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise NoteApiError(f"Storage upload failed: {str(e)}")

        if not 200 <= response.status_code < 300:
            logger.error(f"Storage upload error: {response.status_code} {response.text[:500]}")
            raise NoteApiError(f"Storage upload failed: {response.status_code}", response.status_code)

        return response.status_code

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'NoteClient':
        """
        Initialize note.com client from configuration dictionary.

        Args:
            config: Configuration dictionary with a note section

        Returns:
            NoteClient instance
        """
        note_config = config.get('note', {})

        return cls(
            base_url=note_config.get('base_url', 'https://note.com/api'),
            session_cookie=resolved_value(note_config.get('session_cookie')),
            xsrf_token=resolved_value(note_config.get('xsrf_token')),
            all_cookies=resolved_value(note_config.get('all_cookies')),
            timeout=note_config.get('timeout', cls.DEFAULT_TIMEOUT)
        )


__all__ = ['NoteClient', 'NoteApiError', 'PresignedPost']
