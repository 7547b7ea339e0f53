from dataclasses import dataclass
from datetime import datetime, timezone
import asyncio
import json
import logging
from typing import Any, Dict, List, NamedTuple, Optional

import aiohttp

from ..config import RemoteSettings
from ..errors import (
    ForbiddenError,
    NetworkError,
    NotFoundError,
    ParseError,
    RateLimitedError,
    RemoteError,
    SyncError,
    UnauthorizedError,
    ValidationError,
)
from ..models import Collection, RemoteDocument

SCOPES_HEADER = 'X-OAuth-Scopes'


@dataclass
class RateLimitInfo:
    """Quota state reported by the last response."""
    remaining: Optional[int] = None
    limit: Optional[int] = None
    reset_at: Optional[datetime] = None

    @property
    def exhausted(self) -> bool:
        return self.remaining == 0

    @classmethod
    def from_headers(cls, headers) -> 'RateLimitInfo':
        def as_int(name: str) -> Optional[int]:
            try:
                return int(headers[name])
            except (KeyError, TypeError, ValueError):
                return None

        reset = as_int('X-RateLimit-Reset')
        return cls(
            remaining=as_int('X-RateLimit-Remaining'),
            limit=as_int('X-RateLimit-Limit'),
            reset_at=datetime.fromtimestamp(reset, tz=timezone.utc) if reset is not None else None,
        )


class _Response(NamedTuple):
    status: int
    headers: Any
    body: str


class RemoteDocumentClient:
    """Client for the single JSON document kept in a Gist-like service"""

    def __init__(self, credentials, settings: Optional[RemoteSettings] = None):
        """
        Args:
            credentials: Object exposing ``token`` and ``document_id``
            settings: Endpoint and document settings
        """
        self.credentials = credentials
        self.settings = settings or RemoteSettings()
        self.logger = logging.getLogger(__name__)
        self._session: aiohttp.ClientSession | None = None
        # Serialises the read-modify-write cycle of every remote write
        self._write_lock = asyncio.Lock()
        self.rate_limit = RateLimitInfo()

    async def __aenter__(self):
        await self._init_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _init_session(self) -> None:
        if not self._session:
            timeout = aiohttp.ClientTimeout(total=self.settings.timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)

    async def close(self) -> None:
        """Close the aiohttp session"""
        if self._session:
            await self._session.close()
            self._session = None

    async def fetch_document(self) -> RemoteDocument:
        """Fetch the remote document.

        A hosted document that does not contain the data file yet is
        returned as an empty ``RemoteDocument``.
        """
        gist = await self._get_gist(self._document_id())

        files = gist.get('files') or {}
        entry = files.get(self.settings.data_filename)
        if not entry:
            self.logger.warning(
                f"Document {self._document_id()} has no {self.settings.data_filename} file"
            )
            return RemoteDocument()

        content = entry.get('content')
        if entry.get('truncated') and entry.get('raw_url'):
            # Large files are truncated in the API response
            content = (await self._request('GET', entry['raw_url'], 'fetching raw document')).body
        if content is None:
            raise ParseError(f"{self.settings.data_filename} has no content")

        return RemoteDocument.from_dict(self._decode(content, self.settings.data_filename))

    async def patch_document(self, fields: Dict[Any, List[Any]]) -> bool:
        """Replace the given collections, keeping every other one intact.

        The fetch and the write happen under the client's write lock so two
        patches from this process never interleave.
        """
        updates = {}
        for name, value in fields.items():
            try:
                collection = Collection.parse(name)
            except ValueError:
                raise ValidationError(f"Unknown collection: {name}")
            if not isinstance(value, list):
                raise ValidationError(f"Collection '{collection.value}' must be a list")
            updates[collection] = value

        async with self._write_lock:
            current = await self.fetch_document()
            updated = current.merged(updates)
            await self._request(
                'PATCH',
                f"gists/{self._document_id()}",
                'updating document',
                payload={'files': self._files_payload(updated)},
            )

        self.logger.info(
            f"Patched {', '.join(c.value for c in updates)} in document {self._document_id()}"
        )
        return True

    async def create_document(self, initial: Optional[RemoteDocument] = None) -> str:
        """Create a new hosted document and return its id."""
        if not self.credentials.token:
            raise UnauthorizedError("A token is required to create a document", status=None)

        document = initial or RemoteDocument.empty()
        async with self._write_lock:
            response = await self._request(
                'POST',
                'gists',
                'creating document',
                payload={
                    'description': self.settings.description,
                    'public': self.settings.public,
                    'files': self._files_payload(document),
                },
            )

        data = self._decode(response.body, 'create response')
        document_id = data.get('id') if isinstance(data, dict) else None
        if not document_id:
            raise ParseError("Create response did not include a document id")

        self.logger.info(f"Created new document with id {document_id}")
        return str(document_id)

    async def validate_credential(self, token: Optional[str]) -> bool:
        """Check that ``token`` is accepted and carries the required scope.

        Never raises; the reason for a rejection is logged. Transport
        failures are retried up to ``settings.validation_attempts`` times.
        """
        if not token:
            self.logger.warning("No token to validate")
            return False

        attempts = max(1, self.settings.validation_attempts)
        for attempt in range(1, attempts + 1):
            try:
                response = await self._request('GET', 'user', 'validating token', token=token)
            except NetworkError as e:
                self.logger.warning(f"Token validation attempt {attempt}/{attempts} failed: {e}")
                continue
            except RateLimitedError as e:
                self.logger.error(f"Cannot validate token, rate limited until {e.reset_at}")
                return False
            except UnauthorizedError:
                self.logger.error("Token is invalid or expired")
                return False
            except SyncError as e:
                self.logger.error(f"Token validation failed: {e}")
                return False

            scopes = self._parse_scopes(response.headers.get(SCOPES_HEADER))
            if self.settings.required_scope not in scopes:
                self.logger.error(
                    f"Token lacks the '{self.settings.required_scope}' scope "
                    f"(granted: {', '.join(sorted(scopes)) or 'none'})"
                )
                return False
            return True

        return False

    async def _get_gist(self, document_id: str) -> Dict[str, Any]:
        response = await self._request('GET', f"gists/{document_id}", 'fetching document')
        gist = self._decode(response.body, 'document response')
        if not isinstance(gist, dict):
            raise ParseError("Document response is not a JSON object")
        return gist

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        payload: Optional[Dict[str, Any]] = None,
        token: Optional[str] = None,
    ) -> _Response:
        await self._init_session()
        url = path if path.startswith(('http://', 'https://')) else \
            f"{self.settings.base_url.rstrip('/')}/{path}"

        try:
            async with self._session.request(
                method,
                url,
                json=payload,
                headers=self._headers(token),
            ) as response:
                # Each response is classified from its own headers
                rate_limit = RateLimitInfo.from_headers(response.headers)
                body = await response.text()
                self.rate_limit = rate_limit
                if response.status >= 400:
                    raise self._error_for(response.status, operation, rate_limit)
                return _Response(response.status, response.headers, body)

        except aiohttp.ClientError as e:
            raise NetworkError(f"Network error while {operation}: {e}") from e
        except asyncio.TimeoutError as e:
            raise NetworkError(f"Timed out while {operation}") from e

    def _error_for(self, status: int, operation: str, rate_limit: RateLimitInfo) -> RemoteError:
        if status == 401:
            return UnauthorizedError(
                "Authentication failed (401). The token may be invalid or expired.", status
            )
        if status == 403:
            if rate_limit.exhausted:
                return RateLimitedError(
                    f"Rate limit exceeded, resets at {rate_limit.reset_at}",
                    reset_at=rate_limit.reset_at,
                    remaining=0,
                )
            return ForbiddenError(
                "Access forbidden (403). Check that the token has the required permissions.",
                status,
            )
        if status == 404:
            return NotFoundError("Document not found (404). Check the document id.", status)
        return RemoteError(f"Remote error while {operation}: HTTP {status}", status)

    def _headers(self, token: Optional[str] = None) -> Dict[str, str]:
        headers = {
            'Accept': 'application/vnd.github.v3+json',
            'User-Agent': 'tildesync',
        }
        token = token or self.credentials.token
        if token:
            headers['Authorization'] = f"Bearer {token}"
        return headers

    def _files_payload(self, document: RemoteDocument) -> Dict[str, Dict[str, str]]:
        return {
            self.settings.data_filename: {
                'content': json.dumps(document.to_dict(), indent=2)
            }
        }

    def _document_id(self) -> str:
        document_id = self.credentials.document_id
        if not document_id:
            raise NotFoundError("No remote document configured")
        return document_id

    @staticmethod
    def _decode(text: str, what: str) -> Any:
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise ParseError(f"Invalid JSON in {what}: {e}") from e

    @staticmethod
    def _parse_scopes(header: Optional[str]) -> set:
        if not header:
            return set()
        return {scope.strip() for scope in header.split(',') if scope.strip()}
