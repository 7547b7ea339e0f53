"""Remote document id and token, persisted in the local store."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .storage.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

DOCUMENT_ID_KEY = "gistId"
TOKEN_KEY = "githubToken"
PLACEHOLDER_DOCUMENT_ID = "YOUR_GIST_ID_HERE"

Validator = Callable[[str], Awaitable[bool]]


class CredentialStore:
    """Holds the remote document id and bearer token.

    ``has_valid_settings`` is true only when both values are present and the
    most recent token validation succeeded.
    """

    def __init__(self, store: KeyValueStore, validator: Optional[Validator] = None):
        self.store = store
        self.validator = validator
        self._document_id = self._clean(store.get(DOCUMENT_ID_KEY))
        self._token = self._clean(store.get(TOKEN_KEY))
        if self._document_id == PLACEHOLDER_DOCUMENT_ID:
            self._document_id = None
        self._valid = False
        self.pending_validation: Optional[asyncio.Task] = None

    @property
    def document_id(self) -> Optional[str]:
        return self._document_id

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def has_valid_settings(self) -> bool:
        return bool(self._document_id and self._token and self._valid)

    async def validate(self) -> bool:
        """Validate the current token and record the outcome."""
        token = self._token
        if not token or self.validator is None:
            self._valid = False
            return False

        valid = await self.validator(token)
        if token != self._token:
            # Token changed while validating; that update owns the result
            return self._valid
        self._valid = valid
        logger.info(f"Remote credentials {'validated' if valid else 'rejected'}")
        return valid

    def set_token(self, token: Optional[str]) -> Optional[asyncio.Task]:
        """Persist a new token and schedule its validation.

        The previous validity is kept until the validation finishes. An
        empty token clears remote mode immediately.
        """
        token = self._clean(token)
        if token == self._token:
            return self.pending_validation

        self._token = token
        if not token:
            self.store.remove(TOKEN_KEY)
            self._valid = False
            logger.info("Token cleared, using local storage only")
            return None

        if not self.store.set(TOKEN_KEY, token):
            logger.warning("Token could not be persisted locally")

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: validated on the next explicit validate() call
            return None
        self.pending_validation = loop.create_task(self.validate())
        return self.pending_validation

    def set_document_id(self, document_id: Optional[str]) -> None:
        document_id = self._clean(document_id)
        if document_id == PLACEHOLDER_DOCUMENT_ID:
            document_id = None
        self._document_id = document_id

        if not document_id:
            self.store.remove(DOCUMENT_ID_KEY)
            logger.info("Document id cleared, using local storage only")
        elif not self.store.set(DOCUMENT_ID_KEY, document_id):
            logger.warning("Document id could not be persisted locally")

    @staticmethod
    def _clean(value) -> Optional[str]:
        if value is None:
            return None
        value = str(value).strip()
        return value or None
