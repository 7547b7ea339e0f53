"""Shared fixtures: local store, credentials and a fake Gist service."""

import json
from typing import Any, Dict, List, Optional, Tuple

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from tildesync.config import RemoteSettings
from tildesync.credentials import DOCUMENT_ID_KEY, TOKEN_KEY, CredentialStore
from tildesync.remote.client import RemoteDocumentClient
from tildesync.storage.kv_store import KeyValueStore
from tildesync.sync.coordinator import SyncCoordinator
from tildesync.sync.events import SyncNotifier

GOOD_TOKEN = "good-token"
DATA_FILE = "tildeplayer_data.json"
RESET_EPOCH = 1700000000


class FakeGistService:
    """In-process stand-in for the Gist API."""

    def __init__(self, token: str = GOOD_TOKEN, scopes: Optional[str] = "gist, repo"):
        self.token = token
        self.scopes = scopes
        self.gists: Dict[str, Dict[str, Any]] = {}
        self.requests: List[Tuple[str, str]] = []
        self.rate_limited = False
        self.fail_next: List[int] = []
        self.created = 0

    def add_document(self, content: Optional[Dict[str, Any]] = None, gist_id: str = "doc-1") -> str:
        files = {}
        if content is not None:
            files[DATA_FILE] = {"filename": DATA_FILE, "content": json.dumps(content)}
        self.gists[gist_id] = {"id": gist_id, "description": "test", "files": files}
        return gist_id

    def content(self, gist_id: str = "doc-1") -> Dict[str, Any]:
        return json.loads(self.gists[gist_id]["files"][DATA_FILE]["content"])

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get('/gists/{gist_id}', self.get_gist)
        app.router.add_patch('/gists/{gist_id}', self.patch_gist)
        app.router.add_post('/gists', self.create_gist)
        app.router.add_get('/user', self.get_user)
        return app

    def _rate_headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": "5000",
            "X-RateLimit-Remaining": "0" if self.rate_limited else "4999",
            "X-RateLimit-Reset": str(RESET_EPOCH),
        }

    def _guard(self, request: web.Request, auth_required: bool) -> Optional[web.Response]:
        self.requests.append((request.method, request.path))
        headers = self._rate_headers()
        if self.rate_limited:
            return web.json_response({"message": "API rate limit exceeded"}, status=403, headers=headers)
        if self.fail_next:
            return web.json_response({"message": "forced"}, status=self.fail_next.pop(0), headers=headers)

        authorization = request.headers.get("Authorization")
        if authorization and authorization != f"Bearer {self.token}":
            return web.json_response({"message": "Bad credentials"}, status=401, headers=headers)
        if auth_required and not authorization:
            return web.json_response({"message": "Requires authentication"}, status=401, headers=headers)
        return None

    async def get_gist(self, request: web.Request) -> web.Response:
        if (error := self._guard(request, auth_required=False)) is not None:
            return error
        gist = self.gists.get(request.match_info['gist_id'])
        if gist is None:
            return web.json_response({"message": "Not Found"}, status=404, headers=self._rate_headers())
        return web.json_response(gist, headers=self._rate_headers())

    async def patch_gist(self, request: web.Request) -> web.Response:
        if (error := self._guard(request, auth_required=True)) is not None:
            return error
        gist = self.gists.get(request.match_info['gist_id'])
        if gist is None:
            return web.json_response({"message": "Not Found"}, status=404, headers=self._rate_headers())
        body = await request.json()
        for filename, entry in body.get("files", {}).items():
            gist["files"][filename] = {"filename": filename, "content": entry["content"]}
        return web.json_response(gist, headers=self._rate_headers())

    async def create_gist(self, request: web.Request) -> web.Response:
        if (error := self._guard(request, auth_required=True)) is not None:
            return error
        body = await request.json()
        self.created += 1
        gist_id = f"created-{self.created}"
        self.gists[gist_id] = {
            "id": gist_id,
            "description": body.get("description"),
            "public": body.get("public"),
            "files": {
                name: {"filename": name, "content": entry["content"]}
                for name, entry in body.get("files", {}).items()
            },
        }
        return web.json_response({"id": gist_id}, status=201, headers=self._rate_headers())

    async def get_user(self, request: web.Request) -> web.Response:
        if (error := self._guard(request, auth_required=True)) is not None:
            return error
        headers = self._rate_headers()
        if self.scopes is not None:
            headers["X-OAuth-Scopes"] = self.scopes
        return web.json_response({"login": "tester"}, headers=headers)


@pytest.fixture
def gist_service() -> FakeGistService:
    return FakeGistService()


@pytest.fixture
async def gist_server(gist_service):
    server = TestServer(gist_service.app())
    await server.start_server()
    yield server
    await server.close()


@pytest.fixture
def remote_settings(gist_server) -> RemoteSettings:
    return RemoteSettings(
        base_url=str(gist_server.make_url('/')),
        data_filename=DATA_FILE,
        timeout=5,
        validation_attempts=2,
    )


@pytest.fixture
def store():
    kv = KeyValueStore()
    yield kv
    kv.close()


@pytest.fixture
def credentials(store) -> CredentialStore:
    store.set(DOCUMENT_ID_KEY, "doc-1")
    store.set(TOKEN_KEY, GOOD_TOKEN)
    return CredentialStore(store)


@pytest.fixture
async def client(credentials, remote_settings):
    remote = RemoteDocumentClient(credentials, remote_settings)
    credentials.validator = remote.validate_credential
    yield remote
    await remote.close()


@pytest.fixture
def events():
    """Events received by a subscribed listener."""
    return []


@pytest.fixture
def coordinator(store, credentials, client, events) -> SyncCoordinator:
    notifier = SyncNotifier()
    notifier.subscribe(events.append)
    return SyncCoordinator(store, credentials, client, notifier=notifier)


@pytest.fixture
def sample_tracks() -> List[Dict[str, Any]]:
    return [
        {"id": 1, "title": "Night Drive", "artist": "Tilde", "duration": "long",
         "mood": ["calm"], "genre": ["ambient"], "src": "audio/night-drive.mp3"},
        {"id": 2, "title": "Sunrise", "artist": "Tilde", "duration": "short",
         "mood": ["happy"], "genre": ["pop"], "src": "audio/sunrise.mp3"},
    ]
