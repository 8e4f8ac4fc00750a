import pathlib
import sys
import threading
from typing import Any, Dict, List
from urllib.parse import urlencode

import pytest
from starlette.testclient import TestClient

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from recallbot.config import Settings, reset_settings_cache
from recallbot.container import ServiceContainer
from recallbot.intake.media import MediaIntake
from recallbot.intake.schemas import Interaction, MemorySearchHit, StoredMedia
from recallbot.memory_store.base import MemoryStoreError
from recallbot.security.signature import compute_signature

AUTH_TOKEN = "test-auth-token"
WEBHOOK_URL = "http://testserver/api/webhook/whatsapp"


class FakeMemoryStore:
    """In-process stand-in for the hosted memory store."""

    def __init__(self, fail_times: int = 0):
        self.fail_times = fail_times
        self.created: List[Dict[str, Any]] = []
        self.deleted: List[str] = []
        self.search_hits: List[MemorySearchHit] = []
        self.searches: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def create(self, content: str, metadata: Dict[str, Any]) -> str:
        with self._lock:
            if self.fail_times > 0:
                self.fail_times -= 1
                raise MemoryStoreError("store unavailable")
            memory_id = f"mem-{len(self.created) + 1}"
            self.created.append({"id": memory_id, "content": content, "metadata": metadata})
            return memory_id

    def search(self, query: str, user_id: str, limit: int = 5) -> List[MemorySearchHit]:
        self.searches.append({"query": query, "user_id": user_id, "limit": limit})
        if self.fail_times > 0:
            raise MemoryStoreError("store unavailable")
        return self.search_hits[:limit]

    def delete(self, memory_id: str) -> None:
        self.deleted.append(memory_id)


class FakeMediaProcessor:
    """Returns a stored descriptor per URL, or raises for URLs listed in ``failures``."""

    def __init__(self, failures=()):
        self.failures = set(failures)
        self.calls: List[str] = []

    def process(self, owner_id, interaction_id, url, content_type):
        self.calls.append(url)
        if url in self.failures:
            raise ConnectionError(f"download failed for {url}")
        return [
            StoredMedia(
                source_url=url,
                content_type=content_type,
                path=f"/tmp/{owner_id}/{len(self.calls)}",
                size_bytes=10,
                sha256="0" * 64,
            )
        ]


def stored_interactions(repository) -> List[Interaction]:
    """Snapshot of every interaction held by an in-memory repository."""

    with repository._lock:
        return [i.model_copy(deep=True) for i in repository._interactions.values()]


def make_settings(tmp_path, **overrides) -> Settings:
    values = dict(
        app_env="test",
        twilio_auth_token=AUTH_TOKEN,
        signature_validation_enabled=True,
        api_key="test-api-key",
        storage_dir=str(tmp_path / "media"),
        metrics_enabled=False,
    )
    values.update(overrides)
    return Settings(**values)


def signed_form(params: Dict[str, str], url: str = WEBHOOK_URL, token: str = AUTH_TOKEN):
    """Encode ``params`` as a form body and return ``(body, headers)``."""

    body = urlencode(params).encode("utf-8")
    headers = {
        "Content-Type": "application/x-www-form-urlencoded",
        "X-Twilio-Signature": compute_signature(token, url, body),
    }
    return body, headers


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture
def memory_store():
    return FakeMemoryStore()


@pytest.fixture
def media_processor():
    return FakeMediaProcessor()


@pytest.fixture
def container_factory(tmp_path, memory_store, media_processor):
    def _create(**overrides) -> ServiceContainer:
        container = ServiceContainer(make_settings(tmp_path, **overrides))
        container.memory_store = memory_store
        container.media_intake = MediaIntake(media_processor)
        return container

    return _create


@pytest.fixture
def container(container_factory):
    return container_factory()


@pytest.fixture
def client(container):
    from recallbot.main import create_app

    with TestClient(create_app(container=container)) as test_client:
        yield test_client
