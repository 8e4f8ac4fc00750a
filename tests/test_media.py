import hashlib
import logging
import uuid
from typing import Any, Dict, List

import pytest
import requests

from recallbot.intake.media import (
    HttpMediaProcessor,
    MediaIntake,
    MediaRejectedError,
    sniff_content_type,
)
from recallbot.intake.models import MediaAttachment

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


class _FakeResponse:
    def __init__(
        self,
        content: bytes,
        status_code: int = 200,
        headers: Dict[str, str] | None = None,
        chunk: int = 4,
    ):
        self._content = content
        self.status_code = status_code
        self.headers = headers or {}
        self._chunk = chunk
        self.chunks_read = 0
        self.closed = False

    def __enter__(self) -> "_FakeResponse":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.closed = True

    @property
    def content(self) -> bytes:
        raise AssertionError("body must be streamed")

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")

    def iter_content(self, chunk_size: int = 1):
        for start in range(0, len(self._content), self._chunk):
            self.chunks_read += 1
            yield self._content[start : start + self._chunk]


class _FakeSession:
    def __init__(self, responses: Dict[str, _FakeResponse]):
        self._responses = responses
        self.requests: List[Dict[str, Any]] = []

    def get(self, url: str, **kwargs: Any) -> _FakeResponse:
        self.requests.append({"url": url, **kwargs})
        return self._responses[url]


@pytest.mark.parametrize(
    "data, declared, expected",
    [
        (b"\xff\xd8\xff\xe0rest", "application/octet-stream", "image/jpeg"),
        (PNG_BYTES, None, "image/png"),
        (b"RIFF\x00\x00\x00\x00WEBPVP8", None, "image/webp"),
        (b"OggS\x00\x02", "audio/ogg; codecs=opus", "audio/ogg"),
        (b"\x00\x00\x00\x18ftypmp42", None, "video/mp4"),
        (b"%PDF-1.7", None, "application/pdf"),
        (b"unknown bytes", "Audio/AMR", "audio/amr"),
        (b"unknown bytes", None, "application/octet-stream"),
    ],
)
def test_sniff_content_type(data, declared, expected):
    assert sniff_content_type(data, declared) == expected


def test_download_is_stored_by_content_hash(tmp_path):
    url = "https://api.twilio.com/media/ME1"
    session = _FakeSession({url: _FakeResponse(PNG_BYTES)})
    processor = HttpMediaProcessor(
        tmp_path, account_sid="AC1", auth_token="secret", timeout=5, session=session
    )
    owner = uuid.uuid4()

    [stored] = processor.process(owner, uuid.uuid4(), url, "image/jpeg")

    digest = hashlib.sha256(PNG_BYTES).hexdigest()
    assert stored.sha256 == digest
    assert stored.content_type == "image/png"
    assert stored.size_bytes == len(PNG_BYTES)
    assert stored.path == str(tmp_path / str(owner) / f"{digest}.png")
    assert (tmp_path / str(owner) / f"{digest}.png").read_bytes() == PNG_BYTES
    assert session.requests[0]["auth"] == ("AC1", "secret")
    assert session.requests[0]["timeout"] == 5
    assert session.requests[0]["stream"] is True


def test_same_bytes_reuse_existing_file(tmp_path):
    urls = ["https://m/1", "https://m/2"]
    session = _FakeSession({u: _FakeResponse(PNG_BYTES) for u in urls})
    processor = HttpMediaProcessor(tmp_path, session=session)
    owner = uuid.uuid4()

    first = processor.process(owner, uuid.uuid4(), urls[0], "image/png")[0]
    second = processor.process(owner, uuid.uuid4(), urls[1], "image/png")[0]

    assert first.path == second.path
    assert len(list((tmp_path / str(owner)).iterdir())) == 1
    assert session.requests[0]["auth"] is None


def test_empty_and_oversized_downloads_are_rejected(tmp_path):
    session = _FakeSession(
        {"https://m/empty": _FakeResponse(b""), "https://m/big": _FakeResponse(b"x" * 11)}
    )
    processor = HttpMediaProcessor(tmp_path, max_bytes=10, session=session)

    with pytest.raises(MediaRejectedError):
        processor.process(uuid.uuid4(), uuid.uuid4(), "https://m/empty", "image/png")
    with pytest.raises(MediaRejectedError):
        processor.process(uuid.uuid4(), uuid.uuid4(), "https://m/big", "image/png")


def test_declared_length_over_limit_is_rejected_before_reading(tmp_path):
    response = _FakeResponse(b"x" * 64, headers={"Content-Length": str(10**10)})
    session = _FakeSession({"https://m/huge": response})
    processor = HttpMediaProcessor(tmp_path, max_bytes=10, session=session)

    with pytest.raises(MediaRejectedError):
        processor.process(uuid.uuid4(), uuid.uuid4(), "https://m/huge", "image/png")
    assert response.chunks_read == 0
    assert response.closed


def test_stream_stops_once_limit_is_crossed(tmp_path):
    response = _FakeResponse(b"x" * 1000, chunk=4)
    session = _FakeSession({"https://m/unsized": response})
    processor = HttpMediaProcessor(tmp_path / "media", max_bytes=10, session=session)

    with pytest.raises(MediaRejectedError):
        processor.process(uuid.uuid4(), uuid.uuid4(), "https://m/unsized", "image/png")
    assert response.chunks_read == 3
    assert not (tmp_path / "media").exists()


def test_intake_drops_failed_attachments_and_keeps_order(tmp_path, caplog):
    session = _FakeSession(
        {
            "https://m/ok-1": _FakeResponse(PNG_BYTES),
            "https://m/broken": _FakeResponse(b"", status_code=404),
            "https://m/ok-2": _FakeResponse(b"%PDF-1.4 doc"),
        }
    )
    intake = MediaIntake(HttpMediaProcessor(tmp_path, session=session))
    attachments = [
        MediaAttachment("https://m/ok-1", "image/png"),
        MediaAttachment("https://m/broken", "image/png"),
        MediaAttachment("https://m/ok-2", "application/pdf"),
    ]

    with caplog.at_level(logging.ERROR, logger="recallbot.intake.media"):
        stored = intake.run(uuid.uuid4(), uuid.uuid4(), attachments)

    assert [s.source_url for s in stored] == ["https://m/ok-1", "https://m/ok-2"]
    assert len(caplog.records) == 1
    assert "https://m/broken" in caplog.records[0].getMessage()


def test_intake_caps_number_of_attachments(tmp_path):
    calls = []

    class _Recorder:
        def process(self, owner_id, interaction_id, url, content_type):
            calls.append(url)
            return []

    intake = MediaIntake(_Recorder(), max_items=2)
    intake.run(
        uuid.uuid4(),
        uuid.uuid4(),
        [MediaAttachment(f"https://m/{i}", "image/png") for i in range(4)],
    )
    assert calls == ["https://m/0", "https://m/1"]
