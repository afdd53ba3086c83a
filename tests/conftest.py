from pathlib import Path
from typing import Optional

import pytest
from fastapi.testclient import TestClient

from devevent.config import Settings
from devevent.errors import UploadError
from devevent.main import create_app
from devevent.services.storage import ImageStorage, StoredImage

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


class FakeImageStorage(ImageStorage):
    backend_name = "fake"

    def __init__(self) -> None:
        super().__init__("devEvent")
        self.uploads: list[tuple[Optional[str], bytes]] = []
        self.fail = False

    async def save(self, data, filename, content_type):
        if self.fail:
            raise UploadError("Image upload failed.")
        self.uploads.append((filename, data))
        n = len(self.uploads)
        return StoredImage(
            backend=self.backend_name,
            url=f"https://media.example.test/devEvent/{n}-{filename}",
            public_id=f"devEvent/{n}",
            size=len(data),
        )


def sqlite_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{(tmp_path / 'events.db').as_posix()}"


def event_form(**overrides):
    data = {
        "title": "Test Talk",
        "overview": "A short talk.",
        "description": "A longer description of the talk.",
        "organizer": "Python User Group",
        "audience": "Developers",
        "venue": "Main Hall",
        "location": "Berlin",
        "date": "2026-11-20",
        "time": "18:00",
        "mode": "offline",
        "tags": ["python", "web"],
        "agenda": ["Intro", "Talk"],
    }
    data.update(overrides)
    return {k: v for k, v in data.items() if v is not None}


def create_event(client: TestClient, *, image=("cover.png", PNG_BYTES, "image/png"), **overrides):
    files = {"image": image} if image is not None else None
    return client.post("/events", data=event_form(**overrides), files=files)


@pytest.fixture
def storage() -> FakeImageStorage:
    return FakeImageStorage()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(database_url=sqlite_url(tmp_path))


@pytest.fixture
def client(settings: Settings, storage: FakeImageStorage):
    app = create_app(settings, image_storage=storage)
    with TestClient(app) as test_client:
        yield test_client
