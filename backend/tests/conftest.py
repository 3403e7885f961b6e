from __future__ import annotations

import io
import os
import struct
import tempfile
import zlib

# The engine is built at import time, so the environment has to be in place first.
_TMP = tempfile.mkdtemp(prefix="classifieds-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP, 'test.db')}"
os.environ["APP_ENV"] = "test"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["AUTO_CREATE_TABLES"] = "false"
os.environ["ALLOW_UNVERIFIED_PASSWORD_RESET"] = "true"
os.environ["UPLOADS_DIR"] = os.path.join(_TMP, "uploads")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from PIL import Image  # noqa: E402

from classifieds.db import ENGINE, session_scope  # noqa: E402
from classifieds.main import app  # noqa: E402
from classifieds.models import Base  # noqa: E402
from classifieds.rate_limit import limiter  # noqa: E402
from classifieds.seed import seed_reference_data  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_db(tmp_path, monkeypatch):
    monkeypatch.setenv("UPLOADS_DIR", str(tmp_path / "uploads"))
    Base.metadata.drop_all(bind=ENGINE)
    Base.metadata.create_all(bind=ENGINE)
    with session_scope() as db:
        seed_reference_data(db)
    limiter.reset()
    yield


@pytest.fixture
def db():
    with session_scope() as s:
        yield s


@pytest.fixture
def uploads(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
def client():
    return TestClient(app)


def png_bytes(size=(8, 8), color=(200, 40, 40)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


def truncated_jpeg(size=(300, 300)) -> bytes:
    buf = io.BytesIO()
    Image.effect_noise(size, 64).convert("RGB").save(buf, format="JPEG", quality=95)
    raw = buf.getvalue()
    return raw[: len(raw) // 2]


def png_header_only(width: int, height: int) -> bytes:
    """
    A valid PNG signature and IHDR claiming width x height, with no pixel data.
    """

    def chunk(kind: bytes, data: bytes) -> bytes:
        return struct.pack(">I", len(data)) + kind + data + struct.pack(">I", zlib.crc32(kind + data) & 0xFFFFFFFF)

    ihdr = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    return b"\x89PNG\r\n\x1a\n" + chunk(b"IHDR", ihdr) + chunk(b"IDAT", zlib.compress(b"")) + chunk(b"IEND", b"")


def register_and_login(client: TestClient, username: str, password: str = "secret123") -> dict:
    r = client.post(
        "/auth/register",
        json={"username": username, "email": f"{username}@example.com", "password": password},
    )
    assert r.status_code == 200, r.text
    r = client.post("/auth/login", json={"login": username, "password": password})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['token']}"}


def ad_form(**overrides) -> dict:
    form = {
        "title": "Old sofa",
        "description": "Comfortable three-seat sofa",
        "category_id": "3",
        "price": "150",
        "location": "Kazan",
        "ad_type": "sale",
    }
    form.update(overrides)
    return {k: v for k, v in form.items() if v is not None}
