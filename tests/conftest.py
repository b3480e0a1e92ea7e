from __future__ import annotations

import io
import sys
from importlib import import_module, reload
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from PIL import Image

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))


@pytest.fixture(autouse=True)
def configured_env(tmp_path, monkeypatch):
    """Point configuration at a throwaway database and upload directory."""

    monkeypatch.setenv("ENV_PATH", str(tmp_path / ".env"))
    monkeypatch.setenv("DATABASE", str(tmp_path / "school.db"))
    monkeypatch.setenv("UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    monkeypatch.setenv("FRONTEND_URL", "http://frontend.test")
    for key in ("PORT", "CORS_ALLOW_ORIGINS", "MAX_UPLOAD_BYTES", "JWT_EXPIRES_DAYS"):
        monkeypatch.delenv(key, raising=False)

    import school_api.config as config_module

    reload(config_module)

    import school_api.utils.db as db_module

    reload(db_module)
    db_module.init_db()
    yield tmp_path


@pytest.fixture
def db_module(configured_env):
    from school_api.utils import db

    return db


@pytest.fixture
def client(configured_env):
    sys.modules.pop("school_api.main", None)
    main_module = import_module("school_api.main")

    with TestClient(main_module.app) as test_client:
        yield test_client


def make_image(size: tuple[int, int] = (32, 32), fmt: str = "PNG") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color=(200, 40, 40)).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def image_factory():
    return make_image


@pytest.fixture
def png_bytes() -> bytes:
    return make_image()
