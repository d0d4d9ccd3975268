"""Shared test fixtures and configuration for backend tests."""
import base64
import io

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from app.config import AppConfig, RetentionSettings, StorageSettings
from app.main import create_app
from app.uploads.metadata_store import MetadataStore
from app.uploads.service import set_upload_service


def make_image_bytes(fmt: str = "PNG", size=(64, 64), **save_kwargs) -> bytes:
    """Render a small gradient image in *fmt* and return its encoded bytes."""
    img = Image.new("RGB", size)
    img.putdata([(x * 4 % 256, y * 4 % 256, (x + y) % 256) for y in range(size[1]) for x in range(size[0])])
    buf = io.BytesIO()
    img.save(buf, format=fmt, **save_kwargs)
    return buf.getvalue()


def to_data_uri(data: bytes, media_type: str = "image/png") -> str:
    return f"data:{media_type};base64,{base64.b64encode(data).decode('ascii')}"


@pytest.fixture
def upload_dir(tmp_path):
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture
def metadata_path(tmp_path):
    return tmp_path / "upload_dates.json"


@pytest.fixture
def store(metadata_path):
    store = MetadataStore(metadata_path)
    store.ensure()
    return store


@pytest.fixture
def app_config(upload_dir, metadata_path):
    """Config pointing all storage at the test's tmp_path."""
    return AppConfig(
        storage=StorageSettings(
            upload_dir=str(upload_dir),
            metadata_path=str(metadata_path),
        ),
        retention=RetentionSettings(interval_seconds=3600),
    )


@pytest.fixture
def api_client(app_config):
    """Provide a TestClient for an app built on the isolated config.

    Server errors are returned as responses rather than raised so the
    500 handler can be asserted on.
    """
    app = create_app(app_config)
    with TestClient(app, raise_server_exceptions=False) as client:
        yield client
    set_upload_service(None)
