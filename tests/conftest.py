"""Shared test fixtures and utilities."""

import base64

import pytest

from card_store.config import CONFIG_ENV, ENV_OVERRIDES, LEGACY_ENV, StoreSettings
from card_store.models import CardSpec
from card_store.store import CardStore

# PNG signature followed by arbitrary bytes covering the full byte range
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + bytes(range(256))


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep host settings out of tests."""
    for name in [CONFIG_ENV, *ENV_OVERRIDES, *LEGACY_ENV]:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def store(tmp_path):
    """CardStore rooted in a temp directory."""
    return CardStore(tmp_path / "vcards", lock_timeout=5)


@pytest.fixture
def png_bytes():
    return PNG_BYTES


@pytest.fixture
def png_b64():
    return base64.b64encode(PNG_BYTES).decode("ascii")


@pytest.fixture
def make_spec():
    """Factory for CardSpec using wire (camelCase) or Python field names."""
    def _make(**fields):
        return CardSpec.model_validate(fields)
    return _make


@pytest.fixture
def settings(tmp_path):
    return StoreSettings(root_dir=tmp_path / "vcards", base_url="https://cards.example.com/")
