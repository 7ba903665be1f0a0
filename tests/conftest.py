from pathlib import Path

import pytest

from secure_intake.config.settings import Settings
from tests.payloads import make_png


@pytest.fixture()
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture()
def storage_root(tmp_path: Path) -> Path:
    return tmp_path / "public"


@pytest.fixture()
def settings(storage_root: Path) -> Settings:
    return Settings(storage_root=str(storage_root))
