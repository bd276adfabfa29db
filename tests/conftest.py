"""Shared fixtures for smartshot tests."""

import pytest

from smartshot.common.config import get_settings
from smartshot.ocr.base import CaptureImage
from tests.helpers import RecordingSleep, make_image


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def image() -> CaptureImage:
    return make_image()
