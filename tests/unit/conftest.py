import pytest

from fakes import build_desk, fast_settings


@pytest.fixture
def settings():
    return fast_settings()


@pytest.fixture
def desk(settings):
    return build_desk(settings)
