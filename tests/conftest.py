import pytest

from stdgag.settings import reset_settings
from stdgag.streams import REGISTRY


@pytest.fixture(autouse=True)
def clean_registry():
    """Every test starts with both stream slots free and settings re-read."""
    REGISTRY.reset()
    reset_settings()
    yield
    REGISTRY.reset()
    reset_settings()
