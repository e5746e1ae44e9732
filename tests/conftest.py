"""
Pytest configuration and shared fixtures.
"""

import pytest

from jobnotify.config import ENV_VAR_MAP


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Run every test without configuration coming from the host environment."""
    for env_var in ENV_VAR_MAP:
        monkeypatch.delenv(env_var, raising=False)
    yield
