"""Root pytest configuration for all tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from acpbridge.config import reset_config, set_cli_overrides

# Configure pytest-asyncio to use auto mode
# This is redundant with pyproject.toml but ensures it's set
pytest_plugins = ("pytest_asyncio",)


@pytest.fixture(scope="session")
def anyio_backend():
    """Set anyio backend to asyncio."""
    return "asyncio"


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Keep the host's user config and ACPBRIDGE_* variables out of tests."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    for name in ("ACPBRIDGE_LOG", "ACPBRIDGE_DEBUG", "ACPBRIDGE_AUDIT_DIR", "ACPBRIDGE_MODEL"):
        monkeypatch.delenv(name, raising=False)
    set_cli_overrides({})
    yield
    set_cli_overrides({})
    reset_config()
