"""
Shared fixtures.

Tests never touch the real home directory and never reach the network
beyond 127.0.0.1.
"""

import pytest

from vertexhub.config import load_config


@pytest.fixture
def home(tmp_path):
    path = tmp_path / "home"
    path.mkdir()
    return path


@pytest.fixture
def config(home):
    return load_config({}, home=home)


@pytest.fixture
def proxy_checkout(config):
    """A minimal proxy checkout with the two scripts vertexhub runs."""
    (config.proxy_dir / "src" / "cli").mkdir(parents=True)
    config.proxy_entry.write_text("// proxy\n")
    config.accounts_script.write_text("// accounts\n")
    return config.proxy_dir

