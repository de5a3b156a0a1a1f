import platformdirs
import pytest

from releasehub.constants import (
    API_TOKEN_ENV_VAR,
    GITHUB_TOKEN_ENV_VAR,
    LOG_LEVEL_ENV_VAR,
    REFRESH_SECRET_ENV_VAR,
)


def pytest_configure(config):
    """
    Register the markers used by the test suite.

    Parameters:
        config: pytest.Config
            The pytest configuration object used to register markers.
    """
    config.addinivalue_line("markers", "asyncio: mark test as an asyncio test")
    config.addinivalue_line("markers", "unit: fast isolated tests")
    config.addinivalue_line("markers", "core: release resolution engine tests")
    config.addinivalue_line("markers", "http: HTTP surface tests")
    config.addinivalue_line("markers", "backends: release backend tests")


@pytest.fixture(autouse=True)
def _isolate_test_environment(tmp_path_factory, monkeypatch):
    """
    Point platformdirs at temporary directories and clear ReleaseHub environment overrides.

    Tests never read the developer's real config file, cache or tokens.
    """
    base = tmp_path_factory.mktemp("releasehub")
    cache_dir = base / "cache"
    config_dir = base / "config"
    log_dir = base / "log"

    for path in (cache_dir, config_dir, log_dir):
        path.mkdir(parents=True, exist_ok=True)

    monkeypatch.setenv("XDG_CACHE_HOME", str(cache_dir))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(config_dir))

    monkeypatch.setattr(
        platformdirs, "user_cache_dir", lambda *_args, **_kwargs: str(cache_dir)
    )
    monkeypatch.setattr(
        platformdirs, "user_config_dir", lambda *_args, **_kwargs: str(config_dir)
    )
    monkeypatch.setattr(
        platformdirs, "user_log_dir", lambda *_args, **_kwargs: str(log_dir)
    )

    for name in (
        GITHUB_TOKEN_ENV_VAR,
        API_TOKEN_ENV_VAR,
        REFRESH_SECRET_ENV_VAR,
        LOG_LEVEL_ENV_VAR,
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def cache_dir(tmp_path):
    """A fresh asset cache directory."""
    path = tmp_path / "assets"
    path.mkdir()
    return str(path)
