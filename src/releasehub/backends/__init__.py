"""
Release backends.

- github: GitHub Releases through the REST API
- filesystem: tag directories on local disk
"""

from typing import TYPE_CHECKING

from releasehub.core.interfaces import ReleaseBackend
from releasehub.exceptions import ConfigValidationError

from .filesystem import FileSystemBackend
from .github import GitHubBackend

if TYPE_CHECKING:
    from releasehub.config import ServerConfig

BACKENDS = {
    GitHubBackend.name: GitHubBackend,
    FileSystemBackend.name: FileSystemBackend,
}


def create_backend(config: "ServerConfig") -> ReleaseBackend:
    """
    Instantiate the backend selected by `config.backend`.

    Raises:
        ConfigValidationError: If the backend is unknown or lacks its required settings.
    """
    if config.backend == GitHubBackend.name:
        if not config.repository:
            raise ConfigValidationError(
                "REPOSITORY is required for the github backend", key="REPOSITORY"
            )
        return GitHubBackend(
            config.repository,
            github_token=config.github_token,
            timeout=config.fetch_timeout,
        )
    if config.backend == FileSystemBackend.name:
        if not config.releases_dir:
            raise ConfigValidationError(
                "RELEASES_DIR is required for the filesystem backend",
                key="RELEASES_DIR",
            )
        return FileSystemBackend(config.releases_dir)
    raise ConfigValidationError(
        f"Unknown backend '{config.backend}'",
        key="BACKEND",
        details=f"expected one of {', '.join(sorted(BACKENDS))}",
    )


__all__ = ["BACKENDS", "GitHubBackend", "FileSystemBackend", "create_backend"]
