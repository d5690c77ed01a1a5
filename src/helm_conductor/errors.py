"""Error taxonomy shared by the sync, cache and release components."""

from __future__ import annotations


class HelmConductorError(Exception):
    """Base class for every error raised by helm_conductor."""


class NetworkError(HelmConductorError):
    """Fetching an index file or chart archive failed."""


class ParseError(HelmConductorError):
    """A catalog document or persisted snapshot could not be decoded."""


class AuthError(HelmConductorError):
    """Credentials were rejected or the TLS handshake failed."""


class StorageError(HelmConductorError):
    """Object storage read failed, or no storage client is configured."""


class NotFoundError(HelmConductorError):
    """A referenced repository, application, version or object is missing."""


class ClusterNotFoundError(NotFoundError):
    """The target cluster of a release no longer exists."""


class UpdateConflict(HelmConductorError):
    """An object was modified concurrently; re-read and retry the write."""


class ExecError(HelmConductorError):
    """The package manager binary exited with a non-zero status."""

    def __init__(self, message: str, stderr: str = "", returncode: int | None = None, result=None):
        super().__init__(message)
        self.stderr = stderr
        self.returncode = returncode
        self.result = result
