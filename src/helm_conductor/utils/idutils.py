"""Platform identifier generation."""

from __future__ import annotations

import secrets
import string

_ALPHABET = string.digits + string.ascii_lowercase

APPLICATION_PREFIX = "app-"
VERSION_PREFIX = "appv-"


def get_uuid36(prefix: str = "", length: int = 14) -> str:
    """Return ``prefix`` followed by ``length`` random base-36 characters."""
    return prefix + "".join(secrets.choice(_ALPHABET) for _ in range(length))


def new_application_id() -> str:
    return get_uuid36(APPLICATION_PREFIX)


def new_version_id() -> str:
    return get_uuid36(VERSION_PREFIX)
