"""Semver comparison utilities."""

from __future__ import annotations

import logging
from typing import Iterable

from packaging.version import InvalidVersion, Version

from helm_conductor.models.chart import ChartVersion

logger = logging.getLogger(__name__)


def parse_version(v: str) -> Version | None:
    """Parse a version string, returning None on failure."""
    try:
        return Version(v)
    except InvalidVersion:
        # Try stripping leading 'v'
        if v.startswith("v"):
            try:
                return Version(v[1:])
            except InvalidVersion:
                pass
    return None


def latest_version(versions: Iterable[ChartVersion]) -> ChartVersion | None:
    """Pick the highest semantic version, skipping unparsable version strings."""
    best: ChartVersion | None = None
    best_parsed: Version | None = None
    for v in versions:
        parsed = parse_version(v.version)
        if parsed is None:
            logger.warning("skip unparsable chart version %r of %s", v.version, v.name)
            continue
        if best_parsed is None or parsed > best_parsed:
            best, best_parsed = v, parsed
    return best
