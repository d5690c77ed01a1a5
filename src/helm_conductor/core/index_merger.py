"""Parse upstream ``index.yaml`` files and merge them into persisted snapshots."""

from __future__ import annotations

import copy
import dataclasses
import logging
from datetime import date

import yaml

from helm_conductor.errors import ParseError
from helm_conductor.models.chart import Application, ChartVersion
from helm_conductor.models.snapshot import IndexFile, Snapshot
from helm_conductor.utils.idutils import new_application_id, new_version_id

logger = logging.getLogger(__name__)

# Prefer the C-accelerated YAML loader when available (~10x faster).
_YamlLoader = getattr(yaml, "CSafeLoader", yaml.SafeLoader)

_LIST_FIELDS = ("urls", "keywords", "sources", "maintainers")


def _version_from_entry(chart_name, entry: dict) -> ChartVersion:
    """Build a version from one index entry, rejecting fields of the wrong shape."""
    where = f"chart {chart_name} version {entry.get('version', '?')}"
    for key in _LIST_FIELDS:
        value = entry.get(key)
        if value is not None and not isinstance(value, list):
            raise ParseError(f"{where}: {key} is not a list")
    for maintainer in entry.get("maintainers") or []:
        if not isinstance(maintainer, dict):
            raise ParseError(f"{where}: maintainer {maintainer!r} is not a mapping")
    annotations = entry.get("annotations")
    if annotations is not None and not isinstance(annotations, dict):
        raise ParseError(f"{where}: annotations is not a mapping")
    created = entry.get("created")
    if created and not isinstance(created, (str, date)):
        raise ParseError(f"{where}: created is not a timestamp")

    try:
        return ChartVersion.from_index_entry(entry)
    except (AttributeError, TypeError, ValueError) as e:
        raise ParseError(f"{where}: malformed entry: {e}") from e


def parse_index(data: bytes | str) -> IndexFile:
    """Parse an upstream index document.

    A document without ``apiVersion`` is rejected, as is any entry whose
    fields have the wrong shape. Entries without a version string are skipped.
    """
    try:
        doc = yaml.load(data, Loader=_YamlLoader)
    except yaml.YAMLError as e:
        raise ParseError(f"index is not valid yaml: {e}") from e
    if not isinstance(doc, dict):
        raise ParseError("index is not a mapping")
    api_version = doc.get("apiVersion")
    if not api_version:
        raise ParseError("no API version specified")

    generated = doc.get("generated", "")
    if isinstance(generated, date):
        generated = generated.isoformat()
    elif generated and not isinstance(generated, str):
        raise ParseError("index generated is not a timestamp")

    index = IndexFile(api_version=str(api_version), generated=generated or "")
    entries = doc.get("entries") or {}
    if not isinstance(entries, dict):
        raise ParseError("index entries is not a mapping")

    for chart_name, chart_entries in entries.items():
        if chart_entries is not None and not isinstance(chart_entries, list):
            raise ParseError(f"entries of chart {chart_name} is not a list")
        versions: list[ChartVersion] = []
        seen: set[str] = set()
        for entry in chart_entries or []:
            if not isinstance(entry, dict):
                continue
            version = _version_from_entry(chart_name, entry)
            if not version.version:
                logger.debug("skip entry of chart %s without version", chart_name)
                continue
            if version.version in seen:
                logger.debug("skip duplicate version %s of chart %s", version.version, chart_name)
                continue
            seen.add(version.version)
            if not version.name:
                version.name = str(chart_name)
            versions.append(version)
        if versions:
            index.entries[str(chart_name)] = versions
    return index


def merge_index(index: IndexFile, previous: Snapshot | None) -> Snapshot:
    """Merge a freshly parsed index into the previous snapshot.

    Charts and versions that are still published keep their identifiers,
    new ones get fresh identifiers, and anything the repository stopped
    publishing is dropped. ``previous`` is left untouched.
    """
    snapshot = copy.deepcopy(previous) if previous is not None else Snapshot()
    snapshot.api_version = index.api_version
    snapshot.generated = index.generated

    for chart_name, upstream in index.entries.items():
        app = snapshot.applications.get(chart_name)
        if app is None:
            app = Application(application_id=new_application_id(), name=chart_name)
            snapshot.applications[chart_name] = app
            for version in upstream:
                app.versions.append(dataclasses.replace(version, version_id=new_version_id()))
            logger.debug("new application %s (%s) with %d versions", chart_name, app.application_id, len(upstream))
        else:
            _merge_versions(app, upstream)

        app.description = upstream[0].description
        app.icon = upstream[0].icon

    for chart_name in list(snapshot.applications):
        if chart_name not in index.entries:
            logger.debug("application %s removed upstream", chart_name)
            del snapshot.applications[chart_name]

    return snapshot


def _merge_versions(app: Application, upstream: list[ChartVersion]) -> None:
    tracked = {v.version: i for i, v in enumerate(app.versions)}
    for version in upstream:
        idx = tracked.get(version.version)
        if idx is None:
            app.versions.append(dataclasses.replace(version, version_id=new_version_id()))
            tracked[version.version] = len(app.versions) - 1
        else:
            # refresh upstream metadata, keep our identifier and embedded data
            old = app.versions[idx]
            app.versions[idx] = dataclasses.replace(version, version_id=old.version_id, data=old.data)

    # order-preserving in-place compaction of versions no longer published
    published = {v.version for v in upstream}
    keep = 0
    for version in app.versions:
        if version.version in published:
            app.versions[keep] = version
            keep += 1
    del app.versions[keep:]
