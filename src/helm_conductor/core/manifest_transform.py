"""Post-render transform adding common labels and annotations to rendered manifests."""

from __future__ import annotations

import logging
import threading

from helm_conductor.utils.manifest_parser import join_manifest, split_manifest

logger = logging.getLogger(__name__)


class ManifestTransformer:
    """Applies common labels / annotations to every resource in a manifest.

    Construct one per process and share it: every transform runs under a
    single lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def transform(
        self,
        manifest: str,
        labels: dict[str, str] | None = None,
        annotations: dict[str, str] | None = None,
    ) -> str:
        if not labels and not annotations:
            return manifest
        with self._lock:
            resources = split_manifest(manifest)
            for res in resources:
                _apply(res.metadata(), labels or {}, annotations or {})
                # pod templates get them too, as kustomize commonLabels do
                template = res.pod_template_metadata()
                if template is not None:
                    _apply(template, labels or {}, annotations or {})
            logger.debug("post-render transformed %d resources", len(resources))
            return join_manifest(resources)


def _apply(metadata: dict, labels: dict[str, str], annotations: dict[str, str]) -> None:
    if labels:
        metadata["labels"] = {**(metadata.get("labels") or {}), **labels}
    if annotations:
        metadata["annotations"] = {**(metadata.get("annotations") or {}), **annotations}
