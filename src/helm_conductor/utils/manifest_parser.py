"""Split rendered helm output into resources and join them back."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import yaml

_YamlLoader = getattr(yaml, "CSafeLoader", yaml.SafeLoader)
_YamlDumper = getattr(yaml, "CSafeDumper", yaml.SafeDumper)

# kinds that carry a pod template under spec.template
_WORKLOAD_KINDS = frozenset({
    "Deployment",
    "StatefulSet",
    "DaemonSet",
    "ReplicaSet",
    "Job",
})


@dataclass
class ManifestResource:
    kind: str
    doc: dict[str, Any]

    def metadata(self) -> dict[str, Any]:
        return _metadata_of(self.doc)

    def pod_template_metadata(self) -> dict[str, Any] | None:
        """Metadata of the pod template a workload stamps out, if it has one."""
        spec = self.doc.get("spec") or {}
        if self.kind in _WORKLOAD_KINDS:
            template = spec.get("template")
        elif self.kind == "CronJob":
            template = ((spec.get("jobTemplate") or {}).get("spec") or {}).get("template")
        else:
            return None
        if not isinstance(template, dict):
            return None
        return _metadata_of(template)


def _metadata_of(obj: dict[str, Any]) -> dict[str, Any]:
    metadata = obj.get("metadata")
    if not isinstance(metadata, dict):
        metadata = {}
        obj["metadata"] = metadata
    return metadata


def split_manifest(manifest: str) -> list[ManifestResource]:
    if not manifest:
        return []
    return [
        ManifestResource(kind=str(doc.get("kind", "")), doc=doc)
        for doc in yaml.load_all(manifest, Loader=_YamlLoader)
        if doc and isinstance(doc, dict)
    ]


def join_manifest(resources: list[ManifestResource]) -> str:
    return yaml.dump_all(
        [res.doc for res in resources],
        Dumper=_YamlDumper,
        default_flow_style=False,
        sort_keys=False,
        explicit_start=True,
    )
