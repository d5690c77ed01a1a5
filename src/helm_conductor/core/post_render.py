"""Helm ``--post-renderer`` entry point.

Usage: ``python -m helm_conductor.core.post_render CONFIG`` where CONFIG is a
YAML file with optional ``labels`` and ``annotations`` mappings. Reads the
rendered manifest from stdin and writes the transformed manifest to stdout.
"""

from __future__ import annotations

import sys
from pathlib import Path

import yaml

from helm_conductor.core.manifest_transform import ManifestTransformer

CONFIG_FILE = "post-render.yaml"


def write_config(path: Path, labels: dict[str, str], annotations: dict[str, str]) -> None:
    path.write_text(
        yaml.safe_dump({"labels": labels or {}, "annotations": annotations or {}}, default_flow_style=False),
        encoding="utf-8",
    )


def main(argv: list[str] | None = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if len(argv) != 1:
        print("usage: post_render CONFIG", file=sys.stderr)
        return 2
    config = yaml.safe_load(Path(argv[0]).read_text(encoding="utf-8")) or {}
    transformer = ManifestTransformer()
    out = transformer.transform(
        sys.stdin.read(),
        labels=config.get("labels") or {},
        annotations=config.get("annotations") or {},
    )
    sys.stdout.write(out)
    return 0


if __name__ == "__main__":
    sys.exit(main())
