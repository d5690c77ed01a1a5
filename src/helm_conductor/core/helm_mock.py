"""Stand-in for the helm binary, used when the executor runs in mock mode.

The executor re-executes the current interpreter with this module instead of
helm, so install/upgrade/uninstall flows can be exercised without a cluster.

Environment knobs:

- ``HELM_MOCK_FAIL``: comma separated sub-commands that should fail
- ``HELM_MOCK_NOT_FOUND``: when ``1``, uninstall/status report a missing release
"""

from __future__ import annotations

import json
import os
import sys

MOCK_ENV = "HELM_CONDUCTOR_MOCK"

UNINSTALL_NOT_FOUND_FORMAT = "Error: uninstall: Release not loaded: {}: release: not found"
STATUS_NOT_FOUND = "Error: release: not found"

_MANIFEST = """---
apiVersion: v1
kind: ConfigMap
metadata:
  name: {name}-config
  namespace: {namespace}
data:
  mock: "true"
"""


def _flag(args: list[str], name: str) -> str:
    if name in args:
        idx = args.index(name)
        if idx + 1 < len(args):
            return args[idx + 1]
    return ""


def _fails(command: str) -> bool:
    failing = os.environ.get("HELM_MOCK_FAIL", "")
    return command in {c.strip() for c in failing.split(",") if c.strip()}


def main(argv: list[str] | None = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if os.environ.get(MOCK_ENV) != "1":
        print("helm mock invoked outside of mock mode", file=sys.stderr)
        return 2
    if argv and argv[0] == "--":
        argv = argv[1:]
    # argv[0] is the real helm path the executor would have used
    args = argv[1:]
    if not args:
        print("Error: no command given", file=sys.stderr)
        return 1

    command = args[0]
    if command == "get" and len(args) > 1:
        command = f"get-{args[1]}"
        args = args[1:]
    release = args[1] if len(args) > 1 else ""
    namespace = _flag(args, "--namespace") or "default"
    not_found = os.environ.get("HELM_MOCK_NOT_FOUND") == "1"

    if _fails(command):
        print(f"Error: {command.upper()} FAILED: mock failure for {release}", file=sys.stderr)
        return 1

    if command in ("install", "upgrade"):
        chart = args[2] if len(args) > 2 else ""
        if not chart or not os.path.exists(chart):
            print(f"Error: chart {chart!r} not found", file=sys.stderr)
            return 1
        print(f"NAME: {release}\nNAMESPACE: {namespace}\nSTATUS: deployed")
        return 0
    if command == "uninstall":
        if not_found:
            print(UNINSTALL_NOT_FOUND_FORMAT.format(release), file=sys.stderr)
            return 1
        print(f'release "{release}" uninstalled')
        return 0
    if command == "status":
        if not_found:
            print(STATUS_NOT_FOUND, file=sys.stderr)
            return 1
        print(json.dumps({"name": release, "namespace": namespace, "info": {"status": "deployed"}}))
        return 0
    if command == "get-manifest":
        print(_MANIFEST.format(name=release, namespace=namespace), end="")
        return 0

    print(f"Error: unknown command {command!r}", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
