"""Upstream index file and persisted catalog snapshot models."""

from __future__ import annotations

from dataclasses import dataclass, field

from helm_conductor.models.chart import Application, ChartVersion


@dataclass
class IndexFile:
    """A parsed upstream ``index.yaml``: chart name -> published versions."""

    api_version: str = ""
    generated: str = ""
    entries: dict[str, list[ChartVersion]] = field(default_factory=dict)


@dataclass
class Snapshot:
    """Identifier-stable view of a repository's catalog, keyed by chart name."""

    api_version: str = ""
    generated: str = ""
    applications: dict[str, Application] = field(default_factory=dict)

    @property
    def total_applications(self) -> int:
        return len(self.applications)

    @property
    def total_versions(self) -> int:
        return sum(len(app.versions) for app in self.applications.values())

    def is_empty(self) -> bool:
        return not self.applications

    def get_application(self, app_id: str) -> Application | None:
        for app in self.applications.values():
            if app.application_id == app_id:
                return app
        return None

    def get_application_version(self, app_id: str, version_id: str) -> ChartVersion | None:
        app = self.get_application(app_id)
        if app is None:
            return None
        return app.get_version(version_id)

    @classmethod
    def from_dict(cls, d: dict) -> Snapshot:
        if not d:
            return cls()
        return cls(
            api_version=d.get("apiVersion", ""),
            generated=d.get("generated", ""),
            applications={
                name: Application.from_dict(app)
                for name, app in (d.get("applications") or {}).items()
            },
        )

    def to_dict(self) -> dict:
        return {
            "apiVersion": self.api_version,
            "generated": self.generated,
            "applications": {name: app.to_dict() for name, app in self.applications.items()},
        }
