"""Chart, application and application version models."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field


@dataclass
class Maintainer:
    name: str = ""
    email: str = ""
    url: str = ""

    @classmethod
    def from_dict(cls, d: dict) -> Maintainer:
        return cls(
            name=d.get("name", "") or "",
            email=d.get("email", "") or "",
            url=d.get("url", "") or "",
        )

    def to_dict(self) -> dict:
        out = {"name": self.name}
        if self.email:
            out["email"] = self.email
        if self.url:
            out["url"] = self.url
        return out


@dataclass
class ChartVersion:
    """One published version of a chart.

    ``version_id`` is assigned by the platform and stays fixed for as long as
    the upstream repository keeps publishing this version string; everything
    else mirrors the upstream index entry.
    """

    version_id: str = ""
    name: str = ""
    version: str = ""
    app_version: str = ""
    description: str = ""
    api_version: str = ""
    home: str = ""
    icon: str = ""
    urls: list[str] = field(default_factory=list)
    digest: str = ""
    created: str = ""
    keywords: list[str] = field(default_factory=list)
    sources: list[str] = field(default_factory=list)
    maintainers: list[Maintainer] = field(default_factory=list)
    annotations: dict[str, str] = field(default_factory=dict)
    # chart archive, only present for versions whose package is embedded
    data: bytes = b""

    @property
    def version_name(self) -> str:
        if self.app_version:
            return f"{self.version} [{self.app_version}]"
        return self.version

    @classmethod
    def from_index_entry(cls, d: dict) -> ChartVersion:
        """Build a version from an upstream ``index.yaml`` entry (no id yet)."""
        created = d.get("created", "")
        if created and not isinstance(created, str):
            # yaml may hand back a datetime for unquoted timestamps
            created = created.isoformat()
        return cls(
            name=d.get("name", "") or "",
            version=str(d.get("version", "") or ""),
            app_version=str(d.get("appVersion", "") or ""),
            description=d.get("description", "") or "",
            api_version=d.get("apiVersion", "") or "",
            home=d.get("home", "") or "",
            icon=d.get("icon", "") or "",
            urls=list(d.get("urls") or []),
            digest=d.get("digest", "") or "",
            created=created or "",
            keywords=list(d.get("keywords") or []),
            sources=list(d.get("sources") or []),
            maintainers=[Maintainer.from_dict(m) for m in d.get("maintainers") or []],
            annotations=dict(d.get("annotations") or {}),
        )

    @classmethod
    def from_dict(cls, d: dict) -> ChartVersion:
        version = cls.from_index_entry(d)
        version.version_id = d.get("versionId", "")
        raw = d.get("data", "")
        if raw:
            version.data = base64.b64decode(raw)
        return version

    def to_dict(self) -> dict:
        out = {
            "versionId": self.version_id,
            "name": self.name,
            "version": self.version,
            "appVersion": self.app_version,
            "description": self.description,
            "apiVersion": self.api_version,
            "home": self.home,
            "icon": self.icon,
            "urls": list(self.urls),
            "digest": self.digest,
            "created": self.created,
            "keywords": list(self.keywords),
            "sources": list(self.sources),
            "maintainers": [m.to_dict() for m in self.maintainers],
            "annotations": dict(self.annotations),
        }
        if self.data:
            out["data"] = base64.b64encode(self.data).decode("ascii")
        return out


@dataclass
class Application:
    application_id: str = ""
    name: str = ""
    description: str = ""
    icon: str = ""
    versions: list[ChartVersion] = field(default_factory=list)

    def get_version(self, version_id: str) -> ChartVersion | None:
        for v in self.versions:
            if v.version_id == version_id:
                return v
        return None

    @classmethod
    def from_dict(cls, d: dict) -> Application:
        return cls(
            application_id=d.get("applicationId", ""),
            name=d.get("name", ""),
            description=d.get("description", ""),
            icon=d.get("icon", ""),
            versions=[ChartVersion.from_dict(v) for v in d.get("versions") or []],
        )

    def to_dict(self) -> dict:
        return {
            "applicationId": self.application_id,
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "versions": [v.to_dict() for v in self.versions],
        }


@dataclass
class StoreVersion:
    """A curated app-store version whose archive lives in object storage."""

    version_id: str = ""
    chart_name: str = ""
    workspace: str = ""

    @classmethod
    def from_dict(cls, d: dict) -> StoreVersion:
        metadata = d.get("metadata", {}) or {}
        labels = metadata.get("labels", {}) or {}
        spec = d.get("spec", {}) or {}
        return cls(
            version_id=metadata.get("name", ""),
            chart_name=spec.get("name", ""),
            workspace=labels.get("kubesphere.io/workspace", ""),
        )


def data_key_in_storage(workspace: str, version_id: str) -> str:
    """Object-storage key of a curated version's chart archive."""
    if not workspace:
        return version_id
    return f"{workspace.rstrip('/')}/{version_id}"
