"""Build-result store ("image info") model, loading and saving.

Every record remembers the JSON object it was parsed from.  Writing the
store back re-emits those objects with only the manifest ``digest`` and
``created`` fields changed, so unknown keys, key order, and array order
all survive the round trip.

Saving is a single atomic replace: the document is written to a temp
file beside the target and moved over it with :func:`os.replace`.
"""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from mlpublish import log
from mlpublish.errors import ConfigError, PersistenceError


@dataclass
class PlatformRecord:
    dockerfile: str = ""
    simple_tags: list[str] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    def to_dict(self) -> dict[str, Any]:
        return dict(self.raw)


@dataclass
class ManifestRecord:
    shared_tags: list[str] = field(default_factory=list)
    digest: str | None = None
    created: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    def to_dict(self) -> dict[str, Any]:
        out = dict(self.raw)
        if self.digest is not None:
            out["digest"] = self.digest
        if self.created is not None:
            out["created"] = self.created
        return out


@dataclass
class ImageRecord:
    platforms: list[PlatformRecord] = field(default_factory=list)
    manifest: ManifestRecord | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def dockerfiles(self) -> set[str]:
        """Identity keys of the platforms recorded for this image."""
        return {p.dockerfile for p in self.platforms if p.dockerfile}

    def to_dict(self) -> dict[str, Any]:
        out = dict(self.raw)
        if "platforms" in out or self.platforms:
            out["platforms"] = [p.to_dict() for p in self.platforms]
        if self.manifest is not None:
            out["manifest"] = self.manifest.to_dict()
        return out


@dataclass
class RepoRecord:
    repo: str
    images: list[ImageRecord] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    def to_dict(self) -> dict[str, Any]:
        out = dict(self.raw)
        out["repo"] = self.repo
        if "images" in out or self.images:
            out["images"] = [i.to_dict() for i in self.images]
        return out


@dataclass
class ArtifactDetails:
    repos: list[RepoRecord] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    def find_repo(self, name: str) -> RepoRecord | None:
        for repo in self.repos:
            if repo.repo == name:
                return repo
        return None

    def to_dict(self) -> dict[str, Any]:
        out = dict(self.raw)
        out["repos"] = [r.to_dict() for r in self.repos]
        return out


# ── Parsing ──────────────────────────────────────────────────────────

def _as_dict(value: Any, where: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ConfigError(f"store {where}: expected object, got {type(value).__name__}")
    return value


def _as_list(value: Any, where: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"store {where}: expected array, got {type(value).__name__}")
    return value


def _parse_manifest(data: Any, where: str) -> ManifestRecord:
    data = _as_dict(data, where)
    return ManifestRecord(
        shared_tags=[str(t) for t in _as_list(data.get("sharedTags"), f"{where}.sharedTags")],
        digest=data.get("digest"),
        created=data.get("created"),
        raw=data,
    )


def _parse_image(data: Any, where: str) -> ImageRecord:
    data = _as_dict(data, where)
    platforms = []
    for i, raw in enumerate(_as_list(data.get("platforms"), f"{where}.platforms")):
        raw = _as_dict(raw, f"{where}.platforms[{i}]")
        platforms.append(PlatformRecord(
            dockerfile=str(raw.get("dockerfile") or ""),
            simple_tags=[str(t) for t in raw.get("simpleTags") or []],
            raw=raw,
        ))
    manifest = None
    if data.get("manifest") is not None:
        manifest = _parse_manifest(data["manifest"], f"{where}.manifest")
    return ImageRecord(platforms=platforms, manifest=manifest, raw=data)


def parse(data: Any) -> ArtifactDetails:
    """Build :class:`ArtifactDetails` from an already-decoded document."""
    if data is None:
        data = {}
    data = _as_dict(data, "root")
    repos = []
    for i, raw in enumerate(_as_list(data.get("repos"), "repos")):
        raw = _as_dict(raw, f"repos[{i}]")
        name = raw.get("repo")
        if not name:
            raise ConfigError(f"store repos[{i}]: missing 'repo'")
        images = [
            _parse_image(img, f"{name}.images[{j}]")
            for j, img in enumerate(_as_list(raw.get("images"), f"{name}.images"))
        ]
        repos.append(RepoRecord(repo=str(name), images=images, raw=raw))
    return ArtifactDetails(repos=repos, raw=data)


def load(path: Path | str) -> ArtifactDetails:
    """Load the build-result store at *path*.

    An empty file yields an empty store.  A missing or unreadable file
    raises :class:`ConfigError`.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"cannot read store {path}: {exc}") from exc
    if not text.strip():
        return ArtifactDetails()
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"cannot parse store {path}: {exc}") from exc
    return parse(data)


# ── Serialization ────────────────────────────────────────────────────

def dumps(details: ArtifactDetails) -> str:
    """Serialize *details* in the store's canonical JSON layout."""
    return json.dumps(details.to_dict(), indent=2, ensure_ascii=False) + "\n"


def save(details: ArtifactDetails, path: Path | str) -> None:
    """Atomically replace the store at *path* with *details*.

    Raises :class:`PersistenceError` if the file cannot be written.
    """
    path = Path(path)
    content = dumps(details)
    directory = path.parent if str(path.parent) else Path(".")
    tmp_name = None
    try:
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.name}.", suffix=".tmp", dir=directory,
        )
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as exc:
        raise PersistenceError(f"cannot write store {path}: {exc}") from exc
    finally:
        if tmp_name is not None and os.path.exists(tmp_name):
            os.unlink(tmp_name)
    log.success(f"Updated {path}")
