"""Manifest configuration model and loader.

This module has ZERO side effects beyond reading the config file.  It
parses YAML (JSON documents are accepted too, being valid YAML) and
returns plain dataclasses.  It does not run manifest-tool or touch the
build-result store.

Tag maps are plain dicts built in document order, so the declaration
order of shared and simple tags survives loading.  The first declared
tag becomes a manifest list's primary reference.
"""

from __future__ import annotations

from collections.abc import Hashable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from mlpublish.errors import ConfigError

_DEFAULT_ARCH = "amd64"
_DEFAULT_OS = "linux"

# ── Dataclasses ──────────────────────────────────────────────────────

@dataclass
class Syndication:
    """Publish a tag to another repo under different tag names."""

    repo: str
    destination_tags: list[str] = field(default_factory=list)


@dataclass
class Tag:
    """A tag declaration.  Without syndication it is published as-is."""

    syndication: Syndication | None = None


@dataclass
class Platform:
    """One architecture/OS build of an image."""

    dockerfile: str
    architecture: str = _DEFAULT_ARCH
    os: str = _DEFAULT_OS
    os_version: str | None = None
    os_features: list[str] = field(default_factory=list)
    variant: str | None = None
    tags: dict[str, Tag] = field(default_factory=dict)

    @property
    def identity(self) -> tuple[str, str, str, str, str]:
        """Key used to find duplicate declarations of the same platform."""
        return (
            self.dockerfile,
            self.architecture,
            self.os,
            self.os_version or "",
            self.variant or "",
        )


@dataclass
class Image:
    """A set of platforms published together under shared tags."""

    platforms: list[Platform] = field(default_factory=list)
    shared_tags: dict[str, Tag] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        """Short identity for log and error messages."""
        if self.shared_tags:
            return ", ".join(self.shared_tags)
        return ", ".join(p.dockerfile for p in self.platforms) or "<empty>"


@dataclass
class Repo:
    """A destination repository and the images published to it."""

    name: str
    images: list[Image] = field(default_factory=list)


@dataclass
class Manifest:
    """Top-level manifest configuration."""

    registry: str = ""
    repos: list[Repo] = field(default_factory=list)

    def repo_names(self) -> list[str]:
        return [r.name for r in self.repos]


# ── Parsing ──────────────────────────────────────────────────────────

def _expect(value: Any, kind: type, where: str) -> Any:
    if not isinstance(value, kind):
        raise ConfigError(
            f"{where}: expected {kind.__name__}, got {type(value).__name__}"
        )
    return value


def _parse_syndication(data: Any, where: str) -> Syndication:
    data = _expect(data, dict, where)
    if "repo" not in data:
        raise ConfigError(f"{where}: syndication requires a 'repo'")
    dest = data.get("destinationTags") or []
    dest = _expect(dest, list, f"{where}.destinationTags")
    return Syndication(
        repo=str(data["repo"] or ""),
        destination_tags=[str(t) for t in dest],
    )


def _parse_tags(data: Any, where: str) -> dict[str, Tag]:
    """Parse a ``name -> tag`` mapping, keeping document order."""
    if data is None:
        return {}
    data = _expect(data, dict, where)
    tags: dict[str, Tag] = {}
    for name, raw in data.items():
        tag_where = f"{where}.{name}"
        if not isinstance(name, str):
            raise ConfigError(
                f"{tag_where}: tag name must be a string, got {type(name).__name__} "
                f"(quote it in the config)"
            )
        if raw is None:
            raw = {}
        raw = _expect(raw, dict, tag_where)
        syndication = None
        if raw.get("syndication") is not None:
            syndication = _parse_syndication(
                raw["syndication"], f"{tag_where}.syndication"
            )
        tags[name] = Tag(syndication=syndication)
    return tags


def _parse_platform(data: Any, where: str) -> Platform:
    data = _expect(data, dict, where)
    dockerfile = data.get("dockerfile")
    if not dockerfile:
        raise ConfigError(f"{where}: platform requires a 'dockerfile'")
    features = _expect(data.get("osFeatures") or [], list, f"{where}.osFeatures")
    unique_features: list[str] = []
    for feat in features:
        if str(feat) not in unique_features:
            unique_features.append(str(feat))
    return Platform(
        dockerfile=str(dockerfile),
        architecture=str(data.get("architecture") or _DEFAULT_ARCH),
        os=str(data.get("os") or _DEFAULT_OS),
        os_version=data.get("osVersion") or None,
        os_features=unique_features,
        variant=data.get("variant") or None,
        tags=_parse_tags(data.get("tags"), f"{where}.tags"),
    )


def _parse_image(data: Any, where: str) -> Image:
    data = _expect(data, dict, where)
    raw_platforms = _expect(data.get("platforms") or [], list, f"{where}.platforms")
    return Image(
        platforms=[
            _parse_platform(p, f"{where}.platforms[{i}]")
            for i, p in enumerate(raw_platforms)
        ],
        shared_tags=_parse_tags(data.get("sharedTags"), f"{where}.sharedTags"),
    )


def _parse_repos(data: Any) -> list[Repo]:
    raw_repos = _expect(data or [], list, "repos")
    repos: list[Repo] = []
    seen: set[str] = set()
    for i, raw in enumerate(raw_repos):
        where = f"repos[{i}]"
        raw = _expect(raw, dict, where)
        name = raw.get("name")
        if not name:
            raise ConfigError(f"{where}: repo requires a 'name'")
        name = str(name)
        if name in seen:
            raise ConfigError(f"{where}: duplicate repo name {name!r}")
        seen.add(name)
        raw_images = _expect(raw.get("images") or [], list, f"{where}.images")
        repos.append(Repo(
            name=name,
            images=[
                _parse_image(img, f"{name}.images[{j}]")
                for j, img in enumerate(raw_images)
            ],
        ))
    return repos


def parse(data: Any) -> Manifest:
    """Build a :class:`Manifest` from an already-decoded document."""
    if data is None:
        data = {}
    data = _expect(data, dict, "manifest")
    return Manifest(
        registry=str(data.get("registry") or ""),
        repos=_parse_repos(data.get("repos")),
    )


# ── Loading ──────────────────────────────────────────────────────────

class _UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that rejects duplicate mapping keys."""


def _construct_unique_mapping(
    loader: _UniqueKeyLoader, node: yaml.MappingNode, deep: bool = False,
) -> dict:
    seen = set()
    for key_node, _ in node.value:
        if key_node.tag == "tag:yaml.org,2002:merge":
            continue
        key = loader.construct_object(key_node, deep=deep)
        if not isinstance(key, Hashable):
            continue
        if key in seen:
            raise yaml.constructor.ConstructorError(
                "while constructing a mapping", node.start_mark,
                f"found duplicate key {key!r}", key_node.start_mark,
            )
        seen.add(key)
    return loader.construct_mapping(node, deep=deep)


_UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG, _construct_unique_mapping,
)


def load(path: Path | str) -> Manifest:
    """Load the manifest configuration at *path*.

    Raises :class:`ConfigError` when the file cannot be read, repeats a
    mapping key, or does not describe a valid manifest.
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as fh:
            data = yaml.load(fh, Loader=_UniqueKeyLoader)
    except OSError as exc:
        raise ConfigError(f"cannot read config {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"cannot parse config {path}: {exc}") from exc
    return parse(data)
