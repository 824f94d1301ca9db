"""Shared fixtures and factories for mlpublish tests."""

from __future__ import annotations

import json
import threading
from pathlib import Path

import pytest

from mlpublish.config import Image, Manifest, Platform, Repo, Syndication, Tag
from mlpublish.errors import ToolError
from mlpublish.manifest_tool import MANIFEST_LIST_MEDIA_TYPE, ManifestToolBase, ToolManifest


def make_platform(dockerfile: str = "1.0/repo/os", tags=(), **kwargs) -> Platform:
    """Factory for Platform; *tags* may be a list of names or a tag dict."""
    tag_map = dict(tags) if isinstance(tags, dict) else {t: Tag() for t in tags}
    return Platform(dockerfile=dockerfile, tags=tag_map, **kwargs)


def make_image(platforms, shared_tags=()) -> Image:
    """Factory for Image; *shared_tags* may be a list of names or a tag dict."""
    if isinstance(shared_tags, dict):
        tag_map = dict(shared_tags)
    else:
        tag_map = {t: Tag() for t in shared_tags}
    return Image(platforms=list(platforms), shared_tags=tag_map)


def make_repo(name: str, *images: Image) -> Repo:
    return Repo(name=name, images=list(images))


def make_manifest(*repos: Repo, registry: str = "") -> Manifest:
    return Manifest(registry=registry, repos=list(repos))


def syndicated(repo: str, *destination_tags: str) -> Tag:
    return Tag(syndication=Syndication(repo=repo, destination_tags=list(destination_tags)))


def store_platform(dockerfile: str, simple_tags=()) -> dict:
    """A build-result platform entry as it appears in the store JSON."""
    return {
        "dockerfile": dockerfile,
        "simpleTags": list(simple_tags),
        "digest": f"sha256:{dockerfile.replace('/', '-')}",
        "osType": "Linux",
        "osVersion": "Debian 12",
        "architecture": "amd64",
        "created": "2020-01-01T00:00:00.0000000Z",
        "commitUrl": "https://example.com/commit",
    }


def write_store(path: Path, data: dict) -> None:
    path.write_text(json.dumps(data, indent=2) + "\n")


class FakeManifestTool(ManifestToolBase):
    """Records pushed spec contents and answers inspect from a digest map."""

    def __init__(self, digests: dict[str, str] | None = None, default_digest: str = "digest",
                 fail_push_on: str | None = None) -> None:
        self.digests = digests or {}
        self.default_digest = default_digest
        self.fail_push_on = fail_push_on
        self.pushed: list[str] = []
        self.paths: list[str] = []
        self.inspected: list[str] = []
        self.dry_runs: list[bool] = []
        self._lock = threading.Lock()

    def push_from_spec(self, spec_path: str, dry_run: bool) -> None:
        content = Path(spec_path).read_text()
        with self._lock:
            self.pushed.append(content)
            self.paths.append(spec_path)
            self.dry_runs.append(dry_run)
        if self.fail_push_on is not None and self.fail_push_on in content:
            raise ToolError(["manifest-tool", "push", "from-spec", spec_path], 1, "denied")

    def inspect(self, reference: str, dry_run: bool) -> ToolManifest:
        with self._lock:
            self.inspected.append(reference)
        return ToolManifest(
            media_type=MANIFEST_LIST_MEDIA_TYPE,
            digest=self.digests.get(reference, self.default_digest),
        )


@pytest.fixture
def fake_tool() -> FakeManifestTool:
    return FakeManifestTool()
