"""Manifest-list spec grouping.

Turns one configured image into the manifest lists that must be
published for it: one :class:`ManifestSpec` per destination repository.

* Every shared tag is published in the image's own repo under its own
  name.  A syndicated shared tag is additionally published to its
  syndication repo under each of its destination tags.
* Each bucket's tags are concatenated in declaration order.  The first
  is the primary reference; the rest are applied as extra tags.
* Every platform contributes one member per bucket it routes into,
  referenced by the first of its tags that lands in that bucket.

Grouping is per image.  Two images in the same repo that build the same
platforms under different shared tags produce two independent specs.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from mlpublish import log
from mlpublish.config import Image, Platform, Repo, Tag
from mlpublish.errors import GroupingError


@dataclass
class ManifestMember:
    """A single-platform image referenced by a manifest list."""

    image_ref: str
    architecture: str
    os: str
    os_version: str | None = None
    os_features: list[str] = field(default_factory=list)
    variant: str | None = None


@dataclass
class ManifestSpec:
    """A manifest list to publish to one destination repository."""

    registry: str
    destination_repo: str
    primary_tag: str
    secondary_tags: list[str] = field(default_factory=list)
    members: list[ManifestMember] = field(default_factory=list)
    own_repo: bool = False

    @property
    def image_ref(self) -> str:
        """Reference of the manifest list itself (registry/repo:primary)."""
        return image_ref(self.registry, self.destination_repo, self.primary_tag)


@dataclass
class _Bucket:
    tags: list[str] = field(default_factory=list)
    members: list[ManifestMember] = field(default_factory=list)

    def add_tags(self, names: list[str]) -> None:
        for name in names:
            if name not in self.tags:
                self.tags.append(name)


def image_ref(registry: str, repo: str, tag: str) -> str:
    """Return ``registry/repo:tag``, or ``repo:tag`` without a registry."""
    if registry:
        return f"{registry}/{repo}:{tag}"
    return f"{repo}:{tag}"


def _check_syndication(repo: Repo, image: Image, name: str, tag: Tag) -> None:
    syn = tag.syndication
    if syn is None:
        return
    if not syn.repo:
        raise GroupingError(
            repo.name, image.display_name,
            f"tag {name!r} is syndicated to an empty repo",
        )
    if not syn.destination_tags:
        raise GroupingError(
            repo.name, image.display_name,
            f"tag {name!r} is syndicated to {syn.repo!r} with no destination tags",
        )


def concrete_tags(platform: Platform, repo: Repo) -> dict[str, Tag]:
    """Return the tags a platform is published under.

    A platform declared without tags is a duplicate reference to a
    platform built elsewhere in the repo; it borrows the tags of the
    first matching declaration that has some.
    """
    if platform.tags:
        return platform.tags
    for image in repo.images:
        for other in image.platforms:
            if other is not platform and other.tags and other.identity == platform.identity:
                return other.tags
    return {}


def _routes(
    tags: dict[str, Tag],
    own_repo: str,
    repo_prefix: str,
) -> dict[str, str]:
    """Map each destination repo to the first platform tag landing there."""
    routes: dict[str, str] = {}
    for name, tag in tags.items():
        routes.setdefault(own_repo, name)
        syn = tag.syndication
        if syn is not None:
            routes.setdefault(f"{repo_prefix}{syn.repo}", syn.destination_tags[0])
    return routes


def _member(registry: str, dest: str, tag: str, platform: Platform) -> ManifestMember:
    return ManifestMember(
        image_ref=image_ref(registry, dest, tag),
        architecture=platform.architecture,
        os=platform.os,
        os_version=platform.os_version,
        os_features=list(platform.os_features),
        variant=platform.variant,
    )


def generate_specs(
    repo: Repo,
    image: Image,
    registry: str = "",
    *,
    repo_prefix: str = "",
) -> list[ManifestSpec]:
    """Return the manifest specs to publish for *image* of *repo*.

    Images without shared tags are not published as manifest lists and
    yield an empty list.  Raises :class:`GroupingError` for invalid
    syndication or for a destination that has tags but no platforms.
    """
    if not image.shared_tags:
        return []

    own_repo = f"{repo_prefix}{repo.name}"
    buckets: dict[str, _Bucket] = {}

    for name, tag in image.shared_tags.items():
        _check_syndication(repo, image, name, tag)
        buckets.setdefault(own_repo, _Bucket()).add_tags([name])
        if tag.syndication is not None:
            dest = f"{repo_prefix}{tag.syndication.repo}"
            buckets.setdefault(dest, _Bucket()).add_tags(tag.syndication.destination_tags)

    for platform in image.platforms:
        tags = concrete_tags(platform, repo)
        for name, tag in tags.items():
            _check_syndication(repo, image, name, tag)
        for dest, tag_name in _routes(tags, own_repo, repo_prefix).items():
            bucket = buckets.setdefault(dest, _Bucket())
            bucket.members.append(_member(registry, dest, tag_name, platform))

    specs: list[ManifestSpec] = []
    for dest, bucket in buckets.items():
        if not bucket.tags:
            log.debug(f"{repo.name} [{image.display_name}]: no shared tags for {dest}, skipping")
            continue
        if not bucket.members:
            raise GroupingError(
                repo.name, image.display_name,
                f"no platform is published to {dest} for tags {bucket.tags}",
            )
        specs.append(ManifestSpec(
            registry=registry,
            destination_repo=dest,
            primary_tag=bucket.tags[0],
            secondary_tags=bucket.tags[1:],
            members=bucket.members,
            own_repo=dest == own_repo,
        ))
    return specs
