"""Fold published digests back into the build-result store.

Matching runs once, on the main thread, before anything is published,
so the image-to-record assignment does not depend on the order in
which workers finish.  Only ``manifest.digest`` and ``manifest.created``
are ever written.
"""

from __future__ import annotations

import datetime

from mlpublish.config import Image, Manifest
from mlpublish.store import ArtifactDetails, ImageRecord, ManifestRecord

ImageKey = tuple[int, int]


def utc_timestamp(now: datetime.datetime | None = None) -> str:
    """Return *now* (default: the current time) as an ISO-8601 UTC string."""
    if now is None:
        now = datetime.datetime.now(datetime.timezone.utc)
    return now.astimezone(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _platform_keys(image: Image) -> set[str]:
    return {p.dockerfile for p in image.platforms}


def match_records(store: ArtifactDetails, manifest: Manifest) -> dict[ImageKey, ImageRecord]:
    """Map ``(repo index, image index)`` of config images to store records.

    A record matches an image when its recorded dockerfiles equal the
    image's platform dockerfiles.  Among several matches, the record
    whose shared-tag snapshot equals the image's shared tags wins, then
    the first unclaimed one.  Each record is claimed at most once.
    Images without a match are absent from the result.
    """
    matches: dict[ImageKey, ImageRecord] = {}
    for repo_idx, repo in enumerate(manifest.repos):
        repo_record = store.find_repo(repo.name)
        if repo_record is None:
            continue
        claimed: set[int] = set()
        for image_idx, image in enumerate(repo.images):
            keys = _platform_keys(image)
            candidates = [
                rec for rec in repo_record.images
                if id(rec) not in claimed and rec.dockerfiles and rec.dockerfiles == keys
            ]
            if not candidates:
                continue
            shared = set(image.shared_tags)
            chosen = next(
                (rec for rec in candidates
                 if rec.manifest is not None and set(rec.manifest.shared_tags) == shared),
                candidates[0],
            )
            claimed.add(id(chosen))
            matches[(repo_idx, image_idx)] = chosen
    return matches


def apply_digest(record: ImageRecord, repo: str, digest: str, created: str) -> bool:
    """Record *digest* for *repo* on *record*.  Returns True if changed.

    An empty digest (dry-run) leaves the record untouched.
    """
    if not digest:
        return False
    if record.manifest is None:
        record.manifest = ManifestRecord()
    record.manifest.digest = f"{repo}@{digest}"
    record.manifest.created = created
    return True
