"""Manifest-list publish orchestration.

For every repo, then every image with shared tags:

1. Generates the image's manifest specs (all images are grouped before
   anything is pushed, so a grouping error aborts a clean run).
2. Writes each spec to a scratch file and pushes it with manifest-tool.
3. Inspects the primary reference to read back the manifest-list digest.
4. Records the own-repo digest on the matching build-result record.

The store is written once, after every image has been published.  Any
failure aborts the run; outstanding images are cancelled.
"""

from __future__ import annotations

import tempfile
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path

from mlpublish import config as config_mod
from mlpublish import log, reconcile, serializer
from mlpublish import store as store_mod
from mlpublish.config import Image, Manifest
from mlpublish.errors import ToolError
from mlpublish.grouping import ManifestSpec, generate_specs
from mlpublish.manifest_tool import ManifestTool, ManifestToolBase
from mlpublish.reconcile import ImageKey
from mlpublish.settings import PublishOptions
from mlpublish.store import ArtifactDetails


@dataclass
class ImageWork:
    """The specs to publish for one configured image."""

    key: ImageKey
    repo: str
    published_repo: str
    image: Image
    specs: list[ManifestSpec] = field(default_factory=list)

    @property
    def label(self) -> str:
        return f"{self.repo} [{self.image.display_name}]"


def plan(manifest: Manifest, *, repo_prefix: str = "") -> list[ImageWork]:
    """Group every image of *manifest* into specs.

    Images without shared tags are left out.
    """
    work: list[ImageWork] = []
    for repo_idx, repo in enumerate(manifest.repos):
        for image_idx, image in enumerate(repo.images):
            specs = generate_specs(
                repo, image, manifest.registry, repo_prefix=repo_prefix,
            )
            if not specs:
                log.debug(f"{repo.name} [{image.display_name}]: no shared tags, skipping")
                continue
            work.append(ImageWork(
                key=(repo_idx, image_idx),
                repo=repo.name,
                published_repo=f"{repo_prefix}{repo.name}",
                image=image,
                specs=specs,
            ))
    return work


def publish_image(
    tool: ManifestToolBase,
    specs: list[ManifestSpec],
    scratch_dir: Path | str,
    dry_run: bool = False,
    *,
    label: str | None = None,
) -> str | None:
    """Push and inspect each spec in order.

    Returns the own-repo manifest-list digest, or None when no spec
    targets the image's own repo.  Digests of syndicated destinations
    are not returned.  A :class:`ToolError` is re-raised naming the
    manifest-list reference and the image *label*.
    """
    digest = None
    for spec in specs:
        path = serializer.write_spec(spec, scratch_dir)
        log.info(f"Publishing {spec.image_ref} ({len(spec.members)} platform(s))")
        try:
            tool.push_from_spec(str(path), dry_run)
            result = tool.inspect(spec.image_ref, dry_run)
        except ToolError as exc:
            raise exc.with_context(destination=spec.image_ref, image=label) from exc
        if spec.own_repo:
            digest = result.digest
        log.success(f"Published {spec.image_ref} {result.digest}".rstrip())
    return digest


def _record(
    work: ImageWork,
    digest: str | None,
    matches: dict[ImageKey, store_mod.ImageRecord],
    created: str,
) -> bool:
    record = matches.get(work.key)
    if record is None:
        log.debug(f"{work.label}: no build-result record, not recording digest")
        return False
    if digest is None:
        return False
    return reconcile.apply_digest(record, work.published_repo, digest, created)


def run(
    manifest: Manifest,
    store: ArtifactDetails,
    tool: ManifestToolBase,
    *,
    dry_run: bool = False,
    jobs: int = 1,
    repo_prefix: str = "",
    created: str | None = None,
) -> int:
    """Publish every image of *manifest* and update *store* in memory.

    Returns the number of store records that were updated.  Raises the
    first error encountered; no further images are started after it.
    """
    if created is None:
        created = reconcile.utc_timestamp()
    work = plan(manifest, repo_prefix=repo_prefix)
    matches = reconcile.match_records(store, manifest)
    updated = 0

    if not work:
        log.warn("No images with shared tags -- nothing to publish")
        return 0

    with tempfile.TemporaryDirectory(prefix="mlpublish-") as scratch:
        if jobs <= 1:
            for item in work:
                log.step(f"Manifest {item.label}")
                digest = publish_image(tool, item.specs, scratch, dry_run, label=item.label)
                updated += _record(item, digest, matches, created)
            return updated

        pool = ThreadPoolExecutor(max_workers=jobs, thread_name_prefix="mlpublish")
        try:
            futures: dict[Future[str | None], ImageWork] = {
                pool.submit(
                    publish_image, tool, item.specs, scratch, dry_run, label=item.label,
                ): item
                for item in work
            }
            pending = set(futures)
            while pending:
                done, pending = wait(pending, return_when=FIRST_EXCEPTION)
                for future in done:
                    item = futures[future]
                    # Raises the worker's exception; the finally below
                    # cancels whatever has not started yet.
                    digest = future.result()
                    updated += _record(item, digest, matches, created)
        finally:
            pool.shutdown(wait=True, cancel_futures=True)
    return updated


def load_manifest(options: PublishOptions) -> Manifest:
    """Load the config and apply the registry override."""
    manifest = config_mod.load(options.config_path)
    if options.registry_override is not None:
        manifest.registry = options.registry_override
    return manifest


def publish(options: PublishOptions, tool: ManifestToolBase | None = None) -> int:
    """Run a full publish as described by *options*.

    Returns the number of store records updated.
    """
    if tool is None:
        tool = ManifestTool(options.manifest_tool, timeout=options.timeout)

    manifest = load_manifest(options)
    store = (
        store_mod.load(options.store_path)
        if options.store_path is not None
        else ArtifactDetails()
    )

    log.timer_start("publish")
    updated = run(
        manifest,
        store,
        tool,
        dry_run=options.dry_run,
        jobs=options.jobs,
        repo_prefix=options.repo_prefix,
    )

    if options.dry_run:
        log.info("[dry-run] not writing the build-result store")
    elif updated and options.store_path is not None:
        store_mod.save(store, options.store_path)
    else:
        log.info("No build-result records matched -- store left unchanged")
    log.timer_stop("publish")
    return updated
