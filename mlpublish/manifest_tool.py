"""manifest-tool backend abstraction and CLI adapter.

The publish driver depends only on :class:`ManifestToolBase`.  The
:class:`ManifestTool` adapter runs the real ``manifest-tool`` binary and
has no business logic: it runs commands and returns their output.
"""

from __future__ import annotations

import json
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from mlpublish import log
from mlpublish.errors import ToolError

MANIFEST_LIST_MEDIA_TYPE = "application/vnd.docker.distribution.manifest.list.v2+json"
OCI_INDEX_MEDIA_TYPE = "application/vnd.oci.image.index.v1+json"

_LIST_MEDIA_TYPES = (MANIFEST_LIST_MEDIA_TYPE, OCI_INDEX_MEDIA_TYPE)

DEFAULT_TIMEOUT = 600.0


@dataclass
class ToolManifest:
    """Result of inspecting a published tag."""

    media_type: str
    digest: str


class ManifestToolBase(ABC):
    """Abstract interface to the manifest publishing tool."""

    @abstractmethod
    def push_from_spec(self, spec_path: str, dry_run: bool) -> None:
        """Publish the manifest list described by the spec file."""

    @abstractmethod
    def inspect(self, reference: str, dry_run: bool) -> ToolManifest:
        """Return the manifest list published at *reference*."""


def manifest_list_digest(reference: str, data: Any) -> ToolManifest:
    """Pick the manifest-list entry out of ``inspect --raw`` output.

    The tool prints either a single object or a list of objects, each
    carrying ``mediaType`` and ``digest``.
    """
    entries = data if isinstance(data, list) else [data]
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        media_type = entry.get("mediaType", "")
        if media_type in _LIST_MEDIA_TYPES and entry.get("digest"):
            return ToolManifest(media_type=media_type, digest=entry["digest"])
    raise ToolError(
        ["manifest-tool", "inspect", reference], 0,
        "no manifest list found in inspect output",
        destination=reference,
    )


class ManifestTool(ManifestToolBase):
    """Runs the ``manifest-tool`` binary."""

    def __init__(self, executable: str = "manifest-tool", timeout: float = DEFAULT_TIMEOUT) -> None:
        self.executable = executable
        self.timeout = timeout

    def _run(self, args: list[str], *, destination: str) -> subprocess.CompletedProcess[str]:
        """Run the tool, raising :class:`ToolError` on failure or timeout."""
        cmd = [self.executable, *args]
        log.info(f"$ {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise ToolError(
                cmd, None, f"timed out after {self.timeout:g}s",
                destination=destination,
            ) from exc
        except OSError as exc:
            raise ToolError(cmd, None, str(exc), destination=destination) from exc
        if result.returncode != 0:
            stderr = result.stderr.strip() if result.stderr else ""
            raise ToolError(cmd, result.returncode, stderr, destination=destination)
        return result

    def push_from_spec(self, spec_path: str, dry_run: bool) -> None:
        args = ["push", "from-spec", spec_path]
        if dry_run:
            log.info(f"[dry-run] $ {' '.join([self.executable, *args])}")
            return
        self._run(args, destination=spec_path)

    def inspect(self, reference: str, dry_run: bool) -> ToolManifest:
        args = ["inspect", "--raw", reference]
        if dry_run:
            log.info(f"[dry-run] $ {' '.join([self.executable, *args])}")
            return ToolManifest(media_type=MANIFEST_LIST_MEDIA_TYPE, digest="")
        result = self._run(args, destination=reference)
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise ToolError(
                [self.executable, *args], result.returncode,
                f"could not parse inspect output: {exc}",
                destination=reference,
            ) from exc
        return manifest_list_digest(reference, data)
