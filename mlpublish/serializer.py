"""Render manifest specs in manifest-tool's ``push from-spec`` format.

Example output::

    image: mcr.microsoft.com/repo:sharedtag2
    tags: [sharedtag1]
    manifests:
    - image: mcr.microsoft.com/repo:tag1
      platform:
        architecture: amd64
        os: linux

Optional values (``tags``, ``os.version``, ``os.features``, ``variant``)
are omitted when empty, so an empty value and a missing one render to
the same bytes.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

from mlpublish.grouping import ManifestMember, ManifestSpec


class _FlowList(list):
    """A list rendered inline (``[a, b]``)."""


class _SpecDumper(yaml.SafeDumper):
    pass


def _represent_flow_list(dumper: yaml.SafeDumper, data: _FlowList) -> yaml.Node:
    return dumper.represent_sequence("tag:yaml.org,2002:seq", data, flow_style=True)


_SpecDumper.add_representer(_FlowList, _represent_flow_list)


def _platform_block(member: ManifestMember) -> dict[str, Any]:
    block: dict[str, Any] = {
        "architecture": member.architecture,
        "os": member.os,
    }
    if member.os_version:
        block["os.version"] = member.os_version
    if member.os_features:
        block["os.features"] = _FlowList(member.os_features)
    if member.variant:
        block["variant"] = member.variant
    return block


def spec_document(spec: ManifestSpec) -> dict[str, Any]:
    """Return *spec* as an ordered mapping ready for dumping."""
    doc: dict[str, Any] = {"image": spec.image_ref}
    if spec.secondary_tags:
        doc["tags"] = _FlowList(spec.secondary_tags)
    doc["manifests"] = [
        {"image": m.image_ref, "platform": _platform_block(m)}
        for m in spec.members
    ]
    return doc


def render_spec(spec: ManifestSpec) -> str:
    """Render *spec* as manifest-tool YAML."""
    return yaml.dump(
        spec_document(spec),
        Dumper=_SpecDumper,
        default_flow_style=False,
        sort_keys=False,
        width=4096,
    )


def write_spec(spec: ManifestSpec, directory: Path | str) -> Path:
    """Write *spec* to a new file in *directory* and return its path.

    Each call creates a distinct file; paths are never reused.
    """
    fd, name = tempfile.mkstemp(
        prefix=f"{spec.destination_repo.replace('/', '_')}-",
        suffix=".yml",
        dir=directory,
    )
    with os.fdopen(fd, "w") as fh:
        fh.write(render_spec(spec))
    return Path(name)
