"""Command-line interface for mlpublish.

This is the user-facing entry point.  It parses arguments, resolves
run options, and dispatches to the publish engine.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

import mlpublish
from mlpublish import log, publish, serializer, settings
from mlpublish.errors import PublishError

# ── Helpers ───────────────────────────────────────────────────────────

def _make_parser() -> argparse.ArgumentParser:
    """Build the top-level argument parser with all subcommands."""

    parser = argparse.ArgumentParser(
        prog="mlpublish",
        description="Multi-arch manifest list publisher",
        epilog="Run 'mlpublish <command> --help' for subcommand-specific options.",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"mlpublish {mlpublish.VERSION}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        default=False,
        help="enable debug logging",
    )

    sub = parser.add_subparsers(dest="command", title="commands")

    # Options shared by every command that generates specs.
    def add_grouping_options(p: argparse.ArgumentParser) -> None:
        p.add_argument("config", metavar="CONFIG", help="path to the manifest config")
        p.add_argument(
            "--registry",
            metavar="URL",
            default=None,
            help="override the registry from the config (e.g. mcr.microsoft.com)",
        )
        p.add_argument(
            "--repo-prefix",
            metavar="PREFIX",
            default=None,
            dest="repo_prefix",
            help="prefix prepended to every published repo name",
        )

    # -- publish --
    publish_parser = sub.add_parser(
        "publish",
        help="publish manifest lists and record their digests",
        description="Generate, push and inspect manifest lists, then update the build-result store.",
    )
    add_grouping_options(publish_parser)
    publish_parser.add_argument("store", metavar="STORE", help="path to the build-result (image info) JSON")
    publish_parser.add_argument(
        "--dry-run",
        action="store_true",
        default=False,
        dest="dry_run",
        help="log manifest-tool commands without running them",
    )
    publish_parser.add_argument(
        "-j", "--jobs",
        metavar="N",
        type=int,
        default=None,
        help="number of images to publish in parallel (default: 1)",
    )
    publish_parser.add_argument(
        "--timeout",
        metavar="SECONDS",
        type=float,
        default=None,
        help="timeout for each manifest-tool call (default: 600)",
    )
    publish_parser.add_argument(
        "--manifest-tool",
        metavar="PATH",
        default=None,
        dest="manifest_tool",
        help="manifest-tool executable (default: manifest-tool)",
    )

    # -- specs --
    specs_parser = sub.add_parser(
        "specs",
        help="show the manifest specs that would be published",
        description="Generate manifest specs without publishing them.",
    )
    add_grouping_options(specs_parser)
    specs_parser.add_argument(
        "-o", "--output",
        metavar="DIR",
        default=None,
        help="write one spec file per manifest list to DIR instead of stdout",
    )

    return parser


def _dispatch_publish(args: argparse.Namespace) -> int:
    """Run the publish subcommand."""
    options = settings.from_args(args)
    if options.dry_run:
        log.info("dry-run mode: nothing will be pushed")
    updated = publish.publish(options)
    log.success(f"Publish complete ({updated} record(s) updated)")
    return 0


def _dispatch_specs(args: argparse.Namespace) -> int:
    """Run the specs subcommand."""
    options = settings.from_args(args)
    manifest = publish.load_manifest(options)
    work = publish.plan(manifest, repo_prefix=options.repo_prefix)

    out_dir = Path(args.output) if args.output else None
    if out_dir is not None:
        out_dir.mkdir(parents=True, exist_ok=True)

    for item in work:
        for spec in item.specs:
            if out_dir is not None:
                path = serializer.write_spec(spec, out_dir)
                log.info(f"{spec.image_ref} -> {path}")
            else:
                sys.stdout.write(f"# {item.label}\n")
                sys.stdout.write(serializer.render_spec(spec))
                sys.stdout.write("---\n")
    if not work:
        log.warn("no images with shared tags")
    return 0


_DISPATCHERS: dict[str, callable] = {
    "publish": _dispatch_publish,
    "specs": _dispatch_specs,
}


# ── Entry point ───────────────────────────────────────────────────────

def main(argv: list[str] | None = None) -> None:
    """Parse arguments and dispatch to subcommand.

    Parameters
    ----------
    argv:
        Argument list for testing.  Defaults to ``sys.argv[1:]``.
    """
    parser = _make_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        log.set_verbose(True)
        log.debug("verbose mode enabled")

    if args.command is None:
        parser.print_help(sys.stderr)
        sys.exit(2)

    dispatcher = _DISPATCHERS.get(args.command)
    if dispatcher is None:
        log.error(f"unknown command: {args.command}")
        sys.exit(2)

    try:
        rc = dispatcher(args)
    except KeyboardInterrupt:
        log.warn("interrupted")
        sys.exit(130)
    except PublishError as exc:
        log.error(f"{args.command} failed: {exc}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)

    sys.exit(rc)
