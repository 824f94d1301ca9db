"""Error taxonomy for mlpublish.

Every fatal condition the engine can hit is a :class:`PublishError`
subclass so the CLI can report it uniformly.  Nothing here is ever
swallowed: a partially-published, partially-recorded store is worse
than a clean abort.
"""

from __future__ import annotations


class PublishError(Exception):
    """Base class for all mlpublish failures."""


class ConfigError(PublishError):
    """Raised when the config or store document is unreadable or malformed."""


class GroupingError(PublishError):
    """Raised when an image's tags cannot be grouped into manifest specs."""

    def __init__(self, repo: str, image: str, message: str) -> None:
        self.repo = repo
        self.image = image
        super().__init__(f"{repo} [{image}]: {message}")


class ToolError(PublishError):
    """Raised when a manifest-tool invocation fails or times out.

    *destination* is the manifest-list reference being published and
    *image* the ``repo [shared tags]`` label of the image it belongs to.
    """

    def __init__(
        self,
        cmd: list[str],
        returncode: int | None,
        stderr: str,
        *,
        destination: str | None = None,
        image: str | None = None,
    ) -> None:
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr
        self.destination = destination
        self.image = image
        rc = "timeout" if returncode is None else f"rc={returncode}"
        where = f" ({destination})" if destination else ""
        prefix = f"{image}: " if image else ""
        super().__init__(
            f"{prefix}Command failed{where} ({rc}): {' '.join(cmd)}\n{stderr}"
        )

    def with_context(self, *, destination: str, image: str | None = None) -> ToolError:
        """Return a copy of this error naming *destination* and *image*."""
        return ToolError(
            self.cmd, self.returncode, self.stderr,
            destination=destination, image=image,
        )


class PersistenceError(PublishError):
    """Raised when the build-result store cannot be written back."""
