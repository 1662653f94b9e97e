"""Command-line entry point for oci-retag.

Example:
    $ oci-retag ghcr.io/acme/api:build-123 production
    $ oci-retag ghcr.io/acme/api:build-123 production --dry-run
    $ oci-retag localhost:5000/team/app@sha256:3f2a... staging --output=json

Output contract:
    - Success and previews: one line on stdout, prefixed ``[OK]`` or
      ``[DRY-RUN]`` (or the RetagResult as JSON with ``--output=json``).
    - Failures: one ``[FAIL] Error: ...`` line on stderr and a non-zero
      exit code taken from the exception (see oci_retag.errors).
    - Logs go to stderr and never mix with the report on stdout.
"""

from __future__ import annotations

import json
import signal
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version
from pathlib import Path
from types import FrameType

import click
import structlog

from oci_retag.config import get_settings
from oci_retag.errors import OperationCancelledError, RetagError
from oci_retag.report import render_failure
from oci_retag.retag import RetagController
from oci_retag.telemetry import configure_logging, sanitize_error_message

logger = structlog.get_logger(__name__)


def _get_version() -> str:
    """Get the oci-retag package version.

    Returns:
        Version string from package metadata, or 'unknown' if not installed.
    """
    try:
        return get_version("oci-retag")
    except PackageNotFoundError:
        return "unknown"


def _get_exit_code_from_exception(exc: Exception) -> int:
    """Map an exception to the CLI exit code.

    RetagError subclasses carry their own code; anything else is a
    general failure.
    """
    if isinstance(exc, RetagError):
        return exc.exit_code
    return 1


@contextmanager
def _cancel_on_sigterm() -> Iterator[threading.Event]:
    """Yield an event that is set when the process receives SIGTERM.

    The previous handler is restored on exit. Outside the main thread no
    handler can be installed and the event is simply never set.
    """
    event = threading.Event()

    def _handler(signum: int, frame: FrameType | None) -> None:  # noqa: ARG001
        logger.warning("retag_cancel_requested", signal=signum)
        event.set()

    try:
        previous = signal.signal(signal.SIGTERM, _handler)
    except ValueError:
        yield event
        return

    try:
        yield event
    finally:
        signal.signal(signal.SIGTERM, previous)


def _report_failure(exc: Exception, output: str) -> int:
    exit_code = _get_exit_code_from_exception(exc)
    if output == "json":
        click.echo(
            json.dumps(
                {
                    "error": sanitize_error_message(str(exc)),
                    "error_type": type(exc).__name__,
                    "exit_code": exit_code,
                },
                indent=2,
            )
        )
    click.echo(render_failure(exc).line, err=True)
    return exit_code


@click.command(
    name="oci-retag",
    help=(
        "Idempotently point NEW_TAG at the manifest of SOURCE_IMAGE.\n\n"
        "NEW_TAG is created in the source image's repository, or moved if it "
        "already exists. If it already points at the source digest nothing is "
        "written. Layers are never downloaded."
    ),
    epilog="""
Examples:
    $ oci-retag ghcr.io/acme/api:build-123 production
    $ oci-retag ghcr.io/acme/api:build-123 production --dry-run

Exit Codes:
    0   - Success (including no-op and dry run)
    1   - General error
    2   - Invalid image reference or tag
    3   - Source image not found
    4   - Authentication or permission denied
    5   - Registry unavailable after retries
    6   - Unexpected registry response
    7   - Destination tag could not be inspected
    8   - Tag write failed (tag state unknown; re-run to converge)
    130 - Cancelled
""",
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.version_option(
    version=_get_version(),
    prog_name="oci-retag",
    message="%(prog)s %(version)s",
)
@click.argument("source_image", metavar="SOURCE_IMAGE")
@click.argument("new_tag", metavar="NEW_TAG")
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Show what would happen without modifying the registry.",
)
@click.option(
    "--output",
    type=click.Choice(["text", "json"], case_sensitive=False),
    default="text",
    show_default=True,
    help="Output format.",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="YAML configuration file.",
    metavar="PATH",
)
@click.option(
    "--insecure-registry",
    "insecure_registries",
    multiple=True,
    help="Registry host to reach over plain HTTP (repeatable).",
    metavar="HOST",
)
@click.option(
    "--platform",
    default=None,
    help="Platform used to read the creation time of multi-arch images [default: linux/amd64].",
    metavar="OS/ARCH",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Write debug logs to stderr.",
)
def retag_command(
    source_image: str,
    new_tag: str,
    dry_run: bool,
    output: str,
    config_path: Path | None,
    insecure_registries: tuple[str, ...],
    platform: str | None,
    verbose: bool,
) -> None:
    """Point NEW_TAG at SOURCE_IMAGE.

    Args:
        source_image: Source image reference.
        new_tag: Bare destination tag.
        dry_run: Preview without writing.
        output: Output format (text or json).
        config_path: Optional YAML configuration file.
        insecure_registries: Hosts reached over plain HTTP.
        platform: Platform override for multi-arch timestamps.
        verbose: Enable debug logging.
    """
    output = output.lower()

    try:
        settings = get_settings(config_path, platform=platform)
        if insecure_registries:
            settings = settings.model_copy(
                update={
                    "insecure_registries": [
                        *settings.insecure_registries,
                        *insecure_registries,
                    ]
                }
            )
    except RetagError as e:
        sys.exit(_report_failure(e, output))

    configure_logging(
        log_level="DEBUG" if verbose else settings.log_level,
        json_output=settings.log_format == "json",
    )

    with _cancel_on_sigterm() as cancel_event:
        try:
            controller = RetagController.from_settings(settings, cancel_event=cancel_event)
            result = controller.retag(source_image, new_tag, dry_run=dry_run)
        except RetagError as e:
            sys.exit(_report_failure(e, output))
        except KeyboardInterrupt:
            sys.exit(_report_failure(OperationCancelledError("retag interrupted"), output))
        except Exception as e:
            logger.error(
                "retag_command_failed",
                error_type=type(e).__name__,
                error_summary=sanitize_error_message(str(e), max_length=200) or "Unknown error",
            )
            sys.exit(_report_failure(e, output))

    if output == "json":
        click.echo(result.model_dump_json(indent=2))
    else:
        click.echo(result.line)

    sys.exit(0)


def main() -> None:
    """Console script entry point."""
    retag_command()


__all__ = ["main", "retag_command"]
