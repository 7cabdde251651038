"""Command-line entrypoint for the nubridge plugin process."""

import argparse
import io
import logging
import os
import sys

from nubridge.api import serve
from nubridge.settings import PLUGIN_VERSION
from nubridge.settings import BridgeSettings

logger = logging.getLogger(__name__)

ENV_DEBUG: str = "NUBRIDGE_DEBUG"
ENV_LOG_FILE: str = "NUBRIDGE_LOG_FILE"
ENCODING_PREAMBLE: str = "\x04json"
_LOG_FORMAT: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser.

    :returns: Configured parser.
    """
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        prog="nubridge",
        description="Nushell plugin that creates, inspects and calls Python objects.",
    )
    parser.add_argument("--stdio", action="store_true", help="Serve over stdin/stdout (the only transport).")
    parser.add_argument(
        "--preamble",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Write the nushell encoding preamble before the handshake.",
    )
    parser.add_argument("--debug", action="store_true", help=f"Enable debug logging (or set {ENV_DEBUG}=1).")
    parser.add_argument("--log-file", default=None, help=f"Write logs to a file instead of stderr ({ENV_LOG_FILE}).")
    parser.add_argument("--retention-seconds", type=float, default=None, help="Idle time before a handle is swept.")
    parser.add_argument("--sweep-interval-seconds", type=float, default=None, help="Period of the handle sweep.")
    parser.add_argument(
        "--wrap-pipeline-data",
        action="store_true",
        default=None,
        help="Wrap results in a PipelineData envelope.",
    )
    parser.add_argument(
        "--preload",
        action="append",
        default=None,
        metavar="MODULE",
        help="Module name or .py path to load at startup. Repeatable.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {PLUGIN_VERSION}")
    return parser


def configure_logging(debug: bool, log_file: str | None) -> None:
    """Send log records to stderr or a file, never to stdout.

    :param debug: Enable DEBUG level.
    :param log_file: Optional log file path.
    """
    handler: logging.Handler
    if log_file is not None:
        handler = logging.FileHandler(log_file, encoding="utf-8")
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))

    package_logger: logging.Logger = logging.getLogger("nubridge")
    for existing in list(package_logger.handlers):
        package_logger.removeHandler(existing)
        existing.close()
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG if debug is True else logging.WARNING)


def main(argv: list[str] | None = None) -> int:
    """Run the plugin process.

    :param argv: Arguments without the program name; defaults to ``sys.argv[1:]``.
    :returns: Process exit status.
    """
    parser: argparse.ArgumentParser = build_parser()
    args: argparse.Namespace = parser.parse_args(argv)

    debug_env: str = os.environ.get(ENV_DEBUG, "").strip().lower()
    debug: bool = args.debug is True or debug_env in ("1", "true", "yes", "on")
    log_file: str | None = args.log_file if args.log_file is not None else os.environ.get(ENV_LOG_FILE)
    configure_logging(debug, log_file)

    try:
        settings: BridgeSettings = BridgeSettings.from_env(
            retention_seconds=args.retention_seconds,
            sweep_interval_seconds=args.sweep_interval_seconds,
            wrap_pipeline_data=args.wrap_pipeline_data,
            preload_modules=args.preload,
        )
    except ValueError as exc:
        parser.error(str(exc))

    reader = sys.stdin
    if isinstance(reader, io.TextIOWrapper) is True:
        # Undecodable bytes must reach the JSON parser, not end the session.
        reader.reconfigure(errors="replace")
    writer = sys.stdout
    try:
        if args.preamble is True:
            writer.write(ENCODING_PREAMBLE)
            writer.flush()
        serve(settings, reader, writer)
    except OSError:
        logger.exception("Transport failure, exiting")
        return 1
    return 0
