"""Command-line and environment configuration for the explorer service."""

from __future__ import annotations

import argparse
import os
import re
from dataclasses import dataclass, replace
from typing import Mapping, Sequence

_U64_MAX = 2**64 - 1
_U64_PATTERN = re.compile(r"\+?[0-9]+")


class MissingSettingError(Exception):
    """A required setting was given neither as an argument nor in the environment."""


@dataclass(frozen=True)
class ExplorerOptions:
    """Settings for the explorer backend."""

    source_db_url: str = ""
    dest_db_url: str = ""
    genesis_json: str = "genesis.json"
    from_height: int | None = None
    to_height: int | None = None
    batch_size: int = 100
    polling_interval_ms: int = 1000


def _parse_u64(text: str) -> int | None:
    if not _U64_PATTERN.fullmatch(text):
        return None
    value = int(text)
    return value if value <= _U64_MAX else None


def _u64_argument(text: str) -> int:
    value = _parse_u64(text)
    if value is None:
        raise argparse.ArgumentTypeError(f"invalid unsigned integer: {text!r}")
    return value


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="penumbra-explorer", description="Penumbra Explorer Backend"
    )
    parser.add_argument("--version", action="version", version="%(prog)s 0.1.0")
    parser.add_argument(
        "-s", "--source-db-url", default="",
        help="The database URL for the source raw events",
    )
    parser.add_argument(
        "-d", "--dest-db-url", default="",
        help="The database URL for the destination compiled events",
    )
    parser.add_argument(
        "--genesis-json", default="genesis.json", help="The genesis JSON file path"
    )
    parser.add_argument(
        "--from-height", type=_u64_argument, default=None,
        help="The height to start processing from (inclusive)",
    )
    parser.add_argument(
        "--to-height", type=_u64_argument, default=None,
        help="The height to process until (inclusive)",
    )
    parser.add_argument(
        "--batch-size", type=_u64_argument, default=100,
        help="The number of blocks to process in a batch",
    )
    parser.add_argument(
        "--polling-interval-ms", type=_u64_argument, default=1000,
        help="The interval in milliseconds to poll for new blocks",
    )
    return parser


def parse_options(argv: Sequence[str] | None = None) -> ExplorerOptions:
    """Parse command-line arguments into options."""
    namespace = _build_parser().parse_args(argv)
    return ExplorerOptions(**vars(namespace))


def apply_environment(
    options: ExplorerOptions, environ: Mapping[str, str]
) -> ExplorerOptions:
    """Fill in and override options from environment variables."""
    changes: dict[str, object] = {}

    for attr, var in (("source_db_url", "SOURCE_DB_URL"), ("dest_db_url", "DEST_DB_URL")):
        if not getattr(options, attr):
            if var not in environ:
                raise MissingSettingError(
                    f"{var} not provided via argument or environment variable"
                )
            changes[attr] = environ[var]

    if "GENESIS_JSON" in environ:
        changes["genesis_json"] = environ["GENESIS_JSON"]

    numeric = (
        ("from_height", "FROM_HEIGHT"),
        ("to_height", "TO_HEIGHT"),
        ("batch_size", "BATCH_SIZE"),
        ("polling_interval_ms", "POLLING_INTERVAL_MS"),
    )
    for attr, var in numeric:
        if var in environ:
            value = _parse_u64(environ[var])
            if value is not None:
                changes[attr] = value

    return replace(options, **changes)


def sensitive_url(url: str) -> str:
    """Hide the credentials part of a URL."""
    scheme_end = url.find("://")
    if scheme_end != -1:
        auth_start = scheme_end + 3
        at = url.find("@", auth_start)
        if at != -1:
            return f"{url[:auth_start]}***REDACTED***{url[at:]}"
    return url


def describe_options(options: ExplorerOptions) -> list[str]:
    """Return log lines describing the configuration, with credentials hidden."""
    return [
        "Configuration:",
        f"  Source DB URL: {sensitive_url(options.source_db_url)}",
        f"  Destination DB URL: {sensitive_url(options.dest_db_url)}",
        f"  Genesis JSON: {options.genesis_json}",
        f"  From Height: {options.from_height}",
        f"  To Height: {options.to_height}",
        f"  Batch Size: {options.batch_size}",
        f"  Polling Interval (ms): {options.polling_interval_ms}",
    ]


def load_options(
    argv: Sequence[str] | None = None, environ: Mapping[str, str] | None = None
) -> ExplorerOptions:
    """Parse arguments and then apply the environment."""
    return apply_environment(
        parse_options(argv), os.environ if environ is None else environ
    )