"""Utility for verifying the sync service's environment configuration.

The tool performs three checks:

1. It instantiates ``AppSettings`` from the provided ``.env`` file, surfacing
   missing or malformed entries (for example the credential encryption
   secret) before the API or the scheduled sync fail at runtime.
2. It applies cross-field rules pydantic cannot express per field, such as
   the DynamoDB cache backend needing a table name, or the in-memory cache
   being unsafe outside development because it cannot coordinate token
   refreshes between processes.
3. It can record and verify a checksum for the ``.env`` file so unexpected
   edits are detected.

Example usages::

    python -m scripts.check_env record --env-file /opt/erp-sync/.env \
        --hash-file /opt/erp-sync/.env.sha256

    python -m scripts.check_env verify --env-file /opt/erp-sync/.env \
        --hash-file /opt/erp-sync/.env.sha256

    python -m scripts.check_env show --env-file /opt/erp-sync/.env
"""

from __future__ import annotations

import argparse
import hashlib
import json
import sys
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from app.core.config import AppSettings, _load_env_file

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_CHECKSUM_ERROR = 3
EXIT_RUNTIME_ERROR = 5


class ConfigurationError(Exception):
    """Raised when settings load but contradict each other."""


def _compute_hash(env_file: Path) -> str:
    return hashlib.sha256(env_file.read_bytes()).hexdigest()


def _check_consistency(settings: AppSettings) -> None:
    cache = settings.cache
    if cache.backend == "dynamodb" and not cache.dynamodb_table_name:
        raise ConfigurationError(
            "CACHE_BACKEND=dynamodb requires CACHE_DYNAMODB_TABLE to be set."
        )
    if cache.backend == "memory" and settings.environment != "development":
        raise ConfigurationError(
            "CACHE_BACKEND=memory cannot share tokens or locks between processes; "
            "use sqlite, redis or dynamodb outside development."
        )
    token = settings.token
    if token.lock_wait_seconds <= token.lock_poll_seconds:
        raise ConfigurationError(
            "TOKEN_LOCK_WAIT_SECONDS must be larger than TOKEN_LOCK_POLL_SECONDS."
        )
    login_budget = token.login_budget_seconds(settings.erp.login_timeout_seconds)
    if token.lock_ttl_seconds <= login_budget:
        raise ConfigurationError(
            f"TOKEN_LOCK_TTL_SECONDS ({token.lock_ttl_seconds:g}) must exceed the worst-case "
            f"login time of {login_budget:g}s; otherwise the refresh lock can expire "
            "while its holder is still logging in."
        )


def _load_settings(env_file: Path) -> AppSettings:
    """Load settings from the env file and apply cross-field rules."""
    _load_env_file(str(env_file))
    settings = AppSettings(_env_file=str(env_file))  # type: ignore[call-arg]
    _check_consistency(settings)
    return settings


def _summary(settings: AppSettings) -> dict:
    """Non-secret view of the effective configuration."""
    return {
        "environment": settings.environment,
        "erp_base_url": str(settings.erp.base_url),
        "cache_backend": settings.cache.backend,
        "database_path": settings.database.path,
        "token_ttl_seconds": settings.token.ttl_seconds,
        "sync_batch_size": settings.sync.batch_size,
        "sync_tenant_delay_seconds": settings.sync.tenant_delay_seconds,
    }


def _print_summary(settings: AppSettings) -> int:
    print(json.dumps(_summary(settings), indent=2))
    return EXIT_OK


def _record_checksum(env_file: Path, hash_file: Path) -> int:
    checksum = _compute_hash(env_file)
    hash_file.write_text(f"{checksum}\n", encoding="utf-8")
    print(f"Recorded checksum to {hash_file} ({checksum})")
    return EXIT_OK


def _verify_checksum(env_file: Path, hash_file: Path) -> int:
    """Compare the current checksum to the recorded baseline."""
    if not hash_file.exists():
        print(
            f"Expected checksum file {hash_file} is missing. "
            "Re-run with the 'record' command to establish a baseline.",
            file=sys.stderr,
        )
        return EXIT_RUNTIME_ERROR

    expected = hash_file.read_text(encoding="utf-8").strip()
    actual = _compute_hash(env_file)
    if expected == actual:
        print("Environment checksum OK.")
        return EXIT_OK

    print(
        "Environment checksum mismatch!\n"
        f"  expected: {expected}\n"
        f"  actual:   {actual}\n"
        "Investigate recent changes before restarting the sync service.",
        file=sys.stderr,
    )
    return EXIT_CHECKSUM_ERROR


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Validate sync service settings and detect .env drift."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_env_file(subparser: argparse.ArgumentParser) -> None:
        subparser.add_argument(
            "--env-file",
            default=".env",
            type=Path,
            help="Path to the environment file (default: .env in the repo root).",
        )

    for name, help_text in (
        ("record", "Validate settings and store the checksum baseline."),
        ("verify", "Validate settings and compare the checksum with the baseline."),
    ):
        subparser = subparsers.add_parser(name, help=help_text)
        add_env_file(subparser)
        subparser.add_argument("--hash-file", required=True, type=Path)

    add_env_file(subparsers.add_parser("check", help="Validate settings only."))
    add_env_file(
        subparsers.add_parser("show", help="Validate and print non-secret settings.")
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    env_file: Path = args.env_file
    if not env_file.exists():
        print(
            f"Environment file {env_file} does not exist. "
            "Ensure the path is correct or create it before running this tool.",
            file=sys.stderr,
        )
        return EXIT_RUNTIME_ERROR

    try:
        settings = _load_settings(env_file)
    except ValidationError as exc:
        print(
            "Settings validation failed. Missing or invalid values detected:\n"
            f"{exc.json(indent=2)}",
            file=sys.stderr,
        )
        return EXIT_VALIDATION_ERROR
    except ConfigurationError as exc:
        print(f"Inconsistent settings: {exc}", file=sys.stderr)
        return EXIT_VALIDATION_ERROR
    except Exception as exc:  # pylint: disable=broad-except
        print(f"Unexpected error during validation: {exc}", file=sys.stderr)
        return EXIT_RUNTIME_ERROR

    handlers: dict[str, Callable[[], int]] = {
        "record": lambda: _record_checksum(env_file, args.hash_file),
        "verify": lambda: _verify_checksum(env_file, args.hash_file),
        "check": lambda: EXIT_OK,
        "show": lambda: _print_summary(settings),
    }
    return handlers[args.command]()


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
