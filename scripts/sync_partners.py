"""Run a partner reconciliation from cron or a systemd timer.

Example usages::

    # Every active contract, sequentially.
    python -m scripts.sync_partners

    # A single contract.
    python -m scripts.sync_partners --tenant-id 3
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from app.core.config import get_settings
from app.core.logging import configure_logging
from app.dependencies import (
    close_shared_clients,
    get_partner_sync_service,
    get_tenant_repository,
)
from app.schemas import SyncRunResult

EXIT_OK = 0
EXIT_SYNC_FAILED = 1
EXIT_UNKNOWN_TENANT = 4

logger = logging.getLogger("scripts.sync_partners")


async def _run(tenant_id: Optional[int]) -> Optional[List[SyncRunResult]]:
    service = get_partner_sync_service()
    try:
        if tenant_id is None:
            return await service.sync_all_active_tenants()
        tenant = await get_tenant_repository().get_by_id(tenant_id)
        if tenant is None:
            return None
        return [await service.sync_tenant(tenant.id, tenant.label)]
    finally:
        await close_shared_clients()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Reconcile ERP partners into the local database."
    )
    parser.add_argument(
        "--tenant-id",
        type=int,
        default=None,
        help="Only sync this contract (default: every active contract).",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    configure_logging(get_settings().log_level)

    results = asyncio.run(_run(args.tenant_id))
    if results is None:
        print(f"Contract {args.tenant_id} not found.", file=sys.stderr)
        return EXIT_UNKNOWN_TENANT

    print(json.dumps([result.model_dump(mode="json") for result in results], indent=2))
    if all(result.success for result in results):
        return EXIT_OK
    logger.error(
        "%s of %s partner syncs failed",
        sum(1 for result in results if not result.success),
        len(results),
    )
    return EXIT_SYNC_FAILED


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
