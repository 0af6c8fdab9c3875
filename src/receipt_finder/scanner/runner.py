"""
Scan entry points.

`scan()` is the coroutine for callers that own an event loop; `run_scan()`
wraps it for synchronous callers. Both wait for background persistence
before returning.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from receipt_finder.config import Config
from receipt_finder.scanner.orchestrator import (
    AdapterFactory,
    ProgressCallback,
    ScanOrchestrator,
    ScanOutcome,
)
from receipt_finder.schemas.scan_models import ReceiptRequest, ScanSession
from receipt_finder.storage.local import ReceiptStorage


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


async def scan(
    requests: Sequence[ReceiptRequest],
    sessions: Sequence[ScanSession],
    on_progress: ProgressCallback | None = None,
    config: Config | None = None,
    storage: ReceiptStorage | None = None,
    adapter_factory: AdapterFactory | None = None,
) -> ScanOutcome:
    """
    Scan all sessions for evidence and wait until matched files are stored.

    Args:
        requests: Expected transactions; status is updated in place
        sessions: Authenticated provider connections
        on_progress: Called with (message, percent, found_count, pdf_count)
        config: Configuration (defaults apply when omitted)
        storage: Storage collaborator for matched files
        adapter_factory: Maps a session to its adapters

    Returns:
        ScanOutcome
    """
    config = config or Config()
    config.ensure_valid()
    orchestrator = ScanOrchestrator(config=config, storage=storage, adapter_factory=adapter_factory)
    outcome = await orchestrator.scan(requests, sessions, on_progress)
    await orchestrator.drain()
    return outcome


def run_scan(
    requests: Sequence[ReceiptRequest],
    sessions: Sequence[ScanSession],
    on_progress: ProgressCallback | None = None,
    config: Config | None = None,
    storage: ReceiptStorage | None = None,
    adapter_factory: AdapterFactory | None = None,
) -> ScanOutcome:
    """Synchronous wrapper around scan()."""
    return asyncio.run(
        scan(
            requests,
            sessions,
            on_progress=on_progress,
            config=config,
            storage=storage,
            adapter_factory=adapter_factory,
        )
    )
