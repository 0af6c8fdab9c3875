"""
Scan orchestration: sessions -> adapters -> scored, verified assignments.
"""

from .orchestrator import ScanOrchestrator, ScanOutcome, build_adapters
from .runner import run_scan, scan, setup_logging

__all__ = [
    "ScanOrchestrator",
    "ScanOutcome",
    "build_adapters",
    "run_scan",
    "scan",
    "setup_logging",
]
