"""
Scanner configuration.

Provider behaviour, OCR, verification policy and storage, loaded from an
optional YAML file with environment overrides on top.

Key invariants:
- Scoring thresholds live in the matching engine; only verification policy
  and provider behaviour are tunable here
- Provider credentials are never part of the config file; they arrive with
  each ScanSession
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class ProviderConfig:
    """HTTP behaviour shared by all provider adapters."""

    # Default per-call timeout (seconds)
    timeout_seconds: float = 10.0
    # Timeout for list/search calls
    list_timeout_seconds: float = 8.0
    # Timeout for paged list calls
    paged_timeout_seconds: float = 15.0
    # Requests (or date groups) searched concurrently per batch
    batch_size: int = 5
    # Outlook groups searched concurrently per batch
    group_batch_size: int = 4
    # Days searched on each side of the expected date
    search_window_days: int = 5
    # Upper bound for a Retry-After wait (seconds)
    max_retry_after_seconds: float = 30.0
    # Maximum pages followed for paged listings
    max_pages: int = 5
    # Google Ads developer token (Google Ads lookups are skipped without it)
    google_ads_developer_token: str | None = None


@dataclass
class OCRConfig:
    """OCR fallback for documents without a text layer."""

    enabled: bool = True
    # Tesseract language string
    languages: str = "eng+fin+swe"
    # Only receipt-sized PDFs are rasterized
    max_pages: int = 3
    # Rasterization zoom factor (2.0 = 144 dpi)
    zoom: float = 2.0


@dataclass
class VerificationConfig:
    """Escalation policy used when content and metadata disagree."""

    # Content score needed to count as verified
    content_threshold: int = 50
    # Metadata confidence above which a failed extraction is trusted anyway
    metadata_trust_threshold: int = 85
    # Extracted text longer than this is "substantial"
    substantial_text_chars: int = 50


@dataclass
class StorageConfig:
    """Local storage for matched evidence files."""

    enabled: bool = False
    directory: Path = field(default_factory=lambda: Path("data/receipts"))


@dataclass
class Config:
    """Top-level scanner configuration."""

    providers: ProviderConfig = field(default_factory=ProviderConfig)
    ocr: OCRConfig = field(default_factory=OCRConfig)
    verification: VerificationConfig = field(default_factory=VerificationConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if self.providers.batch_size < 1:
            errors.append("providers.batch_size must be >= 1")
        if self.providers.group_batch_size < 1:
            errors.append("providers.group_batch_size must be >= 1")
        if self.providers.timeout_seconds <= 0:
            errors.append("providers.timeout_seconds must be > 0")
        if self.providers.search_window_days < 0:
            errors.append("providers.search_window_days must be >= 0")

        if not 0 <= self.verification.content_threshold <= 100:
            errors.append("verification.content_threshold must be within 0-100")
        if not 0 <= self.verification.metadata_trust_threshold <= 100:
            errors.append("verification.metadata_trust_threshold must be within 0-100")

        if self.ocr.enabled and not self.ocr.languages:
            errors.append("ocr.languages is required when OCR is enabled")

        return errors

    def ensure_valid(self) -> None:
        """Raise ConfigValidationError if validate() reports problems."""
        errors = self.validate()
        if errors:
            raise ConfigValidationError("; ".join(errors))


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - RECEIPT_FINDER_TIMEOUT (per-call timeout in seconds)
    - RECEIPT_FINDER_BATCH_SIZE
    - RECEIPT_FINDER_OCR_ENABLED (true/false)
    - RECEIPT_FINDER_STORAGE_DIR (enables local storage)
    - GOOGLE_ADS_DEVELOPER_TOKEN
    - TESSERACT_LANG
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    # Provider config
    provider_data = data.get("providers", {})
    providers = ProviderConfig(
        timeout_seconds=float(
            os.environ.get("RECEIPT_FINDER_TIMEOUT", provider_data.get("timeout_seconds", 10.0))
        ),
        list_timeout_seconds=float(provider_data.get("list_timeout_seconds", 8.0)),
        paged_timeout_seconds=float(provider_data.get("paged_timeout_seconds", 15.0)),
        batch_size=int(
            os.environ.get("RECEIPT_FINDER_BATCH_SIZE", provider_data.get("batch_size", 5))
        ),
        group_batch_size=int(provider_data.get("group_batch_size", 4)),
        search_window_days=int(provider_data.get("search_window_days", 5)),
        max_retry_after_seconds=float(provider_data.get("max_retry_after_seconds", 30.0)),
        max_pages=int(provider_data.get("max_pages", 5)),
        google_ads_developer_token=os.environ.get(
            "GOOGLE_ADS_DEVELOPER_TOKEN", provider_data.get("google_ads_developer_token")
        ),
    )

    # OCR config
    ocr_data = data.get("ocr", {})
    ocr_enabled_env = os.environ.get("RECEIPT_FINDER_OCR_ENABLED", "").lower()
    ocr_enabled = ocr_data.get("enabled", True)
    if ocr_enabled_env == "true":
        ocr_enabled = True
    elif ocr_enabled_env == "false":
        ocr_enabled = False

    ocr = OCRConfig(
        enabled=ocr_enabled,
        languages=os.environ.get("TESSERACT_LANG", ocr_data.get("languages", "eng+fin+swe")),
        max_pages=int(ocr_data.get("max_pages", 3)),
        zoom=float(ocr_data.get("zoom", 2.0)),
    )

    # Verification policy
    verification_data = data.get("verification", {})
    verification = VerificationConfig(
        content_threshold=int(verification_data.get("content_threshold", 50)),
        metadata_trust_threshold=int(verification_data.get("metadata_trust_threshold", 85)),
        substantial_text_chars=int(verification_data.get("substantial_text_chars", 50)),
    )

    # Storage
    storage_data = data.get("storage", {})
    storage_dir_env = os.environ.get("RECEIPT_FINDER_STORAGE_DIR", "")
    storage = StorageConfig(
        enabled=bool(storage_dir_env) or storage_data.get("enabled", False),
        directory=Path(storage_dir_env or storage_data.get("directory", "data/receipts")),
    )

    return Config(
        providers=providers,
        ocr=ocr,
        verification=verification,
        storage=storage,
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Receipt scanner configuration
#
# Provider credentials are NOT configured here: every scan receives its
# sessions (identity + bearer token) from the caller.

providers:
  timeout_seconds: 10          # Per-call timeout
  list_timeout_seconds: 8      # Search/list calls
  paged_timeout_seconds: 15    # Paged listings
  batch_size: 5                # Requests searched concurrently per batch
  group_batch_size: 4          # Outlook date groups per batch
  search_window_days: 5        # +/- days around the expected date
  max_retry_after_seconds: 30  # Cap for HTTP 429 Retry-After waits
  max_pages: 5                 # Pages followed for paged listings
  google_ads_developer_token: null

ocr:
  enabled: true
  languages: "eng+fin+swe"     # Tesseract languages
  max_pages: 3                 # Only OCR receipt-sized PDFs
  zoom: 2.0

# Escalation policy when PDF content disagrees with email metadata
verification:
  content_threshold: 50        # Content score needed to verify
  metadata_trust_threshold: 85 # Trust metadata above this if amounts don't contradict
  substantial_text_chars: 50   # Text longer than this must verify

storage:
  enabled: false
  directory: "data/receipts"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
