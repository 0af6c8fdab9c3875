"""
Content verifier.

Decides whether a retrieved document really is the receipt for a request,
and breaks ties when the document disagrees with a strong metadata score.

Escalation policy, in order:
1. Content score at or above the threshold: accept ("verified")
2. Metadata confidence above the trust threshold and the document carries
   no contradicting amount: accept ("metadata_trust")
3. Substantial text that still fails to verify: reject ("content_mismatch")
4. Negligible text (scan without OCR result, empty PDF): accept ("negligible_text")
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from receipt_finder.extractors.router import TextExtractionRouter
from receipt_finder.matching.engine import MatchingEngine

if TYPE_CHECKING:
    from receipt_finder.config import Config, VerificationConfig
    from receipt_finder.schemas.scan_models import ReceiptRequest

logger = logging.getLogger(__name__)


class VerificationReason(str, Enum):
    """Which branch of the escalation policy decided."""

    VERIFIED = "verified"
    METADATA_TRUST = "metadata_trust"
    CONTENT_MISMATCH = "content_mismatch"
    NEGLIGIBLE_TEXT = "negligible_text"


@dataclass(frozen=True)
class VerificationPolicy:
    """Tunable thresholds of the escalation policy."""

    content_threshold: int = 50
    metadata_trust_threshold: int = 85
    substantial_text_chars: int = 50

    @classmethod
    def from_config(cls, config: VerificationConfig) -> VerificationPolicy:
        return cls(
            content_threshold=config.content_threshold,
            metadata_trust_threshold=config.metadata_trust_threshold,
            substantial_text_chars=config.substantial_text_chars,
        )


@dataclass
class VerificationOutcome:
    """Verdict on one retrieved document."""

    accepted: bool
    reason: VerificationReason
    content_score: int
    text_length: int
    hard_amount_mismatch: bool = False
    trace: list[str] = field(default_factory=list)


class ContentVerifier:
    """Extracts document text and applies the escalation policy."""

    def __init__(
        self,
        extractor: TextExtractionRouter | None = None,
        policy: VerificationPolicy | None = None,
        engine: MatchingEngine | None = None,
    ) -> None:
        self.extractor = extractor or TextExtractionRouter()
        self.policy = policy or VerificationPolicy()
        self.engine = engine or MatchingEngine()

    @classmethod
    def from_config(cls, config: Config) -> ContentVerifier:
        """Build a verifier with OCR and policy settings from configuration."""
        extractor = TextExtractionRouter(
            ocr_enabled=config.ocr.enabled,
            ocr_languages=config.ocr.languages,
            ocr_max_pages=config.ocr.max_pages,
            ocr_zoom=config.ocr.zoom,
        )
        return cls(extractor=extractor, policy=VerificationPolicy.from_config(config.verification))

    async def extract_text(self, data: bytes, mime_type: str = "application/pdf") -> str:
        """Extract text off the event loop; failures yield ""."""
        return await asyncio.to_thread(self.extractor.extract_text, data, mime_type)

    async def verify(
        self,
        data: bytes,
        request: ReceiptRequest,
        metadata_confidence: int,
        mime_type: str = "application/pdf",
    ) -> VerificationOutcome:
        """
        Verify a retrieved document against a request.

        Args:
            data: Document bytes
            request: The request the document is proposed for
            metadata_confidence: Confidence from metadata scoring
            mime_type: MIME type of the document

        Returns:
            VerificationOutcome; accepted=False means the tentative claim
            must be released
        """
        text = await self.extract_text(data, mime_type)
        return self.evaluate(text, request, metadata_confidence)

    def evaluate(
        self, text: str, request: ReceiptRequest, metadata_confidence: int
    ) -> VerificationOutcome:
        """Apply the escalation policy to already extracted text."""
        content = self.engine.score_content(text, request)
        text_length = len(text.strip())

        if content.score >= self.policy.content_threshold:
            reason = VerificationReason.VERIFIED
            accepted = True
        elif (
            metadata_confidence > self.policy.metadata_trust_threshold
            and not content.hard_amount_mismatch
        ):
            reason = VerificationReason.METADATA_TRUST
            accepted = True
        elif text_length > self.policy.substantial_text_chars:
            reason = VerificationReason.CONTENT_MISMATCH
            accepted = False
        else:
            reason = VerificationReason.NEGLIGIBLE_TEXT
            accepted = True

        logger.debug(
            "Verification for request %s: %s (content=%d, metadata=%d, text=%d chars)",
            request.id,
            reason.value,
            content.score,
            metadata_confidence,
            text_length,
        )

        return VerificationOutcome(
            accepted=accepted,
            reason=reason,
            content_score=content.score,
            text_length=text_length,
            hard_amount_mismatch=content.hard_amount_mismatch,
            trace=content.trace,
        )
