"""
Scan orchestrator.

Sessions are scanned one after another. Within a session every adapter runs
as its own task and puts scan events on a queue; the orchestrator drains
the queue and decides, event by event, whether a request gets its evidence.

Per-request life cycle within one run:
    UNASSIGNED -> claimed (metadata >= POSSIBLE, evidence being fetched)
               -> ASSIGNED (terminal)       on verified evidence
               -> UNASSIGNED                on fetch/verification failure
Requests still unassigned after all sessions end up NOT_FOUND.

Key invariants:
- A request is assigned at most once per run; first accepted match wins
- Candidates for one request are materialized one at a time; a candidate
  waiting on the claim is tried only if the request is still unassigned
- Provider failures degrade to "no candidates" and never abort the run
- Reported progress never decreases and ends at 100
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from receipt_finder.config import Config
from receipt_finder.extractors.html_receipt import analyze_html_receipt
from receipt_finder.matching.engine import MatchingEngine
from receipt_finder.providers.azure_billing import AzureBillingAdapter
from receipt_finder.providers.base import (
    BillingAdapter,
    MailAdapter,
    ProviderAuthError,
    ProviderClient,
    ProviderError,
)
from receipt_finder.providers.gmail import GmailAdapter
from receipt_finder.providers.google_ads import GoogleAdsAdapter
from receipt_finder.providers.meta_ads import MetaAdsAdapter
from receipt_finder.providers.outlook import OutlookAdapter
from receipt_finder.rendering.receipt_pdf import render_billing_receipt, render_html_receipt
from receipt_finder.schemas.scan_events import (
    AdapterFinished,
    BillingRecordFound,
    CandidateFound,
    ScanEvent,
    SearchProgress,
)
from receipt_finder.schemas.scan_models import (
    BillingRecord,
    Candidate,
    MatchResult,
    MatchStatus,
    ReceiptRequest,
    ScanSession,
)
from receipt_finder.storage.local import LocalDirectoryStorage, ReceiptStorage, StorageError
from receipt_finder.verification.verifier import ContentVerifier

logger = logging.getLogger(__name__)

# (message, percent, found_count, pdf_count)
ProgressCallback = Callable[[str, int, int, int], None]
AdapterFactory = Callable[[ScanSession, Config], list[ProviderClient]]

NOT_FOUND_DETAIL = "No matching email found"


def build_adapters(session: ScanSession, config: Config) -> list[ProviderClient]:
    """Adapters to run for one session, by provider."""
    token = session.access_token or ""
    providers = config.providers

    if session.provider == "google":
        adapters: list[ProviderClient] = [GmailAdapter(token, config=providers)]
        if providers.google_ads_developer_token:
            adapters.append(
                GoogleAdsAdapter(token, providers.google_ads_developer_token, config=providers)
            )
        return adapters
    if session.provider == "azure-ad":
        return [OutlookAdapter(token, config=providers), AzureBillingAdapter(token, config=providers)]
    if session.provider == "facebook":
        return [MetaAdsAdapter(token, config=providers)]

    logger.warning("Unsupported provider %r, session skipped", session.provider)
    return []


@dataclass
class ScanOutcome:
    """Result of one scan run."""

    matches: list[MatchResult]
    files: dict[str, bytes]
    found_count: int = 0
    pdf_count: int = 0


@dataclass
class _RunState:
    """Mutable state of one scan invocation, touched only from the event loop."""

    requests: list[ReceiptRequest]
    total_steps: int
    on_progress: ProgressCallback | None = None
    assigned: set[str] = field(default_factory=set)
    claims: dict[str, asyncio.Lock] = field(default_factory=dict)
    files: dict[str, bytes] = field(default_factory=dict)
    matches: dict[str, MatchResult] = field(default_factory=dict)
    found_count: int = 0
    pdf_count: int = 0
    percent: int = 0
    completed_steps: float = 0.0

    def is_open(self, request_id: str) -> bool:
        return request_id not in self.assigned

    def claim(self, request_id: str) -> asyncio.Lock:
        """Lock serializing evidence materialization for one request."""
        lock = self.claims.get(request_id)
        if lock is None:
            lock = self.claims[request_id] = asyncio.Lock()
        return lock

    def report(self, message: str, percent: int | None = None) -> None:
        if percent is None:
            if self.total_steps:
                percent = int(100 * self.completed_steps / self.total_steps)
            else:
                percent = 0
            # 100 is reserved for the final report
            percent = min(percent, 99)
        self.percent = max(self.percent, percent)
        if self.on_progress is None:
            return
        try:
            self.on_progress(message, self.percent, self.found_count, self.pdf_count)
        except Exception:
            logger.exception("Progress callback failed")


class ScanOrchestrator:
    """Runs the adapters of every session and assigns evidence to requests."""

    def __init__(
        self,
        config: Config | None = None,
        verifier: ContentVerifier | None = None,
        storage: ReceiptStorage | None = None,
        adapter_factory: AdapterFactory | None = None,
        engine: MatchingEngine | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            config: Configuration (defaults apply when omitted).
            verifier: Content verifier; built from config when omitted.
            storage: Storage collaborator; a local directory storage is used
                when none is given and config.storage is enabled.
            adapter_factory: Maps a session to its adapters.
            engine: Matching engine for metadata scoring and billing matches.
        """
        self.config = config or Config()
        self.verifier = verifier or ContentVerifier.from_config(self.config)
        if storage is None and self.config.storage.enabled:
            storage = LocalDirectoryStorage(self.config.storage.directory)
        self.storage = storage
        self.adapter_factory = adapter_factory or build_adapters
        self.engine = engine or MatchingEngine()
        self._background: set[asyncio.Task] = set()

    async def scan(
        self,
        requests: Sequence[ReceiptRequest],
        sessions: Sequence[ScanSession],
        on_progress: ProgressCallback | None = None,
    ) -> ScanOutcome:
        """
        Scan all sessions for evidence of the given requests.

        Persisting matched files continues in the background after this
        returns; await drain() before treating them as stored.

        Args:
            requests: Expected transactions; their status is updated in place
            sessions: Authenticated provider connections
            on_progress: Called with (message, percent, found_count, pdf_count)

        Returns:
            ScanOutcome with one MatchResult per request and the matched files
        """
        valid_sessions = []
        for session in sessions:
            if session.is_valid:
                valid_sessions.append(session)
            else:
                logger.warning("Skipping session %s: missing identity or token", session.provider)

        run = _RunState(
            requests=list(requests),
            total_steps=len(valid_sessions) * len(requests),
            on_progress=on_progress,
        )
        logger.info(
            "Starting scan: %d requests, %d sessions", len(run.requests), len(valid_sessions)
        )
        run.report("Starting scan...", 0)

        for index, session in enumerate(valid_sessions):
            run.completed_steps = index * len(run.requests)
            run.report(f"Scanning {session.provider} ({session.identity})...")
            await self._scan_session(run, session)
            run.completed_steps = (index + 1) * len(run.requests)
            run.report(f"Finished {session.provider} ({session.identity})")

        run.report("Finalizing results...", 100)

        matches = []
        for request in run.requests:
            result = run.matches.get(request.id)
            if result is None:
                result = MatchResult(
                    request_id=request.id,
                    candidate_id=None,
                    confidence=0,
                    status=MatchStatus.NOT_FOUND,
                    trace=[NOT_FOUND_DETAIL],
                )
                request.apply_match(result)
            matches.append(result)

        logger.info(
            "Scan complete: %d/%d found, %d PDFs",
            run.found_count,
            len(run.requests),
            run.pdf_count,
        )
        return ScanOutcome(
            matches=matches,
            files=dict(run.files),
            found_count=run.found_count,
            pdf_count=run.pdf_count,
        )

    async def drain(self) -> None:
        """Wait until every background persist has finished."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _scan_session(self, run: _RunState, session: ScanSession) -> None:
        adapters = self.adapter_factory(session, self.config)
        if not adapters:
            return

        queue: asyncio.Queue[tuple[ProviderClient, ScanEvent]] = asyncio.Queue()
        adapter_tasks = [
            asyncio.create_task(self._run_adapter(adapter, run.requests, queue))
            for adapter in adapters
        ]
        handlers: set[asyncio.Task] = set()
        fractions = {adapter.name: 0.0 for adapter in adapters}
        session_start = run.completed_steps
        running = len(adapter_tasks)

        def advance(adapter_name: str, fraction: float) -> None:
            fractions[adapter_name] = max(fractions.get(adapter_name, 0.0), fraction)
            done = sum(fractions.values()) / len(fractions)
            run.completed_steps = session_start + done * len(run.requests)

        try:
            while running:
                adapter, event = await queue.get()
                if isinstance(event, AdapterFinished):
                    running -= 1
                    advance(event.adapter, 1.0)
                    run.report(f"{event.adapter} finished")
                elif isinstance(event, SearchProgress):
                    advance(event.adapter, event.completed / event.total if event.total else 1.0)
                    run.report(event.message or f"Searching {event.adapter}...")
                elif isinstance(event, CandidateFound) and isinstance(adapter, MailAdapter):
                    task = asyncio.create_task(
                        self._handle_candidate(run, adapter, event.request, event.candidate)
                    )
                    handlers.add(task)
                elif isinstance(event, BillingRecordFound) and isinstance(adapter, BillingAdapter):
                    task = asyncio.create_task(
                        self._handle_billing_record(run, adapter, event.record)
                    )
                    handlers.add(task)

            if handlers:
                await asyncio.gather(*handlers)
        finally:
            for task in [*adapter_tasks, *handlers]:
                task.cancel()
            await asyncio.gather(*adapter_tasks, *handlers, return_exceptions=True)
            await asyncio.gather(*(a.aclose() for a in adapters), return_exceptions=True)

    async def _run_adapter(
        self,
        adapter: ProviderClient,
        requests: list[ReceiptRequest],
        queue: asyncio.Queue[tuple[ProviderClient, ScanEvent]],
    ) -> None:
        """Run one adapter; always ends with an AdapterFinished event."""

        async def emit(event: ScanEvent) -> None:
            await queue.put((adapter, event))

        error: str | None = None
        try:
            if isinstance(adapter, MailAdapter):
                await adapter.search(requests, emit)
            elif isinstance(adapter, BillingAdapter):
                await adapter.list_records(requests, emit)
        except ProviderAuthError as e:
            error = str(e)
            logger.error("%s rejected the session credentials: %s", adapter.name, e)
        except ProviderError as e:
            error = str(e)
            logger.warning("%s search failed: %s", adapter.name, e)
        except Exception as e:
            error = str(e)
            logger.exception("%s crashed", adapter.name)
        finally:
            await queue.put((adapter, AdapterFinished(adapter=adapter.name, error=error)))

    async def _handle_candidate(
        self,
        run: _RunState,
        adapter: MailAdapter,
        request: ReceiptRequest,
        candidate: Candidate,
    ) -> None:
        if not run.is_open(request.id):
            return

        result = self.engine.score_metadata(request, candidate)
        if not result.status.is_match:
            return

        async with run.claim(request.id):
            # Another candidate may have won while this one waited
            if not run.is_open(request.id):
                return
            try:
                await self._materialize(run, adapter, request, candidate, result)
            except Exception:
                logger.exception(
                    "Failed to process candidate %s for request %s", candidate.id, request.id
                )

    async def _materialize(
        self,
        run: _RunState,
        adapter: MailAdapter,
        request: ReceiptRequest,
        candidate: Candidate,
        result: MatchResult,
    ) -> bool:
        """Retrieve and verify evidence for a claimed request; commit on success."""
        attachment = candidate.preferred_attachment()
        if attachment is not None:
            try:
                data = await adapter.fetch_attachment(candidate.id, attachment.id)
            except ProviderError as e:
                logger.warning("Attachment fetch failed for %s: %s", candidate.id, e)
                data = b""

            if data:
                outcome = await self.verifier.verify(
                    data, request, result.confidence, attachment.mime_type or "application/pdf"
                )
                if outcome.accepted:
                    result.trace.append(
                        f"Content {outcome.reason.value} (score {outcome.content_score})"
                    )
                    self._commit(run, request, result, data, attachment.name, attachment.is_pdf)
                    return True
                logger.info(
                    "Attachment %s does not verify for request %s (content %d)",
                    attachment.name,
                    request.id,
                    outcome.content_score,
                )

        analysis = analyze_html_receipt(candidate.body_html, request)
        if analysis.is_receipt and candidate.body_html:
            data = await asyncio.to_thread(
                render_html_receipt, candidate.body_html, candidate, request.merchant
            )
            result.trace.append(f"HTML receipt (score {analysis.confidence})")
            self._commit(run, request, result, data, f"email_{candidate.id}.pdf", True)
            return True

        logger.debug("No evidence materialized for request %s from %s", request.id, candidate.id)
        return False

    async def _handle_billing_record(
        self, run: _RunState, adapter: BillingAdapter, record: BillingRecord
    ) -> None:
        while True:
            open_requests = [r for r in run.requests if run.is_open(r.id)]
            request = self.engine.match_billing_record(record, open_requests)
            if request is None:
                return

            async with run.claim(request.id):
                # A mail candidate may have committed while this record waited
                if not run.is_open(request.id):
                    continue
                try:
                    await self._materialize_billing(run, adapter, request, record)
                except Exception:
                    logger.exception("Failed to process billing record %s", record.id)
                return

    async def _materialize_billing(
        self,
        run: _RunState,
        adapter: BillingAdapter,
        request: ReceiptRequest,
        record: BillingRecord,
    ) -> None:
        try:
            data = await adapter.fetch_document(record)
        except ProviderError as e:
            logger.warning("Document download failed for %s: %s", record.id, e)
            data = None
        if not data:
            data = await asyncio.to_thread(render_billing_receipt, record)

        result = MatchResult(
            request_id=request.id,
            candidate_id=record.id,
            confidence=100,
            status=MatchStatus.FOUND,
            trace=[f"Billing record {record.label or record.id} ({record.amount} {record.currency})"],
        )
        self._commit(run, request, result, data, record.file_name, True)

    def _commit(
        self,
        run: _RunState,
        request: ReceiptRequest,
        result: MatchResult,
        data: bytes,
        file_name: str,
        is_pdf: bool,
    ) -> None:
        if request.id in run.assigned:
            return

        run.assigned.add(request.id)
        result.file_name = file_name
        run.files[request.id] = data
        run.matches[request.id] = result
        request.apply_match(result)
        run.found_count += 1
        if is_pdf:
            run.pdf_count += 1

        logger.info(
            "Request %s (%s %s) matched to %s [%s, %d%%]",
            request.id,
            request.merchant,
            request.amount,
            result.candidate_id,
            result.status.value,
            result.confidence,
        )
        run.report(f"Found receipt for {request.merchant}")

        if self.storage is not None:
            task = asyncio.create_task(self._persist(request.id, result, data))
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    async def _persist(self, request_id: str, result: MatchResult, data: bytes) -> None:
        try:
            result.storage_ref = await self.storage.persist(request_id, result.file_name, data)
        except StorageError as e:
            logger.error("Failed to persist file for request %s: %s", request_id, e)
