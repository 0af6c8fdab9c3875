"""
Provider HTTP base client and adapter contracts.

Every external API family (mail or billing) is reached through a
ProviderClient: an httpx.AsyncClient sending the session's bearer token,
with per-call timeouts, a single Retry-After honoring retry on HTTP 429 and
a small exception hierarchy.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Iterable, Sequence
from typing import TYPE_CHECKING, Any, TypeVar

import httpx

from receipt_finder.config import ProviderConfig

if TYPE_CHECKING:
    from receipt_finder.schemas.scan_events import Emit
    from receipt_finder.schemas.scan_models import BillingRecord, Candidate, ReceiptRequest

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProviderError(Exception):
    """Base exception for provider client errors."""

    pass


class ProviderAPIError(ProviderError):
    """API returned an error response."""

    def __init__(self, status_code: int, message: str, response_body: str | None = None):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        super().__init__(f"Provider API error {status_code}: {message}")


class ProviderAuthError(ProviderAPIError):
    """Credential rejected (401/403). The whole session is unusable."""

    pass


class RateLimitError(ProviderAPIError):
    """Still rate limited (429) after the single retry."""

    pass


class ProviderConnectionError(ProviderError):
    """Failed to reach the provider, or the call timed out."""

    pass


def chunked(items: Sequence[T], size: int) -> Iterable[Sequence[T]]:
    """Yield consecutive slices of at most `size` items."""
    for start in range(0, len(items), size):
        yield items[start : start + size]


async def gather_batch(aws: Iterable[Awaitable[Any]]) -> list[Any]:
    """Run one batch concurrently and wait for all of it.

    Auth failures propagate (after the batch settles) so the session can
    be abandoned; other errors have already been logged by the workers.
    """
    results = await asyncio.gather(*aws, return_exceptions=True)
    for result in results:
        if isinstance(result, ProviderAuthError):
            raise result
    for result in results:
        if isinstance(result, Exception):
            logger.error("Batch worker failed: %s", result, exc_info=result)
    return [r for r in results if not isinstance(r, BaseException)]


class ProviderClient:
    """Async HTTP client for one provider account."""

    name = "provider"

    def __init__(
        self,
        access_token: str,
        config: ProviderConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            access_token: Bearer token of the scan session.
            config: Provider behaviour (timeouts, batching, retry cap).
            transport: Optional transport (tests use httpx.MockTransport).
        """
        self.access_token = access_token
        self.config = config or ProviderConfig()
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.config.timeout_seconds),
            transport=transport,
            follow_redirects=True,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _retry_delay(self, response: httpx.Response) -> float:
        raw = response.headers.get("Retry-After", "")
        try:
            delay = float(raw)
        except ValueError:
            delay = 1.0
        return max(0.0, min(delay, self.config.max_retry_after_seconds))

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        authenticated: bool = True,
        timeout: float | None = None,
    ) -> httpx.Response:
        """Make an API request with error handling.

        HTTP 429 is retried exactly once after the Retry-After delay.

        Raises:
            ProviderAuthError: 401/403
            RateLimitError: 429 after the retry
            ProviderAPIError: any other non-2xx status
            ProviderConnectionError: transport failure or timeout
        """
        request_timeout = httpx.Timeout(timeout) if timeout is not None else httpx.USE_CLIENT_DEFAULT
        request_headers = dict(headers or {})
        if authenticated:
            request_headers["Authorization"] = f"Bearer {self.access_token}"

        for attempt in range(2):
            try:
                response = await self._client.request(
                    method,
                    url,
                    params=params,
                    json=json_data,
                    headers=request_headers,
                    timeout=request_timeout,
                )
            except httpx.TimeoutException as e:
                raise ProviderConnectionError(f"Request to {self.name} timed out: {e}") from e
            except httpx.RequestError as e:
                raise ProviderConnectionError(f"Failed to connect to {self.name}: {e}") from e

            if response.status_code == 429 and attempt == 0:
                delay = self._retry_delay(response)
                logger.warning("%s rate limited, retrying once in %.1fs", self.name, delay)
                await asyncio.sleep(delay)
                continue
            break

        if response.is_success:
            return response

        body = response.text
        if response.status_code in (401, 403):
            raise ProviderAuthError(response.status_code, response.reason_phrase, body)
        if response.status_code == 429:
            raise RateLimitError(response.status_code, response.reason_phrase, body)
        raise ProviderAPIError(response.status_code, response.reason_phrase, body)

    async def _get_json(self, url: str, **kwargs: Any) -> dict[str, Any]:
        response = await self._request("GET", url, **kwargs)
        return response.json()

    async def _post_json(self, url: str, **kwargs: Any) -> dict[str, Any]:
        response = await self._request("POST", url, **kwargs)
        return response.json() if response.content else {}

    async def download(self, url: str, authenticated: bool = True) -> bytes:
        """Download raw bytes from a document URL.

        Pre-signed URLs (Azure invoice downloads) must not carry the bearer
        token, so `authenticated=False` leaves it off.
        """
        response = await self._request("GET", url, authenticated=authenticated)
        return response.content


class MailAdapter(ProviderClient, ABC):
    """Searches a mailbox for candidates and fetches their attachments."""

    @abstractmethod
    async def search(self, requests: Sequence[ReceiptRequest], emit: Emit) -> list[Candidate]:
        """
        Search the mailbox for candidates for every request.

        Each candidate is emitted as a CandidateFound event tagged with the
        request it was found for; progress is emitted per batch.

        Args:
            requests: Requests to search for
            emit: Coroutine function receiving scan events

        Returns:
            Candidates found, deduplicated by id
        """
        pass

    @abstractmethod
    async def fetch_attachment(self, candidate_id: str, attachment_id: str) -> bytes:
        """
        Download one attachment.

        Raises:
            ProviderError: If the attachment cannot be retrieved
        """
        pass


class BillingAdapter(ProviderClient, ABC):
    """Lists billing records (invoices, charges) of an account."""

    @abstractmethod
    async def list_records(
        self, requests: Sequence[ReceiptRequest], emit: Emit
    ) -> list[BillingRecord]:
        """
        List billing records relevant to the requests' period.

        Each record is emitted as a BillingRecordFound event.
        """
        pass

    @abstractmethod
    async def fetch_document(self, record: BillingRecord) -> bytes | None:
        """Download (or generate) the document for a matched record."""
        pass


def dedupe_by_id(candidates: Iterable[Candidate]) -> list[Candidate]:
    """Keep the last candidate per id, in first-seen order."""
    unique: dict[str, Candidate] = {}
    for candidate in candidates:
        unique[candidate.id] = candidate
    return list(unique.values())
