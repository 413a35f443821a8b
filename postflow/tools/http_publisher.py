"""
Async HTTP Platform Publisher.

Uses ``httpx`` to POST a job's formatted post to the publishing endpoint
configured for its platform (``publisher_endpoints`` in settings, or
``POSTFLOW_ENDPOINT_<PLATFORM>``).  The endpoint answers with JSON
containing the platform's post id.

Transport errors (connection resets, read timeouts) are retried with
exponential backoff inside one attempt; every other failure is returned as
a failed :class:`~postflow.scheduling.models.PublishResult` so the
scheduler applies its own retry policy.
"""

import logging
import os
from typing import Any, Dict, Optional

import httpx

from postflow.exceptions import PublishError, RetryExhaustedError
from postflow.scheduling.models import Job, PublishResult
from postflow.tools.platform_formats import format_content, get_platform_format
from postflow.utils import with_retry

logger = logging.getLogger(__name__)


class HttpPlatformPublisher:
    """Publishes jobs by POSTing them to per-platform HTTP endpoints.

    Args:
        endpoints: Mapping of platform identifier to endpoint URL.
        token: Bearer token sent with every request.  Falls back to the
            ``POSTFLOW_PUBLISHER_TOKEN`` environment variable.
        timeout: Per-request timeout in seconds.
        transport: Optional ``httpx`` transport (tests use
            ``httpx.MockTransport``).

    Usage::

        publisher = HttpPlatformPublisher(settings.publisher_endpoints)
        result = await publisher.publish(job)
    """

    def __init__(
        self,
        endpoints: Dict[str, str],
        token: Optional[str] = None,
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.endpoints = {k.lower(): v for k, v in endpoints.items()}
        self.token: str = token or os.environ.get("POSTFLOW_PUBLISHER_TOKEN", "")
        self.timeout = timeout
        self._transport = transport

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def build_payload(self, job: Job) -> Dict[str, Any]:
        """Request body for *job*, with content adapted to its platform."""
        content = job.content or ""
        if content and get_platform_format(job.platform) is not None:
            content = format_content(content, job.platform)
        return {
            "job_id": job.id,
            "content_ref": job.content_ref,
            "platform": job.platform,
            "content": content,
            "media_files": list(job.media_files),
            "scheduled_time": job.scheduled_time.isoformat(),
        }

    @with_retry(max_attempts=3, base_delay=1.0, retryable_exceptions=(httpx.TransportError,))
    async def _post(self, url: str, payload: Dict[str, Any]) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            return await client.post(url, json=payload, headers=self._headers())

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    async def publish(self, job: Job) -> PublishResult:
        """Publish *job* to its platform.

        Returns:
            ``PublishResult.ok(post_id)`` on a 2xx answer, a failed
            result otherwise.
        """
        url = self.endpoints.get(job.platform.lower())
        if not url:
            return PublishResult.failure(f"No publishing endpoint configured for platform '{job.platform}'")

        try:
            response = await self._post(url, self.build_payload(job))
            post_id = self._parse_response(response)
        except RetryExhaustedError as exc:
            logger.warning("[PUBLISHER] Transport failure for job %s: %s", job.id, exc.last_error)
            return PublishResult.failure(f"Transport error: {exc.last_error}")
        except PublishError as exc:
            logger.warning("[PUBLISHER] Job %s rejected by %s: %s", job.id, job.platform, exc)
            return PublishResult.failure(str(exc))

        logger.info("[PUBLISHER] Job %s published to %s (post_id=%s)", job.id, job.platform, post_id)
        return PublishResult.ok(post_id)

    @staticmethod
    def _parse_response(response: httpx.Response) -> Optional[str]:
        """Extract the platform post id from a response.

        Raises:
            PublishError: On non-2xx status or an explicit error body.
        """
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if response.status_code >= 400:
            detail = body.get("error") or response.text[:200] or response.reason_phrase
            raise PublishError(f"HTTP {response.status_code}: {detail}")
        if body.get("success") is False:
            raise PublishError(body.get("error") or "Platform reported failure")

        post_id = body.get("post_id") or body.get("id")
        return str(post_id) if post_id is not None else None


__all__ = [
    "HttpPlatformPublisher",
]
