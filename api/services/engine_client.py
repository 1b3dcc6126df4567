"""HTTP calls to the analysis engine."""

import logging
from typing import Any, Optional

import httpx

from common.errors import GenerationTimeoutError, UpstreamCallError
from common.job_models import ResultRef

logger = logging.getLogger(__name__)

ARTIFACT_PATH = "/api/get-documentation"
ARTIFACT_TIMEOUT_SECONDS = 60.0

# Response keys that describe the call rather than the artifact.
_ENVELOPE_KEYS = {"success", "s3", "error", "message"}


def to_result_ref(response: dict[str, Any]) -> ResultRef:
    """Build a ResultRef from a successful engine response.

    Object-store coordinates go to the ``s3_*`` fields; everything else the
    engine returned (titles, analysis sections, ...) is kept in ``content``.
    """
    content = {k: v for k, v in response.items() if k not in _ENVELOPE_KEYS}
    s3 = response.get("s3") or {}
    return ResultRef(
        s3_key=s3.get("s3_key"),
        s3_bucket=s3.get("s3_bucket"),
        content_size=s3.get("content_size"),
        content=content or None,
    )


class EngineClient:
    """POSTs generation requests to the analysis engine with an explicit timeout."""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=self._transport)

    async def run(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        """POST ``payload`` to ``path`` and return the decoded success response.

        Raises:
            GenerationTimeoutError: the engine did not answer within the deadline
            UpstreamCallError: transport failure, non-2xx status, or ``success: false``
        """
        logger.info("Dispatching to analysis engine: %s%s", self.base_url, path)
        try:
            async with self._client(self.timeout_seconds) as client:
                resp = await client.post(path, json=payload)
        except httpx.TimeoutException as exc:
            raise GenerationTimeoutError(
                f"Analysis engine did not respond within {int(self.timeout_seconds)}s"
            ) from exc
        except httpx.HTTPError as exc:
            raise UpstreamCallError(f"Failed to connect to analysis engine: {exc}") from exc

        logger.info("Analysis engine responded: %d", resp.status_code)
        if resp.is_error:
            raise UpstreamCallError(
                resp.text or f"Analysis engine returned {resp.status_code}",
                status_code=resp.status_code,
            )

        try:
            result = resp.json()
        except ValueError as exc:
            raise UpstreamCallError("Analysis engine returned a non-JSON response") from exc

        if not isinstance(result, dict) or not result.get("success"):
            error = None
            if isinstance(result, dict):
                error = result.get("error") or result.get("message")
            raise UpstreamCallError(error or "Unknown error from analysis engine")
        return result

    async def fetch_artifact(self, ref: ResultRef) -> Optional[str]:
        """Fetch an externally stored artifact. Returns ``None`` if it cannot be read."""
        if not ref.is_external:
            return None
        try:
            async with self._client(ARTIFACT_TIMEOUT_SECONDS) as client:
                resp = await client.post(
                    ARTIFACT_PATH, json={"s3_key": ref.s3_key, "s3_bucket": ref.s3_bucket}
                )
        except httpx.HTTPError as exc:
            logger.warning("Artifact fetch for %s failed: %s", ref.s3_key, exc)
            return None

        if resp.is_error:
            logger.warning("Artifact fetch for %s returned %d", ref.s3_key, resp.status_code)
            return None
        try:
            data = resp.json()
        except ValueError:
            logger.warning("Artifact fetch for %s returned a non-JSON response", ref.s3_key)
            return None
        if not data.get("success"):
            return None
        return data.get("content")
