"""
Remote invocation targets for out-of-process job execution.
"""

from typing import Protocol
from uuid import UUID

import httpx

from riskjobs.config.logging import get_logger
from riskjobs.config.settings import Settings
from riskjobs.v1.core.exceptions import WorkerInvocationError
from riskjobs.v1.jobs.schemas import WorkerEvent

logger = get_logger(__name__)


class RemoteInvoker(Protocol):
    """Hands a job id to a worker without waiting for the job to run."""

    async def invoke(self, job_id: UUID) -> None: ...


class HttpWorkerInvoker:
    """
    Posts the ``{"jobId": ...}`` envelope to a worker endpoint.

    The worker acknowledges with 202 and processes the job in the background,
    so this call returns as soon as the envelope is accepted.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
        token: str | None = None,
    ):
        self.url = url
        self._headers = {"X-Worker-Token": token} if token else {}
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpWorkerInvoker | None":
        if not settings.worker_url:
            return None
        return cls(
            settings.worker_url,
            timeout=settings.worker_timeout_s,
            token=settings.worker_token,
        )

    async def invoke(self, job_id: UUID) -> None:
        envelope = WorkerEvent(job_id=str(job_id)).model_dump(by_alias=True)

        try:
            response = await self._client.post(
                self.url, json=envelope, headers=self._headers
            )
        except httpx.RequestError as e:
            raise WorkerInvocationError(
                f"Worker unreachable: {e}", {"job_id": str(job_id), "url": self.url}
            ) from e

        if response.status_code >= 400:
            raise WorkerInvocationError(
                f"Worker rejected job ({response.status_code})",
                {"job_id": str(job_id), "status_code": response.status_code},
            )

        logger.info("Job handed to remote worker", job_id=str(job_id), url=self.url)

    async def close(self) -> None:
        await self._client.aclose()
