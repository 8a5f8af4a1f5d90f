import asyncio
import logging
import time
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("completed", "failed")


class JobsClient:
    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        headers = {"X-API-Key": api_key} if api_key else {}
        self.client = httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout, headers=headers, transport=transport
        )

    async def enqueue(self, path: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Posts to an extraction route and returns the queued job.
        Raises httpx.HTTPStatusError when the server refuses.
        """
        resp = await self.client.post(path, json=body or {})
        resp.raise_for_status()
        return resp.json()

    async def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        resp = await self.client.get(f"/api/llm-jobs/{job_id}")
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.json()

    async def wait_for_job(self, job_id: str, interval: float = 1.0, timeout: float = 120.0) -> Dict[str, Any]:
        """
        Polls until the job is completed or failed.
        Raises LookupError if the job disappears and TimeoutError past the deadline.
        """
        deadline = time.monotonic() + timeout
        while True:
            job = await self.get_job(job_id)
            if job is None:
                raise LookupError(f"Job {job_id} not found")
            if job["status"] in TERMINAL_STATUSES:
                return job

            if time.monotonic() >= deadline:
                raise TimeoutError(f"Job {job_id} still {job['status']} after {timeout}s")
            logger.debug("Job %s is %s; polling again in %ss", job_id, job["status"], interval)
            await asyncio.sleep(interval)

    async def close(self):
        await self.client.aclose()
