#!/usr/bin/env python3
"""
Smoke test against a running server: create a risk assessment, extract its
steps through an LLM job and poll the job to completion.

Needs an organization provisioned with scripts/provision_tenant.py; pass its
API key via SAFETYSECRETARY_API_KEY.
"""
import asyncio
import os

import httpx
from safetysecretary_client import JobsClient

API_URL = os.environ.get("SAFETYSECRETARY_URL", "http://localhost:8000")
API_KEY = os.environ.get("SAFETYSECRETARY_API_KEY", "secret-e2e")

DESCRIPTION = (
    "Isolate the conveyor at the main switch. Remove the guard with a socket wrench. "
    "Replace the worn belt. Refit the guard and test run the line."
)

async def wait_for_health(attempts: int = 30) -> bool:
    async with httpx.AsyncClient(base_url=API_URL, timeout=5.0) as probe:
        for _ in range(attempts):
            try:
                if (await probe.get("/health")).status_code == 200:
                    return True
            except httpx.HTTPError:
                pass
            await asyncio.sleep(1)
    return False


async def verify():
    print(f"Waiting for {API_URL} ...")
    if not await wait_for_health():
        print("Server never became healthy.")
        return

    client = JobsClient(API_URL, api_key=API_KEY, timeout=30.0)
    try:
        # 1. Create case
        resp = await client.client.post("/api/ra-cases", json={"activityName": "Conveyor belt change"})
        if resp.status_code != 201:
            print(f"Failed to create case: {resp.status_code} {resp.text}")
            return
        case_id = resp.json()["id"]
        print(f"Case created: {case_id}")

        # 2. Submit job
        job = await client.enqueue(f"/api/ra-cases/{case_id}/steps/extract", {"description": DESCRIPTION})
        print(f"Job queued: {job['id']} ({job['status']})")

        # 3. Poll
        job = await client.wait_for_job(job["id"], interval=0.5, timeout=60.0)
        print(f"Job status: {job['status']}")
        print(f"Result: {job.get('result')}")

        if job["status"] == "completed":
            print("SUCCESS: Job completed successfully.")
        else:
            print(f"FAILURE: {job.get('error')}")
    finally:
        await client.close()

if __name__ == "__main__":
    asyncio.run(verify())
