from typing import Any

from safetysecretary.domain.errors import CaseNotFoundError
from safetysecretary.domain.inputs import JhaRowExtractionInput
from safetysecretary.scheduler.context import HandlerContext


async def extract_rows(ctx: HandlerContext, payload: JhaRowExtractionInput) -> dict[str, Any]:
    jha_service = ctx.tenant(payload).jha_service
    if await jha_service.get_case(payload.case_id) is None:
        raise CaseNotFoundError(payload.case_id, kind="JHA case")

    extraction = await ctx.extraction.extract_jha_rows(payload.job_description)
    await jha_service.replace_rows_from_extraction(payload.case_id, extraction.rows)
    return {"rowsGenerated": len(extraction.rows)}
