from typing import Any

from safetysecretary.domain.errors import CaseNotFoundError
from safetysecretary.domain.inputs import (
    ActionSuggestionInput,
    ControlSuggestionInput,
    HazardExtractionInput,
    StepExtractionInput,
)
from safetysecretary.scheduler.context import HandlerContext


async def _load_case(ctx: HandlerContext, payload):
    ra_service = ctx.tenant(payload).ra_service
    ra_case = await ra_service.get_case(payload.case_id)
    if ra_case is None:
        raise CaseNotFoundError(payload.case_id, kind="Risk assessment")
    return ra_service, ra_case


async def extract_steps(ctx: HandlerContext, payload: StepExtractionInput) -> dict[str, Any]:
    ra_service = ctx.tenant(payload).ra_service
    extraction = await ctx.extraction.extract_steps(payload.description)
    updated = await ra_service.set_steps_from_extraction(payload.case_id, extraction.steps)
    return {
        "stepsGenerated": len(extraction.steps),
        "totalSteps": len(updated.steps),
    }


async def extract_hazards(ctx: HandlerContext, payload: HazardExtractionInput) -> dict[str, Any]:
    ra_service, ra_case = await _load_case(ctx, payload)
    steps = [
        {
            "id": step.id,
            "activity": step.activity,
            "equipment": step.equipment,
            "substances": step.substances,
        }
        for step in ra_case.steps
    ]
    extraction = await ctx.extraction.extract_hazards(payload.narrative, steps)
    await ra_service.merge_extracted_hazards(payload.case_id, extraction.hazards)
    return {"hazardsGenerated": len(extraction.hazards)}


async def suggest_controls(ctx: HandlerContext, payload: ControlSuggestionInput) -> dict[str, Any]:
    ra_service, ra_case = await _load_case(ctx, payload)
    hazards = []
    for hazard in ra_case.hazards:
        item = {
            "id": hazard.id,
            "label": hazard.label,
            "description": hazard.description,
            "categoryCode": hazard.category_code,
        }
        if hazard.existing_controls:
            item["existingControls"] = hazard.existing_controls
        if hazard.baseline_severity and hazard.baseline_likelihood:
            item["baseline"] = {"severity": hazard.baseline_severity, "likelihood": hazard.baseline_likelihood}
        hazards.append(item)

    result = await ctx.extraction.suggest_controls(payload.notes, hazards)
    await ra_service.merge_suggested_controls(payload.case_id, result.suggestions)
    return {"controlsEnhanced": len(result.suggestions)}


async def suggest_actions(ctx: HandlerContext, payload: ActionSuggestionInput) -> dict[str, Any]:
    ra_service, ra_case = await _load_case(ctx, payload)
    hazards = [
        {"id": hazard.id, "label": hazard.label, "description": hazard.description}
        for hazard in ra_case.hazards
    ]
    result = await ctx.extraction.suggest_actions(payload.notes, hazards)
    created = await ra_service.create_suggested_actions(payload.case_id, result.actions)
    return {"actionsCreated": created}
