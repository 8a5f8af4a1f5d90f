import json
import logging
from typing import Any, Optional, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from safetysecretary.domain.errors import ExtractionError
from safetysecretary.services import heuristics
from safetysecretary.services.llm_schemas import (
    ActionCoaching,
    ActionSuggestions,
    CauseCoaching,
    ConsistencyCheck,
    ControlSuggestions,
    HazardsExtraction,
    JhaRowsExtraction,
    NarrativeExtraction,
    RootCauseCoaching,
    StepsExtraction,
    TimelineMerge,
    WitnessExtraction,
)
from safetysecretary.settings import settings

logger = logging.getLogger(__name__)

ResponseT = TypeVar("ResponseT", bound=BaseModel)

_JSON_ONLY = "Return ONLY valid JSON (no markdown, no code fences, no commentary)."

PROMPTS = {
    "steps": (
        "You are a safety engineer. Extract 3-10 ordered task steps from the description. "
        "For each step give the activity, the equipment used and the substances involved; "
        "use empty arrays when unknown. "
        'Respond as {"steps": [{"activity": string, "equipment": string[], "substances": string[], '
        '"description": string}]}'
    ),
    "hazards": (
        "You are assisting with a safety risk assessment. From the narrative, extract hazards with a "
        "label, a description, a categoryCode, the existing controls mentioned and the stepIds they "
        "apply to. Use ONLY step ids from the provided steps. "
        'Respond as {"hazards": [{"label": string, "description": string, "categoryCode": string, '
        '"existingControls": string[], "stepIds": string[]}]}'
    ),
    "controls": (
        "You are a safety engineer. Suggest practical controls per hazard, classified as "
        "SUBSTITUTION, TECHNICAL, ORGANIZATIONAL or PPE, preferring the most effective. "
        "Use ONLY hazardId values from the input. "
        'Respond as {"suggestions": [{"hazardId": string, "controls": string[], "hierarchy": string, '
        '"residualSeverity": "A"-"E", "residualLikelihood": "1"-"5"}]}'
    ),
    "actions": (
        "You are a safety coordinator. Convert the notes into corrective actions tied to the "
        "provided hazard ids. "
        'Respond as {"actions": [{"hazardId": string, "description": string, "owner": string, '
        '"dueInDays": number}]}'
    ),
    "jha_rows": (
        "You are a safety engineer preparing a job hazard analysis. Break the job into steps and list "
        "the hazards of each step with their consequence and controls. "
        'Respond as {"rows": [{"stepLabel": string, "hazard": string, "consequence": string, '
        '"controls": string[]}]}'
    ),
    "incident_narrative": (
        "You are an incident investigator. From the narrative, extract observable facts, a timeline "
        "and the questions that need clarification. "
        'Respond as {"facts": [{"text": string}], "timeline": [{"timeLabel": string|null, "text": string}], '
        '"clarifications": string[]}'
    ),
    "incident_witness": (
        "You are an incident investigator. From this witness statement, extract facts, the witness's "
        "personal timeline and open questions. "
        'Respond as {"facts": [{"text": string}], "personalTimeline": [{"timeLabel": string|null, '
        '"text": string}], "openQuestions": string[]}'
    ),
    "incident_merge": (
        "You are an incident investigator. Merge the personal timelines of all accounts into one "
        "ordered timeline. Reference the accounts and the fact or event indices each row relies on, "
        "and rate confidence as CONFIRMED, LIKELY or UNCLEAR. "
        'Respond as {"timeline": [{"timeLabel": string|null, "text": string, "confidence": string, '
        '"sources": [{"accountId": string, "factIndex": number, "personalEventIndex": number}]}], '
        '"openQuestions": string[]}'
    ),
    "incident_consistency": (
        "You are an incident investigator. Review the timeline for gaps, contradictions and "
        "ordering problems. "
        'Respond as {"issues": [{"type": string, "details": string, "eventIndices": number[]}]}'
    ),
    "cause_coaching": (
        "You are coaching an incident investigation. Propose the direct causes of the incident, each "
        "with the follow-up 'why' question and the id of the timeline event it explains. "
        'Respond as {"causes": [{"statement": string, "question": string, "timelineEventId": string}]}'
    ),
    "root_cause_coaching": (
        "You are coaching an incident investigation. For each cause node, propose deeper causes and "
        "mark those that are root causes. Use ONLY the provided node ids as parentId. "
        'Respond as {"rootCauses": [{"parentId": string, "statement": string, "question": string, '
        '"isRootCause": boolean}]}'
    ),
    "action_coaching": (
        "You are coaching an incident investigation. Propose corrective actions for each cause node. "
        "Use ONLY the provided node ids. "
        'Respond as {"actions": [{"causeNodeId": string, "description": string, "ownerRole": string, '
        '"dueInDays": number, "actionType": "ENGINEERING"|"ORGANIZATIONAL"|"PPE"|"TRAINING"}]}'
    ),
}


class ExtractionClient:
    """
    Client for an OpenAI-compatible chat-completions endpoint.

    Without an API key the client runs offline and answers from
    `heuristics`. With a key, every failure (transport, HTTP status, empty
    or malformed content) raises ExtractionError.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o-mini",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.client: Optional[httpx.AsyncClient] = None
        if api_key:
            self.client = httpx.AsyncClient(
                base_url=base_url.rstrip("/"),
                timeout=timeout,
                transport=transport,
                headers={"Authorization": f"Bearer {api_key}"},
            )

    @classmethod
    def from_settings(cls) -> "ExtractionClient":
        return cls(
            api_key=settings.OPENAI_API_KEY,
            base_url=settings.LLM_BASE_URL,
            model=settings.LLM_MODEL,
            timeout=settings.LLM_REQUEST_TIMEOUT_SECONDS,
        )

    @property
    def offline(self) -> bool:
        return self.client is None

    async def _complete_json(self, task: str, content: Any, schema: type[ResponseT]) -> ResponseT:
        user_content = content if isinstance(content, str) else json.dumps(content)
        body = {
            "model": self.model,
            "temperature": 0,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": f"{PROMPTS[task]}\n{_JSON_ONLY}"},
                {"role": "user", "content": user_content},
            ],
        }

        try:
            resp = await self.client.post("/chat/completions", json=body)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            logger.warning("Extraction call %s rejected with status %s", task, e.response.status_code)
            raise ExtractionError(f"Extraction service returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.warning("Extraction call %s failed: %s", task, e)
            raise ExtractionError(f"Extraction service unreachable: {e}") from e
        except ValueError as e:
            raise ExtractionError("Extraction service returned a non-JSON response") from e

        try:
            message = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ExtractionError("Extraction service response has no message content") from e
        if not message:
            raise ExtractionError("Extraction service returned an empty answer")

        try:
            return schema.model_validate_json(message)
        except ValidationError as e:
            logger.warning("Extraction call %s returned malformed data: %s", task, e)
            raise ExtractionError(
                f"Extraction service returned malformed {task} data ({e.error_count()} error(s))"
            ) from e

    # --- Risk assessment ---

    async def extract_steps(self, description: str) -> StepsExtraction:
        if self.offline:
            return heuristics.extract_steps(description)
        return await self._complete_json("steps", description, StepsExtraction)

    async def extract_hazards(self, narrative: str, steps: list[dict[str, Any]]) -> HazardsExtraction:
        if self.offline:
            return heuristics.extract_hazards(narrative, steps)
        return await self._complete_json(
            "hazards", {"narrative": narrative, "steps": steps}, HazardsExtraction
        )

    async def suggest_controls(self, notes: str, hazards: list[dict[str, Any]]) -> ControlSuggestions:
        if self.offline:
            return heuristics.suggest_controls(hazards)
        return await self._complete_json(
            "controls", {"notes": notes, "hazards": hazards}, ControlSuggestions
        )

    async def suggest_actions(self, notes: str, hazards: list[dict[str, Any]]) -> ActionSuggestions:
        if self.offline:
            return heuristics.suggest_actions(hazards)
        return await self._complete_json(
            "actions", {"notes": notes, "hazards": hazards}, ActionSuggestions
        )

    # --- JHA ---

    async def extract_jha_rows(self, job_description: str) -> JhaRowsExtraction:
        if self.offline:
            return heuristics.extract_jha_rows(job_description)
        return await self._complete_json("jha_rows", job_description, JhaRowsExtraction)

    # --- Incident ---

    async def extract_incident_narrative(self, narrative: str) -> NarrativeExtraction:
        if self.offline:
            return heuristics.extract_incident_narrative(narrative)
        return await self._complete_json("incident_narrative", narrative, NarrativeExtraction)

    async def extract_incident_witness(self, statement: str) -> WitnessExtraction:
        if self.offline:
            return heuristics.extract_incident_witness(statement)
        return await self._complete_json("incident_witness", statement, WitnessExtraction)

    async def merge_incident_timeline(self, accounts: list[dict[str, Any]]) -> TimelineMerge:
        if self.offline:
            return heuristics.merge_incident_timeline(accounts)
        return await self._complete_json("incident_merge", {"accounts": accounts}, TimelineMerge)

    async def check_incident_consistency(self, timeline: list[dict[str, Any]]) -> ConsistencyCheck:
        if self.offline:
            return heuristics.check_incident_consistency(timeline)
        return await self._complete_json("incident_consistency", {"timeline": timeline}, ConsistencyCheck)

    async def coach_causes(self, timeline: list[dict[str, Any]]) -> CauseCoaching:
        if self.offline:
            return heuristics.coach_causes(timeline)
        return await self._complete_json("cause_coaching", {"timeline": timeline}, CauseCoaching)

    async def coach_root_causes(self, nodes: list[dict[str, Any]]) -> RootCauseCoaching:
        if self.offline:
            return heuristics.coach_root_causes(nodes)
        return await self._complete_json("root_cause_coaching", {"causeNodes": nodes}, RootCauseCoaching)

    async def coach_actions(self, nodes: list[dict[str, Any]]) -> ActionCoaching:
        if self.offline:
            return heuristics.coach_actions(nodes)
        return await self._complete_json("action_coaching", {"causeNodes": nodes}, ActionCoaching)

    async def close(self):
        if self.client is not None:
            await self.client.aclose()
