from typing import Optional

from sqlalchemy import delete, select

from safetysecretary.db.tenant_models import JhaCase, JhaHazard, JhaStep
from safetysecretary.domain.errors import CaseNotFoundError
from safetysecretary.services.llm_schemas import JhaRow
from safetysecretary.tenancy.registry import TenantHandle


class JhaService:
    def __init__(self, handle: TenantHandle):
        self.handle = handle

    async def create_case(
        self,
        title: str,
        site: Optional[str] = None,
        supervisor: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> JhaCase:
        async with self.handle.session() as session:
            jha_case = JhaCase(title=title, site=site, supervisor=supervisor, created_by=created_by)
            session.add(jha_case)
            await session.commit()
            case_id = jha_case.id
        return await self.get_case(case_id)

    async def get_case(self, case_id: str) -> Optional[JhaCase]:
        async with self.handle.session() as session:
            return await session.scalar(select(JhaCase).where(JhaCase.id == case_id))

    async def replace_rows_from_extraction(self, case_id: str, rows: list[JhaRow]) -> JhaCase:
        """
        Replaces every step and hazard row of the case.
        Rows sharing a step label are grouped under one step, in first-seen order.
        """
        async with self.handle.session() as session:
            exists = await session.scalar(select(JhaCase.id).where(JhaCase.id == case_id))
            if exists is None:
                raise CaseNotFoundError(case_id, kind="JHA case")

            await session.execute(delete(JhaHazard).where(JhaHazard.case_id == case_id))
            await session.execute(delete(JhaStep).where(JhaStep.case_id == case_id))

            steps: dict[str, JhaStep] = {}
            for index, row in enumerate(rows):
                label = row.step_label.strip() or f"Step {len(steps) + 1}"
                step = steps.get(label)
                if step is None:
                    step = JhaStep(case_id=case_id, label=label, order_index=len(steps))
                    session.add(step)
                    await session.flush()
                    steps[label] = step

                session.add(JhaHazard(
                    case_id=case_id,
                    step_id=step.id,
                    order_index=index,
                    hazard=row.hazard.strip(),
                    consequence=row.consequence,
                    controls=list(row.controls),
                ))
            await session.commit()

        return await self.get_case(case_id)
