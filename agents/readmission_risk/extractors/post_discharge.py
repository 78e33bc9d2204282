"""Post-discharge domain: follow-up timing, PCP, destination and pending tests."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..features import DischargeContext, Disposition, PostDischargeFactors
from ..utils import is_follow_up_within, whole_days_between
from .base import DomainExtractor, row_details, row_time


class DischargeInstructionConfirmation:
    """
    Teach-back confirmation of discharge instructions.

    Not yet wired to a data source: understanding is always unknown (None).
    """

    async def confirm(self, context: DischargeContext) -> Optional[bool]:
        return None


class PostDischargeExtractor(DomainExtractor[PostDischargeFactors]):
    domain = "post_discharge"

    def __init__(self, source, config, instructions: Optional[DischargeInstructionConfirmation] = None):
        super().__init__(source, config)
        self.instructions = instructions or DischargeInstructionConfirmation()

    async def extract(self, context: DischargeContext, now: datetime) -> PostDischargeFactors:
        discharged = self.discharge_time(context)
        appointments = await self.source.fetch_upcoming_appointments(context.patient_id, discharged)
        profile = await self.source.fetch_profile(context.patient_id)
        pending = await self.source.fetch_pending_diagnostic_reports(context.patient_id)
        sdoh = await self.source.fetch_sdoh_indicators(context.patient_id)
        understood = await self.instructions.confirm(context)

        follow_up_scheduled: Optional[bool] = None
        days_until: Optional[int] = None
        if appointments is not None:
            follow_up_scheduled = len(appointments) > 0
            if follow_up_scheduled:
                start = row_time(appointments[0], "start")
                if start is not None:
                    days_until = whole_days_between(discharged, start)

        windows = self.config.follow_up
        pending_list = tuple(
            str(row.get("code_display")) for row in pending or [] if row.get("code_display")
        )

        return PostDischargeFactors(
            follow_up_scheduled=follow_up_scheduled,
            days_until_follow_up=days_until,
            follow_up_within_7_days=is_follow_up_within(days_until, windows.within_7_days),
            follow_up_within_14_days=is_follow_up_within(days_until, windows.within_14_days),
            # Unknown scheduling is not reported as "no follow-up"
            no_follow_up_scheduled=follow_up_scheduled is False,
            has_pcp_assigned=bool(profile and profile.get("primary_care_provider_id")),
            discharge_destination=context.discharge_disposition,
            discharge_to_home_alone=(
                context.discharge_disposition == Disposition.HOME.value
                and self._lives_alone(sdoh)
            ),
            has_pending_test_results=len(pending_list) > 0,
            pending_test_results_list=pending_list,
            discharge_instructions_understood=understood,
        )

    @staticmethod
    def _lives_alone(sdoh) -> bool:
        for row in sdoh or []:
            if row.get("category") == "housing" and row_details(row).get("lives_alone"):
                return True
        return False
