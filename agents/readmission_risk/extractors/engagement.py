"""
Engagement domain: check-in compliance, games, community activity and alerts.

================================================================================
EARLY WARNING SIGNALS
================================================================================

Behavioral engagement typically changes 7-14 days before clinical
deterioration. The strongest signals:

    - Consecutive missed daily check-ins (>= 3 means "stopped responding")
    - A sudden drop in 7-day completion vs the previous 23 days (> 30 points)
    - Days with zero app activity in the last 30 days

All rates use FIXED denominators (30 / 7 / 23 days). A patient who only
enrolled 10 days ago therefore shows a low 30-day rate; that is intended.

================================================================================
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from ..features import DischargeContext, EngagementFactors
from ..utils import contains_any, days_before, js_round, to_number
from .base import DomainExtractor, row_responses, row_time

VITALS_RESPONSE_KEYS = ("blood_pressure", "blood_sugar", "weight", "heart_rate", "pulse_oximeter")


def count_consecutive_missed(check_ins: Sequence[Dict[str, Any]]) -> int:
    """
    Count missed check-ins from the newest backwards.

    Only a completed check-in breaks the streak; pending or other statuses
    are skipped without resetting it.
    """
    missed = 0
    for row in check_ins:
        status = row.get("status")
        if status == "missed":
            missed += 1
        elif status == "completed":
            break
    return missed


def count_negative_moods(check_ins: Sequence[Dict[str, Any]], keywords: Sequence[str]) -> int:
    return sum(
        1 for row in check_ins if contains_any(str(row_responses(row).get("mood") or ""), keywords)
    )


class EngagementExtractor(DomainExtractor[EngagementFactors]):
    domain = "engagement"

    async def extract(self, context: DischargeContext, now: datetime) -> EngagementFactors:
        since = days_before(now, self.config.check_in.rate_30_day)
        check_ins = await self.source.fetch_check_ins(context.patient_id, since)
        metrics = await self.source.fetch_engagement_metrics(context.patient_id, since) or []

        check_in_fields = self._check_in_features(check_ins, now)
        game_fields = self._game_features(metrics)
        activity_fields = self._activity_features(metrics)

        thresholds = self.config.engagement
        patterns = self.config.patterns

        concerning: List[str] = []
        if check_in_fields["negative_mood_trend"]:
            concerning.append(patterns.declining_mood)
        if check_in_fields["missed_vitals_reports_7_day"] >= thresholds.missed_vitals_concern:
            concerning.append(patterns.missed_vitals)
        if metrics and not self._played_recently(metrics):
            concerning.append(patterns.no_games)
        if activity_fields["days_with_zero_activity"] > thresholds.zero_activity_concern:
            concerning.append(patterns.zero_activity)
        if check_in_fields["critical_alerts_triggered"] > 0:
            concerning.append(patterns.critical_alerts)

        is_disengaging = (
            activity_fields["engagement_change_percent"] < thresholds.disengaging_drop
            or activity_fields["days_with_zero_activity"] >= thresholds.zero_activity_disengaging
        )

        return EngagementFactors(
            **check_in_fields,
            **game_fields,
            **activity_fields,
            is_disengaging=is_disengaging,
            concerning_patterns=tuple(concerning),
        )

    # -------------------------------------------------------------------------
    # Check-ins
    # -------------------------------------------------------------------------

    def _check_in_features(self, check_ins: Optional[List[Dict[str, Any]]], now: datetime) -> Dict[str, Any]:
        denominators = self.config.check_in
        thresholds = self.config.engagement

        if check_ins is None:
            return {
                "check_in_completion_rate_30_day": None,
                "check_in_completion_rate_7_day": 0.0,
                "consecutive_missed_check_ins": 0,
                "has_engagement_drop": False,
                "stopped_responding": False,
                "health_alerts_triggered_30_day": 0,
                "critical_alerts_triggered": 0,
                "negative_mood_trend": False,
                "vitals_reporting_consistency": 0.0,
                "missed_vitals_reports_7_day": 0,
            }

        week_ago = days_before(now, denominators.rate_7_day)
        recent, previous = [], []
        for row in check_ins:
            checked = row_time(row, "check_in_date")
            (recent if checked is not None and checked > week_ago else previous).append(row)

        completed_30 = sum(1 for row in check_ins if row.get("status") == "completed")
        completed_7 = sum(1 for row in recent if row.get("status") == "completed")
        completed_previous = sum(1 for row in previous if row.get("status") == "completed")

        rate_7 = completed_7 / denominators.rate_7_day
        previous_rate = completed_previous / denominators.previous_period if previous else 0.0

        consecutive_missed = count_consecutive_missed(check_ins)

        # Rule: NEGATIVE_MOOD_TREND
        # Share is taken over the check-ins returned, not the fixed 30 days
        negative = count_negative_moods(check_ins, self.config.keywords.negative_moods)
        negative_trend = negative > len(check_ins) * thresholds.negative_mood

        vitals_reported = sum(
            1 for row in recent
            if any(row_responses(row).get(key) for key in VITALS_RESPONSE_KEYS)
        )

        return {
            "check_in_completion_rate_30_day": completed_30 / denominators.rate_30_day,
            "check_in_completion_rate_7_day": rate_7,
            "consecutive_missed_check_ins": consecutive_missed,
            "has_engagement_drop": (previous_rate - rate_7) > thresholds.engagement_drop,
            "stopped_responding": consecutive_missed >= thresholds.consecutive_missed_concern,
            "health_alerts_triggered_30_day": sum(1 for row in check_ins if row.get("alert_triggered")),
            "critical_alerts_triggered": sum(
                1 for row in check_ins if row.get("alert_severity") == "critical"
            ),
            "negative_mood_trend": negative_trend,
            "vitals_reporting_consistency": vitals_reported / denominators.rate_7_day,
            "missed_vitals_reports_7_day": denominators.rate_7_day - vitals_reported,
        }

    # -------------------------------------------------------------------------
    # Games
    # -------------------------------------------------------------------------

    def _game_features(self, metrics: List[Dict[str, Any]]) -> Dict[str, Any]:
        days = self.config.check_in.rate_30_day
        thresholds = self.config.engagement

        trivia = sum(1 for row in metrics if row.get("trivia_played"))
        word_find = sum(1 for row in metrics if row.get("word_find_played"))
        trivia_rate = trivia / days
        word_find_rate = word_find / days
        score = js_round(((trivia_rate + word_find_rate) / 2) * 100)

        declining = False
        if len(metrics) >= thresholds.game_decline_min_days:
            window = metrics[: thresholds.recent_window]
            baseline = sum(to_number(row.get("engagement_score")) or 0 for row in window) / len(window)
            declining = score < baseline * thresholds.game_decline

        return {
            "trivia_participation_rate_30_day": trivia_rate,
            "word_find_participation_rate_30_day": word_find_rate,
            "game_engagement_score": score,
            "game_engagement_declining": declining,
        }

    def _played_recently(self, metrics: List[Dict[str, Any]]) -> bool:
        window = metrics[: self.config.engagement.recent_window]
        return any(row.get("trivia_played") or row.get("word_find_played") for row in window)

    # -------------------------------------------------------------------------
    # Activity and overall engagement
    # -------------------------------------------------------------------------

    def _activity_features(self, metrics: List[Dict[str, Any]]) -> Dict[str, Any]:
        days = self.config.check_in.rate_30_day
        window = self.config.engagement.recent_window
        drop = self.config.engagement.engagement_drop

        active_dates = {str(row.get("date")) for row in metrics if row.get("date") is not None}
        interactions = [to_number(row.get("community_interactions")) or 0 for row in metrics]
        total_interactions = sum(interactions)

        recent_interactions = sum(interactions[:window])
        prior_interactions = sum(interactions[window: window * 2])

        overall = [to_number(row.get("overall_engagement_score")) or 0 for row in metrics]
        recent_overall = overall[:window]
        prior_overall = overall[window: window * 2]
        recent_avg = sum(recent_overall) / len(recent_overall) if recent_overall else 0.0
        prior_avg = sum(prior_overall) / len(prior_overall) if prior_overall else 0.0
        change_percent = ((recent_avg - prior_avg) / prior_avg) * 100 if prior_avg else 0.0

        return {
            "community_interaction_score": js_round(min(total_interactions / days, 1) * 100),
            "days_with_zero_activity": days - len(active_dates),
            "social_engagement_declining": (
                prior_interactions > 0 and recent_interactions < prior_interactions * (1 - drop)
            ),
            "overall_engagement_score": js_round(recent_avg),
            "engagement_change_percent": change_percent,
        }
