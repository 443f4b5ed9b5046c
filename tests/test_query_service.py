"""Tests for the aggregation query service: suppression, anonymization, scope, trend."""

from __future__ import annotations

from datetime import date
from unittest.mock import patch

import pytest

from compliance_engine.analytics.schemas import ComplianceQueryRequest
from compliance_engine.analytics.service import AggregationQueryService
from compliance_engine.common.constants import ComplianceTier, QueryOutcome, RoleTier
from compliance_engine.common.exceptions import (
    InvalidQuery,
    InvalidWindow,
    ScopeViolation,
    StaleSnapshotTimeout,
    UnknownDimension,
)
from compliance_engine.privacy.suppression import PrivacySuppressionFilter
from compliance_engine.snapshot.store import SnapshotStore
from tests.conftest import (
    WEEK_END,
    WEEK_START,
    build_snapshot,
    mixed_location_rows,
    principal,
    single_team_rows,
    two_country_rows,
)

ORG = principal(RoleTier.organization, "a1")


def _query(dimension: str, start: date = WEEK_START, end: date = WEEK_END, **kwargs):
    return ComplianceQueryRequest(dimension=dimension, start=start, end=end, **kwargs)


def _service_for(rows: dict) -> AggregationQueryService:
    store = SnapshotStore()
    store.publish(build_snapshot(**rows))
    return AggregationQueryService(store, threshold=6, benchmark=0.70)


def _by_label(response) -> dict:
    return {g.label: g for g in response.groups}


# ── Validation ──────────────────────────────────────────────────────


class TestValidation:

    def test_unknown_dimension_is_rejected_before_any_snapshot(self, store):
        service = AggregationQueryService(store, timeout=0.01)
        with pytest.raises(UnknownDimension) as exc_info:
            service.execute(ORG, _query("department"))
        assert exc_info.value.outcome == QueryOutcome.invalid

    def test_inverted_window(self, acme_service):
        with pytest.raises(InvalidWindow):
            acme_service.execute(ORG, _query("team", start=WEEK_END, end=WEEK_START))

    def test_window_too_long(self, acme_store):
        service = AggregationQueryService(acme_store, max_window_days=31)
        with pytest.raises(InvalidWindow):
            service.execute(ORG, _query("team", start=date(2026, 1, 1), end=date(2026, 3, 31)))

    def test_unknown_granularity(self, acme_service):
        with pytest.raises(InvalidWindow):
            acme_service.execute(ORG, _query("team", granularity="quarter"))

    def test_dimension_case_is_ignored(self, acme_service):
        assert acme_service.execute(ORG, _query("Leader")).dimension == "leader"

    def test_no_snapshot_fails_closed(self, store):
        service = AggregationQueryService(store, timeout=0.01)
        with pytest.raises(StaleSnapshotTimeout):
            service.execute(ORG, _query("team"))


# ── Aggregation ─────────────────────────────────────────────────────


class TestAggregation:

    def test_leader_dimension_for_the_organization(self, acme_service):
        response = acme_service.execute(ORG, _query("leader"))
        groups = _by_label(response)

        assert response.outcome == QueryOutcome.success
        assert groups["Leader A"].node_id == "L-1"
        assert groups["Leader A"].ratio == 0.84            # 63 / 75
        assert groups["Leader A"].tier == ComplianceTier.exceeding
        assert groups["Leader A"].benchmark_delta == 0.14
        assert groups["Leader B"].node_id == "L-2"
        assert groups["Leader B"].ratio == 0.6333          # 38 / 60
        assert groups["Leader B"].tier == ComplianceTier.below
        # 101 / 135, not the mean of 0.84 and 0.6333
        assert response.total.ratio == 0.7481
        assert response.total.member_count == 27
        assert response.total.tier == ComplianceTier.meeting

    def test_results_are_ordered_by_label(self, acme_service):
        response = acme_service.execute(ORG, _query("team"))
        assert [g.label for g in response.groups] == [
            "Team A", "Team B", "Team C", "Team D", "Team E",
        ]

    def test_ratios_stay_in_unit_interval(self, acme_service):
        for dimension in ("team", "leader", "region", "country", "location"):
            response = acme_service.execute(ORG, _query(dimension))
            for group in response.groups:
                assert group.ratio is None or 0.0 <= group.ratio <= 1.0

    def test_location_dimension(self, acme_service):
        response = acme_service.execute(ORG, _query("location"))
        visible = [g for g in response.groups if not g.suppressed]
        # BOS (3) is too small; NYC minus the published L-1 total would be
        # exactly T-C, so NYC is held back too
        assert [(g.label, g.node_id, g.ratio) for g in visible] == [("Location A", "CHI", 0.6333)]
        assert response.metadata.suppressed_labels == ["Location B", "Location C"]

    def test_mid_level_drill_down(self, acme_service):
        response = acme_service.execute(ORG, _query("team", drill_down_node="L-2"))
        # T-E has five people, so T-D is hidden too
        assert response.outcome == QueryOutcome.suppressed_all
        assert response.total.suppressed is False
        assert response.total.member_count == 12


class TestScenarios:

    def test_team_of_five_is_suppressed(self, acme_service):
        response = acme_service.execute(principal(RoleTier.team, "e1"), _query("team"))
        assert response.outcome == QueryOutcome.suppressed_all
        [group] = response.groups
        assert group.suppressed
        assert group.label == "Team A"
        assert group.node_id is None
        assert group.ratio is None
        assert group.member_count is None
        assert group.tier == ComplianceTier.insufficient_data
        assert response.total.suppressed
        assert response.total.ratio is None

    def test_four_of_six_present(self):
        service = _service_for(single_team_rows([5, 5, 5, 5, 0, 0]))
        response = service.execute(principal(RoleTier.team, "x1"), _query("team"))
        [group] = response.groups
        assert group.ratio == 0.6667
        assert group.tier == ComplianceTier.approaching

    def test_exactly_seventy_percent_is_meeting(self):
        service = _service_for(single_team_rows([5, 5, 5, 5, 1, 0]))
        response = service.execute(principal(RoleTier.team, "x1"), _query("team"))
        [group] = response.groups
        assert group.ratio == 0.7
        assert group.tier == ComplianceTier.meeting
        assert group.benchmark_delta == 0.0

    def test_country_dimension_across_calendars(self):
        service = _service_for(two_country_rows())
        response = service.execute(
            ORG, _query("country", start=date(2026, 3, 1), end=date(2026, 3, 7))
        )
        groups = _by_label(response)
        assert groups["Country A"].node_id == "C-SA"
        assert groups["Country A"].ratio == 0.8          # 24 / 30, Sun-Thu week
        assert groups["Country B"].node_id == "C-US"
        assert groups["Country B"].ratio == 0.75         # 18 / 24, holiday excluded
        assert groups["Country B"].tier == ComplianceTier.exceeding
        assert response.total.ratio == 0.7778            # 42 / 54
        assert response.metadata.approximate_calendar is False


class TestSiblingSubtraction:

    def test_small_team_cannot_be_derived_from_its_leader(self, acme_service):
        response = acme_service.execute(principal(RoleTier.department, "a1"), _query("team"))
        visible = [g for g in response.groups if not g.suppressed]
        assert [g.node_id for g in visible] == ["T-B"]
        assert len(response.metadata.suppressed_labels) == 2
        # L-1 total (15 people) minus T-B (6) leaves 9 hidden people, never 3
        assert response.total.member_count - visible[0].member_count >= 6

    def test_hidden_team_stays_hidden_in_every_scope(self, acme_service):
        as_org = acme_service.execute(ORG, _query("team"))
        as_dept = acme_service.execute(principal(RoleTier.department, "a1"), _query("team"))
        as_team = acme_service.execute(principal(RoleTier.team, "a1"), _query("team"))
        visible_ids = {
            g.node_id
            for response in (as_org, as_dept, as_team)
            for g in response.groups
            if not g.suppressed
        }
        assert visible_ids == {"T-B"}
        assert as_team.outcome == QueryOutcome.suppressed_all


class TestCrossDimensionSubtraction:

    LEADER = principal(RoleTier.department, "t1-1")

    def test_every_team_is_published(self):
        service = _service_for(mixed_location_rows())
        response = service.execute(self.LEADER, _query("team"))
        assert {g.node_id for g in response.groups} == {"T1", "T2", "T3"}
        t2 = next(g for g in response.groups if g.node_id == "T2")
        assert t2.member_count == 7
        assert t2.ratio == 0.7143                          # 25 / 35

    def test_location_one_person_off_a_team_total_is_hidden(self):
        service = _service_for(mixed_location_rows())
        response = service.execute(self.LEADER, _query("location"))
        visible = {g.node_id: g for g in response.groups if not g.suppressed}
        # T1 + T2 minus NYC would be the lone BOS employee
        assert set(visible) == {"CHI"}
        assert visible["CHI"].ratio == 0.6
        assert response.metadata.suppressed_labels == ["Location B", "Location C"]

    def test_daily_location_trend_is_held_back_too(self):
        service = _service_for(mixed_location_rows())
        response = service.execute(self.LEADER, _query("location", granularity="day"))
        for group in response.groups:
            if group.node_id != "CHI":
                assert all(p.suppressed for p in group.trend)


# ── Scope ───────────────────────────────────────────────────────────


class TestScope:

    def test_team_tier_cannot_view_as_department(self, acme_service):
        with pytest.raises(ScopeViolation):
            acme_service.execute(
                principal(RoleTier.team, "b1"), _query("team", view_as=RoleTier.department)
            )

    def test_organization_can_view_as_department(self, acme_service):
        response = acme_service.execute(
            principal(RoleTier.organization, "d1"), _query("leader", view_as=RoleTier.department)
        )
        assert [g.node_id for g in response.groups] == ["L-2"]
        assert response.metadata.role_tier == RoleTier.department

    def test_drill_down_outside_scope(self, acme_service):
        with pytest.raises(ScopeViolation):
            acme_service.execute(
                principal(RoleTier.department, "a1"), _query("team", drill_down_node="T-D")
            )

    def test_drill_down_to_an_individual(self, acme_service):
        with pytest.raises(ScopeViolation):
            acme_service.execute(ORG, _query("team", drill_down_node="b1"))

    def test_dimension_above_the_scope(self, acme_service):
        with pytest.raises(InvalidQuery) as exc_info:
            acme_service.execute(principal(RoleTier.team, "b1"), _query("region"))
        assert exc_info.value.error_type == "dimension-not-in-scope"

    def test_team_tier_sees_only_its_team(self, acme_service):
        response = acme_service.execute(principal(RoleTier.team, "b1"), _query("team"))
        [group] = response.groups
        assert (group.label, group.node_id, group.ratio) == ("Team A", "T-B", 0.6)
        assert group.tier == ComplianceTier.below
        assert group.benchmark_delta == -0.1


# ── Trend ───────────────────────────────────────────────────────────


class TestTrend:

    def test_daily_trend(self, acme_service):
        response = acme_service.execute(ORG, _query("leader", granularity="day"))
        leader_a = _by_label(response)["Leader A"]
        assert [p.start for p in leader_a.trend] == [date(2026, 3, d) for d in range(2, 7)]
        # L-1 on Thursday: T-A 6 + T-C 3 of 15
        assert [p.ratio for p in leader_a.trend] == [1.0, 1.0, 1.0, 0.6, 0.6]

    def test_suppressed_group_has_suppressed_trend(self, acme_service):
        response = acme_service.execute(ORG, _query("team", granularity="day"))
        for group in response.groups:
            if group.suppressed:
                assert all(p.suppressed and p.ratio is None for p in group.trend)

    def test_monthly_buckets_are_clipped_to_the_window(self, acme_service):
        response = acme_service.execute(
            ORG, _query("leader", start=date(2026, 2, 16), end=date(2026, 3, 6))
        )
        trend = _by_label(response)["Leader A"].trend
        assert [(p.start, p.end) for p in trend] == [
            (date(2026, 2, 16), date(2026, 2, 28)),
            (date(2026, 3, 1), date(2026, 3, 6)),
        ]
        assert trend[0].ratio == 0.0


class TestSnapshotReuse:

    def test_whole_month_query_serves_recompute_decisions(self, acme_service):
        request = _query(
            "leader", start=date(2026, 3, 1), end=date(2026, 3, 31),
            granularity="month", drill_down_node="R-EAST",
        )
        with patch.object(
            PrivacySuppressionFilter, "apply_tree", side_effect=AssertionError
        ), patch(
            "compliance_engine.analytics.service.assign_labels", side_effect=AssertionError
        ):
            response = acme_service.execute(ORG, request)
        groups = _by_label(response)
        assert groups["Leader A"].node_id == "L-1"
        assert groups["Leader B"].node_id == "L-2"
        assert response.total.member_count == 27

    def test_repeated_query_reuses_tree_decisions(self, acme_service):
        request = _query("team", granularity="day")
        original = PrivacySuppressionFilter.apply_tree
        with patch.object(
            PrivacySuppressionFilter, "apply_tree", autospec=True, side_effect=original
        ) as spy:
            first = acme_service.execute(ORG, request)
            calls = spy.call_count
            second = acme_service.execute(ORG, request)
        assert calls > 0
        assert spy.call_count == calls
        assert second.groups == first.groups


# ── Summary ─────────────────────────────────────────────────────────


class TestSummary:

    def test_organization_summary(self, acme_service):
        summary = acme_service.summary(ORG, WEEK_START, WEEK_END)
        assert summary.outcome == QueryOutcome.success
        assert summary.current.ratio == 0.7481
        assert summary.previous.ratio == 0.0
        assert summary.change == 0.7481
        assert summary.benchmark == 0.70
        assert summary.benchmark_delta == 0.0481
        assert summary.top_location.node_id == "CHI"
        assert summary.top_location.ratio == 0.6333
        assert summary.top_location.label == "Location A"
        assert [p.weekday for p in summary.weekday_profile] == [
            "monday", "tuesday", "wednesday", "thursday", "friday",
        ]
        assert [p.ratio for p in summary.weekday_profile] == [1.0, 1.0, 0.8148, 0.5926, 0.3333]

    def test_small_scope_summary_is_suppressed(self, acme_service):
        summary = acme_service.summary(principal(RoleTier.team, "e3"), WEEK_START, WEEK_END)
        assert summary.outcome == QueryOutcome.suppressed_all
        assert summary.current.suppressed
        assert summary.change is None
        assert summary.top_location is None
        assert all(p.suppressed for p in summary.weekday_profile)
