"""
Tests for the safety scorer.

Tests cover:
- Band decay, proximity penalty and score classification helpers
- Reason text formatting and score-change notification thresholds
- Scoring against risk cells, danger zones and raw events
- No double counting of raw events inside a penalised risk cell
- Neutral score on internal failure
"""

from datetime import timedelta

import pytest

from conftest import BASE_LAT, BASE_LNG, NOW, FakeFirestore, distress_doc, incident_doc, offset, put
from safegrid.config.firebase import (
    DANGER_ZONE_COLLECTION,
    DISTRESS_COLLECTION,
    INCIDENT_COLLECTION,
    RISK_CELL_COLLECTION,
)
from safegrid.models.base import RiskLevel
from safegrid.models.risk_cell import RiskCell, Tier
from safegrid.services.grid_index import cell_of
from safegrid.services.safety_scorer import (
    DANGER_ZONE_BANDS,
    NEUTRAL_SCORE,
    SafetyScorer,
    band_multiplier,
    cell_bands,
    classify_score,
    format_reason_text,
    proximity_penalty,
    should_notify_score_change,
)
from safegrid.utils.geo import round_half_up


CELL = cell_of(BASE_LAT, BASE_LNG)


def seed_risk_cell(db, score=0.6, radius=500):
    cell = RiskCell(
        grid_id=CELL.grid_id,
        center_lat=CELL.center_lat,
        center_lng=CELL.center_lng,
        risk_score=score,
        risk_level=RiskLevel.HIGH,
        tier=Tier.HIGH,
        radius=radius,
        expires_at=NOW + timedelta(days=10),
        last_updated=NOW,
        grid_name="Calangute",
    )
    put(db, RISK_CELL_COLLECTION, CELL.grid_id, cell.to_document())


def seed_zone(db, lat=BASE_LAT, lng=BASE_LNG, risk_level="Very High", radius_km=1.0, zone_type="circle"):
    put(db, DANGER_ZONE_COLLECTION, "disaster-0", {
        "id": "disaster-0",
        "name": "Flood zone",
        "type": zone_type,
        "coords": [lat, lng],
        "latitude": lat,
        "longitude": lng,
        "radius_km": radius_km,
        "risk_level": risk_level,
    })


# =============================================================
# TEST: Pure helpers
# =============================================================

class TestBandMultiplier:

    def test_inside_critical_band(self):
        assert band_multiplier(0, DANGER_ZONE_BANDS) == 1.0
        assert band_multiplier(100, DANGER_ZONE_BANDS) == 1.0

    def test_band_edges(self):
        assert band_multiplier(500, DANGER_ZONE_BANDS) == pytest.approx(0.7)
        assert band_multiplier(2000, DANGER_ZONE_BANDS) == pytest.approx(0.4)
        assert band_multiplier(5000, DANGER_ZONE_BANDS) == pytest.approx(0.1)

    def test_interpolates_within_band(self):
        assert band_multiplier(300, DANGER_ZONE_BANDS) == pytest.approx(0.85)

    def test_beyond_outer_band(self):
        assert band_multiplier(5001, DANGER_ZONE_BANDS) == 0.0

    def test_cell_bands_scale_with_radius(self):
        assert cell_bands(500) == (500, 1000, 2000, 3500)
        assert cell_bands(1500) == (1500, 2000, 3000, 4500)


class TestProximityPenalty:

    def test_full_penalty_at_event(self):
        assert proximity_penalty(0, 2500, 0.5, 40) == pytest.approx(20)

    def test_linear_decay(self):
        assert proximity_penalty(1250, 2500, 0.5, 40) == pytest.approx(10)

    def test_zero_beyond_radius(self):
        assert proximity_penalty(2600, 2500, 1.0, 40) == 0.0


class TestClassifyScore:

    @pytest.mark.parametrize("score,level", [
        (100, "EXCELLENT"),
        (90, "EXCELLENT"),
        (89, "GOOD"),
        (70, "GOOD"),
        (50, "FAIR"),
        (30, "POOR"),
        (29, "CRITICAL"),
        (0, "CRITICAL"),
    ])
    def test_levels(self, score, level):
        assert classify_score(score)[0] == level


class TestFormatReasonText:

    def test_panic_codes(self):
        assert format_reason_text("IMMEDIATE PANIC") == "Emergency Alert"
        assert format_reason_text("panic button") == "Emergency Alert"

    def test_known_codes(self):
        assert format_reason_text("sos") == "Distress Signal"
        assert format_reason_text("MEDICAL") == "Medical Emergency"

    def test_title_cases_free_text(self):
        assert format_reason_text("bag SNATCHING") == "Bag Snatching"

    def test_empty(self):
        assert format_reason_text(None) == "Safety Concern"
        assert format_reason_text("   ") == "Safety Concern"


class TestScoreChangeNotification:

    def test_large_drop_is_critical(self):
        notification = should_notify_score_change(80, 45)
        assert notification.type == "critical"
        assert notification.priority == "high"

    def test_moderate_drop_is_warning(self):
        assert should_notify_score_change(80, 65).type == "warning"

    def test_small_drop_is_silent(self):
        assert should_notify_score_change(80, 68) is None

    def test_large_rise_is_improvement(self):
        assert should_notify_score_change(40, 75).type == "improvement"

    def test_small_rise_is_silent(self):
        assert should_notify_score_change(40, 69) is None


# =============================================================
# TEST: Scoring
# =============================================================

class TestScoreAt:

    def test_empty_area_is_very_safe(self, scorer):
        result = scorer.score_at(BASE_LAT, BASE_LNG, now=NOW)

        assert result.score == 100
        assert result.level == "EXCELLENT"
        assert result.totalThreats == 0
        assert result.nearestThreat is None
        assert result.error is False
        assert "Low crime rate" in result.description

    def test_inside_very_high_zone(self, fake_db, scorer):
        seed_zone(fake_db)

        result = scorer.score_at(BASE_LAT, BASE_LNG, now=NOW)

        assert result.score == 30
        assert result.level == "POOR"
        assert result.nearestThreat.type == "danger_zone"
        assert result.nearestThreat.isInside is True

    def test_zone_without_level_uses_default_severity(self, fake_db, scorer):
        seed_zone(fake_db, risk_level=None)

        result = scorer.score_at(BASE_LAT, BASE_LNG, now=NOW)
        assert result.score == 100 - round(0.3 * 70)

    def test_risk_cell_at_centre(self, fake_db, scorer):
        seed_risk_cell(fake_db, score=0.6)

        result = scorer.score_at(CELL.center_lat, CELL.center_lng, now=NOW)

        assert result.score == 70
        assert result.threats[0].type == "risk_grid"
        assert result.threats[0].impact == 30

    def test_quiet_cells_are_ignored(self, fake_db, scorer):
        seed_risk_cell(fake_db, score=0.05)
        assert scorer.score_at(CELL.center_lat, CELL.center_lng, now=NOW).score == 100

    def test_raw_distress_signal(self, fake_db, scorer):
        put(fake_db, DISTRESS_COLLECTION, "d1", distress_doc(safety=20, reason="IMMEDIATE PANIC"))

        result = scorer.score_at(BASE_LAT, BASE_LNG, now=NOW)

        # severity 0.8 at distance 0
        assert result.score == 68
        assert result.threats[0].name == "Emergency Alert"

    def test_distress_without_safety_uses_default(self, fake_db, scorer):
        put(fake_db, DISTRESS_COLLECTION, "d1", distress_doc(safety=None))
        assert scorer.score_at(BASE_LAT, BASE_LNG, now=NOW).score == 88

    def test_raw_incident_without_severity_uses_default(self, fake_db, scorer):
        put(fake_db, INCIDENT_COLLECTION, "i1", incident_doc(severity=None, category="theft"))

        result = scorer.score_at(BASE_LAT, BASE_LNG, now=NOW)

        assert result.score == 73
        assert "Reported issues: Theft" in result.description

    def test_zero_safety_is_the_worst_case(self):
        def score_with(safety):
            db = FakeFirestore()
            lat, lng = offset(BASE_LAT, BASE_LNG, north_m=500)
            put(db, DISTRESS_COLLECTION, "d1", distress_doc(lat=lat, lng=lng, safety=safety))
            return SafetyScorer(db=db).score_at(BASE_LAT, BASE_LNG, now=NOW).score

        # severity 1.0, 500 m into a 2,500 m radius
        assert score_with(0) == 68
        assert score_with(0) < score_with(60)

    def test_zero_severity_incident_adds_no_penalty(self, fake_db, scorer):
        put(fake_db, INCIDENT_COLLECTION, "i1", incident_doc(severity=0.0))

        result = scorer.score_at(BASE_LAT, BASE_LNG, now=NOW)

        assert result.score == 100
        assert result.totalThreats == 0

    def test_stale_and_resolved_events_are_ignored(self, fake_db, scorer):
        put(fake_db, DISTRESS_COLLECTION, "d1", distress_doc(hours_ago=8 * 24))
        put(fake_db, DISTRESS_COLLECTION, "d2", distress_doc(status="resolved"))
        put(fake_db, INCIDENT_COLLECTION, "i1", incident_doc(hours_ago=8 * 24))

        assert scorer.score_at(BASE_LAT, BASE_LNG, now=NOW).score == 100

    def test_events_out_of_range_are_ignored(self, fake_db, scorer):
        lat, lng = offset(BASE_LAT, BASE_LNG, east_m=4500)
        put(fake_db, INCIDENT_COLLECTION, "i1", incident_doc(lat=lat, lng=lng, severity=1.0))
        assert scorer.score_at(BASE_LAT, BASE_LNG, now=NOW).score == 100

    def test_event_inside_cell_is_not_counted_twice(self, fake_db, scorer):
        seed_risk_cell(fake_db, score=0.6)
        put(fake_db, DISTRESS_COLLECTION, "d1", distress_doc(lat=CELL.center_lat, lng=CELL.center_lng, safety=20))
        put(fake_db, INCIDENT_COLLECTION, "i1", incident_doc(lat=CELL.center_lat, lng=CELL.center_lng, severity=1.0))

        result = scorer.score_at(CELL.center_lat, CELL.center_lng, now=NOW)

        assert result.score == 70
        assert result.totalThreats == 1

    def test_adding_threats_never_raises_score(self, fake_db, scorer):
        put(fake_db, INCIDENT_COLLECTION, "i1", incident_doc(severity=0.4))
        before = scorer.score_at(BASE_LAT, BASE_LNG, now=NOW).score

        seed_zone(fake_db, risk_level="Low", radius_km=0.2)
        after = scorer.score_at(BASE_LAT, BASE_LNG, now=NOW).score

        assert after <= before

    def test_score_is_clamped_at_zero(self, fake_db, scorer):
        seed_zone(fake_db)
        seed_risk_cell(fake_db, score=1.0)
        put(fake_db, INCIDENT_COLLECTION, "i1", incident_doc(lat=BASE_LAT + 0.02, severity=1.0))

        result = scorer.score_at(CELL.center_lat, CELL.center_lng, now=NOW)
        assert result.score == 0
        assert result.level == "CRITICAL"


class TestNeutralFallback:

    def test_failure_returns_neutral_score(self):
        class BrokenFirestore:
            def collection(self, name):
                raise RuntimeError("firestore unavailable")

        result = SafetyScorer(db=BrokenFirestore()).score_at(BASE_LAT, BASE_LNG, now=NOW)

        assert result.score == NEUTRAL_SCORE
        assert result.error is True
        assert result.totalThreats == 0


# =============================================================
# TEST: Distance monotonicity
# =============================================================

DISTANCES_M = [0, 100, 250, 500, 900, 1500, 2500, 3500, 5000, 7500, 9500, 12000]


def seed_single_threat(db, kind):
    if kind == "risk_cell":
        seed_risk_cell(db, score=0.9, radius=1000)
    elif kind == "danger_zone":
        seed_zone(db, lat=CELL.center_lat, lng=CELL.center_lng, radius_km=0.5)
    elif kind == "distress":
        put(db, DISTRESS_COLLECTION, "d1", distress_doc(lat=CELL.center_lat, lng=CELL.center_lng, safety=10))
    else:
        put(db, INCIDENT_COLLECTION, "i1", incident_doc(lat=CELL.center_lat, lng=CELL.center_lng, severity=0.9))


class TestDistanceMonotonicity:

    @pytest.mark.parametrize("kind", ["risk_cell", "danger_zone", "distress", "incident"])
    def test_score_never_rises_closer_to_a_threat(self, fake_db, scorer, kind):
        seed_single_threat(fake_db, kind)

        scores = []
        for distance in DISTANCES_M:
            lat, lng = offset(CELL.center_lat, CELL.center_lng, north_m=distance)
            scores.append(scorer.score_at(lat, lng, now=NOW).score)

        assert scores[0] < 100
        assert scores[-1] == 100
        assert all(near <= far for near, far in zip(scores, scores[1:]))


class TestRoundHalfUp:

    @pytest.mark.parametrize("value,expected", [(80.5, 81), (89.5, 90), (2.5, 3), (0.4, 0), (69.49, 69)])
    def test_halves_round_up(self, value, expected):
        assert round_half_up(value) == expected
