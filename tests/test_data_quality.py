# tests/test_data_quality.py
"""Tests for the data quality assessment engine."""

import math
from datetime import timedelta

import pytest

from config.settings import QualityConfig
from data.data_quality import (
    AlertSeverity,
    AlertType,
    DataQualityAssessment,
    MetricCategory,
    MetricObservation,
    QualityStatus,
    SystemStatus,
    overall_score,
    score_accuracy,
    score_completeness,
    score_timeliness,
    status_for_score,
)


def _engine(dt_clock, **config):
    return DataQualityAssessment(QualityConfig(**config), now=dt_clock)


def _observe(dt_clock, minutes_ago, source="Glassnode", **kwargs):
    kwargs.setdefault("has_data", True)
    kwargs.setdefault("value", 2.1)
    return MetricObservation(
        source=source,
        category=kwargs.pop("category", "on-chain"),
        last_updated=dt_clock.now - timedelta(minutes=minutes_ago),
        **kwargs,
    )


class TestDimensions:

    @pytest.mark.parametrize(
        "age, expected",
        [
            (0, 100), (30, 100), (31, 90), (60, 90), (61, 70), (120, 70),
            (121, 50), (240, 50), (241, 30), (480, 30), (481, 10),
            (math.inf, 10),
        ],
    )
    def test_timeliness_bands(self, age, expected):
        assert score_timeliness(age, 60) == expected

    def test_timeliness_never_increases_with_age(self):
        scores = [score_timeliness(age, 15) for age in range(0, 500, 3)]
        assert scores == sorted(scores, reverse=True)

    @pytest.mark.parametrize(
        "has_data, value, expected_value, expected",
        [
            (False, 1.0, 1.0, 0),
            (True, None, 100, 70),
            (True, 100, None, 70),
            (True, "", 100, 70),
            (True, "abc", 100, 60),
            (True, {"x": 1}, 100, 60),
            (True, 100.5, 100, 100),
            (True, 104, 100, 90),
            (True, 92, 100, 70),
            (True, "115", 100, 50),
            (True, 150, 100, 30),
            (True, 5, 0, 70),
        ],
    )
    def test_accuracy_bands(self, has_data, value, expected_value, expected):
        assert score_accuracy(has_data, value, expected_value) == expected

    @pytest.mark.parametrize(
        "has_data, value, expected",
        [
            (False, 1, 0),
            (True, None, 50),
            (True, "", 50),
            (True, [], 50),
            (True, float("nan"), 50),
            (True, 0, 100),
            (True, [1], 100),
        ],
    )
    def test_completeness(self, has_data, value, expected):
        assert score_completeness(has_data, value) == expected

    def test_overall_score_rounds_half_up(self):
        assert overall_score(50, 70, 100, 90, 85) == 76

    @pytest.mark.parametrize(
        "score, status",
        [
            (100, QualityStatus.EXCELLENT),
            (90, QualityStatus.EXCELLENT),
            (89, QualityStatus.GOOD),
            (75, QualityStatus.GOOD),
            (74, QualityStatus.FAIR),
            (60, QualityStatus.FAIR),
            (59, QualityStatus.POOR),
            (40, QualityStatus.POOR),
            (39, QualityStatus.CRITICAL),
            (0, QualityStatus.CRITICAL),
        ],
    )
    def test_status_boundaries(self, score, status):
        assert status_for_score(score) is status


class TestUpdateMetricQuality:

    def test_mvrv_end_to_end(self, dt_clock):
        engine = _engine(dt_clock)

        record = engine.update_metric_quality("mvrv", _observe(dt_clock, 125))

        assert record.timeliness == 50
        assert record.accuracy == 70
        assert record.completeness == 100
        assert record.reliability == 90
        assert record.consistency == 85
        assert record.overall_score == 76
        assert record.status is QualityStatus.GOOD
        assert record.confidence == 0.87
        assert record.category is MetricCategory.ON_CHAIN
        assert record.data_age_minutes == pytest.approx(125)
        assert record.expected_update_frequency_minutes == 60
        assert engine.get_active_alerts() == []
        assert engine.get_metric_quality("mvrv") is record

    def test_overall_score_never_increases_with_age(self, dt_clock):
        engine = _engine(dt_clock)
        scores = [
            engine.update_metric_quality("mvrv", _observe(dt_clock, age)).overall_score
            for age in (0, 45, 90, 200, 400, 1000)
        ]
        assert scores == sorted(scores, reverse=True)

    def test_record_is_overwritten(self, dt_clock):
        engine = _engine(dt_clock)
        engine.update_metric_quality("rsi", _observe(dt_clock, 1, source="CoinGecko"))
        second = engine.update_metric_quality("rsi", _observe(dt_clock, 100, source="CoinGecko"))
        assert engine.get_metric_quality("rsi") is second
        assert engine.generate_report().total_metrics == 1

    def test_unknown_source_and_metric_use_defaults(self, dt_clock):
        engine = _engine(dt_clock)
        record = engine.update_metric_quality("brandNewMetric", _observe(dt_clock, 10, source="Nobody"))
        assert record.reliability == 50
        assert record.expected_update_frequency_minutes == 60

    def test_configured_tables_override_builtins(self, dt_clock):
        engine = _engine(
            dt_clock,
            update_frequencies={"mvrv": 30},
            source_reliability={"Glassnode": 60},
        )
        record = engine.update_metric_quality("mvrv", _observe(dt_clock, 45))
        assert record.expected_update_frequency_minutes == 30
        assert record.timeliness == 70
        assert record.reliability == 60

    def test_missing_timestamp_is_infinitely_old(self, dt_clock):
        engine = _engine(dt_clock)
        record = engine.update_metric_quality(
            "mvrv",
            MetricObservation(source="Glassnode", category="on-chain", last_updated=None, has_data=True, value=1),
        )
        assert record.timeliness == 10
        assert math.isinf(record.data_age_minutes)
        assert record.to_dict()["data_age_minutes"] is None
        alert = engine.get_active_alerts()[0]
        assert alert.type is AlertType.DATA_DELAY
        assert alert.severity is AlertSeverity.HIGH

    def test_future_timestamp_clamps_to_zero_age(self, dt_clock):
        engine = _engine(dt_clock)
        record = engine.update_metric_quality("mvrv", _observe(dt_clock, -30))
        assert record.data_age_minutes == 0
        assert record.timeliness == 100

    def test_accepts_mapping_with_iso_timestamp(self, dt_clock):
        engine = _engine(dt_clock)
        stamp = (dt_clock.now - timedelta(minutes=10)).isoformat().replace("+00:00", "Z")
        record = engine.update_metric_quality(
            "fundingRate",
            {"source": "Coinglass", "category": "derivative", "lastUpdated": stamp,
             "hasData": True, "value": 0.01, "expectedValue": 0.0101},
        )
        assert record.data_age_minutes == pytest.approx(10)
        assert record.accuracy == 100
        assert record.category is MetricCategory.DERIVATIVE

    def test_malformed_input_never_raises(self, dt_clock):
        engine = _engine(dt_clock)
        record = engine.update_metric_quality(
            "weird",
            MetricObservation(
                source=None, category="nonsense", last_updated="not a date",
                has_data=True, value=object(), expected_value="x",
            ),
        )
        assert record.category is None
        assert record.accuracy == 60
        assert record.timeliness == 10

    def test_out_of_range_numbers_never_raise(self, dt_clock):
        engine = _engine(dt_clock, consistency_window=5)
        for _ in range(4):
            engine.update_metric_quality("mvrv", _observe(dt_clock, 5, value=2.0))

        record = engine.update_metric_quality(
            "mvrv",
            MetricObservation(
                source="Glassnode", category="on-chain", last_updated=10**400,
                has_data=True, value=10**400, expected_value=1.0,
            ),
        )

        assert record.accuracy == 60
        assert record.consistency == 85
        assert record.timeliness == 10

    @pytest.mark.parametrize(
        "raw, expected",
        [("false", False), ("0", False), ("", False), ("true", True), ("Yes", True), (1, True), (None, False)],
    )
    def test_textual_has_data_flags(self, raw, expected):
        observation = MetricObservation.from_dict({"source": "Glassnode", "hasData": raw})
        assert observation.has_data is expected


class TestAlerts:

    def test_delay_alert_severity(self, dt_clock):
        engine = _engine(dt_clock)
        engine.update_metric_quality("mvrv", _observe(dt_clock, 240))
        assert engine.get_active_alerts() == []

        engine.update_metric_quality("mvrv", _observe(dt_clock, 241))
        engine.update_metric_quality("nupl", _observe(dt_clock, 481))

        by_metric = {a.metric: a for a in engine.get_active_alerts() if a.type is AlertType.DATA_DELAY}
        assert by_metric["mvrv"].severity is AlertSeverity.MEDIUM
        assert by_metric["nupl"].severity is AlertSeverity.HIGH

    def test_quality_degraded_alert(self, dt_clock):
        engine = _engine(dt_clock)
        engine.update_metric_quality("mvrv", _observe(dt_clock, 10, has_data=False))

        degraded = [a for a in engine.get_active_alerts() if a.type is AlertType.QUALITY_DEGRADED]
        assert len(degraded) == 1
        record = engine.get_metric_quality("mvrv")
        expected = AlertSeverity.HIGH if record.status is QualityStatus.CRITICAL else AlertSeverity.MEDIUM
        assert degraded[0].severity is expected

    def test_dedup_within_window(self, dt_clock):
        engine = _engine(dt_clock)
        engine.update_metric_quality("mvrv", _observe(dt_clock, 300))
        dt_clock.advance(minutes=29)
        engine.update_metric_quality("mvrv", _observe(dt_clock, 300))

        delays = [a for a in engine.get_active_alerts() if a.type is AlertType.DATA_DELAY]
        assert len(delays) == 1

    def test_new_alert_after_window(self, dt_clock):
        engine = _engine(dt_clock)
        engine.update_metric_quality("mvrv", _observe(dt_clock, 300))
        first = engine.get_active_alerts()[0]
        dt_clock.advance(minutes=31)
        engine.update_metric_quality("mvrv", _observe(dt_clock, 300))

        delays = [a for a in engine.get_active_alerts() if a.type is AlertType.DATA_DELAY]
        assert len(delays) == 2
        assert delays[0].timestamp == first.timestamp

    def test_resolved_alert_does_not_suppress(self, dt_clock):
        engine = _engine(dt_clock)
        engine.update_metric_quality("mvrv", _observe(dt_clock, 300))
        engine.resolve_alert(engine.get_active_alerts()[0].id)
        engine.update_metric_quality("mvrv", _observe(dt_clock, 300))

        assert len(engine.get_active_alerts()) == 1
        assert len(engine.get_all_alerts()) == 2

    def test_resolve_alert_is_idempotent(self, dt_clock):
        engine = _engine(dt_clock)
        engine.update_metric_quality("mvrv", _observe(dt_clock, 300))
        alert_id = engine.get_active_alerts()[0].id

        engine.resolve_alert(alert_id)
        engine.resolve_alert(alert_id)
        engine.resolve_alert("no-such-id")

        assert engine.get_active_alerts() == []

    def test_rolling_consistency_flags_outlier(self, dt_clock):
        engine = _engine(dt_clock, consistency_window=10)
        for value in (10.0, 10.5, 9.5, 10.2, 9.8):
            record = engine.update_metric_quality("mvrv", _observe(dt_clock, 1, value=value))
        assert record.consistency >= 85

        outlier = engine.update_metric_quality("mvrv", _observe(dt_clock, 1, value=50.0))

        assert outlier.consistency == 30
        kinds = [a.type for a in engine.get_active_alerts()]
        assert AlertType.INCONSISTENT_DATA in kinds

    def test_constant_consistency_by_default(self, dt_clock):
        engine = _engine(dt_clock, default_consistency=70)
        for value in (1.0, 1.0, 1.0, 1000.0):
            record = engine.update_metric_quality("mvrv", _observe(dt_clock, 1, value=value))
        assert record.consistency == 70
        assert all(a.type is not AlertType.INCONSISTENT_DATA for a in engine.get_active_alerts())


class TestDataSources:

    @pytest.mark.parametrize(
        "status, response_ms, success, expected",
        [
            ("UP", 100, 99, 99),
            ("DEGRADED", 3000, 95, 68),
            ("DOWN", 100, 90, 9),
            ("UNKNOWN", 6000, 100, 40),
            ("bogus", 0, 80, 40),
            ("UP", 0, 150, 100),
        ],
    )
    def test_reliability(self, dt_clock, status, response_ms, success, expected):
        engine = _engine(dt_clock)
        record = engine.update_data_source_quality("CoinGecko", status, response_ms, success)
        assert record.reliability == expected
        assert engine.get_data_source_quality("CoinGecko") is record

    def test_down_source_raises_api_down(self, dt_clock):
        engine = _engine(dt_clock)
        engine.update_data_source_quality("Glassnode", "DOWN", 0, 0)
        engine.update_data_source_quality("Glassnode", "DOWN", 0, 0)

        alerts = engine.get_active_alerts()
        assert len(alerts) == 1
        assert alerts[0].type is AlertType.API_DOWN
        assert alerts[0].metric == "Glassnode"
        assert alerts[0].severity is AlertSeverity.HIGH


class TestReport:

    def test_empty_report(self, dt_clock):
        report = _engine(dt_clock).generate_report()
        assert report.overall_score == 0
        assert report.system_status is SystemStatus.CRITICAL
        assert report.metrics == []
        assert report.data_sources == []
        assert report.alerts == []
        assert report.recommendations == []
        assert report.generated_at == dt_clock.now

    def test_healthy_report(self, dt_clock):
        engine = _engine(dt_clock)
        engine.update_metric_quality(
            "rsi", _observe(dt_clock, 1, source="CoinGecko", value=50, expected_value=50)
        )
        report = engine.generate_report()
        assert report.excellent_metrics == 1
        assert report.system_status is SystemStatus.HEALTHY
        assert report.recommendations == []

    def test_recommendations(self, dt_clock):
        engine = _engine(dt_clock)
        engine.update_metric_quality("mvrv", _observe(dt_clock, 10_000, has_data=False, source="Nobody"))
        engine.update_metric_quality("nupl", _observe(dt_clock, 130))
        engine.update_data_source_quality("Santiment", "DEGRADED", 6000, 80)

        report = engine.generate_report()

        assert report.critical_metrics == 1
        assert report.total_metrics == 2
        assert report.system_status is SystemStatus.CRITICAL
        joined = "\n".join(report.recommendations)
        assert "Address 1 critical metrics immediately" in joined
        assert "Santiment" in joined
        assert "Reduce data latency for 2 metrics" in joined
        assert "redundancy" in joined

    def test_report_serializes(self, dt_clock):
        engine = _engine(dt_clock)
        engine.update_metric_quality("mvrv", _observe(dt_clock, 500))
        data = engine.generate_report().to_dict()
        assert data["system_status"] in {"HEALTHY", "DEGRADED", "CRITICAL"}
        assert data["metrics"][0]["status"] == "FAIR"
        assert data["metrics"][0]["category"] == "on-chain"
        assert data["alerts"][0]["type"] == "DATA_DELAY"
