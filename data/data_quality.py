# data/data_quality.py
"""Data quality assessment for dashboard metrics.

Every metric observation is scored on five dimensions (0-100):

    timeliness    age relative to the metric's expected update frequency
    accuracy      relative difference against an expected value
    completeness  whether a usable value is present
    reliability   static per-source table
    consistency   constant, or rolling z-score when a window is configured

The weighted overall score maps to a status tier. Delays, poor quality,
outliers and downed sources raise alerts, deduplicated per
``(metric, type)`` within a time window. Malformed input never raises: it
lowers the affected dimension instead.
"""
from __future__ import annotations

import math
import threading
import uuid
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

import numpy as np

from config.runtime_env import is_truthy
from config.settings import QualityConfig
from data.source_health import ApiStatus, DataSourceQuality, build_source_quality
from utils.logger import get_logger
from utils.serialization import dataclass_to_dict

log = get_logger(__name__)


class MetricCategory(Enum):
    ON_CHAIN = "on-chain"
    TECHNICAL = "technical"
    SENTIMENT = "sentiment"
    DERIVATIVE = "derivative"
    DEFI = "defi"

    @classmethod
    def parse(cls, value: Any) -> MetricCategory | None:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


class QualityStatus(Enum):
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    FAIR = "FAIR"
    POOR = "POOR"
    CRITICAL = "CRITICAL"


class AlertType(Enum):
    DATA_DELAY = "DATA_DELAY"
    API_DOWN = "API_DOWN"
    QUALITY_DEGRADED = "QUALITY_DEGRADED"
    INCONSISTENT_DATA = "INCONSISTENT_DATA"


class AlertSeverity(Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class SystemStatus(Enum):
    HEALTHY = "HEALTHY"
    DEGRADED = "DEGRADED"
    CRITICAL = "CRITICAL"


# Expected update frequency per metric, in minutes.
DEFAULT_UPDATE_FREQUENCIES: dict[str, float] = {
    "mvrv": 60,
    "nupl": 60,
    "sopr": 60,
    "activeAddresses": 30,
    "exchangeInflow": 15,
    "exchangeOutflow": 15,
    "transactionVolume": 30,
    "rsi": 5,
    "ma50": 60,
    "ma200": 60,
    "macd": 15,
    "bollingerUpper": 15,
    "fearGreedIndex": 1440,
    "socialSentiment": 60,
    "googleTrends": 1440,
    "newsSentiment": 120,
    "openInterest": 15,
    "fundingRate": 5,
    "liquidationVolume": 15,
    "putCallRatio": 60,
    "tvl": 60,
}

DEFAULT_SOURCE_RELIABILITY: dict[str, float] = {
    "CoinGecko": 95,
    "Glassnode": 90,
    "CryptoQuant": 88,
    "Calculated": 92,
    "Coinglass": 87,
    "Alternative.me": 85,
    "Google Trends": 80,
    "Santiment": 75,
    "DeFiLlama": 90,
}

# Dimension weights in percent: timeliness, accuracy, completeness,
# reliability, consistency. Kept integral so ties round exactly.
_WEIGHTS = (25, 30, 20, 15, 10)

_TIMELINESS_BANDS = ((0.5, 100), (1.0, 90), (2.0, 70), (4.0, 50), (8.0, 30))
_ACCURACY_BANDS = ((0.01, 100), (0.05, 90), (0.10, 70), (0.20, 50))

_STATUS_THRESHOLDS = (
    (90, QualityStatus.EXCELLENT),
    (75, QualityStatus.GOOD),
    (60, QualityStatus.FAIR),
    (40, QualityStatus.POOR),
)

# z-score bands for the rolling consistency check.
_CONSISTENCY_BANDS = ((1.0, 100), (2.0, 85), (3.0, 60))
_INCONSISTENT_Z = 3.0
_MIN_HISTORY = 3

DELAY_ALERT_FACTOR = 4
DELAY_HIGH_FACTOR = 8
STALE_RECOMMENDATION_FACTOR = 2
POOR_SOURCE_RELIABILITY = 70
REDUNDANCY_SCORE = 70


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _as_flag(value: Any) -> bool:
    """Payload flag to bool; strings such as "false" or "0" read as False."""
    if isinstance(value, str):
        return is_truthy(value)
    if isinstance(value, (bool, int, float)):
        return bool(value)
    return False


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class MetricObservation:
    """One reading of a metric as delivered by a data provider."""
    source: str
    category: MetricCategory | str | None
    last_updated: datetime | str | float | None
    has_data: bool
    value: Any = None
    expected_value: Any = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> MetricObservation:
        return cls(
            source=str(data.get("source", "")),
            category=data.get("category"),
            last_updated=data.get("last_updated", data.get("lastUpdated")),
            has_data=_as_flag(data.get("has_data", data.get("hasData", False))),
            value=data.get("value"),
            expected_value=data.get("expected_value", data.get("expectedValue")),
        )


@dataclass
class DataQualityMetric:
    """Latest assessment for one metric; overwritten on every update."""
    metric: str
    source: str
    category: MetricCategory | None
    timeliness: int
    accuracy: int
    completeness: int
    reliability: float
    consistency: float
    overall_score: int
    status: QualityStatus
    last_updated: datetime
    data_age_minutes: float
    expected_update_frequency_minutes: float
    confidence: float

    def to_dict(self) -> dict[str, Any]:
        return dataclass_to_dict(self)


@dataclass
class QualityAlert:
    id: str
    type: AlertType
    severity: AlertSeverity
    metric: str
    message: str
    description: str
    recommendation: str
    timestamp: datetime
    resolved: bool = False

    def to_dict(self) -> dict[str, Any]:
        return dataclass_to_dict(self)


@dataclass
class SystemQualityReport:
    overall_score: float
    system_status: SystemStatus
    total_metrics: int
    excellent_metrics: int
    good_metrics: int
    fair_metrics: int
    poor_metrics: int
    critical_metrics: int
    metrics: list[DataQualityMetric] = field(default_factory=list)
    data_sources: list[DataSourceQuality] = field(default_factory=list)
    alerts: list[QualityAlert] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    generated_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return dataclass_to_dict(self)


# ---------------------------------------------------------------------------
# Dimension scoring
# ---------------------------------------------------------------------------


def _as_number(value: Any) -> float | None:
    """Finite float for numeric-looking input, else None."""
    if isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float, np.number)):
            number = float(value)
        elif isinstance(value, str):
            number = float(value.strip())
        else:
            return None
    except (OverflowError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def _is_empty(value: Any) -> bool:
    """Present but carries nothing usable."""
    if _is_missing(value):
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return len(value) == 0
    return False


def parse_timestamp(value: Any) -> datetime | None:
    """Aware UTC datetime from a datetime, ISO string or epoch seconds."""
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            ts = datetime.fromisoformat(text)
        except ValueError:
            return None
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            if not math.isfinite(value):
                return None
            ts = datetime.fromtimestamp(float(value), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    else:
        return None

    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def score_timeliness(age_minutes: float, expected_frequency_minutes: float) -> int:
    if expected_frequency_minutes <= 0 or math.isnan(age_minutes):
        return 10
    ratio = age_minutes / expected_frequency_minutes
    for limit, score in _TIMELINESS_BANDS:
        if ratio <= limit:
            return score
    return 10


def score_accuracy(has_data: bool, value: Any, expected_value: Any) -> int:
    if not has_data:
        return 0
    if _is_missing(value) or _is_missing(expected_value):
        return 70

    observed = _as_number(value)
    expected = _as_number(expected_value)
    if observed is None or expected is None:
        return 60
    if expected == 0:
        # No relative difference against zero; same as "can't verify".
        return 70

    diff = abs(observed - expected) / abs(expected)
    for limit, score in _ACCURACY_BANDS:
        if diff <= limit:
            return score
    return 30


def score_completeness(has_data: bool, value: Any) -> int:
    if not has_data:
        return 0
    if _is_empty(value):
        return 50
    return 100


def overall_score(
    timeliness: float,
    accuracy: float,
    completeness: float,
    reliability: float,
    consistency: float,
) -> int:
    weighted = sum(
        w * d for w, d in zip(
            _WEIGHTS,
            (timeliness, accuracy, completeness, reliability, consistency),
        )
    )
    return round_half_up(weighted / 100)


def status_for_score(score: float) -> QualityStatus:
    for threshold, status in _STATUS_THRESHOLDS:
        if score >= threshold:
            return status
    return QualityStatus.CRITICAL


def confidence_for(consistency: float, reliability: float) -> float:
    """Confidence on the 0-1 scale."""
    raw = round_half_up((6 * consistency + 4 * reliability) / 10)
    return min(100, max(0, raw)) / 100


def system_status_for(mean_score: float, critical_count: int) -> SystemStatus:
    if mean_score >= 80 and critical_count == 0:
        return SystemStatus.HEALTHY
    if mean_score >= 60 and critical_count <= 2:
        return SystemStatus.DEGRADED
    return SystemStatus.CRITICAL


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class DataQualityAssessment:
    """Stores per-metric quality records, source health and alerts.

    Args:
        config: Tuning; tables in it are merged over the built-in ones.
        now: Time source returning an aware UTC datetime.
    """

    def __init__(
        self,
        config: QualityConfig | None = None,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config or QualityConfig()
        self._now = now
        self._lock = threading.RLock()

        self._update_frequencies = dict(DEFAULT_UPDATE_FREQUENCIES)
        self._update_frequencies.update(self._config.update_frequencies)
        self._source_reliability = dict(DEFAULT_SOURCE_RELIABILITY)
        self._source_reliability.update(self._config.source_reliability)

        self._metrics: dict[str, DataQualityMetric] = {}
        self._sources: dict[str, DataSourceQuality] = {}
        self._alerts: list[QualityAlert] = []
        self._history: dict[str, deque[float]] = {}

    # -- lookups -----------------------------------------------------------

    def expected_frequency(self, metric: str) -> float:
        return float(self._update_frequencies.get(
            metric, self._config.default_update_frequency_minutes
        ))

    def source_reliability(self, source: str) -> float:
        return float(self._source_reliability.get(
            source, self._config.default_source_reliability
        ))

    def get_metric_quality(self, metric: str) -> DataQualityMetric | None:
        with self._lock:
            return self._metrics.get(metric)

    def get_data_source_quality(self, source: str) -> DataSourceQuality | None:
        with self._lock:
            return self._sources.get(source)

    def get_active_alerts(self) -> list[QualityAlert]:
        with self._lock:
            return [a for a in self._alerts if not a.resolved]

    def get_all_alerts(self) -> list[QualityAlert]:
        with self._lock:
            return list(self._alerts)

    def resolve_alert(self, alert_id: str) -> None:
        """Mark an alert resolved; unknown or already resolved ids are a no-op."""
        with self._lock:
            for alert in self._alerts:
                if alert.id == alert_id:
                    if not alert.resolved:
                        alert.resolved = True
                        log.info("Resolved %s alert for %s", alert.type.value, alert.metric)
                    return

    def reset(self) -> None:
        with self._lock:
            self._metrics.clear()
            self._sources.clear()
            self._alerts.clear()
            self._history.clear()

    # -- updates -----------------------------------------------------------

    def update_metric_quality(
        self,
        metric: str,
        observation: MetricObservation | Mapping[str, Any],
    ) -> DataQualityMetric:
        if not isinstance(observation, MetricObservation):
            observation = MetricObservation.from_dict(observation)

        now = self._current_time()
        with self._lock:
            last_updated = parse_timestamp(observation.last_updated)
            if last_updated is None:
                age = math.inf
            else:
                age = max(0.0, (now - last_updated).total_seconds() / 60.0)
            frequency = self.expected_frequency(metric)
            has_data = bool(observation.has_data)

            timeliness = score_timeliness(age, frequency)
            accuracy = score_accuracy(has_data, observation.value, observation.expected_value)
            completeness = score_completeness(has_data, observation.value)
            reliability = self.source_reliability(observation.source)
            consistency, z_score = self._score_consistency(
                metric, observation.value if has_data else None
            )

            score = overall_score(timeliness, accuracy, completeness, reliability, consistency)
            status = status_for_score(score)

            record = DataQualityMetric(
                metric=metric,
                source=observation.source,
                category=MetricCategory.parse(observation.category),
                timeliness=timeliness,
                accuracy=accuracy,
                completeness=completeness,
                reliability=reliability,
                consistency=consistency,
                overall_score=score,
                status=status,
                last_updated=now,
                data_age_minutes=age,
                expected_update_frequency_minutes=frequency,
                confidence=confidence_for(consistency, reliability),
            )
            self._metrics[metric] = record
            self._evaluate_alerts(record, z_score)

        log.debug("Quality %s: %d (%s)", metric, score, status.value)
        return record

    def update_data_source_quality(
        self,
        source: str,
        api_status: ApiStatus | str,
        response_time_ms: float,
        success_rate_percent: float,
    ) -> DataSourceQuality:
        record = build_source_quality(
            source,
            api_status,
            response_time_ms,
            success_rate_percent,
            checked_at=self._current_time(),
        )
        with self._lock:
            self._sources[source] = record
            if record.api_status is ApiStatus.DOWN:
                self._raise_alert(
                    metric=source,
                    alert_type=AlertType.API_DOWN,
                    severity=AlertSeverity.HIGH,
                    message=f"Data source {source} is down",
                    description=(
                        f"{source} reported DOWN with {record.success_rate:.0f}% "
                        f"success rate (reliability {record.reliability})"
                    ),
                    recommendation="Switch dependent metrics to a fallback source",
                )
        return record

    # -- report ------------------------------------------------------------

    def generate_report(self) -> SystemQualityReport:
        with self._lock:
            metrics = list(self._metrics.values())
            sources = list(self._sources.values())
            alerts = [a for a in self._alerts if not a.resolved]

        counts = {status: 0 for status in QualityStatus}
        for m in metrics:
            counts[m.status] += 1

        mean = sum(m.overall_score for m in metrics) / len(metrics) if metrics else 0.0
        critical = counts[QualityStatus.CRITICAL]

        return SystemQualityReport(
            overall_score=mean,
            system_status=system_status_for(mean, critical),
            total_metrics=len(metrics),
            excellent_metrics=counts[QualityStatus.EXCELLENT],
            good_metrics=counts[QualityStatus.GOOD],
            fair_metrics=counts[QualityStatus.FAIR],
            poor_metrics=counts[QualityStatus.POOR],
            critical_metrics=critical,
            metrics=metrics,
            data_sources=sources,
            alerts=alerts,
            recommendations=self._recommendations(metrics, sources, mean),
            generated_at=self._current_time(),
        )

    @staticmethod
    def _recommendations(
        metrics: list[DataQualityMetric],
        sources: list[DataSourceQuality],
        mean: float,
    ) -> list[str]:
        recommendations: list[str] = []

        critical = [m for m in metrics if m.status is QualityStatus.CRITICAL]
        if critical:
            recommendations.append(f"Address {len(critical)} critical metrics immediately")

        poor_sources = [s.source for s in sources if s.reliability < POOR_SOURCE_RELIABILITY]
        if poor_sources:
            recommendations.append(
                f"Improve data source reliability for: {', '.join(poor_sources)}"
            )

        delayed = [
            m for m in metrics
            if m.data_age_minutes > m.expected_update_frequency_minutes * STALE_RECOMMENDATION_FACTOR
        ]
        if delayed:
            recommendations.append(f"Reduce data latency for {len(delayed)} metrics")

        if metrics and mean < REDUNDANCY_SCORE:
            recommendations.append("Consider implementing additional data sources for redundancy")

        return recommendations

    # -- internals -----------------------------------------------------------

    def _current_time(self) -> datetime:
        now = self._now()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now

    def _score_consistency(self, metric: str, value: Any) -> tuple[float, float | None]:
        """Consistency score and the z-score behind it (None in constant mode)."""
        window = self._config.consistency_window
        default = float(self._config.default_consistency)
        if window <= 0:
            return default, None

        number = _as_number(value)
        if number is None:
            return default, None

        history = self._history.setdefault(metric, deque(maxlen=window))
        z_score: float | None = None
        score = default
        if len(history) >= _MIN_HISTORY:
            values = np.fromiter(history, dtype=float)
            mean = float(values.mean())
            std = float(values.std())
            if std == 0.0:
                z_score = 0.0 if number == mean else math.inf
            else:
                z_score = abs(number - mean) / std
            score = 30.0
            for limit, band_score in _CONSISTENCY_BANDS:
                if z_score <= limit:
                    score = float(band_score)
                    break

        history.append(number)
        return score, z_score

    def _evaluate_alerts(self, record: DataQualityMetric, z_score: float | None) -> None:
        metric = record.metric
        age = record.data_age_minutes
        frequency = record.expected_update_frequency_minutes

        if age > frequency * DELAY_ALERT_FACTOR:
            age_text = "unknown" if math.isinf(age) else f"{round_half_up(age)}"
            self._raise_alert(
                metric=metric,
                alert_type=AlertType.DATA_DELAY,
                severity=(
                    AlertSeverity.HIGH if age > frequency * DELAY_HIGH_FACTOR
                    else AlertSeverity.MEDIUM
                ),
                message=f"Data delay detected for {metric}",
                description=(
                    f"{metric} data is {age_text} minutes old, "
                    f"expected every {frequency:g} minutes"
                ),
                recommendation="Check data source connection and update frequency",
            )

        if record.status in (QualityStatus.POOR, QualityStatus.CRITICAL):
            self._raise_alert(
                metric=metric,
                alert_type=AlertType.QUALITY_DEGRADED,
                severity=(
                    AlertSeverity.HIGH if record.status is QualityStatus.CRITICAL
                    else AlertSeverity.MEDIUM
                ),
                message=f"Poor data quality for {metric}",
                description=(
                    f"{metric} quality score is {record.overall_score}/100 "
                    f"({record.status.value})"
                ),
                recommendation="Investigate data source and consider using fallback data",
            )

        if z_score is not None and z_score > _INCONSISTENT_Z:
            self._raise_alert(
                metric=metric,
                alert_type=AlertType.INCONSISTENT_DATA,
                severity=AlertSeverity.MEDIUM,
                message=f"Inconsistent value for {metric}",
                description=f"{metric} deviates {z_score:.1f} standard deviations from recent values",
                recommendation="Cross-check the value against a second source",
            )

    def _raise_alert(
        self,
        metric: str,
        alert_type: AlertType,
        severity: AlertSeverity,
        message: str,
        description: str,
        recommendation: str,
    ) -> QualityAlert | None:
        """Append an alert unless an unresolved twin is inside the dedup window."""
        now = self._current_time()
        window = timedelta(minutes=self._config.alert_dedup_window_minutes)
        for existing in self._alerts:
            if (
                existing.metric == metric
                and existing.type is alert_type
                and not existing.resolved
                and now - existing.timestamp < window
            ):
                return None

        alert = QualityAlert(
            id=f"{metric}_{alert_type.value.lower()}_{uuid.uuid4().hex[:12]}",
            type=alert_type,
            severity=severity,
            metric=metric,
            message=message,
            description=description,
            recommendation=recommendation,
            timestamp=now,
        )
        self._alerts.append(alert)
        log.warning("%s [%s]: %s", alert_type.value, severity.value, description)
        return alert
