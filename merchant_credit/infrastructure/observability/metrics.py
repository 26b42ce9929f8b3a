"""Prometheus metrics for monitoring scores, alerts, and gateway performance"""

from prometheus_client import Counter, Histogram

# Credit score metrics
credit_score_counter = Counter(
    "merchant_credit_score_total",
    "Credit scores calculated",
    ["risk_band"],  # Low | Medium | High
)

credit_score_histogram = Histogram(
    "merchant_credit_score_value",
    "Distribution of composite credit scores",
    buckets=[20, 40, 60, 80, 100],
)

insufficient_data_counter = Counter(
    "merchant_credit_insufficient_data_total",
    "Scoring runs skipped for lack of transactions",
)

# Early warning metrics
alert_counter = Counter(
    "merchant_early_warning_alerts_total",
    "Early-warning alerts raised",
    ["alert_type", "severity"],
)

alert_suppressed_counter = Counter(
    "merchant_early_warning_suppressed_total",
    "Detections skipped because an unresolved alert of the same type exists",
    ["alert_type"],
)

# Gateway metrics
gateway_latency_histogram = Histogram(
    "gateway_request_latency_seconds",
    "Payment gateway response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

gateway_failure_counter = Counter(
    "gateway_transport_failures_total",
    "Payment gateway calls that failed at the transport level",
)

webhook_rejection_counter = Counter(
    "gateway_webhook_rejections_total",
    "Inbound gateway callbacks rejected for a bad signature",
)

# Text generation metrics
explainer_fallback_counter = Counter(
    "explainer_fallbacks_total",
    "Text-generation calls answered with the canned fallback",
    ["operation"],  # score | anomaly
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_score(risk_band: str, score: int) -> None:
    """Record a calculated credit score by risk band and value"""
    credit_score_counter.labels(risk_band=risk_band).inc()
    credit_score_histogram.observe(score)


def record_alert(alert_type: str, severity: str) -> None:
    alert_counter.labels(alert_type=alert_type, severity=severity).inc()
