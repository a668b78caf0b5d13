"""Prometheus metrics for resolution outcomes, execution results and connector health"""

from typing import Optional

from prometheus_client import Counter, Histogram

# Resolution metrics
resolution_counter = Counter(
    "flow_resolution_total",
    "Intents resolved into plans",
    ["strategy", "action"],  # priority | smart ; resolution action or failure
)

guardrail_outcome_counter = Counter(
    "flow_guardrail_outcome_total",
    "Guardrail verdicts",
    ["outcome"],  # auto | confirm | blocked
)

# Execution metrics
execution_counter = Counter(
    "flow_execution_total",
    "Plan executions by resulting status",
    ["status", "failure_type"],
)

# Connector metrics
connector_latency_histogram = Histogram(
    "flow_connector_call_seconds",
    "Connector call latency",
    ["action"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

connector_failure_counter = Counter(
    "flow_connector_failures_total",
    "Failed connector calls",
    ["failure_type"],
)

# Security collaborators
rate_limit_fail_open_counter = Counter(
    "flow_rate_limit_fail_open_total",
    "Rate limit checks that failed open",
)

audit_log_failure_counter = Counter(
    "flow_audit_log_failures_total",
    "Audit log writes that were skipped",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_resolution(strategy: str, action: str, guardrail_outcome: Optional[str] = None) -> None:
    resolution_counter.labels(strategy=strategy, action=action).inc()
    if guardrail_outcome:
        guardrail_outcome_counter.labels(outcome=guardrail_outcome).inc()


def record_execution(status: str, failure_type: Optional[str] = None) -> None:
    """Count an execution outcome; successful and pending runs carry failure_type "none" """
    execution_counter.labels(status=status, failure_type=failure_type or "none").inc()
