from prometheus_client import Counter, Histogram


class Metrics:
    def __init__(self):
        # recommendation metrics
        self.recommendation_requests = Counter(
            "personalization_recommendation_requests_total",
            "Total recommendation requests",
            ["strategy", "outcome"],  # outcome: "computed", "cached", "empty"
        )

        self.strategy_failures = Counter(
            "personalization_strategy_failures_total",
            "Strategy failures absorbed by the hybrid combiner",
            ["strategy"],
        )

        self.scoring_duration = Histogram(
            "personalization_scoring_duration_seconds",
            "Time spent scoring candidates (excluding gateway I/O)",
            ["strategy"],
            buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
        )

        self.candidates_excluded = Counter(
            "personalization_candidates_excluded_total",
            "Candidates excluded before scoring",
            ["reason"],  # "ineligible", "removed", "known", "incompatible"
        )

        # cache metrics
        self.cache_lookups = Counter(
            "personalization_cache_lookups_total",
            "Result cache lookups",
            ["result"],  # "hit" or "miss"
        )

        self.cache_errors = Counter(
            "personalization_cache_errors_total",
            "Swallowed result cache errors",
            ["operation"],
        )

        self.redis_operation_duration = Histogram(
            "personalization_redis_operation_duration_seconds",
            "Redis operation latency",
            ["operation"],
            buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
        )

        # gateway metrics
        self.gateway_request_duration = Histogram(
            "personalization_gateway_request_duration_seconds",
            "Collaborator call latency",
            ["gateway", "operation"],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 15.0),
        )

        self.gateway_failures = Counter(
            "personalization_gateway_failures_total",
            "Failed collaborator calls",
            ["gateway", "reason"],  # reason: "timeout", "http_error", "status"
        )

        # segmentation metrics
        self.segmentation_results = Counter(
            "personalization_segmentation_results_total",
            "Customer classifications",
            ["segment", "source"],  # source: "computed" or "cached"
        )

        self.segmentation_changes = Counter(
            "personalization_segmentation_changes_total",
            "Classifications that changed the customer's segment",
            ["from_segment", "to_segment"],
        )

        self.segmentation_batch_failures = Counter(
            "personalization_segmentation_batch_failures_total",
            "Customers whose analysis failed inside a batch",
        )

        self.notification_failures = Counter(
            "personalization_notification_failures_total",
            "Best-effort notifications that failed and were swallowed",
            ["sink"],
        )


# singleton instance
metrics = Metrics()


def setup_metrics(app):
    """
    setup prometheus metrics instrumentation for fastapi.
    every endpoint gets request count/latency, health and metrics are skipped.
    """
    from prometheus_fastapi_instrumentator import Instrumentator

    instrumentator = Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        should_respect_env_var=False,
        excluded_handlers=["/health/live", "/health/ready", "/metrics"],
    )

    instrumentator.instrument(app).expose(app, include_in_schema=False)
