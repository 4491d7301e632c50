from personalization.observability.metrics import metrics, setup_metrics
from personalization.observability.tracing import setup_tracing, gateway_span

__all__ = ["metrics", "setup_metrics", "setup_tracing", "gateway_span"]
