"""Prometheus metrics for the extraction pipeline.

Exposes key metrics for monitoring:
- Extraction outcomes by final status and error type
- Normalization and model-call duration histograms
- Model token usage
- Vendor reconciliation outcomes

Based on Prometheus best practices:
https://prometheus.io/docs/practices/naming/
"""

from prometheus_client import Counter, Histogram, start_http_server

extractions_total = Counter(
    "invoice_extractions_total",
    "Total extraction runs by terminal status",
    ["status", "error_type"],  # review/failed, none/LowConfidence/<exception class>
)

normalization_duration_seconds = Histogram(
    "invoice_normalization_duration_seconds",
    "Document normalization duration in seconds",
    ["source_kind"],
    buckets=(0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)

model_call_duration_seconds = Histogram(
    "invoice_model_call_duration_seconds",
    "Extraction model call duration in seconds",
    ["provider"],
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

model_tokens_total = Counter(
    "invoice_model_tokens_total",
    "Tokens consumed by extraction calls",
    ["provider", "direction"],  # input, output
)

vendor_reconciliations_total = Counter(
    "invoice_vendor_reconciliations_total",
    "Vendor reconciliation outcomes",
    ["outcome"],  # matched, created, skipped
)


def start_metrics_server(port: int) -> None:
    """Start the Prometheus HTTP exporter in a background thread.

    Args:
        port: TCP port to listen on
    """
    start_http_server(port)
