"""
Prometheus metrics for the signature batch service
"""

from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST

# Request counters
REQUESTS_TOTAL = Counter(
    'sigbatch_requests_total',
    'Total number of HTTP requests',
    ['status_class']
)

REQUEST_LATENCY = Histogram(
    'sigbatch_request_latency_seconds',
    'HTTP request latency',
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0]
)

# Export jobs
EXPORT_JOBS_TOTAL = Counter(
    'sigbatch_export_jobs_total',
    'Export jobs by lifecycle event',
    ['status']
)

EXPORT_CHUNKS_TOTAL = Counter(
    'sigbatch_export_chunks_total',
    'Export chunks rendered into partial artifacts'
)

EXPORT_QUEUE_DEPTH = Gauge(
    'sigbatch_export_queue_depth',
    'Pending chunk continuations'
)

# Dispatch
DISPATCH_ITEMS_TOTAL = Counter(
    'sigbatch_dispatch_items_total',
    'Dispatched items by outcome',
    ['status']
)

DISPATCH_RUNS_TOTAL = Counter(
    'sigbatch_dispatch_runs_total',
    'Dispatch runs by outcome',
    ['outcome']
)


class PrometheusMetrics:
    """Thin facade so services do not touch collectors directly"""

    def record_request(self, status_code: int, latency_ms: float):
        REQUESTS_TOTAL.labels(status_class=f"{status_code // 100}xx").inc()
        REQUEST_LATENCY.observe(latency_ms / 1000.0)

    def record_job(self, status: str):
        EXPORT_JOBS_TOTAL.labels(status=status).inc()

    def record_chunk(self):
        EXPORT_CHUNKS_TOTAL.inc()

    def set_queue_depth(self, depth: int):
        EXPORT_QUEUE_DEPTH.set(depth)

    def record_dispatch_item(self, status: str):
        DISPATCH_ITEMS_TOTAL.labels(status=status).inc()

    def record_dispatch_run(self, outcome: str):
        DISPATCH_RUNS_TOTAL.labels(outcome=outcome).inc()

    def get_metrics(self) -> bytes:
        return generate_latest()

    def get_content_type(self) -> str:
        return CONTENT_TYPE_LATEST


# Global instance
prometheus_metrics = PrometheusMetrics()
