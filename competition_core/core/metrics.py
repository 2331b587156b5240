"""
Prometheus metrics for the competition engine
"""

from prometheus_client import Counter, Histogram, Gauge

# HTTP
REQUEST_COUNT = Counter('http_requests_total', 'Total HTTP requests', ['method', 'endpoint', 'status'])
REQUEST_DURATION = Histogram('http_request_duration_seconds', 'HTTP request duration', ['method', 'endpoint'])
ACTIVE_CONNECTIONS = Gauge('http_active_connections', 'Number of active HTTP connections')

# Domain
ENTRY_SUBMISSIONS = Counter('entry_submissions_total', 'Entry submissions', ['outcome'])
ROUND_EVALUATIONS = Counter('round_evaluations_total', 'Rounds evaluated for qualification')
RECONCILIATION_RUNS = Counter('reconciliation_runs_total', 'Reconciliation runs', ['action', 'outcome'])
PAYMENT_TRANSITIONS = Counter('prize_payment_transitions_total', 'Prize payment state changes', ['status'])
