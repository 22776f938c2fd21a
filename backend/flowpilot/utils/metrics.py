# /flowpilot/utils/metrics.py

from prometheus_client import Counter, Histogram, Gauge

# This file defines all Prometheus metrics used for application monitoring.
# Centralizing them here makes them easy to find and manage.

# Copilot Metrics
ai_intents_counter = Counter('ai_intents_total', 'AI responses routed, by intent mode', ['mode', 'status'])
ai_parse_failures_counter = Counter('ai_parse_failures_total', 'AI responses rejected by the parser')
workflow_operations_counter = Counter('workflow_operations_total', 'Patch operations applied', ['op', 'status'])
workflow_validation_counter = Counter('workflow_validation_total', 'Workflow validations', ['mode', 'status'])
session_commits_counter = Counter('session_commits_total', 'Workflow commits into a session', ['mode'])
stale_session_counter = Counter('stale_session_writes_total', 'Session writes rejected as stale')
active_sessions_gauge = Gauge('active_sessions', 'Number of in-memory sessions')

# Performance Metrics
response_time_histogram = Histogram('response_time_seconds', 'Response time in seconds', ['endpoint'])
