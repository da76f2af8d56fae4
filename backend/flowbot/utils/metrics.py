# /flowbot/utils/metrics.py

from prometheus_client import Counter, Histogram

# This file defines all Prometheus metrics used by the flow core.
# Centralizing them here makes them easy to find and manage.

# Flow Metrics
flow_transitions = Counter('flow_transitions_total', 'Flow engine outcomes', ['result'])
flow_recovery_events = Counter('flow_recovery_events_total', 'Conversation recovery events', ['event'])

# Delivery Metrics
outbound_messages = Counter('outbound_messages_total', 'Outbound messages handed to the transport', ['status'])
send_wait_histogram = Histogram('send_wait_seconds', 'Time spent waiting on rate limits before a send')

# Performance Metrics
cache_operations = Counter('cache_operations_total', 'Key-value store operations', ['operation', 'status'])
