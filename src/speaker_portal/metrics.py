"""Prometheus metrics for the realtime core."""

from prometheus_client import CollectorRegistry, Counter, Gauge

# Registry for isolated metric collection
CUSTOM_REGISTRY = CollectorRegistry()

REQUESTS = Counter("requests_total", "Total HTTP requests", registry=CUSTOM_REGISTRY)
ERRORS = Counter("errors_total", "Total HTTP requests that failed", registry=CUSTOM_REGISTRY)

MESSAGES_SENT = Counter("messages_sent_total", "Messages persisted", registry=CUSTOM_REGISTRY)
NOTIFICATIONS_CREATED = Counter(
    "notifications_created_total", "Notifications persisted", registry=CUSTOM_REGISTRY
)
LIVE_DELIVERY_FAILURES = Counter(
    "live_delivery_failures_total", "Live pushes dropped after an error", registry=CUSTOM_REGISTRY
)
EMAILS_SENT = Counter("emails_sent_total", "Notification emails handed to the mailer", registry=CUSTOM_REGISTRY)
EMAIL_FAILURES = Counter("email_failures_total", "Notification emails that failed", registry=CUSTOM_REGISTRY)

LIVE_CHANNELS = Gauge("live_channels", "Currently attached live channels", registry=CUSTOM_REGISTRY)
