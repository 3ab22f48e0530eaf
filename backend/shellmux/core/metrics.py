"""Prometheus metrics for shellmux.

Exposed at the /metrics endpoint.

Metrics Categories:
- SSH session metrics (active sessions, connect outcomes)
- SSH error metrics, labelled by the layer the fault came from
"""

from prometheus_client import Counter, Gauge, Info

APP_INFO = Info("shellmux_app", "shellmux application information")

SSH_SESSIONS_ACTIVE = Gauge(
    "shellmux_ssh_sessions_active",
    "Number of registered SSH sessions",
)

SSH_CONNECTS_TOTAL = Counter(
    "shellmux_ssh_connects_total",
    "SSH connect attempts by outcome",
    ["status"],  # established, failed, superseded
)

SSH_SESSION_ERRORS_TOTAL = Counter(
    "shellmux_ssh_session_errors_total",
    "SSH session errors surfaced to the client",
    ["origin"],  # transport, auth, channel, protocol
)


def set_app_info(version: str, environment: str) -> None:
    """Set application info metric."""
    APP_INFO.info({"version": version, "environment": environment})
