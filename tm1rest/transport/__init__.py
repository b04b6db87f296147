"""Resilient transport layer for the TM1 REST API.

This module provides the session used by every other part of tm1rest:
- Credential resolution at connect time
- Session token and sandbox headers injected into every request
- Exponential backoff for transient failures and a single re-auth on 401
- Health probes, connection diagnostics and background monitoring
- Header redaction for logging
"""

from tm1rest.transport.capabilities import (
    CapabilityCheck,
    check_capability,
    verify_version,
)
from tm1rest.transport.config import ConnectionConfig
from tm1rest.transport.metrics import TransportMetrics
from tm1rest.transport.models import (
    ConnectionDiagnostics,
    FailureClass,
    HealthReport,
    ResponseEnvelope,
    RetryPolicy,
)
from tm1rest.transport.monitor import ConnectionMonitor
from tm1rest.transport.redact import redact_headers
from tm1rest.transport.retry import RetryExecutor, extract_error_message
from tm1rest.transport.session import TransportSession


__all__ = [
    # Session
    "TransportSession",
    "ConnectionConfig",
    # Retry
    "RetryExecutor",
    "RetryPolicy",
    "FailureClass",
    "extract_error_message",
    # Models
    "ResponseEnvelope",
    "HealthReport",
    "ConnectionDiagnostics",
    # Monitoring
    "ConnectionMonitor",
    # Capabilities
    "CapabilityCheck",
    "check_capability",
    "verify_version",
    # Metrics
    "TransportMetrics",
    # Redaction
    "redact_headers",
]
