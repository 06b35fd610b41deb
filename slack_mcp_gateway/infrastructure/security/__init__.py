"""Secret redaction for logs."""

from slack_mcp_gateway.infrastructure.security.redaction import (
    RedactingFilter,
    redact_env,
    redact_text,
)

__all__ = ["RedactingFilter", "redact_env", "redact_text"]
