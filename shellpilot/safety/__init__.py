"""Shell command safety gates."""

from shellpilot.safety.command_gate import (
    CommandGate,
    ValidationResult,
    is_high_risk_command,
    sanitize_for_logging,
    validate_command,
    warning_message,
)
from shellpilot.safety.rate_limiter import RateDecision, RateLimiter, RateStats

__all__ = [
    "CommandGate",
    "RateDecision",
    "RateLimiter",
    "RateStats",
    "ValidationResult",
    "is_high_risk_command",
    "sanitize_for_logging",
    "validate_command",
    "warning_message",
]
