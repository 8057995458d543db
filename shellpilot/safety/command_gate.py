"""Shell command safety checks: denylist, risk patterns and log sanitizing."""

import re
from dataclasses import dataclass
from typing import Literal

Severity = Literal["warning", "error"]

MASK = "***"


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating one shell command."""

    is_valid: bool
    severity: Severity | None = None
    reason: str | None = None


@dataclass(frozen=True)
class _PatternRule:
    pattern: re.Pattern[str]
    severity: Severity
    reason: str


# Matched as exact command or substring.
_CATASTROPHIC_COMMANDS: dict[str, tuple[Severity, str]] = {
    "rm -rf /": ("error", "Attempting to delete root directory"),
    "rm -rf /*": ("error", "Attempting to delete all files in root"),
    "rm -rf ~": ("error", "Attempting to delete home directory"),
    "rm -rf $HOME": ("error", "Attempting to delete home directory"),
    "mkfs": ("error", "Attempting to format filesystem"),
    "dd if=": ("error", "Direct disk write operation"),
    ":(){ :|:& };:": ("error", "Fork bomb detected"),
}

# Evaluated in order; first match wins.
_PATTERN_RULES: tuple[_PatternRule, ...] = (
    _PatternRule(
        re.compile(r"rm\s+-rf\s+/(?!tmp|var/tmp)"),
        "error",
        "Attempting to recursively delete from root directory",
    ),
    _PatternRule(re.compile(r"rm\s+-rf.*\*"), "warning", "Recursive deletion with wildcards"),
    _PatternRule(
        re.compile(r">+\s*/dev/(sda|hda|nvme)"),
        "error",
        "Attempting to write directly to disk device",
    ),
    _PatternRule(
        re.compile(r"chmod\s+777\s+/"),
        "warning",
        "Setting overly permissive permissions on root",
    ),
    _PatternRule(re.compile(r"curl.*\|\s*bash"), "warning", "Piping remote script directly to bash"),
    _PatternRule(re.compile(r"wget.*\|\s*bash"), "warning", "Piping remote script directly to bash"),
    _PatternRule(re.compile(r"eval\s+\$\("), "warning", "Using eval with command substitution"),
    _PatternRule(re.compile(r":\(\)\{.*:\|:&\s*\};:"), "error", "Fork bomb detected"),
)

HIGH_RISK_COMMANDS = frozenset(
    {
        "rm",
        "rmdir",
        "unlink",
        "dd",
        "mkfs",
        "fdisk",
        "chmod",
        "chown",
        "kill",
        "killall",
        "shutdown",
        "reboot",
        "halt",
        "init",
    }
)

# Quoted values may contain spaces; an unbalanced quote falls back to the bare token.
_SECRET_VALUE = r"(?:\"[^\"]*\"|'[^']*'|[\"']?[^\"'\s]+[\"']?)"
_SECRET_ASSIGNMENT_RE = re.compile(
    r"([A-Za-z_]+KEY|TOKEN|PASSWORD|SECRET)=" + _SECRET_VALUE,
    re.IGNORECASE,
)
_SECRET_FLAG_RE = re.compile(
    r"(--?)(key|token|password|secret)[=\s]+" + _SECRET_VALUE,
    re.IGNORECASE,
)
_URL_CREDENTIALS_RE = re.compile(r"(https?://)([^:/\s]+):([^@\s]+)@")


def validate_command(command: str) -> ValidationResult:
    """Validate a shell command for safety.

    Args:
        command: Raw command text

    Returns:
        ValidationResult; invalid results always carry severity and reason
    """
    trimmed = str(command or "").strip()
    if not trimmed:
        return ValidationResult(is_valid=False, severity="error", reason="Empty command")

    for dangerous, (severity, reason) in _CATASTROPHIC_COMMANDS.items():
        if trimmed == dangerous or dangerous in trimmed:
            return ValidationResult(is_valid=False, severity=severity, reason=reason)

    for rule in _PATTERN_RULES:
        if rule.pattern.search(trimmed):
            return ValidationResult(is_valid=False, severity=rule.severity, reason=rule.reason)

    return ValidationResult(is_valid=True)


def is_high_risk_command(command: str) -> bool:
    """Return whether the command's first word always requires confirmation."""
    parts = str(command or "").split()
    return bool(parts) and parts[0] in HIGH_RISK_COMMANDS


def sanitize_for_logging(command: str) -> str:
    """Mask credential-shaped substrings before a command is logged or shown."""
    sanitized = _SECRET_ASSIGNMENT_RE.sub(lambda m: f"{m.group(1)}={MASK}", str(command or ""))
    sanitized = _SECRET_FLAG_RE.sub(lambda m: f"{m.group(1)}{m.group(2)}={MASK}", sanitized)
    return _URL_CREDENTIALS_RE.sub(lambda m: f"{m.group(1)}{m.group(2)}:{MASK}@", sanitized)


def warning_message(command: str) -> str | None:
    """Human-readable explanation of why a command is risky, if it is."""
    validation = validate_command(command)
    if not validation.is_valid:
        label = "Blocked" if validation.severity == "error" else "Warning"
        return f"{label}: {validation.reason}"
    if is_high_risk_command(command):
        return "Warning: This command modifies system state and requires confirmation"
    return None


class CommandGate:
    """Stateless facade over the module-level checks, injected into the shell tool."""

    def validate(self, command: str) -> ValidationResult:
        return validate_command(command)

    def is_high_risk_command(self, command: str) -> bool:
        return is_high_risk_command(command)

    def sanitize_for_logging(self, command: str) -> str:
        return sanitize_for_logging(command)

    def warning_message(self, command: str) -> str | None:
        return warning_message(command)
