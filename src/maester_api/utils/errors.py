# src/maester_api/utils/errors.py
"""
Reduce failure details to a bounded, user-safe message.

Removes paths, stack frames, version strings and anything token-shaped before
an error is stored on a job.
"""
import re

DEFAULT_MAX_LENGTH = 500
GENERIC_MESSAGE = "Scan failed due to an unexpected error"

SENSITIVE_PATTERNS = [
    # python and powershell stack frames
    (r'File "[^"]*", line \d+(, in \S+)?', ""),
    (r"\bat [\w.<>`]+\(.*?\)( in \S+)?(:line \d+)?", ""),
    (r"\bat line:? ?\d+( char:? ?\d+)?", ""),
    (r"Traceback \(most recent call last\):", ""),
    # bearer tokens and JWTs
    (r"(?i)bearer\s+[\w\-.~+/]+=*", "[REDACTED]"),
    (r"eyJ[\w-]+\.[\w-]+\.[\w-]*", "[REDACTED]"),
    (r"(?i)(client_secret|password|secret)\s*[:=]\s*\S+", r"\1=[REDACTED]"),
    # windows and posix paths
    (r"[A-Za-z]:\\[^\s'\"]+", "[PATH]"),
    (r"(?<![\w:/])/(?:[\w.\-]+/)+[\w.\-]*", "[PATH]"),
    # version strings
    (r"(?i)\bv(?:ersion)?\s*\d+(\.\d+)+\b", ""),
    (r"\b\d+\.\d+\.\d+(\.\d+)*\b", ""),
]


def sanitize_error(error, max_length=DEFAULT_MAX_LENGTH) -> str:
    if isinstance(error, BaseException):
        message = str(error) or type(error).__name__
    else:
        message = str(error or "")
    # the last line of a multi-line dump is usually the actual error
    lines = [line.strip() for line in message.splitlines() if line.strip()]
    if len(lines) > 1 and lines[0].startswith("Traceback"):
        lines = lines[-1:]
    message = " ".join(lines)
    for pattern, replacement in SENSITIVE_PATTERNS:
        message = re.sub(pattern, replacement, message)
    message = re.sub(r"\s+", " ", message).strip(" :;,")
    if not message:
        return GENERIC_MESSAGE
    if len(message) > max_length:
        message = message[: max_length - 3].rstrip() + "..."
    return message
