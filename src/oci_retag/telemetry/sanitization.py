"""Redact registry credentials from error text.

Registry failures can echo the request that produced them: a URL with
``user:pass@``, an ``Authorization: Bearer``/``Basic`` header, a token
endpoint's query string, or a Docker config ``"auth"`` entry. Every message
that leaves the process goes through sanitize_error_message first: span
statuses, the ``retag_failed`` log event, and the ``[FAIL]`` line and JSON
error object printed by the CLI.
"""

from __future__ import annotations

import re

REDACTED = "<REDACTED>"

# Authorization schemes used by registries and their token endpoints
_AUTH_SCHEME_PATTERN = re.compile(r"\b(Bearer|Basic)\s+[A-Za-z0-9._~+/=-]+", re.IGNORECASE)
# "auth": "<base64>" and friends, as found in ~/.docker/config.json
_DOCKER_CONFIG_PATTERN = re.compile(
    r'("(?:auth|identitytoken|registrytoken|password)"\s*:\s*)"[^"]*"',
    re.IGNORECASE,
)
_URL_CREDENTIAL_PATTERN = re.compile(r"://[^@/\s]+:[^@/\s]+@")
_SENSITIVE_KEY_PATTERN = re.compile(
    r"\b(password|secret|access_token|refresh_token|identitytoken|token|api_key|credential)"
    r"(\s*[=:]\s*)[^\s&,;]+",
    re.IGNORECASE,
)


def sanitize_error_message(msg: str, max_length: int = 500) -> str:
    """Redact credentials from ``msg`` and truncate it.

    Args:
        msg: Raw error message to sanitize.
        max_length: Maximum length of returned message.

    Returns:
        Sanitized and truncated error message.

    Example:
        >>> sanitize_error_message("token request failed: Authorization: Basic Y2k6czNjcmV0")
        'token request failed: Authorization: Basic <REDACTED>'
        >>> sanitize_error_message("GET /token?service=ghcr.io&access_token=abc failed")
        'GET /token?service=ghcr.io&access_token=<REDACTED> failed'
    """
    sanitized = _URL_CREDENTIAL_PATTERN.sub(f"://{REDACTED}@", msg)
    sanitized = _AUTH_SCHEME_PATTERN.sub(lambda m: f"{m.group(1)} {REDACTED}", sanitized)
    sanitized = _DOCKER_CONFIG_PATTERN.sub(lambda m: f'{m.group(1)}"{REDACTED}"', sanitized)
    sanitized = _SENSITIVE_KEY_PATTERN.sub(
        lambda m: f"{m.group(1)}{m.group(2)}{REDACTED}", sanitized
    )
    return sanitized[:max_length]


__all__ = ["REDACTED", "sanitize_error_message"]
