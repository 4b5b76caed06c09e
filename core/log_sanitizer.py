"""
Centralized Log Sanitizer
=========================

Provides functions to redact sensitive data from logs, including:
- Gateway secret keys and webhook secrets
- Payment keys returned by the gateway
- Webhook signature headers
- Authorization headers and cookies

Usage:
    from core.log_sanitizer import sanitize, sanitize_headers, sanitize_dict

    safe_headers = sanitize_headers(request.headers)
    safe_payload = sanitize_dict(webhook_payload)
    safe_text = sanitize(some_string)
"""

import re
import os
from typing import Any, Dict, Optional
from urllib.parse import urlparse, parse_qs, urlencode, urlunparse

# Headers that should always be redacted
SENSITIVE_HEADERS = frozenset({
    "x-api-key",
    "authorization",
    "cookie",
    "set-cookie",
    "stripe-signature",
    "tosspayments-webhook-signature",
    "x-toss-signature",
    "idempotency-key",
})

# Payload / query names that should be redacted
SENSITIVE_PARAMS = frozenset({
    "paymentkey",
    "payment_key",
    "secret",
    "password",
    "token",
    "access_token",
    "card_number",
    "cardnumber",
})

# Environment variable names that contain secrets (values should never be logged)
SENSITIVE_ENV_VARS = frozenset({
    "TOSS_SECRET_KEY",
    "TOSS_WEBHOOK_SECRET",
    "STRIPE_WEBHOOK_SECRET",
    "API_AUTH_KEY",
    "DATABASE_URL",
})

# Redaction placeholder
REDACTED = "[REDACTED]"

# Regex patterns for token-like strings
TOKEN_PATTERNS = [
    # Toss secret/client keys
    re.compile(r'\b(?:test|live)_(?:sk|ck|gsk)_[A-Za-z0-9]+\b'),
    # Stripe signing secrets
    re.compile(r'\bwhsec_[A-Za-z0-9]+\b'),
    # Stripe signature header values
    re.compile(r'v1=[0-9a-fA-F]{16,}'),
    # Bearer / Basic auth
    re.compile(r'Bearer\s+[A-Za-z0-9\-_\.]+', re.IGNORECASE),
    re.compile(r'Basic\s+[A-Za-z0-9+/=]+', re.IGNORECASE),
]


def _is_sensitive_key(key: str) -> bool:
    """Check if a key name indicates sensitive data."""
    key_lower = key.lower().replace("-", "_").replace(" ", "_")
    return (
        key_lower in SENSITIVE_HEADERS
        or key_lower.replace("_", "-") in SENSITIVE_HEADERS
        or key_lower in SENSITIVE_PARAMS
        or "key" in key_lower
        or "secret" in key_lower
        or "signature" in key_lower
        or "password" in key_lower
        or "authorization" in key_lower
        or "cookie" in key_lower
    )


def _get_env_values_to_redact() -> set:
    """Get current values of sensitive environment variables."""
    values = set()
    for var_name in SENSITIVE_ENV_VARS:
        value = os.environ.get(var_name, "")
        if value and len(value) >= 8:  # Only redact non-trivial values
            values.add(value)
    return values


def sanitize_headers(headers: Dict[str, Any]) -> Dict[str, str]:
    """Return a copy of headers with sensitive values redacted."""
    if not headers:
        return {}

    sanitized = {}
    for key, value in headers.items():
        key_str = str(key)
        if _is_sensitive_key(key_str):
            sanitized[key_str] = REDACTED
        else:
            sanitized[key_str] = str(value)

    return sanitized


def sanitize_dict(data: Dict[str, Any], depth: int = 0) -> Dict[str, Any]:
    """
    Recursively sanitize a dictionary, redacting sensitive values.

    Args:
        data: Dictionary to sanitize (webhook payload, gateway response)
        depth: Current recursion depth (max 5)

    Returns:
        New dictionary with sensitive values redacted
    """
    if not data or depth > 5:
        return data if data else {}

    sanitized = {}
    env_values = _get_env_values_to_redact()

    for key, value in data.items():
        key_str = str(key)

        if _is_sensitive_key(key_str):
            sanitized[key_str] = REDACTED
        elif isinstance(value, dict):
            sanitized[key_str] = sanitize_dict(value, depth + 1)
        elif isinstance(value, str):
            sanitized[key_str] = REDACTED if value in env_values else value
        elif isinstance(value, (list, tuple)):
            sanitized[key_str] = [
                sanitize_dict(v, depth + 1) if isinstance(v, dict) else v
                for v in value
            ]
        else:
            sanitized[key_str] = value

    return sanitized


def sanitize_url(url: str) -> str:
    """Redact sensitive query parameters (paymentKey on redirect URLs)."""
    if not url:
        return url

    parsed = urlparse(url)
    params = parse_qs(parsed.query, keep_blank_values=True)

    sanitized_params = {}
    for key, values in params.items():
        sanitized_params[key] = [REDACTED] if _is_sensitive_key(key) else values

    return urlunparse((
        parsed.scheme,
        parsed.netloc,
        parsed.path,
        parsed.params,
        urlencode(sanitized_params, doseq=True),
        parsed.fragment,
    ))


def sanitize(text: str, redact_tokens: bool = True) -> str:
    """
    Sanitize arbitrary text by redacting sensitive patterns.

    Args:
        text: Text that may contain sensitive data
        redact_tokens: Whether to redact token-like strings

    Returns:
        Text with sensitive data redacted
    """
    if not text:
        return text

    result = text

    for value in _get_env_values_to_redact():
        if value in result:
            result = result.replace(value, REDACTED)

    if redact_tokens:
        for pattern in TOKEN_PATTERNS:
            result = pattern.sub(REDACTED, result)

    return result


def safe_log_request(
    method: str,
    url: str,
    payload: Optional[Dict] = None,
    headers: Optional[Dict] = None,
) -> str:
    """
    Create a safe log string for an outbound gateway request.

    Returns:
        Safe string for logging
    """
    parts = [f"{method} {sanitize_url(url)}"]

    if payload:
        parts.append(f"body={sanitize_dict(payload)}")

    if headers:
        safe_headers = sanitize_headers(headers)
        if any(v == REDACTED for v in safe_headers.values()):
            parts.append("(auth headers present)")

    return " ".join(parts)
