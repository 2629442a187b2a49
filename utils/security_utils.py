"""
Security utilities for checkout payloads and log output
"""
from typing import Any, Dict

# Raw card fields the payment form posts. They are accepted so the form
# validates, then dropped before anything is stored, forwarded or logged.
SENSITIVE_CARD_FIELDS = frozenset({
    "cardNumber",
    "card_number",
    "expiryDate",
    "expiry_date",
    "cvv",
    "terms",
})


def scrub_card_fields(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Return a copy of a checkout payload without raw card data.

    Args:
        payload: Request body as a dict (camelCase or snake_case keys)

    Returns:
        New dict with every key in SENSITIVE_CARD_FIELDS removed
    """
    return {key: value for key, value in payload.items() if key not in SENSITIVE_CARD_FIELDS}


def mask_email(email: str) -> str:
    """
    Mask the local part of an email for log output.

    Examples:
        "traveller@example.com" -> "t***@example.com"
    """
    if not email or "@" not in email:
        return "***"
    local, _, domain = email.partition("@")
    return f"{local[:1]}***@{domain}"
