"""
Elavon Converge wire helpers: the ASCII response parser and the result-code
to user-message mapping.

Converge answers server-to-server calls (and fills redirect payloads) with
newline-delimited ``key=value`` pairs, e.g.::

    ssl_result=0
    ssl_result_message=APPROVAL
    ssl_txn_id=AA49315-1234-...

Nothing shown to an end user may come from ``ssl_result_message`` or
``errorMessage`` directly; everything goes through ``map_converge_error``.
"""
from typing import Dict, Iterable, NamedTuple, Optional

SUCCESS_RESULT = "0"


class ConvergeErrorMapping(NamedTuple):
    code: str
    message: str  # internal description
    user_message: str


CONVERGE_ERROR_CODES: Dict[str, ConvergeErrorMapping] = {
    "4000": ConvergeErrorMapping("4000", "Invalid credentials", "Payment system configuration error. Please contact support."),
    "4001": ConvergeErrorMapping("4001", "Transaction not allowed", "This transaction is not allowed. Please contact support."),
    "4002": ConvergeErrorMapping("4002", "Card declined", "Your card was declined. Please try a different payment method."),
    "4003": ConvergeErrorMapping("4003", "Card expired", "Your card has expired. Please use a different card."),
    "4004": ConvergeErrorMapping("4004", "Insufficient funds", "Insufficient funds. Please try a different payment method."),
    "4005": ConvergeErrorMapping("4005", "Card number invalid", "Invalid card number. Please check and try again."),
    "4006": ConvergeErrorMapping("4006", "CVV mismatch", "Security code mismatch. Please check your CVV and try again."),
    "4007": ConvergeErrorMapping("4007", "AVS mismatch", "Address verification failed. Please check your billing address."),
    "5000": ConvergeErrorMapping("5000", "System error", "A system error occurred. Please try again later."),
}

UNKNOWN_ERROR_MESSAGE = "An unknown error occurred"
CLIENT_ERROR_MESSAGE = "Your payment could not be processed. Please try again or use a different payment method."
SYSTEM_ERROR_MESSAGE = "A system error occurred. Please try again later."
GENERIC_FAILURE_MESSAGE = "Payment failed. Please try again."


def parse_converge_response(response_text: str) -> Dict[str, str]:
    """
    Parse a Converge ASCII response into a flat dict.

    Values may themselves contain ``=``; only the first one separates key and
    value. No schema is enforced, so callers should use ``.get``.
    """
    result: Dict[str, str] = {}
    for line in (response_text or "").splitlines():
        key, _, value = line.partition("=")
        key = key.strip()
        if key:
            result[key] = value.strip()
    return result


def is_success(response: Dict[str, str]) -> bool:
    # Compared as text: "00" is not an approval.
    return response.get("ssl_result") == SUCCESS_RESULT


def map_converge_error(code: Optional[str]) -> str:
    """Translate a Converge result/error code into a message safe for end users."""
    if not code:
        return UNKNOWN_ERROR_MESSAGE

    mapping = CONVERGE_ERROR_CODES.get(code)
    if mapping:
        return mapping.user_message

    if code.startswith("4"):
        return CLIENT_ERROR_MESSAGE
    if code.startswith("5"):
        return SYSTEM_ERROR_MESSAGE
    return GENERIC_FAILURE_MESSAGE


def error_code_of(response: Dict[str, str]) -> Optional[str]:
    """Converge puts validation failures in errorCode and declines in ssl_result."""
    return response.get("errorCode") or response.get("ssl_result") or None


def is_converge_ip(ip: Optional[str], allowed_prefixes: Iterable[str]) -> bool:
    """Webhook source check: Converge publishes address ranges, matched here by prefix."""
    if not ip:
        return False
    return any(ip.startswith(prefix) for prefix in allowed_prefixes)
