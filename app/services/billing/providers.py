"""Select the configured payment gateway implementation."""
from typing import Callable, Dict, Optional

import httpx

from app.core.config import settings
from app.core.errors import PaymentError
from app.services.billing.elavon import ElavonGateway
from app.services.billing.gateway import CONFIGURATION_ERROR_MESSAGE, GatewayCredentials, PaymentGateway


def _build_elavon(config, http_client: Optional[httpx.Client]) -> PaymentGateway:
    return ElavonGateway(
        GatewayCredentials.from_settings(config),
        http_client=http_client,
        strict_invoice_match=config.ELAVON_STRICT_INVOICE_MATCH,
        strict_card_match=config.ELAVON_STRICT_CARD_MATCH,
        session_ttl_minutes=config.HOSTED_SESSION_TTL_MINUTES,
        timeout=config.ELAVON_TIMEOUT_SECONDS,
    )


GATEWAY_FACTORIES: Dict[str, Callable[..., PaymentGateway]] = {
    "elavon": _build_elavon,
}


def get_payment_gateway(config=None, http_client: Optional[httpx.Client] = None) -> PaymentGateway:
    config = config or settings
    factory = GATEWAY_FACTORIES.get((config.PAYMENT_GATEWAY or "").lower())
    if factory is None:
        raise PaymentError(CONFIGURATION_ERROR_MESSAGE)
    return factory(config, http_client)
