import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

import requests
from django.conf import settings

from clinic.exceptions import ConfigurationError, GatewayUnavailable

logger = logging.getLogger(__name__)

SIGNATURE_FIELD = 'signature'


@dataclass(frozen=True)
class GatewayConfig:
    api_key: str
    secret_key: str
    base_url: str
    timeout: int = 10

    @classmethod
    def from_settings(cls) -> 'GatewayConfig':
        return cls(
            api_key=settings.SEPAY_API_KEY,
            secret_key=settings.SEPAY_SECRET_KEY,
            base_url=settings.SEPAY_BASE_URL.rstrip('/'),
            timeout=settings.SEPAY_TIMEOUT,
        )


@dataclass
class RemotePayment:
    payment_url: str
    gateway_transaction_id: str


def _stringify(value: Any) -> str:
    # Matches how the gateway renders values when it signs: JSON literals
    # for booleans/null, integral numbers without a fractional part.
    if value is None:
        return 'null'
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, Decimal):
        return format(value.normalize(), 'f')
    return str(value)


def _json_amount(amount: Decimal):
    # Amounts are minor currency units; integral values go out as JSON ints.
    if amount == amount.to_integral_value():
        return int(amount)
    return _stringify(amount)


def canonical_string(payload: Mapping[str, Any]) -> str:
    return '&'.join(f'{key}={_stringify(payload[key])}' for key in sorted(payload))


class SepayClient:
    """Signs requests to, and verifies callbacks from, the Sepay gateway."""

    def __init__(self, config: Optional[GatewayConfig] = None, session: Optional[requests.Session] = None):
        self.config = config or GatewayConfig.from_settings()
        self.session = session or requests.Session()

    def sign(self, payload: Mapping[str, Any]) -> str:
        if not self.config.secret_key:
            raise ConfigurationError('SEPAY_SECRET_KEY is not configured')
        message = canonical_string(payload).encode('utf-8')
        return hmac.new(self.config.secret_key.encode('utf-8'), message, hashlib.sha256).hexdigest()

    def verify_signature(self, payload: Mapping[str, Any], signature: Optional[str]) -> bool:
        if not signature:
            return False
        unsigned = {k: v for k, v in payload.items() if k != SIGNATURE_FIELD}
        try:
            expected = self.sign(unsigned)
        except ConfigurationError:
            logger.error('Webhook signature check failed: gateway secret is not configured')
            return False
        return hmac.compare_digest(expected, str(signature))

    def create_remote_payment(
        self,
        *,
        amount: Decimal,
        transaction_code: str,
        description: str,
        return_url: str,
        cancel_url: str,
    ) -> RemotePayment:
        payload: Dict[str, Any] = {
            'amount': amount,
            'orderId': transaction_code,
            'description': description,
            'returnUrl': return_url,
            'cancelUrl': cancel_url,
            'timestamp': int(time.time() * 1000),
        }
        body = {**payload, 'amount': _json_amount(amount), SIGNATURE_FIELD: self.sign(payload)}
        headers = {
            'Authorization': f'Bearer {self.config.api_key}',
            'Content-Type': 'application/json',
        }
        try:
            r = self.session.post(
                f'{self.config.base_url}/api/payment/create',
                json=body, headers=headers, timeout=self.config.timeout,
            )
            r.raise_for_status()
            data = r.json()
        except (requests.RequestException, ValueError) as exc:
            logger.error('Creating gateway payment for %s failed: %s', transaction_code, exc)
            raise GatewayUnavailable('Failed to create payment') from exc

        payment_url = data.get('paymentUrl')
        gateway_id = data.get('transactionId')
        if not payment_url or not gateway_id:
            logger.error('Gateway response for %s is missing paymentUrl/transactionId', transaction_code)
            raise GatewayUnavailable('Invalid response from payment gateway')
        logger.info('Gateway payment created for %s: gatewayId=%s', transaction_code, gateway_id)
        return RemotePayment(payment_url=payment_url, gateway_transaction_id=str(gateway_id))


def get_gateway_client() -> SepayClient:
    return SepayClient(GatewayConfig.from_settings())
