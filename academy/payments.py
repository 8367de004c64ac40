"""
Paystack transaction client and webhook authentication.

The client is constructed explicitly (see ``build_gateway``) and handed to the
services that need it, so tests can pass a fake in its place.
"""
import hashlib
import hmac
import logging
import time
import uuid
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests
from django.conf import settings

from academy.exceptions import GatewayUnavailable
from academy.schemas import InitializedTransaction, VerifiedTransaction

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = 'x-paystack-signature'


class PaystackGateway:
    def __init__(self, secret_key: str, base_url: str = 'https://api.paystack.co',
                 timeout: float = 15, session: Optional[requests.Session] = None):
        self.secret_key = secret_key
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        return {
            'Authorization': f'Bearer {self.secret_key}',
            'Content-Type': 'application/json',
        }

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f'{self.base_url}{path}'
        try:
            r = self.session.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)
        except requests.Timeout:
            logger.error('Paystack %s %s timed out after %ss', method, path, self.timeout)
            raise GatewayUnavailable('Payment gateway timed out')
        except requests.RequestException as e:
            logger.error('Paystack %s %s failed: %s', method, path, e)
            raise GatewayUnavailable()

        if not r.ok:
            logger.error('Paystack %s %s returned HTTP %s', method, path, r.status_code)
            raise GatewayUnavailable(f'Payment gateway returned HTTP {r.status_code}')

        try:
            body = r.json()
        except ValueError:
            raise GatewayUnavailable('Payment gateway returned a malformed response')

        if not body.get('status') or not isinstance(body.get('data'), dict):
            logger.error('Paystack %s %s rejected: %s', method, path, body.get('message'))
            raise GatewayUnavailable(body.get('message') or 'Payment gateway rejected the request')
        return body['data']

    def initialize(self, amount: int, email: str, reference: str, callback_url: str,
                   metadata: Dict[str, Any]) -> InitializedTransaction:
        data = self._request('POST', '/transaction/initialize', json={
            'amount': amount,
            'email': email,
            'reference': reference,
            'callback_url': callback_url,
            'metadata': metadata,
        })
        # the reference we generated stays authoritative
        return InitializedTransaction(
            authorization_url=data.get('authorization_url', ''),
            access_code=data.get('access_code'),
            reference=reference,
        )

    def verify(self, reference: str) -> VerifiedTransaction:
        data = self._request('GET', f'/transaction/verify/{quote(reference, safe="")}')
        return VerifiedTransaction(
            reference=data.get('reference') or reference,
            status=str(data.get('status') or ''),
            amount=int(data.get('amount') or 0),
            metadata=data.get('metadata'),
        )

    @staticmethod
    def generate_reference() -> str:
        return f'lms_{int(time.time() * 1000)}_{uuid.uuid4().hex[:16]}'


def compute_webhook_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode('utf-8'), raw_body, hashlib.sha512).hexdigest()


def validate_webhook_signature(raw_body: bytes, signature_header: Optional[str], secret: str) -> bool:
    if not signature_header or not secret:
        return False
    expected = compute_webhook_signature(raw_body, secret)
    return hmac.compare_digest(expected, signature_header.strip().lower())


def build_gateway() -> PaystackGateway:
    return PaystackGateway(
        secret_key=settings.PAYSTACK_SECRET_KEY,
        base_url=settings.PAYSTACK_BASE_URL,
        timeout=settings.PAYMENT_GATEWAY_TIMEOUT,
    )
