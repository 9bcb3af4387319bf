"""Minimal PayPal REST (v2) client built on httpx.

Only the calls the storefront and back office need are implemented:
creating and capturing checkout orders and refunding a capture.
"""

import logging

import httpx
from flask import current_app

from .errors import PaymentGatewayError


logger = logging.getLogger(__name__)

BASE_URLS = {
    'sandbox': 'https://api-m.sandbox.paypal.com',
    'live': 'https://api-m.paypal.com',
}


class PayPalClient:

    def __init__(self, client_id, client_secret, mode='sandbox', currency='USD',
                 http: httpx.Client = None, timeout: float = 30.0):
        self.client_id = client_id
        self.client_secret = client_secret
        self.currency = currency
        self.base_url = BASE_URLS.get(mode, BASE_URLS['sandbox'])
        self.http = http or httpx.Client(base_url=self.base_url, timeout=timeout)
        self._token = None

    @classmethod
    def from_config(cls, config, http: httpx.Client = None):
        return cls(config['PAYPAL_CLIENT_ID'], config['PAYPAL_CLIENT_SECRET'],
                   config.get('PAYPAL_MODE', 'sandbox'), config.get('PAYPAL_CURRENCY', 'USD'),
                   http=http)

    def access_token(self) -> str:
        if self._token is None:
            data = self._request('POST', '/v1/oauth2/token',
                                 data={'grant_type': 'client_credentials'},
                                 auth=(self.client_id, self.client_secret), authorised=False)
            self._token = data['access_token']
        return self._token

    def create_order(self, reference, description, amount, return_url, cancel_url):
        """Create a CAPTURE order; returns ``(order_id, approval_url, raw)``."""
        payload = {
            'intent': 'CAPTURE',
            'purchase_units': [{
                'reference_id': reference,
                'description': description,
                'amount': {'currency_code': self.currency, 'value': f"{amount:.2f}"},
            }],
            'application_context': {
                'return_url': return_url,
                'cancel_url': cancel_url,
                'user_action': 'PAY_NOW',
            },
        }
        data = self._request('POST', '/v2/checkout/orders', json=payload)
        approval_url = next((link['href'] for link in data.get('links', [])
                             if link.get('rel') == 'approve'), None)
        if approval_url is None:
            raise PaymentGatewayError('PayPal did not return an approval link.')
        logger.info("Created PayPal order %s for %s", data['id'], reference)
        return data['id'], approval_url, data

    def capture_order(self, order_id) -> dict:
        data = self._request('POST', f'/v2/checkout/orders/{order_id}/capture', json={})
        logger.info("Captured PayPal order %s with status %s", order_id, data.get('status'))
        return data

    def refund_capture(self, capture_id, amount=None, note=None) -> dict:
        payload = {}
        if amount is not None:
            payload['amount'] = {'currency_code': self.currency, 'value': f"{amount:.2f}"}
        if note:
            payload['note_to_payer'] = note[:255]
        data = self._request('POST', f'/v2/payments/captures/{capture_id}/refund', json=payload)
        logger.info("Refunded PayPal capture %s with status %s", capture_id, data.get('status'))
        return data

    def _request(self, method, path, authorised=True, **kwargs) -> dict:
        headers = kwargs.pop('headers', {})
        if authorised:
            headers['Authorization'] = f"Bearer {self.access_token()}"
        try:
            response = self.http.request(method, path, headers=headers, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error("PayPal %s %s failed: %s %s", method, path,
                         e.response.status_code, e.response.text)
            raise PaymentGatewayError(f"PayPal returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error("PayPal %s %s failed: %s", method, path, e)
            raise PaymentGatewayError('Could not reach PayPal.') from e
        return response.json()


def capture_details(result: dict) -> dict:
    """Pull the capture id and payer details out of a capture response."""
    payer = result.get('payer') or {}
    capture_id = None
    for unit in result.get('purchase_units', []):
        captures = (unit.get('payments') or {}).get('captures') or []
        if captures:
            capture_id = captures[0].get('id')
            break
    return {
        'status': result.get('status'),
        'capture_id': capture_id,
        'payer_id': payer.get('payer_id'),
        'payer_email': payer.get('email_address'),
    }


def get_client() -> PayPalClient:
    """The application's PayPal client, created on first use."""
    client = current_app.extensions.get('paypal')
    if client is None:
        client = PayPalClient.from_config(current_app.config)
        current_app.extensions['paypal'] = client
    return client
