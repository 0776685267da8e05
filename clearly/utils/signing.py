import hashlib
import hmac

from clearly.errors import InvalidSignature

SIGNATURE_HEADER = 'X-Webhook-Signature'


def sign_payload(raw_body, secret):
    digest = hmac.new(secret.encode('utf-8'), raw_body, hashlib.sha256).hexdigest()
    return f'sha256={digest}'


def verify_signature(raw_body, header_value, secret):
    """Check an ``X-Webhook-Signature: sha256=<hex>`` header against the raw body"""
    if not header_value:
        raise InvalidSignature('Missing webhook signature')
    expected = sign_payload(raw_body, secret)
    if not hmac.compare_digest(expected, header_value.strip()):
        raise InvalidSignature('Webhook signature does not match')
