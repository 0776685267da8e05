# Utils package
from .decorators import admin_required, optional_requester, resolve_requester, client_key
from .signing import sign_payload, verify_signature, SIGNATURE_HEADER
