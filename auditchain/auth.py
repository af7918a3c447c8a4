"""
Client request authentication.

A client proves its identity by sending its client id in the
``Chronicle-Client-Key-ID`` header and an Ed25519 signature of the raw
request body in ``Body-Signature-Ed25519``. The resulting attributes
(``authenticated``, ``administrator``, ``client_id``) are what the
registration gate consumes.
"""

from typing import Any, Dict, Mapping

from .crosssign import CLIENT_ID_HEADER
from .db import ClientStore
from .keys import verify_ed25519
from .logging_config import audit_log
from .responses import SIGNATURE_HEADER
from .util import mask_sensitive


def _header(headers: Mapping[str, str], name: str) -> str:
    # Starlette headers are case-insensitive; plain dicts are not
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower(), "")
    return value or ""


def authenticate_request(headers: Mapping[str, str], body: bytes, store: ClientStore) -> Dict[str, Any]:
    """Derive request attributes from the client signature headers."""
    attributes: Dict[str, Any] = {"authenticated": False, "administrator": False, "client_id": None}

    client_id = _header(headers, CLIENT_ID_HEADER)
    if not client_id:
        return attributes

    client = store.get_client(client_id)
    if client is None:
        audit_log.security_event("unknown_client", severity="medium", client_id=mask_sensitive(client_id))
        return attributes

    signature = _header(headers, SIGNATURE_HEADER)
    if not verify_ed25519(signature, body, client.public_key):
        audit_log.security_event("invalid_body_signature", severity="high", client_id=client_id)
        return attributes

    attributes.update(authenticated=True, administrator=client.is_admin, client_id=client_id)
    return attributes
