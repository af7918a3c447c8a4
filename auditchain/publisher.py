"""
Publication of registration events to the ledger.
"""

from typing import Any, Dict

from .crosssign import CrossSigner
from .keys import KeyProvider
from .ledger import LedgerPublisher
from .util import canonicalize

REGISTRATION_ACTION = "New Client Registration"


def registration_message(now: str, client_id: str, public_key: str) -> str:
    """Canonical JSON text of a registration event."""
    return canonicalize({
        "server-action": REGISTRATION_ACTION,
        "now": now,
        "clientid": client_id,
        "publickey": public_key,
    }).decode("utf-8")


class ChainPublisher:
    def __init__(self, keys: KeyProvider, ledger: LedgerPublisher, cross_signer: CrossSigner):
        self.keys = keys
        self.ledger = ledger
        self.cross_signer = cross_signer

    def publish(self, now: str, client_id: str, public_key: str) -> Dict[str, Any]:
        """
        Sign the registration event, append it, then give the
        cross-sign scheduler a chance to run.

        Returns:
            Linkage metadata of the new chain entry
        """
        message = registration_message(now, client_id, public_key)
        signature = self.keys.sign_b64url(message.encode("utf-8"))
        linkage = self.ledger.append(signature, message, self.keys.public_key())
        self.cross_signer.maybe_cross_sign()
        return linkage
