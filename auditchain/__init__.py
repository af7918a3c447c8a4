"""
auditchain: client registration for a signed, hash-chained audit ledger.

License: Apache 2.0

Administrators register new clients by submitting an Ed25519 public key.
Each registration can be published to the chain as a signed event, and
every response body carries the server's detached signature.

Usage:
    from auditchain.register import RegistrationHandler
    from auditchain.main import app, build_services, configure
"""

from .config import VERSION

__version__ = VERSION
__license__ = "Apache-2.0"
