"""
Client identity issuance.

Identifiers are 24 CSPRNG bytes in base64url (32 characters). The store's
UNIQUE constraint decides collisions; the existence pre-check only avoids
a wasted write transaction in the common case.
"""

import logging

from .db import ClientRecord, ClientStore
from .errors import DuplicateClientIdError, IdentityExhaustedError
from .util import Clock, RandomSource, b64url_encode, iso8601, random_bytes, utc_now

logger = logging.getLogger(__name__)

CLIENT_ID_BYTES = 24


class ClientIdentityIssuer:
    def __init__(
        self,
        store: ClientStore,
        clock: Clock = utc_now,
        random_source: RandomSource = random_bytes,
        max_attempts: int = 16
    ):
        self.store = store
        self._clock = clock
        self._random = random_source
        self.max_attempts = max(1, max_attempts)

    def new_candidate(self) -> str:
        return b64url_encode(self._random(CLIENT_ID_BYTES))

    def issue(self, public_key: str, comment: str = "", is_admin: bool = False) -> str:
        """
        Allocate an unused identifier and persist the client row.

        Returns:
            The new client identifier

        Raises:
            IdentityExhaustedError: no free identifier within max_attempts
            PersistenceCommitError: the row could not be committed
        """
        now = iso8601(self._clock())
        for attempt in range(1, self.max_attempts + 1):
            client_id = self.new_candidate()
            if self.store.client_exists(client_id):
                logger.warning("Client id collision on pre-check (attempt %d)", attempt)
                continue
            record = ClientRecord(
                client_id=client_id,
                public_key=public_key,
                comment=comment or "",
                is_admin=is_admin,
                created=now,
                modified=now,
            )
            try:
                self.store.insert_client(record)
            except DuplicateClientIdError:
                logger.warning("Client id collision on insert (attempt %d)", attempt)
                continue
            return client_id

        raise IdentityExhaustedError(
            f"Could not allocate a unique client id after {self.max_attempts} attempts"
        )

    def revoke(self, client_id: str) -> None:
        """Delete a client issued by this request whose registration did not complete."""
        logger.warning("Revoking unpublished client %s", client_id)
        self.store.delete_client(client_id)
