"""
Client registration pipeline.

    gate_administrator -> RequestValidator -> ClientIdentityIssuer
        -> ChainPublisher (when publish_new_clients) -> ResponseSigner

Every stage may end the request with a signed error response; a signed
200 response is the only successful outcome. When publishing is
enabled and fails, the issued client row is removed again before the
error response is sent. All collaborators are passed in at construction.
"""

from typing import Any, Dict, Mapping, Optional

from .config import Settings
from .errors import AuditChainError, StageFailure
from .gates import gate_administrator
from .issuer import ClientIdentityIssuer
from .logging_config import audit_log
from .models import InboundRequest, SignedResponse
from .publisher import ChainPublisher
from .responses import ResponseSigner
from .util import Clock, iso8601, utc_now
from .validation import RequestValidator


class RegistrationHandler:
    def __init__(
        self,
        settings: Settings,
        validator: RequestValidator,
        issuer: ClientIdentityIssuer,
        publisher: Optional[ChainPublisher],
        signer: ResponseSigner,
        clock: Clock = utc_now
    ):
        if settings.publish_new_clients and publisher is None:
            raise ValueError("publish_new_clients requires a ChainPublisher")
        self.settings = settings
        self.validator = validator
        self.issuer = issuer
        self.publisher = publisher
        self.signer = signer
        self._clock = clock

    def _reject(self, failure: StageFailure, base_headers: Optional[Mapping[str, str]]) -> SignedResponse:
        audit_log.registration_rejected(failure.kind.value, failure.status_code, failure.message)
        return self.signer.error(failure, base_headers)

    def _publish(self, now: str, client_id: str, public_key: str) -> Dict[str, Any]:
        try:
            return self.publisher.publish(now, client_id, public_key)
        except Exception:
            # A client is only kept once its registration event is in the chain
            self.issuer.revoke(client_id)
            raise

    def handle(
        self,
        request: InboundRequest,
        base_headers: Optional[Mapping[str, str]] = None
    ) -> SignedResponse:
        failure = gate_administrator(request.attributes)
        if failure:
            return self._reject(failure, base_headers)

        body, failure = self.validator.validate(request)
        if failure:
            return self._reject(failure, base_headers)

        try:
            client_id = self.issuer.issue(body.publickey, body.comment)
            results = {"client-id": client_id}

            now = iso8601(self._clock())
            if self.settings.publish_new_clients:
                results["publish"] = self._publish(now, client_id, body.publickey)
        except AuditChainError as e:
            return self._reject(e.to_failure(), base_headers)

        audit_log.client_registered(client_id, "publish" in results)
        return self.signer.success(results, now=now, base_headers=base_headers)
