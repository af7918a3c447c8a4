"""
Signed JSON responses.

Every response body is signed with the server key and the detached
signature travels in the ``Body-Signature-Ed25519`` header, so callers
can authenticate replies independently of transport security.
"""

import json
from typing import Any, Dict, Mapping, Optional

from .errors import StageFailure
from .keys import KeyProvider
from .models import SignedResponse
from .util import Clock, iso8601, utc_now

SIGNATURE_HEADER = "Body-Signature-Ed25519"


class ResponseSigner:
    def __init__(self, keys: KeyProvider, version: str, clock: Clock = utc_now):
        self.keys = keys
        self.version = version
        self._clock = clock

    def signed_json(
        self,
        status_code: int,
        payload: Dict[str, Any],
        base_headers: Optional[Mapping[str, str]] = None
    ) -> SignedResponse:
        """Serialize ``payload`` and attach the body signature."""
        body = json.dumps(payload, indent=4, ensure_ascii=False).encode("utf-8")
        headers = dict(base_headers or {})
        headers["Content-Type"] = "application/json"
        headers[SIGNATURE_HEADER] = self.keys.sign_b64url(body)
        return SignedResponse(status_code=status_code, body=body, headers=headers)

    def success(
        self,
        results: Any,
        now: Optional[str] = None,
        base_headers: Optional[Mapping[str, str]] = None
    ) -> SignedResponse:
        return self.signed_json(
            200,
            {
                "version": self.version,
                "datetime": now or iso8601(self._clock()),
                "status": "OK",
                "results": results,
            },
            base_headers
        )

    def error(
        self,
        failure: StageFailure,
        base_headers: Optional[Mapping[str, str]] = None
    ) -> SignedResponse:
        return self.signed_json(
            failure.status_code,
            {
                "version": self.version,
                "datetime": iso8601(self._clock()),
                "status": "ERROR",
                "message": failure.message,
            },
            base_headers
        )
