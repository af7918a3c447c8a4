"""
Request freshness checks.

Signed request bodies may carry a ``now`` field (ISO-8601). Bodies whose
timestamp falls outside the configured window are refused so captured
requests cannot be replayed later.
"""

import json
from abc import ABC, abstractmethod
from datetime import timedelta

from .errors import TimestampValidationError
from .models import InboundRequest
from .util import Clock, parse_iso8601, utc_now

# Allowance for client clocks running ahead of ours
MAX_FUTURE_SKEW_SECONDS = 60


class TimestampValidator(ABC):
    @abstractmethod
    def validate(self, request: InboundRequest) -> None:
        """Raise TimestampValidationError if the request is stale or replayed."""
        pass


class RequestTimestampValidator(TimestampValidator):
    """
    Window check on the body's ``now`` field.

    A timeout of 0 disables the check. Bodies that are not JSON objects
    are left for the request validator to reject.
    """

    def __init__(
        self,
        timeout_seconds: int = 600,
        clock: Clock = utc_now,
        require_timestamp: bool = False,
        field_name: str = "now"
    ):
        self.timeout_seconds = timeout_seconds
        self.require_timestamp = require_timestamp
        self.field_name = field_name
        self._clock = clock

    def validate(self, request: InboundRequest) -> None:
        if not self.timeout_seconds:
            return
        try:
            body = json.loads(request.body or b"null")
        except ValueError:
            return
        if not isinstance(body, dict):
            return

        raw = body.get(self.field_name)
        if not raw:
            if self.require_timestamp:
                raise TimestampValidationError(f"Parameter '{self.field_name}' not provided.", 401)
            return

        try:
            sent = parse_iso8601(str(raw))
        except (ValueError, OverflowError):
            raise TimestampValidationError(f"Parameter '{self.field_name}' is not a valid timestamp.", 400)

        # sent +/- the window can overflow near datetime.max; compare the difference
        age = self._clock() - sent
        if age > timedelta(seconds=self.timeout_seconds):
            raise TimestampValidationError("Request timestamp is too old. Please resend.", 408)
        if -age > timedelta(seconds=MAX_FUTURE_SKEW_SECONDS):
            raise TimestampValidationError("Request timestamp is in the future.", 400)
