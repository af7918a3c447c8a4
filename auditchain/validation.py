"""
Request validation for client registration.

Checks freshness through the configured TimestampValidator, then the
structure of the JSON body and the submitted Ed25519 public key.
"""

import json
import logging
from typing import Optional, Tuple

from pydantic import ValidationError

from .errors import ErrorKind, StageFailure, TimestampValidationError
from .keys import load_verify_key
from .models import InboundRequest, RegistrationBody
from .timestamps import TimestampValidator

logger = logging.getLogger(__name__)


def _describe(error: ValidationError) -> str:
    first = error.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "body"
    if first.get("type") == "string_type":
        return f"Error: {field} must be a string"
    return f"Error: {field} {first.get('msg', 'is invalid').lower()}"


class RequestValidator:
    def __init__(self, timestamp_validator: TimestampValidator):
        self.timestamp_validator = timestamp_validator

    def validate(self, request: InboundRequest) -> Tuple[Optional[RegistrationBody], Optional[StageFailure]]:
        """
        Validate a registration request.

        Returns:
            (body, None) when valid, otherwise (None, failure)
        """
        try:
            self.timestamp_validator.validate(request)
        except TimestampValidationError as e:
            return None, StageFailure(ErrorKind.TIMESTAMP, e.message, status_override=e.status_code)
        except Exception as e:
            logger.exception("Timestamp validator failed")
            return None, StageFailure(
                ErrorKind.TIMESTAMP, str(e), status_override=getattr(e, "status_code", None) or 500
            )

        try:
            post = json.loads(request.body) if request.body else None
        except (ValueError, UnicodeDecodeError):
            post = None
        if not isinstance(post, dict):
            return None, StageFailure(ErrorKind.BODY_FORMAT, "POST body empty or invalid")

        try:
            body = RegistrationBody.model_validate(post)
        except ValidationError as e:
            return None, StageFailure(ErrorKind.FIELD_VALIDATION, _describe(e))

        if not body.publickey:
            return None, StageFailure(ErrorKind.FIELD_VALIDATION, "Error: Public key expected")

        try:
            load_verify_key(body.publickey)
        except (ValueError, TypeError) as e:
            return None, StageFailure(ErrorKind.KEY_DECODE, str(e))

        return body, None
