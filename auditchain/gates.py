"""
Gate evaluation module for auditchain.

Gates are checks that must all pass before a privileged operation runs.
Each gate returns None (pass) or a StageFailure describing the refusal.
"""

from typing import Any, Mapping, Optional

from .errors import ErrorKind, StageFailure

UNEXPECTED_TRANSPORT_MESSAGE = "Something unexpected happened when attempting to register."


def gate_administrator(attributes: Optional[Mapping[str, Any]]) -> Optional[StageFailure]:
    """
    Require an authenticated administrator.

    Args:
        attributes: Request attributes set by the authentication
            middleware, or None if the middleware never ran

    Returns:
        None if the caller may proceed, otherwise the failure
    """
    if attributes is None:
        return StageFailure(ErrorKind.TRANSPORT_MISMATCH, UNEXPECTED_TRANSPORT_MESSAGE)
    if not attributes.get("authenticated"):
        return StageFailure(ErrorKind.UNAUTHENTICATED, "Unauthenticated request")
    if not attributes.get("administrator"):
        return StageFailure(ErrorKind.UNPRIVILEGED, "Unprivileged request")
    return None
