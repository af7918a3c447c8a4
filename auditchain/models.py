from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictStr


class RegistrationBody(BaseModel):
    model_config = ConfigDict(extra="allow")

    publickey: Optional[StrictStr] = None
    comment: StrictStr = ""


class CrossSignPolicy(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    push_after: Optional[int] = Field(default=None, alias="push-after", ge=1)
    push_days: Optional[int] = Field(default=None, alias="push-days", ge=1)


class CrossSignTarget(BaseModel):
    name: str
    url: str
    publickey: str
    # Our client id as registered on the peer
    clientid: Optional[str] = None
    policy: CrossSignPolicy = Field(default_factory=CrossSignPolicy)


@dataclass
class InboundRequest:
    """
    Transport-neutral view of a registration request.

    ``attributes`` is None when the transport did not run the
    authentication middleware at all.
    """
    attributes: Optional[Mapping[str, Any]]
    body: bytes
    headers: Mapping[str, str] = field(default_factory=dict)


@dataclass
class SignedResponse:
    status_code: int
    body: bytes
    headers: Dict[str, str]
