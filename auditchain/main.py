import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

from fastapi import Depends, FastAPI, Request, Response

from . import config
from .auth import authenticate_request
from .config import Settings, load_cross_sign_targets, load_settings
from .crosssign import CrossSigner, CrossSignScheduler
from .db import SqliteClientStore, init_db
from .errors import ErrorKind, StageFailure
from .issuer import ClientIdentityIssuer
from .keys import KeyProvider, get_key_provider
from .ledger import LedgerMirror, SqliteBlakechain, get_ledger_mirror
from .logging_config import audit_log, configure_logging, set_request_id
from .models import InboundRequest, SignedResponse
from .publisher import ChainPublisher
from .rate_limit import RateLimiter
from .register import RegistrationHandler
from .responses import ResponseSigner
from .timestamps import RequestTimestampValidator
from .util import Clock, RandomSource, random_bytes, utc_now
from .validation import RequestValidator

logger = logging.getLogger(__name__)

app = FastAPI(
    title="auditchain",
    version=config.VERSION,
    docs_url=None if config.is_production() else "/docs",
)


@dataclass
class Services:
    store: SqliteClientStore
    keys: KeyProvider
    ledger: SqliteBlakechain
    cross_signer: CrossSigner
    signer: ResponseSigner
    handler: RegistrationHandler
    limiter: RateLimiter


def build_services(
    settings: Settings,
    db_path: Union[str, Path],
    keys: KeyProvider,
    clock: Clock = utc_now,
    random_source: RandomSource = random_bytes,
    cross_signer: Optional[CrossSigner] = None,
    mirror: Optional[LedgerMirror] = None,
    register_rpm: int = 60
) -> Services:
    """Wire every collaborator of the registration pipeline."""
    init_db(db_path)
    store = SqliteClientStore(db_path)
    ledger = SqliteBlakechain(db_path, clock=clock, mirror=mirror)
    if cross_signer is None:
        cross_signer = CrossSignScheduler(
            db_path, ledger, keys,
            targets_loader=load_cross_sign_targets,
            clock=clock,
            timeout=config.CROSS_SIGN_TIMEOUT,
        )
    signer = ResponseSigner(keys, settings.version, clock=clock)
    handler = RegistrationHandler(
        settings=settings,
        validator=RequestValidator(RequestTimestampValidator(settings.request_timeout_seconds, clock=clock)),
        issuer=ClientIdentityIssuer(store, clock=clock, random_source=random_source,
                                    max_attempts=settings.max_id_attempts),
        publisher=ChainPublisher(keys, ledger, cross_signer),
        signer=signer,
        clock=clock,
    )
    return Services(
        store=store,
        keys=keys,
        ledger=ledger,
        cross_signer=cross_signer,
        signer=signer,
        handler=handler,
        limiter=RateLimiter(register_rpm),
    )


SERVICES: Optional[Services] = None


def configure(services: Services) -> None:
    global SERVICES
    SERVICES = services


def get_services() -> Services:
    if SERVICES is None:
        raise RuntimeError("auditchain services are not configured")
    return SERVICES


@app.on_event("startup")
def _startup():
    if SERVICES is not None:
        return
    configure_logging(config.LOG_LEVEL, json_format=config.parse_bool(config.LOG_JSON))
    for name, present in config.validate_config().items():
        if not present:
            logger.error("Missing configuration file: %s", name)
    keys = get_key_provider(
        signer_type=config.SIGNER_TYPE,
        signing_key_path=config.SIGNING_KEY_PATH,
        kms_key_id=config.AWS_KMS_KEY_ID,
        kms_region=config.AWS_REGION,
        kms_public_key=config.AWS_KMS_PUBLIC_KEY,
    )
    mirror = get_ledger_mirror(
        config.LEDGER_MIRROR,
        bucket=config.S3_BUCKET,
        prefix=config.S3_PREFIX,
        retention_days=config.S3_RETENTION_DAYS,
    )
    configure(build_services(
        load_settings(), config.DB_PATH, keys, mirror=mirror, register_rpm=config.REGISTER_RPM
    ))


def to_response(signed: SignedResponse) -> Response:
    return Response(content=signed.body, status_code=signed.status_code, headers=signed.headers)


async def raw_body(request: Request) -> bytes:
    return await request.body()


def client_attributes(request: Request, body: bytes = Depends(raw_body)) -> Dict[str, Any]:
    request.state.request_id = set_request_id(request.headers.get("x-request-id"))
    attributes = authenticate_request(request.headers, body, get_services().store)
    request.state.attributes = attributes
    return attributes


@app.post("/chronicle/register")
def register(
    request: Request,
    body: bytes = Depends(raw_body),
    attributes: Dict[str, Any] = Depends(client_attributes)
):
    # Dependencies run in their own threadpool context; bind the id here too
    request_id = set_request_id(request.state.request_id)
    services = get_services()
    limiter_key = attributes.get("client_id") or (request.client.host if request.client else "anonymous")
    limit = services.limiter.check(limiter_key)
    headers = {"X-Request-ID": request_id, **limit.headers()}
    if not limit.allowed:
        audit_log.rate_limit_exceeded(limiter_key, "/chronicle/register")
        failure = StageFailure(ErrorKind.RATE_LIMITED, "Rate limit exceeded")
        return to_response(services.signer.error(failure, headers))

    inbound = InboundRequest(
        attributes=getattr(request.state, "attributes", None),
        body=body,
        headers=dict(request.headers),
    )
    return to_response(services.handler.handle(inbound, base_headers=headers))


@app.get("/chronicle/lasthash")
def lasthash():
    services = get_services()
    tip = services.ledger.last_entry()
    results = [tip.to_dict()] if tip else []
    return to_response(services.signer.success(results))


@app.get("/chronicle/export")
def export_chain():
    services = get_services()
    return to_response(services.signer.success(services.ledger.export()))
