import asyncio
import json

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from ..core.logging import get_logger
from ..core.request_context import request_uid_var
from ..exceptions import BadRequestError, PayloadTooLargeError, RequestTimeoutError, UnsupportedMediaTypeError
from ..schemas.admission import AdmissionReview
from ..webhook.mutate import MutationEngine

router = APIRouter()
logger = get_logger(__name__)

MUTATE_PATH = "/mutate"
MAX_BODY_BYTES = 1 << 20
DEFAULT_READ_TIMEOUT = 5.0
CONTENT_TYPE_JSON = "application/json"


def get_engine(request: Request) -> MutationEngine:
    return request.app.state.engine


def get_read_timeout(request: Request) -> float:
    return getattr(request.app.state, "read_timeout", DEFAULT_READ_TIMEOUT)


async def read_body(request: Request) -> bytes:
    """Request body, refusing anything larger than 1 MiB."""
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > MAX_BODY_BYTES:
        raise PayloadTooLargeError("Error reading HTTP request: body too large")

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > MAX_BODY_BYTES:
            raise PayloadTooLargeError("Error reading HTTP request: body too large")
    return bytes(body)


def parse_admission_review(body: bytes) -> AdmissionReview:
    try:
        raw = json.loads(body)
    except ValueError as exc:
        raise BadRequestError(f"error deserializing AdmissionReview: {exc}") from exc
    if not isinstance(raw, dict) or raw.get("kind") != "AdmissionReview":
        raise BadRequestError("error deserializing AdmissionReview: received object is not an AdmissionReview")
    try:
        review = AdmissionReview.model_validate(raw)
    except ValidationError as exc:
        raise BadRequestError(f"error deserializing AdmissionReview: {exc}") from exc
    if review.request is None:
        raise BadRequestError("received empty AdmissionReview request")
    return review


# ========== Admission ==========

@router.post(MUTATE_PATH)
async def mutate(
    request: Request,
    engine: MutationEngine = Depends(get_engine),
    read_timeout: float = Depends(get_read_timeout),
):
    """Answer one AdmissionReview with the mutation decision for its Pod."""
    logger.info("Received mutation request")
    try:
        body = await asyncio.wait_for(read_body(request), timeout=read_timeout)
    except asyncio.TimeoutError as exc:
        raise RequestTimeoutError(f"Error reading HTTP request: body not received within {read_timeout}s") from exc
    if not body:
        raise BadRequestError("Error reading HTTP request: empty body")

    content_type = request.headers.get("content-type", "")
    if content_type.split(";")[0].strip() != CONTENT_TYPE_JSON:
        raise UnsupportedMediaTypeError(f"Invalid Content-Type='{content_type}', expected '{CONTENT_TYPE_JSON}'")

    review = parse_admission_review(body)
    token = request_uid_var.set(review.request.uid)
    try:
        response = await run_in_threadpool(engine.mutate, review.request)
        logger.info("sending response to the Kubernetes API server")
    finally:
        request_uid_var.reset(token)

    result = AdmissionReview(api_version=review.api_version, kind=review.kind, response=response)
    return JSONResponse(result.model_dump(by_alias=True, exclude_none=True))
