from enum import Enum
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from loguru import logger


class ErrorCode(str, Enum):
    # QR tokens
    INVALID_QR_TOKEN = "INVALID_QR_TOKEN"
    QR_EXPIRED = "QR_EXPIRED"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_ALREADY_USED = "TOKEN_ALREADY_USED"
    UNIT_NOT_FOUND = "UNIT_NOT_FOUND"

    # Checkpoint scans
    INVALID_SEQUENCE = "INVALID_SEQUENCE"
    UNAUTHORIZED_ROLE = "UNAUTHORIZED_ROLE"
    NOT_PICKED_UP = "NOT_PICKED_UP"
    ALREADY_DELIVERED = "ALREADY_DELIVERED"
    MISSING_EVIDENCE = "MISSING_EVIDENCE"
    PHOTO_TOO_LARGE = "PHOTO_TOO_LARGE"

    # Disputes
    DEADLINE_EXPIRED = "DEADLINE_EXPIRED"
    DISPUTE_EXISTS = "DISPUTE_EXISTS"
    NO_PHOTOS = "NO_PHOTOS"
    DISPUTE_LOCKED = "DISPUTE_LOCKED"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    DISPUTE_NOT_FOUND = "DISPUTE_NOT_FOUND"

    # Marketplace
    PLAN_LIMIT_REACHED = "PLAN_LIMIT_REACHED"
    BID_NOT_ALLOWED = "BID_NOT_ALLOWED"

    # Generic
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


DEFAULT_LANGUAGE = "sq"

MESSAGES: Dict[str, Dict[ErrorCode, str]] = {
    "sq": {
        ErrorCode.INVALID_QR_TOKEN: "Kodi QR nuk ekziston.",
        ErrorCode.QR_EXPIRED: "Kjo njësi është dorëzuar tashmë.",
        ErrorCode.TOKEN_EXPIRED: "Kodi QR ka skaduar. Kërkoni një kod të ri.",
        ErrorCode.TOKEN_ALREADY_USED: "Ky kod QR është përdorur tashmë.",
        ErrorCode.UNIT_NOT_FOUND: "Njësia nuk u gjet.",
        ErrorCode.INVALID_SEQUENCE: "Ky skanim nuk mund të kryhet tani.",
        ErrorCode.UNAUTHORIZED_ROLE: "Nuk keni leje për këtë veprim.",
        ErrorCode.NOT_PICKED_UP: "Njësia duhet të merret para skanimit në magazinë.",
        ErrorCode.ALREADY_DELIVERED: "Kjo njësi është dorëzuar tashmë.",
        ErrorCode.MISSING_EVIDENCE: "Mungojnë provat e detyrueshme.",
        ErrorCode.PHOTO_TOO_LARGE: "Fotoja është shumë e madhe.",
        ErrorCode.DEADLINE_EXPIRED: "Afati 48 orësh për raportim ka skaduar.",
        ErrorCode.DISPUTE_EXISTS: "Ekziston tashmë një dispute për këtë njësi.",
        ErrorCode.NO_PHOTOS: "Nuk ka foto të ngarkuara për këtë njësi.",
        ErrorCode.DISPUTE_LOCKED: "Dispute është e kyçur.",
        ErrorCode.INVALID_TRANSITION: "Ky ndryshim statusi nuk lejohet.",
        ErrorCode.DISPUTE_NOT_FOUND: "Dispute nuk u gjet.",
        ErrorCode.PLAN_LIMIT_REACHED: "Keni arritur kufirin e planit tuaj.",
        ErrorCode.BID_NOT_ALLOWED: "Oferta nuk mund të dërgohet për këtë dërgesë.",
        ErrorCode.FORBIDDEN: "Nuk keni akses.",
        ErrorCode.NOT_FOUND: "Nuk u gjet.",
        ErrorCode.VALIDATION_ERROR: "Të dhëna të pavlefshme.",
        ErrorCode.NETWORK_ERROR: "Gabim në lidhje me serverin.",
        ErrorCode.UNKNOWN_ERROR: "Gabim gjatë procesimit.",
    },
    "en": {
        ErrorCode.INVALID_QR_TOKEN: "QR code does not exist.",
        ErrorCode.QR_EXPIRED: "This unit has already been delivered.",
        ErrorCode.TOKEN_EXPIRED: "This QR code has expired. Request a new one.",
        ErrorCode.TOKEN_ALREADY_USED: "This QR code has already been used. Each code can only be scanned once.",
        ErrorCode.UNIT_NOT_FOUND: "Shipment unit not found. Verify the QR code.",
        ErrorCode.INVALID_SEQUENCE: "This scan cannot be performed at this time. Check shipment status.",
        ErrorCode.UNAUTHORIZED_ROLE: "You do not have permission to perform this scan.",
        ErrorCode.NOT_PICKED_UP: "Unit must be picked up before warehouse scan.",
        ErrorCode.ALREADY_DELIVERED: "This unit has already been delivered.",
        ErrorCode.MISSING_EVIDENCE: "Required evidence is missing.",
        ErrorCode.PHOTO_TOO_LARGE: "The photo is too large.",
        ErrorCode.DEADLINE_EXPIRED: "The 48-hour reporting window has expired.",
        ErrorCode.DISPUTE_EXISTS: "A dispute already exists for this unit.",
        ErrorCode.NO_PHOTOS: "No photos have been uploaded for this unit.",
        ErrorCode.DISPUTE_LOCKED: "This dispute is locked.",
        ErrorCode.INVALID_TRANSITION: "This status change is not allowed.",
        ErrorCode.DISPUTE_NOT_FOUND: "Dispute not found.",
        ErrorCode.PLAN_LIMIT_REACHED: "Your subscription plan limit has been reached.",
        ErrorCode.BID_NOT_ALLOWED: "A bid cannot be placed on this shipment.",
        ErrorCode.FORBIDDEN: "Access denied.",
        ErrorCode.NOT_FOUND: "Not found.",
        ErrorCode.VALIDATION_ERROR: "Invalid data.",
        ErrorCode.NETWORK_ERROR: "Network connection failed. Check your internet connection.",
        ErrorCode.UNKNOWN_ERROR: "An unexpected error occurred.",
    },
}


def error_message(code: ErrorCode, language: Optional[str] = None) -> str:
    """Looks up the localized message, falling back to Albanian."""
    table = MESSAGES.get((language or DEFAULT_LANGUAGE)[:2].lower(), MESSAGES[DEFAULT_LANGUAGE])
    return table.get(code) or MESSAGES[DEFAULT_LANGUAGE][ErrorCode.UNKNOWN_ERROR]


class APIError(Exception):
    """
    Domain error carrying a machine-readable code.
    Rendered as {"error": <message>, "code": <code>} so clients can branch on the code.
    """

    def __init__(
        self,
        code: ErrorCode,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        detail: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ):
        self.code = code
        self.status_code = status_code
        self.detail = detail
        self.extra = extra or {}
        super().__init__(detail or code.value)


def _request_language(request: Request) -> str:
    header = request.headers.get("accept-language", "")
    return header.split(",")[0].strip() or DEFAULT_LANGUAGE


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    body = {
        "error": exc.detail or error_message(exc.code, _request_language(request)),
        "code": exc.code.value,
    }
    body.update(exc.extra)
    return JSONResponse(status_code=exc.status_code, content=body)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": error_message(ErrorCode.UNKNOWN_ERROR, _request_language(request)),
            "code": ErrorCode.UNKNOWN_ERROR.value,
        },
    )


def register_error_handlers(app: FastAPI):
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
