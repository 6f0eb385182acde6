from typing import Any, Dict, Optional, Tuple, Type, TypeVar
from uuid import UUID

import httpx
from loguru import logger
from pydantic import BaseModel, ValidationError

from app.client.schemas import (
    AllowedActions, Comment, DisputeDetail, DisputePage, LoginResult, Photo,
    ScanResult, TokenInfo
)
from app.client.session import SessionStore
from app.core.errors import DEFAULT_LANGUAGE, ErrorCode, error_message
from app.db.schema import DisputeStatus, DisputeType, PhotoType, ScanAction

T = TypeVar("T", bound=BaseModel)

Location = Optional[Tuple[float, float]]

DEFAULT_TIMEOUT = 15.0

# Fallback codes for bodies without a "code" (framework errors)
STATUS_CODES = {
    401: ErrorCode.FORBIDDEN,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    413: ErrorCode.PHOTO_TOO_LARGE,
    422: ErrorCode.VALIDATION_ERROR,
}


class ApiError(Exception):
    """A failed API call, reduced to a code the UI can branch on."""

    def __init__(self, code: str, message: str, status: Optional[int] = None, body: Optional[dict] = None):
        self.code = code
        self.message = message
        self.status = status
        self.body = body or {}
        super().__init__(f"{code}: {message}")

    @property
    def is_network_error(self) -> bool:
        return self.code == ErrorCode.NETWORK_ERROR.value


def _location_fields(location: Location) -> Dict[str, float]:
    """Geolocation is best effort: omitted entirely when unknown."""
    if not location:
        return {}
    return {"latitude": location[0], "longitude": location[1]}


class _BaseClient:
    def __init__(
        self,
        base_url: str,
        session: Optional[SessionStore] = None,
        timeout: float = DEFAULT_TIMEOUT,
        language: str = DEFAULT_LANGUAGE
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session or SessionStore()
        self.timeout = timeout
        self.language = language

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json", "Accept-Language": self.language}
        token = self.session.get().token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _network_error(self, exc: Exception, method: str, path: str) -> ApiError:
        logger.warning(f"{method} {path} failed: {exc!r}")
        return ApiError(
            ErrorCode.NETWORK_ERROR.value,
            error_message(ErrorCode.NETWORK_ERROR, self.language)
        )

    def _handle(self, response: httpx.Response) -> Any:
        try:
            body = response.json() if response.content else None
        except ValueError:
            body = None

        if response.is_success:
            return body

        body = body if isinstance(body, dict) else {}
        code = body.get("code")
        if code in ErrorCode.__members__:
            message = error_message(ErrorCode(code), self.language)
        else:
            fallback = STATUS_CODES.get(response.status_code, ErrorCode.UNKNOWN_ERROR)
            code = code or fallback.value
            message = body.get("error") or error_message(fallback, self.language)

        raise ApiError(code, message, response.status_code, body)

    @staticmethod
    def _parse(model: Type[T], data: Any) -> T:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.error(f"Unexpected {model.__name__} payload: {e}")
            raise ApiError(
                ErrorCode.UNKNOWN_ERROR.value,
                error_message(ErrorCode.UNKNOWN_ERROR),
                body={"payload": data}
            )


class ApiClient(_BaseClient):
    """
    Synchronous client for the VectorNode API.

    Injects the bearer token from the shared SessionStore and turns every
    failure into an ApiError. Nothing is retried.
    """

    def __init__(self, base_url: str, session: Optional[SessionStore] = None,
                 timeout: float = DEFAULT_TIMEOUT, language: str = DEFAULT_LANGUAGE,
                 transport: Optional[httpx.BaseTransport] = None):
        super().__init__(base_url, session, timeout, language)
        self._http = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

    def close(self) -> None:
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def request(self, method: str, path: str, json: Any = None,
                params: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None) -> Any:
        try:
            response = self._http.request(
                method, path, json=json, params=params, headers=self._headers(),
                timeout=timeout if timeout is not None else self.timeout)
        except httpx.TransportError as e:
            raise self._network_error(e, method, path)
        return self._handle(response)

    # --- Auth ---

    def login(self, email: str, password: str) -> LoginResult:
        result = self._parse(LoginResult, self.request(
            "POST", "/api/auth/login", json={"email": email, "password": password}))
        self.session.set(result.access_token, result.user)
        return result

    def logout(self) -> None:
        self.session.clear()

    # --- Checkpoint scans ---

    def get_token_info(self, token: str) -> TokenInfo:
        return self._parse(TokenInfo, self.request("GET", f"/api/qr/token/{token}"))

    def get_allowed_actions(self, token: str) -> AllowedActions:
        return self._parse(AllowedActions, self.request("GET", f"/api/qr/token/{token}/actions"))

    def scan(self, token: str, action: ScanAction, location: Location = None, **fields) -> ScanResult:
        payload = {"token": token, "action": action.value, **_location_fields(location), **fields}
        return self._parse(ScanResult, self.request("POST", "/api/qr/scan", json=payload))

    # --- Disputes ---

    def create_dispute(self, payload: Dict[str, Any]) -> DisputeDetail:
        return self._parse(DisputeDetail, self.request("POST", "/api/disputes", json=payload))

    def get_dispute(self, dispute_id: UUID) -> DisputeDetail:
        return self._parse(DisputeDetail, self.request("GET", f"/api/disputes/{dispute_id}"))

    def list_my_disputes(self, status: Optional[DisputeStatus] = None,
                         page: int = 1, limit: int = 20) -> DisputePage:
        params: Dict[str, Any] = {"page": page, "limit": limit}
        if status:
            params["status"] = status.value
        return self._parse(DisputePage, self.request("GET", "/api/disputes/my", params=params))

    def list_all_disputes(self, status: Optional[DisputeStatus] = None,
                          type: Optional[DisputeType] = None,
                          page: int = 1, limit: int = 20) -> DisputePage:
        params: Dict[str, Any] = {"page": page, "limit": limit}
        if status:
            params["status"] = status.value
        if type:
            params["type"] = type.value
        return self._parse(DisputePage, self.request("GET", "/api/disputes/all", params=params))

    def add_comment(self, dispute_id: UUID, message: str, is_internal: bool = False) -> Comment:
        return self._parse(Comment, self.request(
            "POST", f"/api/disputes/{dispute_id}/comments",
            json={"message": message, "is_internal": is_internal}))

    def update_dispute_status(self, dispute_id: UUID, status: DisputeStatus) -> DisputeDetail:
        return self._parse(DisputeDetail, self.request(
            "PATCH", f"/api/disputes/{dispute_id}/status", json={"status": status.value}))

    def resolve_dispute(self, dispute_id: UUID, payload: Dict[str, Any]) -> DisputeDetail:
        return self._parse(DisputeDetail, self.request(
            "POST", f"/api/disputes/{dispute_id}/resolve", json=payload))


class AsyncApiClient(_BaseClient):
    """
    Asynchronous client used by the scan flow and the photo uploader.
    Cancelling the awaiting task aborts the request in flight.
    """

    def __init__(self, base_url: str, session: Optional[SessionStore] = None,
                 timeout: float = DEFAULT_TIMEOUT, language: str = DEFAULT_LANGUAGE,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(base_url, session, timeout, language)
        self._http = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def request(self, method: str, path: str, json: Any = None,
                      params: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None) -> Any:
        try:
            response = await self._http.request(
                method, path, json=json, params=params, headers=self._headers(),
                timeout=timeout if timeout is not None else self.timeout)
        except httpx.TransportError as e:
            raise self._network_error(e, method, path)
        return self._handle(response)

    async def get_token_info(self, token: str) -> TokenInfo:
        return self._parse(TokenInfo, await self.request("GET", f"/api/qr/token/{token}"))

    async def get_allowed_actions(self, token: str) -> AllowedActions:
        return self._parse(AllowedActions, await self.request("GET", f"/api/qr/token/{token}/actions"))

    async def upload_photo(self, token: str, photo_type: PhotoType, image_data: str,
                           caption: Optional[str] = None, location: Location = None) -> Photo:
        payload = {"token": token, "type": photo_type.value, "image_data": image_data,
                   **_location_fields(location)}
        if caption:
            payload["caption"] = caption
        return self._parse(Photo, await self.request("POST", "/api/qr/photo", json=payload))

    async def scan(self, token: str, action: ScanAction, location: Location = None, **fields) -> ScanResult:
        payload = {"token": token, "action": action.value, **_location_fields(location), **fields}
        return self._parse(ScanResult, await self.request("POST", "/api/qr/scan", json=payload))

    async def sign_delivery(self, token: str, recipient_name: str, signature_image: str,
                            delivery_notes: Optional[str] = None, location: Location = None) -> ScanResult:
        payload = {"token": token, "recipient_name": recipient_name,
                   "signature_image": signature_image, **_location_fields(location)}
        if delivery_notes:
            payload["delivery_notes"] = delivery_notes
        return self._parse(ScanResult, await self.request("POST", "/api/qr/signature", json=payload))
