import asyncio
import json
import uuid
from datetime import datetime

import httpx
import pytest

from app.client.api import ApiClient, ApiError, AsyncApiClient
from app.client.disputes import DisputeActions, DisputeWizard, WizardStep
from app.client.scan_flow import ACTION_LABELS, Screen, ScanFlow
from app.client.schemas import Pagination, UserInfo
from app.client.session import SessionStore
from app.client.uploader import PhotoUploader
from app.db.schema import DisputeStatus, DisputeType, PhotoType, ScanAction, UserRole

BASE_URL = "http://vectornode.test"
SIGNATURE = "data:image/png;base64,iVBORw0KGgo="
PHOTO = "data:image/jpeg;base64,/9j/4AAQ"
TOO_LARGE = "data:image/jpeg;base64,TOO-LARGE"

USER = UserInfo(id=uuid.uuid4(), email="driver@vectornode.al", first_name="Dren",
                last_name="Driver", role=UserRole.DRIVER)


def error(status, code, message="Server message"):
    return httpx.Response(status, json={"error": message, "code": code})


class FakeBackend:
    """Answers the checkpoint endpoints for one unit."""

    def __init__(self, unit_status="IN_TRANSIT", actions=("DELIVERED",), token_error=None,
                 actions_error=None, signature_errors=()):
        self.unit_status = unit_status
        self.actions = list(actions)
        self.token_error = token_error
        self.actions_error = actions_error
        # One queued error per signature call, then success
        self.signature_errors = list(signature_errors)
        self.requests = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.photo_delay = 0.01

    def _unit(self):
        return {
            "unit": {
                "id": str(uuid.uuid4()), "unit_number": 1, "total_units": 3,
                "current_status": self.unit_status, "description": "Pallet", "weight": 400,
            },
            "shipment": {
                "id": str(uuid.uuid4()), "tracking_number": "VN-1A2B3C4D", "status": "IN_TRANSIT",
                "pickup_city": "Tirana", "delivery_city": "Prishtina",
                "cargo_description": "Olive oil", "quantity": 3,
            },
        }

    def _scan_result(self, action, new_status):
        return {
            "scan": {
                "id": str(uuid.uuid4()), "action": action, "previous_status": self.unit_status,
                "new_status": new_status, "scanned_by_role": "DRIVER", "scanned_by_name": "Dren Driver",
                "scanned_at": datetime.utcnow().isoformat(),
            },
            "unit_status": new_status,
            "new_token": "token-2",
        }

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, request.url.path, body, request.headers))
        path = request.url.path

        if path.startswith("/api/qr/token/"):
            if self.token_error:
                return error(*self.token_error)
            if path.endswith("/actions"):
                if self.actions_error:
                    return self.actions_error
                return httpx.Response(200, json={
                    "token": "token-1", "current_status": self.unit_status,
                    "allowed_actions": self.actions})
            return httpx.Response(200, json=self._unit())

        if path == "/api/qr/photo":
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            try:
                await asyncio.sleep(self.photo_delay)
            finally:
                self.in_flight -= 1
            if body["image_data"] == TOO_LARGE:
                return error(413, "PHOTO_TOO_LARGE")
            return httpx.Response(201, json={
                "id": str(uuid.uuid4()), "type": body["type"], "image_url": "/static/photos/x.jpg",
                "uploaded_by_name": "Dren Driver", "uploaded_at": datetime.utcnow().isoformat()})

        if path == "/api/qr/signature":
            if self.signature_errors:
                return error(*self.signature_errors.pop(0))
            return httpx.Response(201, json=self._scan_result("DELIVERED", "DELIVERED"))

        if path == "/api/qr/scan":
            return httpx.Response(201, json=self._scan_result(body["action"], "PICKED_UP"))

        return error(404, "NOT_FOUND")

    def paths(self, method=None):
        return [path for m, path, _, _ in self.requests if method is None or m == method]


def make_client(backend, authenticated=True):
    session = SessionStore()
    if authenticated:
        session.set("access-token", USER)
    return AsyncApiClient(BASE_URL, session=session, transport=httpx.MockTransport(backend))


def run(coro):
    return asyncio.run(coro)


# --- Session ---

def test_session_notifies_subscribers():
    store = SessionStore()
    seen = []
    unsubscribe = store.subscribe(seen.append)

    store.set("abc", USER)
    store.clear()
    unsubscribe()
    store.set("def", USER)

    assert [state.token for state in seen] == ["abc", None]
    assert store.get().token == "def"
    assert store.get().role == UserRole.DRIVER


def test_session_persists_to_file(tmp_path):
    path = tmp_path / "session.json"
    SessionStore(path).set("abc", USER)

    restored = SessionStore(path).get()
    assert restored.is_authenticated
    assert restored.user.email == USER.email
    assert set(json.loads(path.read_text())) == {"token", "user"}


def test_session_ignores_corrupt_file(tmp_path):
    path = tmp_path / "session.json"
    path.write_text("{not json")

    assert not SessionStore(path).get().is_authenticated


# --- HTTP client ---

def test_client_sends_bearer_and_maps_error_codes():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers.get("authorization")
        seen["language"] = request.headers.get("accept-language")
        return error(410, "QR_EXPIRED")

    session = SessionStore()
    session.set("access-token", USER)
    client = ApiClient(BASE_URL, session=session, language="en", transport=httpx.MockTransport(handler))

    with pytest.raises(ApiError) as exc:
        client.get_token_info("abc")

    assert seen == {"auth": "Bearer access-token", "language": "en"}
    assert exc.value.code == "QR_EXPIRED"
    assert exc.value.status == 410
    assert exc.value.message == "This unit has already been delivered."


def test_client_falls_back_on_unknown_bodies():
    client = ApiClient(BASE_URL, transport=httpx.MockTransport(
        lambda request: httpx.Response(404, json={"detail": "Shipment not found."})))

    with pytest.raises(ApiError) as exc:
        client.get_dispute(uuid.uuid4())

    assert exc.value.code == "NOT_FOUND"
    assert not exc.value.is_network_error


def test_client_maps_transport_failures():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = ApiClient(BASE_URL, transport=httpx.MockTransport(handler))

    with pytest.raises(ApiError) as exc:
        client.list_my_disputes()

    assert exc.value.is_network_error


def test_client_rejects_malformed_payloads():
    client = ApiClient(BASE_URL, transport=httpx.MockTransport(
        lambda request: httpx.Response(200, json={"unexpected": True})))

    with pytest.raises(ApiError) as exc:
        client.get_allowed_actions("abc")

    assert exc.value.code == "UNKNOWN_ERROR"


def test_login_updates_session():
    def handler(request):
        return httpx.Response(200, json={
            "access_token": "a", "refresh_token": "r", "token_type": "bearer",
            "user": USER.model_dump(mode="json")})

    client = ApiClient(BASE_URL, transport=httpx.MockTransport(handler))
    client.login("driver@vectornode.al", "secret-password")

    assert client.session.get().token == "a"
    client.logout()
    assert not client.session.get().is_authenticated


def test_async_request_can_be_cancelled():
    async def slow(request):
        await asyncio.sleep(10)
        return httpx.Response(200)

    async def scenario():
        client = AsyncApiClient(BASE_URL, transport=httpx.MockTransport(slow))
        task = asyncio.create_task(client.get_token_info("abc"))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await client.aclose()

    run(scenario())


def test_pagination_flags():
    first = Pagination(page=1, limit=20, total=45, pages=3)
    assert not first.has_previous
    assert first.has_next

    last = Pagination(page=3, limit=20, total=45, pages=3)
    assert last.has_previous
    assert not last.has_next

    empty = Pagination(page=1, limit=20, total=0, pages=0)
    assert not empty.has_previous
    assert not empty.has_next


# --- Photo uploads ---

def test_uploader_bounds_concurrency_and_tracks_each_photo():
    backend = FakeBackend()
    images = [PHOTO, PHOTO, TOO_LARGE, PHOTO, PHOTO, PHOTO]

    async def scenario():
        uploader = PhotoUploader(make_client(backend), concurrency=2)
        return await uploader.upload("token-1", PhotoType.DELIVERY, images)

    outcomes = run(scenario())

    assert [o.index for o in outcomes] == list(range(6))
    assert [o.ok for o in outcomes] == [True, True, False, True, True, True]
    assert outcomes[2].code == "PHOTO_TOO_LARGE"
    assert outcomes[0].photo_id is not None
    assert backend.max_in_flight <= 2


def test_uploader_needs_positive_concurrency():
    with pytest.raises(ValueError):
        PhotoUploader(make_client(FakeBackend()), concurrency=0)


# --- Scan flow ---

def test_delivery_needs_signature_before_submit():
    backend = FakeBackend(unit_status="IN_TRANSIT", actions=["DELIVERED"])
    flow = ScanFlow(make_client(backend))

    assert run(flow.load("token-1")) == Screen.INFO
    assert flow.action_labels == ["Konfirmo Dorëzimin"]

    assert flow.select_label("Konfirmo Dorëzimin") == Screen.DELIVERY

    flow.form.recipient_name = "Arben Krasniqi"
    flow.form.photos.append(PHOTO)
    assert not flow.can_submit()
    assert flow.blocking_hints() == ["Merr firmën e marrësit."]

    flow.form.signature = SIGNATURE
    assert flow.can_submit()


def test_delivery_needs_name_and_photo():
    flow = ScanFlow(make_client(FakeBackend()))
    run(flow.load("token-1"))
    flow.select_action(ScanAction.DELIVERED)

    flow.form.recipient_name = "   "
    flow.form.signature = SIGNATURE
    assert not flow.can_submit()

    flow.form.recipient_name = "Arben"
    assert not flow.can_submit()

    flow.form.photos.append(PHOTO)
    assert flow.can_submit()


def test_damaged_pickup_needs_description():
    backend = FakeBackend(unit_status="CREATED", actions=["PICKUP", "DAMAGE"])
    flow = ScanFlow(make_client(backend))
    run(flow.load("token-1"))

    assert flow.select_action(ScanAction.PICKUP) == Screen.PICKUP
    assert flow.form.quantity_confirmed == 3
    assert flow.can_submit()

    flow.form.has_damage = True
    flow.form.photos.append(PHOTO)
    flow.form.damage_description = "  "
    assert not flow.can_submit()

    flow.form.damage_description = "Corner crushed"
    assert flow.can_submit()


def test_action_screens():
    backend = FakeBackend(unit_status="PICKED_UP", actions=["INBOUND", "IN_TRANSIT", "DAMAGE"])
    flow = ScanFlow(make_client(backend))
    run(flow.load("token-1"))

    assert flow.select_action(ScanAction.INBOUND) == Screen.WAREHOUSE
    assert flow.back() == Screen.INFO
    assert flow.select_action(ScanAction.IN_TRANSIT) == Screen.HANDOVER
    assert flow.select_action(ScanAction.DAMAGE) == Screen.INFO

    with pytest.raises(ValueError):
        flow.select_action(ScanAction.DELIVERED)


def test_already_delivered_is_a_success_screen():
    backend = FakeBackend(token_error=(410, "QR_EXPIRED"))
    flow = ScanFlow(make_client(backend))

    assert run(flow.load("token-1")) == Screen.SUCCESS
    assert flow.already_delivered


@pytest.mark.parametrize("token_error, screen", [
    ((404, "INVALID_QR_TOKEN"), Screen.INVALID),
    ((409, "TOKEN_ALREADY_USED"), Screen.EXPIRED),
    ((410, "TOKEN_EXPIRED"), Screen.EXPIRED),
    ((500, "UNKNOWN_ERROR"), Screen.INVALID),
])
def test_load_errors(token_error, screen):
    flow = ScanFlow(make_client(FakeBackend(token_error=token_error)))

    assert run(flow.load("token-1")) == screen
    assert not flow.already_delivered


def test_load_without_connection():
    def offline(request):
        raise httpx.ConnectError("offline", request=request)

    client = AsyncApiClient(BASE_URL, transport=httpx.MockTransport(offline))
    flow = ScanFlow(client)

    assert run(flow.load("token-1")) == Screen.CONNECTION_ERROR


def test_anonymous_viewer_sees_no_actions():
    backend = FakeBackend()
    flow = ScanFlow(make_client(backend, authenticated=False))

    assert run(flow.load("token-1")) == Screen.INFO
    assert flow.actions == []
    assert "/api/qr/token/token-1/actions" not in backend.paths()


def test_stale_session_still_shows_the_unit():
    backend = FakeBackend(actions_error=httpx.Response(
        401, json={"detail": "Could not validate credentials"}))
    flow = ScanFlow(make_client(backend))

    assert run(flow.load("token-1")) == Screen.INFO
    assert flow.info is not None
    assert flow.info.shipment.tracking_number == "VN-1A2B3C4D"
    assert flow.actions == []
    assert not flow.already_delivered
    assert flow.error is None


def test_actions_outage_keeps_the_unit_screen():
    backend = FakeBackend(actions_error=error(503, "NETWORK_ERROR"))
    flow = ScanFlow(make_client(backend))

    assert run(flow.load("token-1")) == Screen.INFO
    assert flow.info is not None
    assert flow.actions == []


def test_submit_uploads_photos_then_signs():
    backend = FakeBackend()
    flow = ScanFlow(make_client(backend))
    run(flow.load("token-1"))
    flow.select_label(ACTION_LABELS[ScanAction.DELIVERED])
    flow.form.recipient_name = "Arben Krasniqi"
    flow.form.signature = SIGNATURE
    flow.form.photos.extend([PHOTO, PHOTO])

    result = run(flow.submit())

    assert result.unit_status == "DELIVERED"
    assert flow.screen == Screen.SUCCESS
    assert flow.token == "token-2"
    posted = backend.paths("POST")
    assert posted == ["/api/qr/photo", "/api/qr/photo", "/api/qr/signature"]
    photo_types = {body["type"] for m, path, body, _ in backend.requests if path == "/api/qr/photo"}
    assert photo_types == {"DELIVERY"}


def test_submit_stops_when_required_photos_fail():
    backend = FakeBackend(unit_status="PICKED_UP", actions=["INBOUND"])
    flow = ScanFlow(make_client(backend))
    run(flow.load("token-1"))
    flow.select_action(ScanAction.INBOUND)
    flow.form.photos.append(TOO_LARGE)

    assert run(flow.submit()) is None
    assert flow.error.code == "PHOTO_TOO_LARGE"
    assert flow.screen == Screen.WAREHOUSE
    assert "/api/qr/scan" not in backend.paths()


def test_retry_after_rejected_signature_does_not_reupload_photos():
    backend = FakeBackend(signature_errors=[(422, "MISSING_EVIDENCE")])
    flow = ScanFlow(make_client(backend))
    run(flow.load("token-1"))
    flow.select_action(ScanAction.DELIVERED)
    flow.form.recipient_name = "Arben Krasniqi"
    flow.form.signature = SIGNATURE
    flow.form.photos.extend([PHOTO, PHOTO])

    assert run(flow.submit()) is None
    assert flow.error.code == "MISSING_EVIDENCE"
    assert flow.form.photos == []
    assert flow.uploaded == {PhotoType.DELIVERY: 2}
    assert flow.can_submit()

    result = run(flow.submit())

    assert result.new_token == "token-2"
    assert flow.screen == Screen.SUCCESS
    assert backend.paths("POST").count("/api/qr/photo") == 2
    assert flow.uploaded == {}


def test_scan_goes_through_when_enough_photos_upload():
    backend = FakeBackend(unit_status="PICKED_UP", actions=["INBOUND"])
    flow = ScanFlow(make_client(backend))
    run(flow.load("token-1"))
    flow.select_action(ScanAction.INBOUND)
    flow.form.photos.extend([PHOTO, TOO_LARGE])

    # One photo is enough evidence, so the scan goes through
    result = run(flow.submit())

    assert result is not None
    assert backend.paths("POST").count("/api/qr/photo") == 2
    assert flow.upload_outcomes[1].code == "PHOTO_TOO_LARGE"


def test_submit_pickup_posts_scan_fields():
    backend = FakeBackend(unit_status="CREATED", actions=["PICKUP"])
    flow = ScanFlow(make_client(backend), location=(41.33, 19.82))
    run(flow.load("token-1"))
    flow.select_action(ScanAction.PICKUP)
    flow.form.quantity_confirmed = 2

    run(flow.submit())

    _, _, body, _ = backend.requests[-1]
    assert body == {"token": "token-1", "action": "PICKUP", "latitude": 41.33,
                    "longitude": 19.82, "quantity_confirmed": 2}


def test_incomplete_submit_is_refused():
    flow = ScanFlow(make_client(FakeBackend()))
    run(flow.load("token-1"))
    flow.select_action(ScanAction.DELIVERED)

    with pytest.raises(ValueError):
        run(flow.submit())


# --- Disputes ---

def test_dispute_wizard_order():
    wizard = DisputeWizard()
    shipment_id, unit_id = uuid.uuid4(), uuid.uuid4()

    with pytest.raises(ValueError):
        wizard.select_unit(unit_id)
    with pytest.raises(ValueError):
        wizard.select_type(DisputeType.CLIENT_REPORT)

    wizard.select_shipment(shipment_id)
    wizard.select_unit(unit_id)
    assert wizard.current_step == WizardStep.TYPE

    with pytest.raises(ValueError):
        wizard.add_photo(PHOTO)

    wizard.select_type(DisputeType.CLIENT_REPORT)
    wizard.set_description("   ")
    assert wizard.current_step == WizardStep.DESCRIPTION
    assert not wizard.can_submit()

    wizard.set_description("Water damage on two cartons", estimated_value=80)
    assert not wizard.can_submit()

    wizard.add_photo(PHOTO)
    assert wizard.can_submit()
    payload = wizard.to_payload()
    assert payload["unit_id"] == str(unit_id)
    assert payload["photos"] == [PHOTO]
    assert payload["estimated_value"] == 80


def test_changing_shipment_clears_unit():
    wizard = DisputeWizard()
    wizard.select_shipment(uuid.uuid4())
    wizard.select_unit(uuid.uuid4())

    wizard.select_shipment(uuid.uuid4())

    assert wizard.unit_id is None
    assert wizard.current_step == WizardStep.UNIT
    with pytest.raises(ValueError):
        wizard.to_payload()


def test_dispute_actions_gating():
    locked = DisputeActions.for_dispute(DisputeStatus.EVIDENCE_COMPLETE, UserRole.ADMIN)
    assert not locked.can_comment
    assert not locked.can_post_internal
    assert locked.can_resolve
    assert locked.evidence_frozen
    assert locked.transitions == []

    review = DisputeActions.for_dispute(DisputeStatus.OPEN, UserRole.ADMIN)
    assert review.can_comment and review.can_post_internal
    assert review.transitions == [DisputeStatus.UNDER_REVIEW]

    party = DisputeActions.for_dispute(DisputeStatus.UNDER_REVIEW, UserRole.SHIPPER)
    assert party.can_comment
    assert not party.can_post_internal
    assert party.transitions == []
    assert not party.can_resolve

    resolved = DisputeActions.for_dispute(DisputeStatus.RESOLVED, UserRole.CARRIER)
    assert not resolved.can_comment
