"""
Checkpoint scan screens, as a state machine independent of any UI toolkit.

A scanner opens a unit's QR link, the flow loads the unit and the actions
the signed-in user may perform, routes each action to its form screen and
only lets the form be submitted once `missing_evidence` has nothing left
to ask for. Photos are uploaded before the scan is posted.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional
from uuid import UUID

from loguru import logger

from app.client.api import ApiError, AsyncApiClient, Location
from app.client.schemas import ScanResult, TokenInfo
from app.client.uploader import PhotoUploader, UploadOutcome
from app.core.errors import ErrorCode
from app.core.workflow import Evidence, MissingEvidence, missing_evidence, photo_type_for
from app.db.schema import PhotoType, ScanAction


class Screen(str, Enum):
    INFO = "INFO"
    PICKUP = "PICKUP"
    WAREHOUSE = "WAREHOUSE"
    HANDOVER = "HANDOVER"
    DELIVERY = "DELIVERY"
    SUCCESS = "SUCCESS"
    EXPIRED = "EXPIRED"
    INVALID = "INVALID"
    CONNECTION_ERROR = "CONNECTION_ERROR"


ACTION_LABELS: Dict[ScanAction, str] = {
    ScanAction.PICKUP: "Konfirmo Marrjen",
    ScanAction.INBOUND: "Hyrje Magazinë",
    ScanAction.OUTBOUND: "Dalje Magazinë",
    ScanAction.IN_TRANSIT: "Nis Transportin",
    ScanAction.DELIVERED: "Konfirmo Dorëzimin",
    ScanAction.DAMAGE: "Raporto Dëmtim",
}

# A damage report is filed from the unit overview itself
ACTION_SCREENS: Dict[ScanAction, Screen] = {
    ScanAction.PICKUP: Screen.PICKUP,
    ScanAction.INBOUND: Screen.WAREHOUSE,
    ScanAction.OUTBOUND: Screen.WAREHOUSE,
    ScanAction.IN_TRANSIT: Screen.HANDOVER,
    ScanAction.DELIVERED: Screen.DELIVERY,
    ScanAction.DAMAGE: Screen.INFO,
}

# Load errors that mean "this link was valid once"
_EXPIRED_CODES = {ErrorCode.TOKEN_EXPIRED.value, ErrorCode.TOKEN_ALREADY_USED.value}


@dataclass
class ScanForm:
    """Form state for the selected action. Photos are data URLs."""
    quantity_confirmed: Optional[int] = None
    has_damage: bool = False
    damage_description: str = ""
    photos: List[str] = field(default_factory=list)
    recipient_name: str = ""
    signature: str = ""
    vehicle_plate: str = ""
    warehouse_id: Optional[UUID] = None
    notes: str = ""

    def evidence(self, photo_count: Optional[int] = None) -> Evidence:
        return Evidence(
            quantity_confirmed=self.quantity_confirmed,
            has_damage=self.has_damage,
            damage_description=self.damage_description,
            photo_count=len(self.photos) if photo_count is None else photo_count,
            recipient_name=self.recipient_name,
            signature=self.signature,
            vehicle_plate=self.vehicle_plate,
        )


class ScanFlow:
    def __init__(
        self,
        client: AsyncApiClient,
        uploader: Optional[PhotoUploader] = None,
        location: Location = None
    ):
        self.client = client
        self.uploader = uploader or PhotoUploader(client)
        self.location = location
        self.reset()

    def reset(self) -> None:
        self.screen = Screen.INFO
        self.token: Optional[str] = None
        self.info: Optional[TokenInfo] = None
        self.actions: List[ScanAction] = []
        self.action: Optional[ScanAction] = None
        self.form = ScanForm()
        self.already_delivered = False
        self.error: Optional[ApiError] = None
        self.result: Optional[ScanResult] = None
        self.upload_outcomes: List[UploadOutcome] = []
        # Photos already on the server for the pending checkpoint, per type
        self.uploaded: Dict[PhotoType, int] = {}

    @property
    def action_labels(self) -> List[str]:
        return [ACTION_LABELS[action] for action in self.actions]

    async def load(self, token: str) -> Screen:
        self.reset()
        self.token = token

        try:
            self.info = await self.client.get_token_info(token)
        except ApiError as e:
            self.error = e
            if e.code == ErrorCode.QR_EXPIRED.value:
                self.already_delivered = True
                self.screen = Screen.SUCCESS
            elif e.is_network_error:
                self.screen = Screen.CONNECTION_ERROR
            elif e.code in _EXPIRED_CODES:
                self.screen = Screen.EXPIRED
            else:
                self.screen = Screen.INVALID
            return self.screen

        # The unit is shown read-only when the actions cannot be fetched
        if self.client.session.get().is_authenticated:
            try:
                self.actions = list((await self.client.get_allowed_actions(token)).allowed_actions)
            except ApiError as e:
                logger.warning(f"Could not load allowed actions: {e.code}")

        self.screen = Screen.INFO
        return self.screen

    def select_action(self, action: ScanAction) -> Screen:
        if action not in self.actions:
            raise ValueError(f"Action {action.value} is not available for this unit")

        self.action = action
        self.form = ScanForm()
        if action == ScanAction.PICKUP and self.info:
            self.form.quantity_confirmed = self.info.shipment.quantity
        if action == ScanAction.DAMAGE:
            self.form.has_damage = True
        self.error = None
        self.screen = ACTION_SCREENS[action]
        return self.screen

    def select_label(self, label: str) -> Screen:
        for action in self.actions:
            if ACTION_LABELS[action] == label:
                return self.select_action(action)
        raise ValueError(f"No available action labelled {label!r}")

    def back(self) -> Screen:
        self.action = None
        self.form = ScanForm()
        self.error = None
        self.screen = Screen.INFO
        return self.screen

    def blocking_hints(self) -> List[str]:
        return [item.hint for item in self._missing()]

    def can_submit(self) -> bool:
        return self.action is not None and self.token is not None and not self._missing()

    def _uploaded_count(self, action: ScanAction, form: ScanForm) -> int:
        return self.uploaded.get(photo_type_for(action, form.has_damage), 0)

    def _missing(self, photo_count: Optional[int] = None) -> List[MissingEvidence]:
        if self.action is None:
            return []
        if photo_count is None:
            photo_count = len(self.form.photos) + self._uploaded_count(self.action, self.form)
        return missing_evidence(self.action, self.form.evidence(photo_count))

    async def submit(self) -> Optional[ScanResult]:
        """
        Uploads the form photos, then posts the scan. Stays on the form with
        `error` set when anything is rejected. Photos that did upload are
        dropped from `form.photos` and counted in `uploaded`, so a retry only
        sends the ones that failed.
        """
        if not self.can_submit():
            raise ValueError("Submission is incomplete: " + " ".join(self.blocking_hints()))

        action = self.action
        form = self.form
        self.error = None

        try:
            await self._upload_photos(action, form)
            if self._missing(self._uploaded_count(action, form)):
                failed = next((o for o in self.upload_outcomes if not o.ok), None)
                code = failed.code if failed and failed.code else ErrorCode.UNKNOWN_ERROR.value
                self.error = ApiError(code, failed.error if failed and failed.error else "")
                if self.error.is_network_error:
                    self.screen = Screen.CONNECTION_ERROR
                return None

            if action == ScanAction.DELIVERED:
                result = await self.client.sign_delivery(
                    self.token, form.recipient_name.strip(), form.signature,
                    delivery_notes=form.notes or None, location=self.location)
            else:
                result = await self.client.scan(self.token, action, location=self.location,
                                                **self._scan_fields(action, form))
        except ApiError as e:
            logger.warning(f"{action.value} scan rejected: {e.code}")
            self.error = e
            if e.is_network_error:
                self.screen = Screen.CONNECTION_ERROR
            return None

        self.result = result
        self.token = result.new_token
        # A status change closes the photo window; a damage report does not
        if action != ScanAction.DAMAGE:
            self.uploaded = {}
        self.screen = Screen.SUCCESS
        return result

    async def _upload_photos(self, action: ScanAction, form: ScanForm) -> None:
        if not form.photos:
            self.upload_outcomes = []
            return
        photo_type = photo_type_for(action, form.has_damage)
        self.upload_outcomes = await self.uploader.upload(
            self.token, photo_type, form.photos, location=self.location)

        ok = sum(1 for outcome in self.upload_outcomes if outcome.ok)
        self.uploaded[photo_type] = self.uploaded.get(photo_type, 0) + ok
        form.photos = [form.photos[o.index] for o in self.upload_outcomes if not o.ok]

    @staticmethod
    def _scan_fields(action: ScanAction, form: ScanForm) -> dict:
        fields: dict = {}
        if action == ScanAction.PICKUP:
            fields["quantity_confirmed"] = form.quantity_confirmed
        if form.has_damage:
            fields["has_damage"] = True
            fields["damage_description"] = form.damage_description.strip()
        if form.vehicle_plate:
            fields["vehicle_plate"] = form.vehicle_plate
        if form.warehouse_id:
            fields["warehouse_id"] = str(form.warehouse_id)
        if form.notes:
            fields["notes"] = form.notes
        return fields
