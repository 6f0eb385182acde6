from typing import Optional, List, Dict, Any
from datetime import datetime
import uuid
from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field, Relationship, JSON
from enum import Enum


class UserRole(str, Enum):
    SHIPPER = "SHIPPER"
    CARRIER = "CARRIER"
    DRIVER = "DRIVER"
    WAREHOUSE = "WAREHOUSE"
    ADMIN = "ADMIN"


class UserStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    BANNED = "BANNED"


class SubscriptionTier(str, Enum):
    FREE_TRIAL = "FREE_TRIAL"
    SMALL_FLEET = "SMALL_FLEET"
    MEDIUM_FLEET = "MEDIUM_FLEET"
    LARGE_FLEET = "LARGE_FLEET"
    FLEX = "FLEX"


class SubscriptionStatus(str, Enum):
    TRIAL = "TRIAL"
    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    CANCELLED = "CANCELLED"


class ShipmentStatus(str, Enum):
    OPEN = "OPEN"              # Posted, accepting bids
    ASSIGNED = "ASSIGNED"      # Bid selected, waiting for pickup
    IN_TRANSIT = "IN_TRANSIT"  # At least one unit picked up
    DELIVERED = "DELIVERED"    # Every unit delivered
    COMPLETED = "COMPLETED"    # Paid out
    CANCELLED = "CANCELLED"


class UnitStatus(str, Enum):
    CREATED = "CREATED"
    PICKED_UP = "PICKED_UP"
    IN_WAREHOUSE = "IN_WAREHOUSE"
    OUT_WAREHOUSE = "OUT_WAREHOUSE"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"


class ScanAction(str, Enum):
    PICKUP = "PICKUP"
    INBOUND = "INBOUND"
    OUTBOUND = "OUTBOUND"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    DAMAGE = "DAMAGE"


class PhotoType(str, Enum):
    ORIGIN = "ORIGIN"
    WAREHOUSE_IN = "WAREHOUSE_IN"
    WAREHOUSE_OUT = "WAREHOUSE_OUT"
    DELIVERY = "DELIVERY"
    DAMAGE = "DAMAGE"
    SIGNATURE = "SIGNATURE"


class BidStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    WITHDRAWN = "WITHDRAWN"


class DisputeType(str, Enum):
    DAMAGE_AT_PICKUP = "DAMAGE_AT_PICKUP"
    DAMAGE_AT_WAREHOUSE = "DAMAGE_AT_WAREHOUSE"
    DAMAGE_AT_DELIVERY = "DAMAGE_AT_DELIVERY"
    DAMAGE_IN_TRANSIT = "DAMAGE_IN_TRANSIT"
    CLIENT_REPORT = "CLIENT_REPORT"


class DisputeStatus(str, Enum):
    OPEN = "OPEN"
    UNDER_REVIEW = "UNDER_REVIEW"
    EVIDENCE_COMPLETE = "EVIDENCE_COMPLETE"  # Evidence frozen
    RESOLVED = "RESOLVED"                    # Terminal


class Liability(str, Enum):
    CARRIER = "CARRIER"
    WAREHOUSE = "WAREHOUSE"
    CLIENT = "CLIENT"
    SHIPPER = "SHIPPER"
    UNKNOWN = "UNKNOWN"


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    STATUS_CHANGE = "STATUS_CHANGE"


class VerificationType(str, Enum):
    EMAIL_PHONE = "EMAIL_PHONE"
    COMPANY_REG = "COMPANY_REG"
    VAT_NIPT = "VAT_NIPT"
    TRANSPORT_LICENSE = "TRANSPORT_LICENSE"
    INSURANCE = "INSURANCE"
    BANK_ACCOUNT = "BANK_ACCOUNT"


class VerificationStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    MISSING = "MISSING"    # Never stored, reported for types without a document


class TimestampMixin(SQLModel):
    """
    Standard audit timestamps for database records.
    """
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="UTC timestamp when this record was first persisted."
    )
    updated_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column_kwargs={"onupdate": datetime.utcnow},
        description="UTC timestamp when this record was last modified. Updates automatically."
    )


class User(TimestampMixin, SQLModel, table=True):
    """
    A person using the marketplace. The role decides which screens and
    checkpoint actions are available to them.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    email: str = Field(
        unique=True,
        index=True,
        description="The login email address. Example: 'dispatch@transalb.al'"
    )
    hashed_password: str = Field(
        description="Salted bcrypt hash. Never store plain text."
    )
    first_name: str
    last_name: str
    phone: Optional[str] = None
    role: UserRole = Field(index=True)
    status: UserStatus = Field(default=UserStatus.ACTIVE)
    language: str = Field(
        default="sq",
        description="Preferred UI language. Example: 'sq' or 'en'"
    )
    last_login_at: Optional[datetime] = None

    carrier_profile: Optional["CarrierProfile"] = Relationship(
        back_populates="user", sa_relationship_kwargs={"uselist": False})

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class CarrierProfile(TimestampMixin, SQLModel, table=True):
    """
    The company record of a CARRIER user: public directory data, subscription
    state and reputation.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(foreign_key="user.id", unique=True, index=True)
    company_name: str = Field(index=True)
    slug: str = Field(
        unique=True,
        index=True,
        description="URL-friendly handle for the public carrier page. Example: 'trans-alb-shpk'"
    )
    vat_number: Optional[str] = None
    country: str = Field(default="AL", max_length=2)
    city: str = ""
    address: str = ""
    phone: str = ""

    fleet_size: int = Field(default=0, description="Number of registered vehicles.")
    vehicle_types: List[str] = Field(default_factory=list, sa_type=JSON)

    subscription_tier: SubscriptionTier = Field(default=SubscriptionTier.FREE_TRIAL)
    subscription_status: SubscriptionStatus = Field(default=SubscriptionStatus.TRIAL)
    trial_ends_at: Optional[datetime] = None
    subscription_ends_at: Optional[datetime] = None
    monthly_bids_used: int = 0

    verified: bool = False
    rating: float = Field(default=5.0, ge=0, le=5)
    total_deliveries: int = 0

    user: User = Relationship(back_populates="carrier_profile")
    vehicles: List["Vehicle"] = Relationship(
        back_populates="carrier", sa_relationship_kwargs={"cascade": "all, delete-orphan"})
    drivers: List["Driver"] = Relationship(
        back_populates="carrier", sa_relationship_kwargs={"cascade": "all, delete-orphan"})


class Vehicle(TimestampMixin, SQLModel, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    carrier_id: uuid.UUID = Field(foreign_key="carrierprofile.id", index=True)
    vehicle_type: str = Field(description="Example: 'TRUCK_40T', 'VAN'")
    license_plate: str = Field(unique=True, index=True)
    max_weight: float = Field(description="Payload limit in kg.")
    max_volume: float = Field(default=0, description="Cargo volume in m3.")
    available: bool = True

    carrier: CarrierProfile = Relationship(back_populates="vehicles")


class Driver(TimestampMixin, SQLModel, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    carrier_id: uuid.UUID = Field(foreign_key="carrierprofile.id", index=True)
    user_id: uuid.UUID = Field(foreign_key="user.id", unique=True)
    license_number: str
    license_expiry: Optional[datetime] = None
    available: bool = True
    current_lat: Optional[float] = None
    current_lng: Optional[float] = None

    carrier: CarrierProfile = Relationship(back_populates="drivers")
    user: User = Relationship()


class CarrierVerification(TimestampMixin, SQLModel, table=True):
    """
    One compliance document submitted by a carrier. A carrier holds at most
    one record per type; resubmitting replaces it and sends it back to review.
    """
    __table_args__ = (UniqueConstraint("carrier_id", "type"),)

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    carrier_id: uuid.UUID = Field(foreign_key="carrierprofile.id", index=True)
    type: VerificationType
    status: VerificationStatus = Field(default=VerificationStatus.PENDING)
    document_url: str = Field(
        description="Where the reviewer can open the document. Example: 'https://docs.transalb.al/license.pdf'"
    )
    expires_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    reviewed_by_id: Optional[uuid.UUID] = Field(default=None, foreign_key="user.id")
    reviewed_at: Optional[datetime] = None


class Warehouse(TimestampMixin, SQLModel, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    owner_id: uuid.UUID = Field(foreign_key="user.id", index=True)
    name: str
    address: str
    city: str
    country: str = Field(max_length=2)
    capacity_m2: Optional[float] = None
    is_active: bool = True


class Shipment(TimestampMixin, SQLModel, table=True):
    """
    A load posted by a SHIPPER. Physically split into ShipmentUnits, each
    carrying its own QR code.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    shipper_id: uuid.UUID = Field(foreign_key="user.id", index=True)
    tracking_number: str = Field(
        unique=True,
        index=True,
        description="Human-facing reference printed on labels. Example: 'VN-7F3A91C2'"
    )
    cargo_description: str
    cargo_type: str = "GENERAL"

    pickup_address: str
    pickup_city: str
    pickup_country: str = Field(max_length=2)
    delivery_address: str
    delivery_city: str
    delivery_country: str = Field(max_length=2)

    weight: float
    quantity: int = Field(description="Number of physical units.")
    budget: Optional[float] = None
    currency: str = "EUR"
    pickup_date: Optional[datetime] = None
    delivery_deadline: Optional[datetime] = None

    status: ShipmentStatus = Field(default=ShipmentStatus.OPEN, index=True)
    carrier_id: Optional[uuid.UUID] = Field(
        default=None, foreign_key="carrierprofile.id", index=True)
    selected_bid_id: Optional[uuid.UUID] = None
    delivered_at: Optional[datetime] = None

    units: List["ShipmentUnit"] = Relationship(
        back_populates="shipment",
        sa_relationship_kwargs={
            "cascade": "all, delete-orphan", "order_by": "ShipmentUnit.unit_number"}
    )
    bids: List["Bid"] = Relationship(back_populates="shipment")


class ShipmentUnit(TimestampMixin, SQLModel, table=True):
    """
    One physical unit of a shipment. Its status only advances through
    validated checkpoint scans, and its QR token is rotated after every scan.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    shipment_id: uuid.UUID = Field(foreign_key="shipment.id", index=True)
    unit_number: int
    total_units: int
    description: str = ""
    weight: float = 0

    current_status: UnitStatus = Field(default=UnitStatus.CREATED)
    qr_token: str = Field(
        unique=True,
        index=True,
        description="Current single-use scan token."
    )
    qr_token_expires_at: datetime
    qr_code_url: Optional[str] = None
    last_scan_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="Photos uploaded after this moment count as evidence for the next scan."
    )
    delivered_at: Optional[datetime] = None

    shipment: Shipment = Relationship(back_populates="units")
    scan_logs: List["ScanLog"] = Relationship(
        back_populates="unit", sa_relationship_kwargs={"order_by": "ScanLog.scanned_at"})
    photos: List["UnitPhoto"] = Relationship(
        back_populates="unit", sa_relationship_kwargs={"order_by": "UnitPhoto.uploaded_at"})
    tokens: List["UsedQRToken"] = Relationship(back_populates="unit")


class UsedQRToken(SQLModel, table=True):
    """
    Tokens rotated out of a unit. Lets a stale scan be told apart from a
    token that never existed.
    """
    token: str = Field(primary_key=True)
    unit_id: uuid.UUID = Field(foreign_key="shipmentunit.id", index=True)
    action: ScanAction
    retired_at: datetime = Field(default_factory=datetime.utcnow)

    unit: ShipmentUnit = Relationship(back_populates="tokens")


class ScanLog(SQLModel, table=True):
    """
    Immutable audit record of one checkpoint event. Append-only.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    unit_id: uuid.UUID = Field(foreign_key="shipmentunit.id", index=True)
    action: ScanAction
    previous_status: UnitStatus
    new_status: UnitStatus

    scanned_by_id: uuid.UUID = Field(foreign_key="user.id")
    scanned_by_role: UserRole
    scanned_by_name: str
    warehouse_id: Optional[uuid.UUID] = Field(default=None, foreign_key="warehouse.id")
    warehouse_name: Optional[str] = None

    latitude: Optional[float] = None
    longitude: Optional[float] = None
    has_damage: bool = False
    damage_description: Optional[str] = None
    quantity_confirmed: Optional[int] = None
    vehicle_plate: Optional[str] = None
    notes: Optional[str] = None
    scanned_at: datetime = Field(default_factory=datetime.utcnow, index=True)

    unit: ShipmentUnit = Relationship(back_populates="scan_logs")


class UnitPhoto(SQLModel, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    unit_id: uuid.UUID = Field(foreign_key="shipmentunit.id", index=True)
    type: PhotoType
    image_url: str
    caption: Optional[str] = None
    uploaded_by_id: uuid.UUID = Field(foreign_key="user.id")
    uploaded_by_name: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    uploaded_at: datetime = Field(default_factory=datetime.utcnow)

    unit: ShipmentUnit = Relationship(back_populates="photos")


class ProofOfDelivery(SQLModel, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    unit_id: uuid.UUID = Field(foreign_key="shipmentunit.id", unique=True)
    recipient_name: str
    signature_url: str
    delivery_notes: Optional[str] = None
    delivered_by_id: uuid.UUID = Field(foreign_key="user.id")
    delivered_by_name: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    delivered_at: datetime = Field(default_factory=datetime.utcnow)


class Bid(TimestampMixin, SQLModel, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    shipment_id: uuid.UUID = Field(foreign_key="shipment.id", index=True)
    carrier_id: uuid.UUID = Field(foreign_key="carrierprofile.id", index=True)
    total_price: float
    currency: str = "EUR"
    vehicle_type: str
    estimated_pickup: datetime
    estimated_delivery: datetime
    notes: Optional[str] = None
    status: BidStatus = Field(default=BidStatus.PENDING)

    shipment: Shipment = Relationship(back_populates="bids")
    carrier: CarrierProfile = Relationship()


class Dispute(TimestampMixin, SQLModel, table=True):
    """
    A damage claim on one ShipmentUnit. Moves strictly forward through
    OPEN -> UNDER_REVIEW -> EVIDENCE_COMPLETE -> RESOLVED.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    shipment_id: uuid.UUID = Field(foreign_key="shipment.id", index=True)
    unit_id: uuid.UUID = Field(foreign_key="shipmentunit.id", index=True)
    type: DisputeType
    status: DisputeStatus = Field(default=DisputeStatus.OPEN, index=True)
    damage_description: str
    estimated_value: Optional[float] = None
    is_auto_created: bool = False

    evidence_snapshot: Optional[Dict[str, Any]] = Field(
        default=None,
        sa_type=JSON,
        description="Copy of scan logs, photos, timeline and POD. Frozen at EVIDENCE_COMPLETE."
    )

    suggested_liability: Optional[Liability] = None
    suggested_liability_score: Optional[float] = None
    liability_reason: Optional[str] = None
    final_liability: Optional[Liability] = None
    resolution_notes: Optional[str] = None
    compensation_amount: Optional[float] = None
    rating_impact_applied: bool = False
    rating_impact_value: Optional[float] = None

    created_by_id: uuid.UUID = Field(foreign_key="user.id")
    created_by_role: UserRole
    created_by_name: Optional[str] = None
    resolved_by_id: Optional[uuid.UUID] = Field(default=None, foreign_key="user.id")
    resolved_by_name: Optional[str] = None

    review_started_at: Optional[datetime] = None
    evidence_locked_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    comments: List["DisputeComment"] = Relationship(
        back_populates="dispute",
        sa_relationship_kwargs={
            "cascade": "all, delete-orphan", "order_by": "DisputeComment.created_at"}
    )


class DisputeComment(TimestampMixin, SQLModel, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    dispute_id: uuid.UUID = Field(foreign_key="dispute.id", index=True)
    author_id: uuid.UUID = Field(foreign_key="user.id")
    author_role: UserRole
    author_name: str
    message: str
    is_internal: bool = Field(
        default=False,
        description="Admin-only note, hidden from the other parties."
    )

    dispute: Dispute = Relationship(back_populates="comments")


class AuditLog(SQLModel, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    entity_type: str = Field(index=True)
    entity_id: uuid.UUID = Field(index=True)
    actor_user_id: uuid.UUID = Field(foreign_key="user.id")
    action: AuditAction
    changes: Dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    ip_address: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
