from typing import Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jwt.exceptions import InvalidTokenError
from sqlmodel import Session
from pydantic import ValidationError

from app.db.core import get_session
from app.db.schema import User, UserRole, UserStatus
from app.services.user import UserService
from app.services.qr import QRService
from app.services.dispute import DisputeService
from app.services.carrier import CarrierService
from app.services.shipment import ShipmentService
from app.services.bid import BidService
from app.services.warehouse import WarehouseService

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def get_user_service(session: Session = Depends(get_session)) -> UserService:
    """Creates a UserService instance using the active DB session."""
    return UserService(session)


def get_qr_service(session: Session = Depends(get_session)) -> QRService:
    return QRService(session=session)


def get_dispute_service(session: Session = Depends(get_session)) -> DisputeService:
    return DisputeService(session=session)


def get_carrier_service(session: Session = Depends(get_session)) -> CarrierService:
    return CarrierService(session=session)


def get_shipment_service(session: Session = Depends(get_session)) -> ShipmentService:
    return ShipmentService(session=session)


def get_bid_service(session: Session = Depends(get_session)) -> BidService:
    return BidService(session=session)


def get_warehouse_service(session: Session = Depends(get_session)) -> WarehouseService:
    return WarehouseService(session=session)


def get_current_user(
    token: str = Depends(oauth2_scheme),
    service: UserService = Depends(get_user_service)
) -> User:
    """
    Validates the JWT token and retrieves the user.
    This is the gatekeeper for protected routes.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        token_data = service.verify_access_token(token)

        if not token_data:
            raise credentials_exception

    except (InvalidTokenError, ValidationError):
        raise credentials_exception

    user = service.get_user_by_id(token_data.user_id)

    if user is None:
        raise credentials_exception

    if user.status != UserStatus.ACTIVE:
        raise HTTPException(status_code=400, detail="Inactive user")

    return user


def require_roles(*roles: UserRole) -> Callable[..., User]:
    """
    Dependency factory restricting a route to the given roles.
    ADMIN is always allowed.
    """
    allowed = set(roles) | {UserRole.ADMIN}

    def checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Your role does not have access to this resource."
            )
        return current_user

    return checker
