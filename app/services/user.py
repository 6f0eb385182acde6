from typing import Optional
import uuid
import re
import secrets
from datetime import datetime, timedelta

import jwt
from loguru import logger
from sqlmodel import Session, select
from fastapi import HTTPException, status

from app.core.config import settings
from app.core.plans import TRIAL_DAYS
from app.db.schema import (
    User, UserRole, UserStatus, CarrierProfile,
    SubscriptionTier, SubscriptionStatus
)
from app.models.auth import Token, TokenData
from app.models.user import UserCreate, PasswordChange
from .password import get_password_hash, verify_password


SELF_REGISTER_ROLES = {UserRole.SHIPPER, UserRole.CARRIER, UserRole.WAREHOUSE}


class UserService:
    ALGORITHM = "HS256"

    def __init__(self, session: Session):
        self.session = session

    def _generate_slug(self, name: str) -> str:
        """
        Generates a URL-safe slug from the company name.
        Example: 'Trans Alb Sh.p.k.' -> 'trans-alb-sh-p-k'
        """
        slug = name.lower()
        slug = re.sub(r'[^a-z0-9]+', '-', slug)
        slug = slug.strip('-')

        # Fallback if name was entirely symbols
        if not slug:
            slug = "carrier-" + secrets.token_hex(4)

        return slug

    def _ensure_slug_unique(self, base_slug: str) -> str:
        """
        If 'trans-alb' exists, tries 'trans-alb-1', 'trans-alb-2', etc.
        """
        slug = base_slug
        counter = 1

        while True:
            statement = select(CarrierProfile).where(CarrierProfile.slug == slug)
            existing = self.session.exec(statement).first()

            if not existing:
                return slug

            slug = f"{base_slug}-{counter}"
            counter += 1

            if counter > 100:
                raise ValueError(
                    f"Could not generate a unique handle for company '{base_slug}'.")

    def _create_jwt(self, subject: str, expires_delta: timedelta, type: str) -> str:
        """Helper to sign JWTs with specific types."""
        to_encode = {
            "sub": str(subject),
            "exp": datetime.utcnow() + expires_delta,
            "type": type
        }
        return jwt.encode(to_encode, settings.secret_key, algorithm=self.ALGORITHM)

    def get_user_by_id(self, user_id: uuid.UUID) -> Optional[User]:
        statement = select(User).where(User.id == user_id)
        return self.session.exec(statement).first()

    def get_user_by_email(self, email: str) -> Optional[User]:
        statement = select(User).where(User.email == email)
        return self.session.exec(statement).first()

    def create_user(self, user_in: UserCreate) -> User:
        """
        Registers a SHIPPER, CARRIER or WAREHOUSE account.
        Carriers get their company profile in the same transaction.
        """
        if user_in.role not in SELF_REGISTER_ROLES:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Accounts with role {user_in.role.value} cannot self-register."
            )

        if self.get_user_by_email(user_in.email):
            raise ValueError("A user with this email already exists.")

        if user_in.role == UserRole.CARRIER and not user_in.company_name:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="Carriers must provide a company name."
            )

        try:
            new_user = User(
                email=user_in.email,
                hashed_password=get_password_hash(user_in.password),
                first_name=user_in.first_name,
                last_name=user_in.last_name,
                phone=user_in.phone,
                language=user_in.language,
                role=user_in.role,
                status=UserStatus.ACTIVE
            )
            self.session.add(new_user)
            self.session.flush()

            if user_in.role == UserRole.CARRIER:
                slug = self._ensure_slug_unique(
                    self._generate_slug(user_in.company_name))
                profile = CarrierProfile(
                    user_id=new_user.id,
                    company_name=user_in.company_name,
                    slug=slug,
                    country=user_in.country.upper(),
                    phone=user_in.phone or "",
                    subscription_tier=SubscriptionTier.FREE_TRIAL,
                    subscription_status=SubscriptionStatus.TRIAL,
                    trial_ends_at=datetime.utcnow() + timedelta(days=TRIAL_DAYS)
                )
                self.session.add(profile)

            self.session.commit()
            self.session.refresh(new_user)

            logger.info(f"Registration successful for {new_user.email} ({new_user.role.value})")
            return new_user

        except Exception as e:
            self.session.rollback()
            logger.error(f"Registration failed: {str(e)}")
            raise e

    def authenticate_user(self, email: str, password: str) -> Optional[User]:
        """Verify email and password hash."""
        user = self.get_user_by_email(email.lower())
        if not user:
            return None
        if not verify_password(password, user.hashed_password):
            return None
        return user

    def record_login(self, user: User) -> None:
        user.last_login_at = datetime.utcnow()
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)

    def change_password(self, user: User, data: PasswordChange) -> None:
        if not verify_password(data.current_password, user.hashed_password):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Current password is incorrect."
            )
        user.hashed_password = get_password_hash(data.new_password)
        self.session.add(user)
        self.session.commit()
        logger.info(f"Password changed for user {user.id}")

    def generate_access_token(self, user: User) -> str:
        return self._create_jwt(
            subject=user.id,
            expires_delta=timedelta(
                minutes=settings.access_token_expire_minutes),
            type="access"
        )

    def generate_refresh_token(self, user: User) -> str:
        return self._create_jwt(
            subject=user.id,
            expires_delta=timedelta(
                minutes=settings.refresh_token_expire_minutes),
            type="refresh"
        )

    def generate_tokens(self, user: User) -> Token:
        return Token(
            access_token=self.generate_access_token(user),
            refresh_token=self.generate_refresh_token(user),
            token_type="bearer"
        )

    def _verify_token(self, token: str, expected_type: str) -> Optional[TokenData]:
        try:
            payload = jwt.decode(token, settings.secret_key,
                                 algorithms=[self.ALGORITHM])
            user_id = payload.get("sub")
            token_type = payload.get("type")

            if not user_id or token_type != expected_type:
                return None

            return TokenData(user_id=uuid.UUID(user_id))
        except (jwt.PyJWTError, ValueError):
            return None

    def verify_access_token(self, token: str) -> Optional[TokenData]:
        return self._verify_token(token, "access")

    def verify_refresh_token(self, token: str) -> Optional[TokenData]:
        return self._verify_token(token, "refresh")

    def validate_user(self, user_id: uuid.UUID) -> Optional[User]:
        """Retrieves user and checks the account is active."""
        user = self.get_user_by_id(user_id)
        if not user or user.status != UserStatus.ACTIVE:
            return None
        return user

    def refresh_session(self, refresh_token: str) -> str:
        """
        Exchange a valid refresh token for a new access token.
        Strictly validates the user state before issuing.
        """
        credentials_exception = HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

        token_data = self.verify_refresh_token(refresh_token)
        if not token_data:
            raise credentials_exception

        user = self.validate_user(token_data.user_id)
        if not user:
            raise credentials_exception

        return self.generate_access_token(user)
