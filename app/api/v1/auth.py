from fastapi import APIRouter, Depends, HTTPException, status
from loguru import logger

from app.core.dependencies import get_user_service
from app.services.user import UserService
from app.db.schema import UserStatus
from app.models.auth import LoginResponse, TokenAccess, TokenRefresh
from app.models.user import UserSignin, UserRead, UserCreate


router = APIRouter()


@router.post(
    "/register",
    status_code=status.HTTP_201_CREATED,
    response_model=UserRead,
    summary="Register a new account",
    description="Creates a SHIPPER, CARRIER or WAREHOUSE account. Carriers also get their company profile."
)
def register(
    user_in: UserCreate,
    service: UserService = Depends(get_user_service)
):
    """
    1. Validates input (Pydantic).
    2. Creates User (+ CarrierProfile for carriers) atomically.
    3. Returns public user info.
    """
    try:
        return service.create_user(user_in)
    except ValueError as e:
        logger.warning(f"Registration validation failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e)
        )


@router.post(
    "/login",
    response_model=LoginResponse,
    status_code=status.HTTP_200_OK,
    summary="Login to get tokens",
    description="Returns an Access Token (short-lived), a Refresh Token (long-lived) and the user."
)
def login(
    signin_data: UserSignin,
    service: UserService = Depends(get_user_service)
):
    user = service.authenticate_user(signin_data.email, signin_data.password)

    if not user:
        # Generic error to prevent user enumeration
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if user.status != UserStatus.ACTIVE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is deactivated. Please contact support."
        )

    service.record_login(user)
    tokens = service.generate_tokens(user)

    logger.info(f"User logged in: {user.id}")

    return LoginResponse(**tokens.model_dump(), user=UserRead.model_validate(user))


@router.post(
    "/refresh",
    response_model=TokenAccess,
    status_code=status.HTTP_200_OK,
    summary="Refresh Session",
    description="Exchanges a valid Refresh Token for a new Access Token."
)
def refresh_token(
    refresh_data: TokenRefresh,
    service: UserService = Depends(get_user_service)
):
    # The service handles all validation logic and raises 401 if invalid
    return TokenAccess(access_token=service.refresh_session(refresh_data.refresh_token))
