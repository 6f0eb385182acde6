from fastapi import APIRouter, Depends, status

from app.core.dependencies import get_user_service, get_current_user
from app.services.user import UserService
from app.db.schema import User
from app.models.user import UserRead, PasswordChange


router = APIRouter()


@router.get(
    "/me",
    response_model=UserRead,
    status_code=status.HTTP_200_OK,
    summary="Get current user",
    description="Returns the profile information of the currently authenticated user."
)
def get_me(
    current_user: User = Depends(get_current_user)
):
    return current_user


@router.put(
    "/change-password",
    status_code=status.HTTP_200_OK,
    summary="Change password",
    description="Requires the current password."
)
def change_password(
    data: PasswordChange,
    current_user: User = Depends(get_current_user),
    service: UserService = Depends(get_user_service)
):
    service.change_password(current_user, data)
    return {"message": "Password changed successfully."}
