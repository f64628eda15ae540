from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List, Optional

from ...core.database import get_db
from ...core.security import UserRole, AuthorizationError
from ...api.deps import get_current_user, get_admin_user, rate_limit_check
from ...services.auth_service import AuthService
from ...schemas.auth import UserLogin, UserRegister, TokenResponse, UserResponse
from ...models.user import User

router = APIRouter(prefix="/auth", tags=["Authentication"])

@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(
    user_data: UserRegister,
    db: Session = Depends(get_db),
    _: None = Depends(rate_limit_check)
):
    """Self-service sign-up. Only patient accounts can be created here."""
    if user_data.role != UserRole.PATIENT:
        raise AuthorizationError(
            "Only patients can self-register; doctor and admin accounts are created by an admin"
        )
    user = AuthService(db).register_user(user_data)
    return UserResponse.model_validate(user)

@router.post("/login", response_model=TokenResponse)
async def login(
    login_data: UserLogin,
    db: Session = Depends(get_db),
    _: None = Depends(rate_limit_check)
):
    """Authenticate user and return an access token."""
    auth_service = AuthService(db)
    return auth_service.authenticate_user(login_data)

@router.get("/me", response_model=UserResponse)
async def get_current_user_info(
    current_user: User = Depends(get_current_user)
):
    """Get current user information."""
    return UserResponse.model_validate(current_user)

@router.get("/users", response_model=List[UserResponse])
async def list_users(
    role: Optional[UserRole] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """List users, e.g. ?role=doctor to populate a booking form."""
    auth_service = AuthService(db)
    return [UserResponse.model_validate(user) for user in auth_service.list_users(role)]

@router.post("/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    user_data: UserRegister,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user)
):
    """Create an account with any role (admin only)."""
    user = AuthService(db).register_user(user_data)
    return UserResponse.model_validate(user)
