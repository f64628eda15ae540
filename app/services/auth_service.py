from sqlalchemy.orm import Session
from fastapi import HTTPException, status
from typing import List, Optional
import logging

from ..models.user import User
from ..core.config import settings
from ..core.security import (
    verify_password, get_password_hash, create_user_token, UserRole
)
from ..schemas.auth import UserLogin, UserRegister, TokenResponse, UserResponse

logger = logging.getLogger(__name__)

class AuthService:
    def __init__(self, db: Session):
        self.db = db

    def register_user(self, user_data: UserRegister) -> User:
        """Register a new user."""
        email = user_data.email.lower()

        # Check if user already exists
        existing_user = self.db.query(User).filter(
            User.email == email
        ).first()

        if existing_user:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Email already registered"
            )

        new_user = User(
            name=user_data.name,
            email=email,
            password_hash=get_password_hash(user_data.password),
            role=user_data.role,
            is_active=True
        )

        self.db.add(new_user)
        self.db.commit()
        self.db.refresh(new_user)

        logger.info(f"Registered {new_user.role.value} account {new_user.id}")
        return new_user

    def authenticate_user(self, login_data: UserLogin) -> TokenResponse:
        """Authenticate user and return an access token."""
        user = self.db.query(User).filter(
            User.email == login_data.email.lower()
        ).first()

        # Users provisioned without a password cannot log in
        if not user or not user.password_hash or not verify_password(
            login_data.password, user.password_hash
        ):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid email or password"
            )

        if not user.is_active:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Account is deactivated"
            )

        return TokenResponse(
            access_token=create_user_token(user.id, user.email, user.role),
            token_type="bearer",
            expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            user=UserResponse.model_validate(user)
        )

    def list_users(self, role: Optional[UserRole] = None) -> List[User]:
        """List users by name, optionally restricted to one role."""
        query = self.db.query(User)
        if role is not None:
            query = query.filter(User.role == role)
        return query.order_by(User.name.asc()).all()
