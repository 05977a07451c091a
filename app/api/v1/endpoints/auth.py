from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy.orm import Session
import logging
from app.core.database import get_db
from app.core.rate_limit import auth_rate_limiter
from app.core.security import (
    authenticate_user,
    create_access_token,
    create_refresh_token,
    decode_token,
    get_current_user,
    get_password_hash,
    verify_password,
)
from app.schemas.schemas import Token, LoginRequest, RefreshRequest, UserCreate, UserResponse, PasswordChange
from app.models.models import User
from app.api.v1.endpoints.activity_logs import create_activity_log

logger = logging.getLogger(__name__)

router = APIRouter()


def _issue_tokens(user: User) -> dict:
    claims = {"sub": user.email, "user_id": user.id}
    return {
        "access_token": create_access_token(data=claims),
        "refresh_token": create_refresh_token(data=claims),
        "token_type": "bearer"
    }


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED, dependencies=[Depends(auth_rate_limiter)])
def register(user_data: UserCreate, request: Request, db: Session = Depends(get_db)):
    """Register a new establishment owner"""
    existing_user = db.query(User).filter(User.email == user_data.email).first()
    if existing_user:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered"
        )

    db_user = User(
        email=user_data.email,
        full_name=user_data.full_name,
        phone=user_data.phone,
        hashed_password=get_password_hash(user_data.password),
        is_active=1
    )
    db.add(db_user)
    db.commit()
    db.refresh(db_user)

    create_activity_log(
        db,
        user_id=db_user.id,
        action="created",
        entity_type="user",
        entity_id=db_user.id,
        description=f"Registered new user {db_user.email}",
        request=request
    )
    logger.info(f"Registered user {db_user.id}")

    return db_user


@router.post("/login", response_model=Token, dependencies=[Depends(auth_rate_limiter)])
def login(login_data: LoginRequest, request: Request, db: Session = Depends(get_db)):
    user = authenticate_user(db, login_data.email, login_data.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if user.is_active != 1:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Inactive user")

    create_activity_log(
        db,
        user_id=user.id,
        action="login",
        entity_type="user",
        entity_id=user.id,
        description=f"{user.email} logged in",
        request=request
    )

    return _issue_tokens(user)


@router.post("/refresh", response_model=Token)
def refresh_token(token_data: RefreshRequest, db: Session = Depends(get_db)):
    """Exchange a refresh token for a new token pair"""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = decode_token(token_data.refresh_token, "refresh")
    if payload is None:
        raise credentials_exception

    user = db.query(User).filter(User.email == payload["sub"]).first()
    if user is None or user.is_active != 1:
        raise credentials_exception

    return _issue_tokens(user)


@router.get("/me", response_model=UserResponse)
def read_current_user(current_user: User = Depends(get_current_user)):
    return current_user


@router.put("/password")
def change_password(
    data: PasswordChange,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    if not verify_password(data.current_password, current_user.hashed_password):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Current password is incorrect")

    current_user.hashed_password = get_password_hash(data.new_password)
    db.commit()

    create_activity_log(
        db,
        user_id=current_user.id,
        action="password_changed",
        entity_type="user",
        entity_id=current_user.id,
        description=f"{current_user.email} changed password",
        request=request
    )

    return {"message": "Password updated successfully"}
