import logging
import os
import secrets
from typing import Annotated, Optional

from db import SessionDep
from fastapi import APIRouter, Cookie, Depends, Header, HTTPException, Response
from fastapi.responses import JSONResponse
from itsdangerous import BadData, URLSafeTimedSerializer
from models import User
from passlib.context import CryptContext
from schemas import LoginData, UserCreate, UserRead
from sqlmodel import Session, select

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])

SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
SESSION_MAX_AGE = int(os.getenv("SESSION_MAX_AGE", str(60 * 60 * 8)))
serializer = URLSafeTimedSerializer(SECRET_KEY)


pwd_context = CryptContext(
    schemes=["pbkdf2_sha256"],
    deprecated="auto",
)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_session_token(user_id: int) -> str:
    """
    Store user_id in the signed token.
    Example data:
        {"user_id": 3}
    """
    return serializer.dumps({"user_id": user_id})


def verify_session_token(token: str, max_age_seconds: int = SESSION_MAX_AGE):
    """
    Returns dict {'user_id': ...} if valid,
    or None if token is invalid/expired.
    """
    try:
        return serializer.loads(token, max_age=max_age_seconds)
    except BadData:
        return None


def user_for_token(session: Session, token: Optional[str]) -> Optional[User]:
    """Resolve a session token to an active user, or None."""
    if not token:
        return None
    data = verify_session_token(token)
    if not data:
        return None
    user = session.get(User, data["user_id"])
    if user is None or not user.is_active:
        return None
    return user


def get_current_user(
    session: SessionDep,
    session_token: Optional[str] = Cookie(default=None, alias="session"),
    authorization: Optional[str] = Header(default=None),
) -> User:
    """
    Reads the 'session' cookie (or an "Authorization: Bearer" header),
    verifies the token and looks up the user.
    Raises 401 if not logged in / invalid.
    """
    if authorization and authorization.lower().startswith("bearer "):
        session_token = authorization[7:].strip()
    if session_token is None:
        raise HTTPException(status_code=401, detail="Not logged in")

    user = user_for_token(session, session_token)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid or expired session")
    return user


CurrentUserDep = Annotated[User, Depends(get_current_user)]


def _session_response(body: dict, token: str, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(body, status_code=status_code)
    resp.set_cookie(
        key="session",
        value=token,
        httponly=True,
        secure=False,
        samesite="lax",
        max_age=SESSION_MAX_AGE,
    )
    return resp


@router.post("/register")
def register(user_in: UserCreate, session: SessionDep):
    """
    Register a new user with a hashed password and log them in.
    """
    existing = session.exec(
        select(User).where(User.email == user_in.email)
    ).first()
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")

    user = User(
        email=user_in.email,
        name=user_in.name,
        phone=user_in.phone,
        user_type=user_in.user_type,
        password_hash=hash_password(user_in.password),
    )
    session.add(user)
    session.commit()
    session.refresh(user)

    if user.id is None:
        raise HTTPException(
            status_code=500, detail="User was not created successfully"
        )

    logger.info("registered user %s", user.id)
    token = create_session_token(user.id)
    return _session_response(
        {
            "success": True,
            "message": "Registration successful",
            "data": UserRead.model_validate(user).model_dump(mode="json"),
            "token": token,
        },
        token,
        status_code=201,
    )


@router.post("/login")
def login(payload: LoginData, session: SessionDep):
    """
    Log in with email + password, set a signed cookie.
    The token is also returned for the live socket, which passes it as a
    query parameter.
    """
    user = session.exec(
        select(User).where(User.email == payload.email)
    ).first()

    if user is None or not verify_password(payload.password, user.password_hash):
        raise HTTPException(
            status_code=400, detail="Invalid email or password"
        )
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account is disabled")

    token = create_session_token(user.id)
    return _session_response(
        {"success": True, "message": "Login successful", "token": token},
        token,
    )


@router.post("/logout")
def logout():
    """
    Clear the session cookie.
    """
    response = Response(status_code=204)
    response.delete_cookie("session")
    return response


@router.get("/me")
def read_me(current: CurrentUserDep):
    """
    Get info about the currently logged-in user.
    """
    return {
        "success": True,
        "data": UserRead.model_validate(current).model_dump(mode="json"),
    }
