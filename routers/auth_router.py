from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from auth import client_ip, get_optional_user, login_user, logout_user
from database import get_db
from models import User
from routers.common import success
from schemas import (
    ForgotPasswordPayload,
    LoginPayload,
    RegisterPayload,
    ResetPasswordPayload,
    VerifyEmailPayload,
)
from services.user_service import UserService, format_user

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login")
def login(payload: LoginPayload, request: Request, db: Session = Depends(get_db)):
    user = UserService(db).authenticate(payload.email, payload.password)
    login_user(request, db, user)
    return success(format_user(user), "Login successful")


@router.post("/logout")
def logout(request: Request, db: Session = Depends(get_db)):
    logout_user(request, db)
    return success(None, "Logged out successfully")


@router.post("/register")
def register(payload: RegisterPayload, db: Session = Depends(get_db)):
    user = UserService(db).register(
        payload.name,
        payload.email,
        payload.password,
        payload.confirm_password,
        payload.account_type,
        payload.terms_agreed,
    )
    return success(format_user(user), "Registration successful. Please check your email to verify your account.",
                   status_code=201)


@router.post("/verify-email")
def verify_email(payload: VerifyEmailPayload, db: Session = Depends(get_db)):
    user = UserService(db).verify_email(payload.token)
    return success(format_user(user), "Email verified successfully")


@router.post("/forgot-password")
def forgot_password(payload: ForgotPasswordPayload, request: Request, db: Session = Depends(get_db)):
    UserService(db).request_password_reset(payload.email, client_ip(request), request.headers.get("user-agent"))
    return success(None, "If an account exists with that email, a password reset link has been sent.")


@router.post("/reset-password")
def reset_password(payload: ResetPasswordPayload, db: Session = Depends(get_db)):
    UserService(db).reset_password(payload.token, payload.password, payload.confirm_password)
    return success(None, "Password has been reset. You can now log in.")


@router.get("/check")
def check(user: Optional[User] = Depends(get_optional_user)):
    return success({
        "authenticated": user is not None,
        "user": format_user(user) if user else None,
    })
