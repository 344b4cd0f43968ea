"""
TestHub - Auth API
Registration, verification, login, password flows, profile and personal access tokens
"""

import logging
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from ..auth import get_current_user, set_auth_cookie, clear_auth_cookie
from ..database import get_db
from ..dependencies import get_jwt_service, get_pat_service, get_rate_limiter, get_mail_service
from ..models import User
from ..schemas import (
    RegisterRequest, LoginRequest, LoginResponse, MessageResponse, PasswordResetRequest,
    PasswordChangeRequest, ProfileUpdateRequest, ProfileUpdateResponse, UserProfileResponse,
    TokenCreateRequest, ApiTokenResponse,
)
from ..services import rate_limit_service as limits
from ..services.jwt_service import JwtService
from ..services.mail_service import MailService
from ..services.pat_service import PersonalAccessTokenService
from ..services.rate_limit_service import RateLimitService
from ..services.user_service import user_service
from ..utils import get_client_ip, norm_email

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])

RESET_REQUESTED = "If the account exists, a password reset email has been sent"
RESEND_REQUESTED = "If the account exists, a verification email has been sent"


@router.post("/register", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
def register(
    payload: RegisterRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    limiter: RateLimitService = Depends(get_rate_limiter),
    mail: MailService = Depends(get_mail_service),
):
    """Create an account and send the verification mail"""
    limiter.check(limits.REGISTER, get_client_ip(request), "Too many registration attempts")

    user = user_service.register_user(db, payload.email, payload.password, payload.full_name)
    raw_token = user_service.issue_email_verification(db, user)
    background_tasks.add_task(mail.send_email_verification, user.email, user.full_name, raw_token)
    return MessageResponse(message="Registration successful. Check your email to verify your account.")


@router.post("/verify", response_model=MessageResponse)
def verify_email(token: str = Query(...), db: Session = Depends(get_db)):
    user_service.verify_email(db, token)
    return MessageResponse(message="Email verified")


@router.post("/verification/resend", response_model=MessageResponse, status_code=status.HTTP_202_ACCEPTED)
def resend_verification(
    background_tasks: BackgroundTasks,
    email: str = Query(...),
    db: Session = Depends(get_db),
    limiter: RateLimitService = Depends(get_rate_limiter),
    mail: MailService = Depends(get_mail_service),
):
    limiter.check(limits.VERIFICATION_RESEND, norm_email(email), "Too many verification requests")

    issued = user_service.resend_verification(db, email)
    if issued is not None:
        user, raw_token = issued
        background_tasks.add_task(mail.send_email_verification, user.email, user.full_name, raw_token)
    return MessageResponse(message=RESEND_REQUESTED)


@router.post("/login", response_model=LoginResponse)
def login(
    payload: LoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    limiter: RateLimitService = Depends(get_rate_limiter),
    jwt_service: JwtService = Depends(get_jwt_service),
):
    """Exchange credentials for a JWT, returned in the body and as a cookie"""
    client_ip = get_client_ip(request)
    limiter.check(limits.LOGIN, client_ip, "Too many login attempts")

    user = user_service.authenticate(db, payload.email, payload.password)
    token = jwt_service.generate_token(user.email)
    set_auth_cookie(response, request, token)

    logger.info(f"User {user.id} logged in from {client_ip}")
    return LoginResponse(token=token, expires_in=jwt_service.expiration_seconds)


@router.post("/logout", response_model=MessageResponse)
def logout(request: Request, response: Response):
    clear_auth_cookie(response, request)
    return MessageResponse(message="Logged out")


@router.post("/password/request-reset", response_model=MessageResponse, status_code=status.HTTP_202_ACCEPTED)
def request_password_reset(
    background_tasks: BackgroundTasks,
    email: str = Query(...),
    db: Session = Depends(get_db),
    limiter: RateLimitService = Depends(get_rate_limiter),
    mail: MailService = Depends(get_mail_service),
):
    limiter.check(limits.PASSWORD_RESET, norm_email(email), "Too many password reset requests")

    issued = user_service.request_password_reset(db, email)
    if issued is not None:
        user, raw_token = issued
        background_tasks.add_task(mail.send_password_reset, user.email, user.full_name, raw_token)
    return MessageResponse(message=RESET_REQUESTED)


@router.post("/password/reset", response_model=MessageResponse)
def reset_password(
    payload: PasswordResetRequest,
    token: str = Query(...),
    db: Session = Depends(get_db),
):
    user_service.reset_password(db, token, payload.new_password)
    return MessageResponse(message="Password updated")


@router.post("/password/change", response_model=MessageResponse)
def change_password(
    payload: PasswordChangeRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    user_service.change_password(db, current_user, payload.current_password, payload.new_password)
    return MessageResponse(message="Password changed")


@router.get("/me", response_model=UserProfileResponse)
def me(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return user_service.get_profile(db, current_user)


@router.put("/profile", response_model=ProfileUpdateResponse)
def update_profile(
    payload: ProfileUpdateRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    mail: MailService = Depends(get_mail_service),
):
    raw_token = user_service.update_profile(db, current_user, payload.full_name, payload.new_email)
    if raw_token is None:
        return ProfileUpdateResponse(message="Profile updated")

    background_tasks.add_task(
        mail.send_email_change, norm_email(payload.new_email), current_user.full_name, raw_token
    )
    return ProfileUpdateResponse(
        message="Check your new email address to confirm the change",
        email_change_pending=True,
    )


@router.post("/email/confirm", response_model=MessageResponse)
def confirm_email_change(token: str = Query(...), db: Session = Depends(get_db)):
    user_service.confirm_email_change(db, token)
    return MessageResponse(message="Email changed")


# Personal access tokens

@router.post("/tokens", response_model=ApiTokenResponse, status_code=status.HTTP_201_CREATED)
def create_token(
    payload: TokenCreateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    pat_service: PersonalAccessTokenService = Depends(get_pat_service),
):
    """The raw token is only ever returned here"""
    created = pat_service.create_token(db, current_user.email, payload.name, payload.scopes)
    return created.to_dict()


@router.get("/tokens", response_model=List[ApiTokenResponse])
def list_tokens(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    pat_service: PersonalAccessTokenService = Depends(get_pat_service),
):
    return [t.to_dict() for t in pat_service.list_active_tokens(db, current_user.email)]


@router.delete("/tokens/{token_id}", status_code=status.HTTP_204_NO_CONTENT)
def revoke_token(
    token_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    pat_service: PersonalAccessTokenService = Depends(get_pat_service),
):
    pat_service.revoke_token(db, current_user.email, token_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
