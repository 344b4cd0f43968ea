"""
Application-scoped services exposed as FastAPI dependencies
"""

from fastapi import Request

from .services.jwt_service import JwtService
from .services.mail_service import MailService
from .services.pat_service import PersonalAccessTokenService
from .services.rate_limit_service import RateLimitService


def get_jwt_service(request: Request) -> JwtService:
    return request.app.state.jwt_service


def get_pat_service(request: Request) -> PersonalAccessTokenService:
    return request.app.state.pat_service


def get_rate_limiter(request: Request) -> RateLimitService:
    return request.app.state.rate_limiter


def get_mail_service(request: Request) -> MailService:
    return request.app.state.mail_service
