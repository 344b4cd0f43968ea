"""
TestHub Request Authentication
Credential extraction, JWT / PAT dispatch and the current-user dependencies
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from fastapi import Depends, Request, Response
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import get_settings
from .database import get_db
from .dependencies import get_jwt_service, get_pat_service
from .errors import AuthError
from .models import User
from .security import SecurityWhitelist, public_routes
from .services.jwt_service import JwtService
from .services.pat_service import PersonalAccessTokenService
from .utils import norm_email, is_secure_request

logger = logging.getLogger(__name__)

settings = get_settings()

bearer_scheme = HTTPBearer(auto_error=False)

CREDENTIALS_REJECTED = "Could not validate credentials"


class TokenSource(str, Enum):
    COOKIE = "cookie"
    HEADER = "header"


@dataclass(frozen=True)
class JwtCredential:
    token: str
    source: TokenSource


@dataclass(frozen=True)
class PatCredential:
    token: str
    source: TokenSource = TokenSource.HEADER


Credential = Union[JwtCredential, PatCredential]


def classify_credential(token: str, source: TokenSource) -> Credential:
    """Decide the scheme once; cookies only ever carry JWTs"""
    if source == TokenSource.HEADER and PersonalAccessTokenService.is_pat(token):
        return PatCredential(token=token, source=source)
    return JwtCredential(token=token, source=source)


def extract_credential(
    request: Request,
    bearer: Optional[HTTPAuthorizationCredentials] = None,
) -> Optional[Credential]:
    """Session cookie first, then the Authorization bearer token"""
    cookie_token = request.cookies.get(settings.security.cookie_settings['name'])
    if cookie_token and cookie_token.strip():
        return classify_credential(cookie_token.strip(), TokenSource.COOKIE)

    if bearer is not None and bearer.credentials and bearer.credentials.strip():
        return classify_credential(bearer.credentials.strip(), TokenSource.HEADER)
    return None


class CredentialResolver:
    """Maps a credential to the enabled user it belongs to"""

    def __init__(self, jwt_service: JwtService, pat_service: PersonalAccessTokenService):
        self.jwt_service = jwt_service
        self.pat_service = pat_service

    def resolve(self, db: Session, credential: Credential) -> str:
        """Normalized email of the credential's owner"""
        try:
            if isinstance(credential, PatCredential):
                email = self.pat_service.authenticate_token(db, credential.token)
            else:
                email = self.jwt_service.extract_subject(credential.token)
        except AuthError as e:
            logger.info(f"Rejected {type(credential).__name__} from {credential.source.value}: {e.error_code}")
            raise AuthError(CREDENTIALS_REJECTED, "INVALID_CREDENTIALS") from e
        return norm_email(email)

    def resolve_user(self, db: Session, credential: Credential) -> User:
        email = self.resolve(db, credential)
        user = db.execute(select(User).where(User.email == email)).scalars().first() if email else None
        if user is None or not user.enabled:
            logger.info("Credential subject is unknown or disabled")
            raise AuthError(CREDENTIALS_REJECTED, "INVALID_CREDENTIALS")
        return user


def get_credential_resolver(
    jwt_service: JwtService = Depends(get_jwt_service),
    pat_service: PersonalAccessTokenService = Depends(get_pat_service),
) -> CredentialResolver:
    return CredentialResolver(jwt_service, pat_service)


def authenticate_request(
    request: Request,
    bearer: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
    resolver: CredentialResolver = Depends(get_credential_resolver),
) -> Optional[User]:
    """Application-wide guard: public routes pass, everything else needs a user"""
    whitelist: SecurityWhitelist = getattr(request.app.state, 'public_routes', public_routes)
    if whitelist.is_public(request.method, request.url.path):
        return None

    credential = extract_credential(request, bearer)
    if credential is None:
        raise AuthError("Not authenticated", "NOT_AUTHENTICATED")

    try:
        user = resolver.resolve_user(db, credential)
    except AuthError:
        if credential.source == TokenSource.COOKIE:
            # Error handler drops the stale session cookie
            request.state.clear_auth_cookie = True
        raise
    request.state.current_user = user
    return user


def get_current_user(user: Optional[User] = Depends(authenticate_request)) -> User:
    if user is None:
        raise AuthError("Not authenticated", "NOT_AUTHENTICATED")
    return user


def get_optional_email(
    request: Request,
    response: Response,
    bearer: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
    resolver: CredentialResolver = Depends(get_credential_resolver),
) -> Optional[str]:
    """Identity on public routes that accept, but do not need, credentials"""
    credential = extract_credential(request, bearer)
    if credential is None:
        return None
    try:
        return resolver.resolve_user(db, credential).email
    except AuthError:
        # Stale credentials on a public route are treated as anonymous
        if credential.source == TokenSource.COOKIE:
            clear_auth_cookie(response, request)
        return None


def set_auth_cookie(response: Response, request: Request, token: str) -> None:
    cookie = settings.security.cookie_settings
    response.set_cookie(
        key=cookie['name'],
        value=token,
        max_age=cookie['max_age'],
        path=cookie['path'],
        domain=cookie['domain'],
        secure=is_secure_request(request),
        httponly=True,
        samesite=cookie['samesite'],
    )


def clear_auth_cookie(response: Response, request: Request) -> None:
    cookie = settings.security.cookie_settings
    response.delete_cookie(
        key=cookie['name'],
        path=cookie['path'],
        domain=cookie['domain'],
        secure=is_secure_request(request),
        httponly=True,
        samesite=cookie['samesite'],
    )


__all__ = [
    'TokenSource',
    'JwtCredential',
    'PatCredential',
    'Credential',
    'classify_credential',
    'extract_credential',
    'CredentialResolver',
    'get_credential_resolver',
    'authenticate_request',
    'get_current_user',
    'get_optional_email',
    'set_auth_cookie',
    'clear_auth_cookie',
    'bearer_scheme',
]
