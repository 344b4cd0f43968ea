"""
TestHub Configuration
Environment driven settings for security, persistence, rate limiting and mail
"""

import os
import logging
import secrets
from functools import lru_cache
from typing import Optional, List, Dict, Any
from datetime import timedelta

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_bool(name: str, default: bool = False) -> bool:
    return os.getenv(name, 'true' if default else 'false').lower() in ('1', 'true', 'yes')


class SecurityConfig:
    """JWT, cookie and hashing configuration"""

    def __init__(self):
        key = os.getenv('JWT_SECRET_KEY')
        self._generated_secret = not key
        # A per-process key invalidates every issued JWT on restart
        self._jwt_secret_key = key or secrets.token_urlsafe(48)

    @property
    def jwt_secret_key(self) -> str:
        return self._jwt_secret_key

    @property
    def jwt_secret_generated(self) -> bool:
        return self._generated_secret

    @property
    def jwt_expiration_seconds(self) -> int:
        return _env_int('JWT_EXPIRATION_SECONDS', 3600)

    @property
    def bcrypt_rounds(self) -> int:
        return _env_int('BCRYPT_ROUNDS', 12)

    @property
    def cookie_settings(self) -> Dict[str, Any]:
        """Attributes of the JWT session cookie"""
        return {
            'name': os.getenv('AUTH_COOKIE_NAME', 'app_token'),
            'path': os.getenv('AUTH_COOKIE_PATH', '/'),
            'domain': os.getenv('AUTH_COOKIE_DOMAIN') or None,
            'samesite': os.getenv('AUTH_COOKIE_SAMESITE', 'lax').lower(),
            'max_age': _env_int('AUTH_COOKIE_MAX_AGE_DAYS', 7) * 24 * 3600,
        }


class DatabaseConfig:
    """Database configuration with connection pooling"""

    @property
    def url(self) -> str:
        return os.getenv('DATABASE_URL', 'sqlite:///./testhub.db')

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith('sqlite')

    @property
    def pool_settings(self) -> Dict[str, Any]:
        """Connection pool configuration"""
        return {
            'pool_size': _env_int('DB_POOL_SIZE', 10),
            'max_overflow': _env_int('DB_MAX_OVERFLOW', 20),
            'pool_timeout': _env_int('DB_POOL_TIMEOUT', 30),
            'pool_recycle': _env_int('DB_POOL_RECYCLE', 3600),
            'pool_pre_ping': True,
        }


class TokenLifetimeConfig:
    """Lifetimes of one-time email tokens"""

    @property
    def email_verification(self) -> timedelta:
        return timedelta(hours=_env_int('VERIFICATION_TTL_HOURS', 24))

    @property
    def password_reset(self) -> timedelta:
        return timedelta(hours=_env_int('PASSWORD_RESET_TTL_HOURS', 1))

    @property
    def email_change(self) -> timedelta:
        return timedelta(hours=_env_int('EMAIL_CHANGE_TTL_HOURS', 24))

    @property
    def group_invite(self) -> timedelta:
        return timedelta(hours=_env_int('GROUP_INVITE_TTL_HOURS', 72))


class GroupConfig:
    """Group membership limits"""

    @property
    def max_members(self) -> int:
        return _env_int('GROUP_MAX_MEMBERS', 10)


class RateLimitConfig:
    """Per-purpose bucket policies and the coarse per-IP limit"""

    @property
    def policies(self) -> Dict[str, Dict[str, int]]:
        """capacity tokens per refill period, keyed by purpose"""
        return {
            'login': {
                'capacity': _env_int('RATE_LIMIT_LOGIN_PER_MINUTE', 5),
                'period_seconds': 60,
            },
            'register': {
                'capacity': _env_int('RATE_LIMIT_REGISTER_PER_HOUR', 3),
                'period_seconds': 3600,
            },
            'password-reset': {
                'capacity': _env_int('RATE_LIMIT_PASSWORD_RESET_PER_HOUR', 3),
                'period_seconds': 3600,
            },
            'invite': {
                'capacity': _env_int('RATE_LIMIT_INVITE_PER_HOUR', 10),
                'period_seconds': 3600,
            },
            'verification-resend': {
                'capacity': _env_int('RATE_LIMIT_VERIFICATION_RESEND_PER_HOUR', 3),
                'period_seconds': 3600,
            },
        }

    @property
    def bucket_ttl_seconds(self) -> int:
        return _env_int('RATE_LIMIT_BUCKET_TTL_SECONDS', 7200)

    @property
    def max_buckets(self) -> int:
        return _env_int('RATE_LIMIT_MAX_BUCKETS', 100000)

    @property
    def global_limit(self) -> str:
        return os.getenv('RATE_LIMIT_GLOBAL', '300/minute')

    @property
    def storage_uri(self) -> str:
        """slowapi storage, e.g. memory:// or redis://host:6379/0"""
        return os.getenv('RATE_LIMIT_STORAGE_URI', 'memory://')

    @property
    def enabled(self) -> bool:
        return _env_bool('RATE_LIMIT_ENABLED', True)


class PasswordConfig:
    """Password change throttling"""

    @property
    def changes_per_day(self) -> int:
        return _env_int('PASSWORD_CHANGES_PER_DAY', 3)


class MailConfig:
    """Outbound mail configuration"""

    @property
    def smtp_settings(self) -> Dict[str, Any]:
        return {
            'host': os.getenv('SMTP_HOST', ''),
            'port': _env_int('SMTP_PORT', 587),
            'username': os.getenv('SMTP_USER', ''),
            'password': os.getenv('SMTP_PASSWORD', ''),
            'use_tls': _env_bool('SMTP_USE_TLS', True),
            'sender': os.getenv('MAIL_FROM', 'no-reply@testhub.local'),
        }

    @property
    def enabled(self) -> bool:
        return bool(self.smtp_settings['host'])

    @property
    def frontend_url(self) -> str:
        return os.getenv('FRONTEND_URL', 'http://localhost:3000').rstrip('/')


class MaintenanceConfig:
    """Background maintenance schedule"""

    @property
    def interval_seconds(self) -> int:
        return _env_int('MAINTENANCE_INTERVAL_SECONDS', 3600)


class Settings:
    """Unified application settings"""

    def __init__(self):
        self.environment = os.getenv('ENV', 'development')
        self.debug = self.environment == 'development'
        self.testing = _env_bool('TESTING')

        self.security = SecurityConfig()
        self.database = DatabaseConfig()
        self.token_lifetimes = TokenLifetimeConfig()
        self.groups = GroupConfig()
        self.rate_limit = RateLimitConfig()
        self.passwords = PasswordConfig()
        self.mail = MailConfig()
        self.maintenance = MaintenanceConfig()

    @property
    def app_config(self) -> Dict[str, Any]:
        """Core application configuration"""
        return {
            'name': 'TestHub',
            'version': os.getenv('APP_VERSION', '1.0.0'),
            'environment': self.environment,
            'debug': self.debug,
            'testing': self.testing,
            'host': os.getenv('HOST', '0.0.0.0'),
            'port': _env_int('PORT', 8000),
            'cors_origins': [o.strip() for o in os.getenv('CORS_ORIGINS', '*').split(',') if o.strip()],
            'log_level': os.getenv('LOG_LEVEL', 'INFO'),
            'docs_url': '/docs' if self.debug else None,
            'redoc_url': '/redoc' if self.debug else None,
        }

    def validate_configuration(self) -> List[str]:
        """Validate all configuration settings"""
        errors = []

        if self.environment == 'production':
            if self.security.jwt_secret_generated:
                errors.append("JWT_SECRET_KEY must be set in production")
            if self.database.is_sqlite:
                errors.append("SQLite is not supported in production")
            if not self.mail.enabled:
                errors.append("SMTP_HOST must be set in production")

        if len(self.security.jwt_secret_key.encode('utf-8')) < 32:
            errors.append("JWT_SECRET_KEY is shorter than 32 bytes")

        if self.security.jwt_expiration_seconds <= 0:
            errors.append("JWT_EXPIRATION_SECONDS must be positive")

        if not 4 <= self.security.bcrypt_rounds <= 31:
            errors.append("BCRYPT_ROUNDS must be between 4 and 31")

        if self.groups.max_members < 1:
            errors.append("GROUP_MAX_MEMBERS must be at least 1")

        for purpose, policy in self.rate_limit.policies.items():
            if policy['capacity'] < 1:
                errors.append(f"Rate limit capacity for '{purpose}' must be at least 1")

        return errors


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()

__all__ = [
    'settings',
    'get_settings',
    'Settings',
    'SecurityConfig',
    'DatabaseConfig',
    'TokenLifetimeConfig',
    'GroupConfig',
    'RateLimitConfig',
    'PasswordConfig',
    'MailConfig',
    'MaintenanceConfig',
]
