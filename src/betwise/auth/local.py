"""Local authentication service (email/password)."""

from datetime import datetime, timedelta
from typing import Any

from jose import JWTError, jwt
from passlib.context import CryptContext

from betwise.auth.models import UserAccount, UserRole
from betwise.logging_config import get_logger
from betwise.settings import settings
from betwise.storage.db import db

logger = get_logger(__name__)

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# JWT settings
JWT_ALGORITHM = "HS256"


class EmailAlreadyRegisteredError(ValueError):
    """Raised when registering an email that already has an account."""


class InvalidReferralCodeError(ValueError):
    """Raised when a registration carries an unknown referral code."""


class LocalAuthService:
    """Authentication service for local (email/password) users."""

    def __init__(self):
        """Initialize auth service."""
        self.logger = get_logger(__name__)

    # ==================== PASSWORD ====================

    def _truncate_password(self, password: str) -> str:
        """Truncate password to 72 bytes (bcrypt limit)."""
        return password.encode("utf-8")[:72].decode("utf-8", errors="ignore")

    def hash_password(self, password: str) -> str:
        return pwd_context.hash(self._truncate_password(password))

    def verify_password(self, password: str, hashed: str) -> bool:
        return pwd_context.verify(self._truncate_password(password), hashed)

    # ==================== USER MANAGEMENT ====================

    def create_user(
        self,
        email: str,
        password: str,
        referral_code: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
        country: str | None = None,
        role: UserRole = UserRole.USER,
    ) -> UserAccount:
        """Create a new local user, linking the referrer when a code is given.

        Args:
            email: User email
            password: Plain password
            referral_code: Optional referral code of the referrer
            first_name: Optional first name
            last_name: Optional last name
            country: Optional ISO-2 country code
            role: USER or ADMIN

        Returns:
            Created user account

        Raises:
            EmailAlreadyRegisteredError: If email already exists
            InvalidReferralCodeError: If the referral code is unknown
        """
        from betwise.referral.service import referral_service

        with db.session() as session:
            existing = session.query(UserAccount).filter(
                UserAccount.email == email.lower()
            ).first()
            if existing:
                raise EmailAlreadyRegisteredError("Email already registered")

            referrer = None
            if referral_code:
                referrer = referral_service.find_referrer(session, referral_code)
                if not referrer:
                    raise InvalidReferralCodeError("Invalid referral code")

            user = UserAccount(
                email=email.lower(),
                password_hash=self.hash_password(password),
                first_name=first_name,
                last_name=last_name,
                country=country.upper() if country else None,
                role=role,
                referral_code=referral_service.unique_code(session),
            )
            session.add(user)
            session.flush()

            if referrer:
                referral_service.link_users(session, referrer, user)

            session.commit()
            session.refresh(user)

            self.logger.info(
                "user_created",
                user_id=user.id,
                email=user.email,
                referred_by_id=user.referred_by_id,
            )
            return user

    def authenticate(self, email: str, password: str) -> UserAccount | None:
        """Authenticate a user.

        Returns:
            User account if valid, None otherwise
        """
        with db.session() as session:
            user = session.query(UserAccount).filter(
                UserAccount.email == email.lower(),
                UserAccount.is_active == True,
            ).first()

            if not user or not user.password_hash:
                return None

            if not self.verify_password(password, user.password_hash):
                return None

            user.last_login_at = datetime.utcnow()
            session.commit()

            self.logger.info("user_authenticated", user_id=user.id)
            return user

    def get_user_by_id(self, user_id: int) -> UserAccount | None:
        with db.session() as session:
            return session.query(UserAccount).filter(
                UserAccount.id == user_id,
                UserAccount.is_active == True,
            ).first()

    # ==================== JWT TOKENS ====================

    def create_access_token(
        self,
        user: UserAccount,
        expires_delta: timedelta | None = None,
    ) -> str:
        """Create JWT access token.

        Args:
            user: User account
            expires_delta: Optional expiration time

        Returns:
            JWT token string
        """
        if expires_delta is None:
            expires_delta = timedelta(hours=settings.jwt_expire_hours)

        expire = datetime.utcnow() + expires_delta

        payload = {
            "sub": str(user.id),
            "email": user.email,
            "role": user.role.value,
            "referral_code": user.referral_code,
            "exp": expire,
            "iat": datetime.utcnow(),
        }

        return jwt.encode(payload, settings.jwt_secret_key, algorithm=JWT_ALGORITHM)

    def verify_token(self, token: str) -> dict[str, Any] | None:
        """Verify and decode JWT token.

        Returns:
            Token payload or None if invalid
        """
        try:
            return jwt.decode(token, settings.jwt_secret_key, algorithms=[JWT_ALGORITHM])
        except JWTError as e:
            self.logger.debug("token_verification_failed", error=str(e))
            return None

    def get_user_from_token(self, token: str) -> UserAccount | None:
        """Get user from JWT token."""
        payload = self.verify_token(token)
        if not payload:
            return None

        user_id = payload.get("sub")
        if not user_id:
            return None

        try:
            return self.get_user_by_id(int(user_id))
        except ValueError:
            return None
