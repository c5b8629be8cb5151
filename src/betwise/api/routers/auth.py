"""Authentication endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Request, status

from betwise.api.rate_limit import limiter
from betwise.auth.local import EmailAlreadyRegisteredError, LocalAuthService
from betwise.auth.middleware import require_auth
from betwise.auth.models import TokenResponse, User, UserAccount, UserCreate, UserLogin
from betwise.billing.models import SubscriptionResponse
from betwise.billing.service import subscription_service
from betwise.logging_config import get_logger
from betwise.settings import settings

logger = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

auth_service = LocalAuthService()


def _token_response(user: UserAccount) -> TokenResponse:
    return TokenResponse(
        access_token=auth_service.create_access_token(user),
        token_type="bearer",
        expires_in=settings.jwt_expire_hours * 3600,
        user=User.model_validate(user),
    )


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
async def register(request: Request, body: UserCreate):
    """Register a new user account.

    If referral_code is provided, the new user is linked to its owner and
    every payment they make credits the owner a commission.
    """
    try:
        user = auth_service.create_user(
            email=body.email,
            password=body.password,
            referral_code=body.referral_code,
            first_name=body.first_name,
            last_name=body.last_name,
            country=body.country,
        )
    except EmailAlreadyRegisteredError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    logger.info("user_registered", user_id=user.id, referred_by=user.referred_by_id)
    return _token_response(user)


@router.post("/login", response_model=TokenResponse)
@limiter.limit("10/minute")
async def login(request: Request, body: UserLogin):
    """Login with email and password."""
    user = auth_service.authenticate(body.email, body.password)

    if not user:
        logger.warning(
            "login_failed",
            email=body.email,
            ip=request.client.host if request.client else "unknown",
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    logger.info("user_logged_in", user_id=user.id)
    return _token_response(user)


@router.get("/me")
async def get_me(user: UserAccount = Depends(require_auth)):
    """Current user with their subscription."""
    subscription = subscription_service.get_status(user)
    return {
        "user": User.model_validate(user),
        "subscription": SubscriptionResponse.model_validate(subscription) if subscription else None,
    }
