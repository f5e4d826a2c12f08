import hmac
import logging

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.exc import SQLAlchemyError

from crm.auth import jwt_handler
from crm.core import config
from crm.database import SessionLocal
from crm.models.user import User

logger = logging.getLogger(__name__)

security = HTTPBearer()

ADMIN_ROLE = 'admin'


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> User:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except Exception as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    email = payload.get("email") or payload.get("sub")
    if not email:
        raise HTTPException(status_code=401, detail="Invalid token subject")

    db = SessionLocal()
    try:
        user = db.query(User).filter(User.email == email.strip().lower()).first()
    except SQLAlchemyError as exc:
        logger.warning('User lookup failed for %s: %s', email, exc)
        raise HTTPException(status_code=403, detail="Unable to verify user role") from exc
    finally:
        db.close()
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if (user.role or '').strip().lower() != ADMIN_ROLE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Only admins can manage scheduling.',
        )
    return user


def _secret_matches(candidate: str | None, secret: str) -> bool:
    if not candidate:
        return False
    return hmac.compare_digest(candidate.encode(), secret.encode())


def verify_cron_secret(
    authorization: str | None = Header(default=None),
    x_cron_secret: str | None = Header(default=None),
) -> None:
    secret = config.CRON_SECRET
    if not secret:
        logger.error('CRON_SECRET is not configured; rejecting cron request')
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Unauthorized')

    bearer = None
    if authorization and authorization.lower().startswith('bearer '):
        bearer = authorization[len('bearer '):].strip()

    if not (_secret_matches(bearer, secret) or _secret_matches(x_cron_secret, secret)):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Unauthorized')


def verify_public_api_key(x_api_key: str | None = Header(default=None)) -> None:
    if config.PUBLIC_API_KEY and not _secret_matches(x_api_key, config.PUBLIC_API_KEY):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Invalid API key')
