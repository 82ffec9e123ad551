# clinic/security.py
#
# This module handles security-related functions: reading the Cognito claims
# injected by API Gateway, issuing and verifying the backend's own API token,
# and the authorization dependencies used by the routers.

import logging
import os
import time
from typing import Any, Dict, Optional

import boto3
import jwt as pyjwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from .config import get_settings
from .crud import db_get_user_by_id
from .session import DEACTIVATED_MESSAGE

logger = logging.getLogger(__name__)

settings = get_settings()


# --- Configuration ---
def get_api_jwt_secret() -> str:
    """Retrieves the API JWT secret from the environment or SSM Parameter Store."""
    if "API_JWT_SECRET" in os.environ:
        return os.environ["API_JWT_SECRET"]
    if settings.api_jwt_secret:
        return settings.api_jwt_secret

    try:
        ssm_client = boto3.client('ssm', region_name=settings.aws_region)
        response = ssm_client.get_parameter(Name=settings.api_jwt_secret_name, WithDecryption=True)
        secret = response['Parameter']['Value']
        os.environ["API_JWT_SECRET"] = secret  # Cache it
        return secret
    except Exception as e:
        # Local runs without SSM access
        logger.warning("JWT: Could not read secret from SSM (%s), using local secret", e)
        return "default_secret_for_local_testing"


# --- Constants ---
API_JWT_SECRET = get_api_jwt_secret()
JWT_ALGORITHM = "HS256"
API_TOKEN_AUDIENCE = "api_access"
API_TOKEN_EXPIRY_MINUTES = settings.api_token_expiry_minutes


def get_cognito_user_info(request: Request) -> Dict[str, Any]:
    """
    Dependency that extracts user claims from the Cognito authorizer context
    provided by API Gateway.
    """
    try:
        # The claims are added to the request scope by the Mangum adapter
        claims = request.scope['aws.event']['requestContext']['authorizer']['claims']
    except KeyError:
        logger.warning("AUTH: Cognito authorizer context not found")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials (Authorizer context missing)"
        )
    if not claims.get("sub"):
        raise HTTPException(status_code=401, detail="User identifier missing from token")
    return claims


# --- Token Generation ---
def create_final_api_token(user_id: str, cognito_sub: str) -> str:
    """Creates the API session JWT for a user profile."""
    issued_at = time.time()
    payload = {
        "sub": user_id,
        "cognito_sub": cognito_sub,
        "aud": API_TOKEN_AUDIENCE,
        "exp": issued_at + (API_TOKEN_EXPIRY_MINUTES * 60),
        "iat": issued_at,
    }
    token = pyjwt.encode(payload, API_JWT_SECRET, algorithm=JWT_ALGORITHM)
    logger.info("JWT: Generated API token for user ID: %s", user_id)
    return token


def decode_api_token(token: str) -> Dict[str, Any]:
    """Decodes a token and checks it against the user's revocation stamp."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate API credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = pyjwt.decode(
            token,
            API_JWT_SECRET,
            algorithms=[JWT_ALGORITHM],
            audience=API_TOKEN_AUDIENCE,
        )
    except pyjwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="API token has expired")
    except pyjwt.InvalidAudienceError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API token audience")
    except pyjwt.PyJWTError:
        raise credentials_exception

    user_id: Optional[str] = payload.get("sub")
    if user_id is None:
        raise credentials_exception

    try:
        user = db_get_user_by_id(user_id)
    except Exception as e:
        logger.error("AUTH: Profile lookup failed for %s: %s", user_id, e)
        raise credentials_exception
    if not user:
        logger.warning("AUTH: API token valid, but user ID %s not found in DB.", user_id)
        raise credentials_exception

    revoked_at = user.get('sessionRevokedAt')
    if revoked_at and payload.get("iat", 0) < revoked_at:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Sesión cerrada.")

    payload["_user"] = user
    return payload


# --- Authentication Dependencies ---
oauth2_scheme_api = OAuth2PasswordBearer(tokenUrl="auth/login")


async def verify_api_token(token: str = Depends(oauth2_scheme_api)) -> Dict[str, Any]:
    """Dependency to verify the backend's own API session token."""
    return decode_api_token(token)


async def get_current_user(payload: Dict[str, Any] = Depends(verify_api_token)) -> Dict[str, Any]:
    """Resolves the caller's profile. Any failure or a deactivated account is a 401."""
    user = payload.get("_user")
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Could not validate API credentials")
    if user.get('isActive', True) is False:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=DEACTIVATED_MESSAGE)
    user = dict(user)
    user['_iat'] = payload.get("iat")
    return user


def ensure_role(user: Dict[str, Any], *roles: str) -> None:
    if user.get('role') not in roles:
        logger.warning("AUTH: Role %s denied (needs one of %s)", user.get('role'), roles)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="No tiene permisos para esta acción.")


def require_recent_login(user: Dict[str, Any]) -> None:
    """Sensitive account changes need a login younger than the recent-login window."""
    issued_at = user.get('_iat')
    max_age = settings.recent_login_max_age_minutes * 60
    if not issued_at or time.time() - issued_at > max_age:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Por seguridad, cierre sesión y vuelva a ingresar.",
        )
