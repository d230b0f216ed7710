"""
Authentication Decorators
Bearer token verification through a pluggable identity provider
"""

import logging
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Dict, List, Optional

import jwt
from flask import current_app, g, jsonify, request

from commercialx.utils.errors import AuthenticationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """Verified caller identity."""
    user_id: str
    email: Optional[str] = None
    role: Optional[str] = None
    claims: Dict[str, Any] = field(default_factory=dict, compare=False)


class IdentityProvider:
    """verify(token) -> Principal, raising AuthenticationError on rejection"""

    def verify(self, token: str) -> Principal:
        raise NotImplementedError


class JWTIdentityProvider(IdentityProvider):
    """HMAC-signed JWTs, e.g. Supabase access tokens signed with the project JWT secret"""

    def __init__(self, secret_key: str, algorithm: str = 'HS256', audience: Optional[str] = None):
        self.secret_key = secret_key
        self.algorithms: List[str] = [algorithm]
        self.audience = audience

    def verify(self, token: str) -> Principal:
        options = {'verify_aud': self.audience is not None}
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=self.algorithms,
                audience=self.audience,
                options=options
            )
        except jwt.ExpiredSignatureError as e:
            raise AuthenticationError('Token has expired') from e
        except jwt.InvalidTokenError as e:
            raise AuthenticationError('Invalid authentication token') from e

        user_id = payload.get('sub') or payload.get('user_id') or payload.get('id')
        if not user_id:
            raise AuthenticationError('Token has no subject')

        return Principal(
            user_id=str(user_id),
            email=payload.get('email'),
            role=payload.get('role'),
            claims=payload,
        )


def build_identity_provider(config) -> Optional[IdentityProvider]:
    if config.JWT_SECRET_KEY:
        return JWTIdentityProvider(config.JWT_SECRET_KEY, config.JWT_ALGORITHM)
    logger.info("JWT_SECRET_KEY not set; authenticated endpoints are disabled")
    return None


def _bearer_token() -> str:
    auth_header = request.headers.get('Authorization')
    if not auth_header:
        raise AuthenticationError('Authentication token is missing')

    parts = auth_header.split(' ')
    if len(parts) != 2 or parts[0].lower() != 'bearer' or not parts[1]:
        raise AuthenticationError('Invalid token format')
    return parts[1]


def token_required(f):
    """Require a valid bearer token; the caller is available as g.principal"""
    @wraps(f)
    def wrapper(*args, **kwargs):
        provider = current_app.extensions['commercialx'].identity_provider
        if provider is None:
            return jsonify({'success': False, 'error': 'Authentication is not configured'}), 503

        try:
            g.principal = provider.verify(_bearer_token())
        except AuthenticationError as e:
            return jsonify(e.to_dict()), e.status_code

        return f(*args, **kwargs)

    return wrapper
