from datetime import datetime, timedelta, timezone
import time

from jose import jwt, JWTError

from stage_server.exception.UnauthorizedError import UnauthorizedError


class AuthSecurity:
    """Bearer token codec shared by the REST and socket boundaries.

    Tokens are issued by the authentication collaborator; this service only
    verifies them and reads the caller identity out of the claims.
    """
    secret_key = None
    algorithm = 'HS256'
    access_token_expire_minutes = 7 * 24 * 60

    @classmethod
    def configure(cls, secret_key, algorithm='HS256', access_token_expire_minutes=7 * 24 * 60):
        cls.secret_key = secret_key
        cls.algorithm = algorithm
        cls.access_token_expire_minutes = access_token_expire_minutes

    @classmethod
    def encode_token(cls, data: dict, expires_delta: timedelta = None) -> str:
        to_encode = data.copy()
        expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=cls.access_token_expire_minutes))
        to_encode.update({"exp": expire})
        return jwt.encode(to_encode, cls.secret_key, algorithm=cls.algorithm)

    @classmethod
    def decode_token(cls, token: str) -> dict:
        # Check for well-formed JWT (should have 2 dots)
        if not token or token.count('.') != 2:
            raise UnauthorizedError("Malformed or missing token. Please provide a valid JWT token in the Authorization header.")
        if not cls.secret_key:
            raise UnauthorizedError("Token verification is not configured.")
        try:
            payload = jwt.decode(token, cls.secret_key, algorithms=[cls.algorithm])
        except JWTError as e:
            msg = str(e)
            if 'Signature has expired' in msg:
                raise UnauthorizedError("Token expired. Please login again or refresh your session.")
            elif 'Not enough segments' in msg or 'Invalid header string' in msg:
                raise UnauthorizedError("Malformed or missing token. Please provide a valid JWT token in the Authorization header.")
            elif 'Signature verification failed' in msg:
                raise UnauthorizedError("Invalid token signature. Please login again or contact support if the problem persists.")
            else:
                raise UnauthorizedError(f"Invalid token: {msg}. Please check your authentication and try again.")
        exp = payload.get('exp')
        if exp is not None and int(float(exp)) < int(time.time()):
            raise UnauthorizedError("Token expired. Please login again or refresh your session.")
        if payload.get('type') not in (None, 'access'):
            raise UnauthorizedError("Invalid token type.")
        if not caller_key(payload):
            raise UnauthorizedError("Token does not identify a user.")
        return payload


def caller_key(payload: dict):
    """Return the caller identity carried by a decoded token.

    ``user_key`` is the canonical claim; ``id`` is accepted for tokens minted
    by older clients.
    """
    if not payload:
        return None
    value = payload.get('user_key') or payload.get('id')
    return str(value) if value is not None else None


def display_info(payload: dict) -> dict:
    """Public profile fields taken from token claims, used in presence listings."""
    info = {'userId': caller_key(payload)}
    for claim, key in (('username', 'username'), ('name', 'name'), ('profile_picture', 'profilePicture'),
                       ('profilePicture', 'profilePicture')):
        if payload.get(claim) is not None:
            info[key] = payload[claim]
    return info


def extract_token(auth=None, headers=None, args=None):
    """Find a bearer token in socket auth data, the Authorization header or ``?token=``."""
    token = None
    if auth and isinstance(auth, dict):
        token = auth.get('token')
    if not token and headers is not None:
        header = headers.get('Authorization', '')
        if header.startswith('Bearer '):
            token = header.split(' ', 1)[1]
    if not token and args is not None:
        token = args.get('token', '')
    return token or None


def get_auth_payload(request):
    """
    Extracts and decodes the Bearer token from the Authorization header in the request.
    Raises UnauthorizedError if missing or invalid.
    Returns the decoded payload.
    """
    auth_header = request.headers.get('Authorization')
    if not auth_header or not auth_header.startswith('Bearer '):
        raise UnauthorizedError('Missing or invalid token')
    token = auth_header.split(' ', 1)[1]
    return AuthSecurity.decode_token(token)
