from jose import JWTError, jwt

from dues_ledger.core.exceptions import UnauthorizedException


def decode_jwt(token: str, secret_key: str, algorithm: str = "HS256") -> dict:
    """
    Decode and validate JWT token using shared SECRET_KEY.

    Args:
        token: JWT access token from Authorization header
        secret_key: Signing key
        algorithm: Signing algorithm

    Returns:
        Decoded token payload with 'sub' (username), 'role', optional 'tenant_id'

    Raises:
        UnauthorizedException: If token invalid, expired, or malformed
    """
    try:
        payload = jwt.decode(token, secret_key, algorithms=[algorithm])
    except JWTError as e:
        raise UnauthorizedException(f"Invalid token: {str(e)}")

    # jose checks expiry when present, but does not require it
    if payload.get("exp") is None:
        raise UnauthorizedException("Token missing expiration")

    if payload.get("sub") is None:
        raise UnauthorizedException("Token missing user identifier")

    tenant_id = payload.get("tenant_id")
    if tenant_id is not None and not isinstance(tenant_id, int):
        try:
            payload["tenant_id"] = int(tenant_id)
        except (TypeError, ValueError):
            raise UnauthorizedException("Token has malformed tenant identifier")

    return payload
