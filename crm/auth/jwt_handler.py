import jwt

from crm.core import config


def decode_access_token(token: str) -> dict:
    """Verify a bearer token issued by the external auth provider."""
    options = {}
    kwargs = {}
    if config.JWT_AUDIENCE:
        kwargs['audience'] = config.JWT_AUDIENCE
    else:
        options['verify_aud'] = False
    return jwt.decode(
        token,
        config.JWT_SECRET_KEY,
        algorithms=[config.JWT_ALGORITHM],
        options=options,
        **kwargs,
    )
