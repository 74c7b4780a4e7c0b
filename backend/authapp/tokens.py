"""Bearer credentials shared by the REST login and the websocket handshake."""
import logging

from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.settings import api_settings
from rest_framework_simplejwt.tokens import AccessToken

logger = logging.getLogger(__name__)


def issue_token(user) -> str:
    token = AccessToken.for_user(user)
    token["username"] = user.get_username()
    return str(token)


def verify_token(raw_token):
    """Return the user id carried by ``raw_token``, or None when it is not valid."""
    if not isinstance(raw_token, str) or not raw_token.strip():
        return None
    try:
        token = AccessToken(raw_token.strip())
    except TokenError as exc:
        logger.info("Rejected token: %s", exc)
        return None
    try:
        return int(token.get(api_settings.USER_ID_CLAIM))
    except (TypeError, ValueError):
        logger.info("Token without a usable %s claim", api_settings.USER_ID_CLAIM)
        return None
