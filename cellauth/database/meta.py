"""
Meta functionality for the database.
"""

from .config import ThirdPartyAuthConfig
from .login import ConnectRequest, LoginCode, LoginRequest
from .user import AuthSession, User

ALL_TABLES = (
    User,
    AuthSession,
    LoginRequest,
    ConnectRequest,
    LoginCode,
    ThirdPartyAuthConfig,
)

REQUEST_TABLES = {
    "login": LoginRequest,
    "connect": ConnectRequest,
}
