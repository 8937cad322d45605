from smarthome.models.auth_state import AuthState
from smarthome.models.token import AccessToken, AuthorizationCode

__all__ = ["AuthState", "AccessToken", "AuthorizationCode"]
