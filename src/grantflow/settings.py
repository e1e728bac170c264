"""Client settings loaded from environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict

CLIENT_ASSERTION_TYPE = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"
DEVICE_CODE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"

HTTP_TIMEOUT_DEFAULT = 30.0
LOOPBACK_TIMEOUT_DEFAULT = 10.0
LOOPBACK_STARTUP_GRACE_DEFAULT = 0.5
ASSERTION_LIFETIME_DEFAULT = 300
DEVICE_POLL_INTERVAL_DEFAULT = 5


class ClientSettings(BaseSettings):
    """Tunables for the OAuth 2.0 / OIDC client."""

    model_config = SettingsConfigDict(env_prefix="GRANTFLOW_")

    http_timeout: float = HTTP_TIMEOUT_DEFAULT
    loopback_timeout: float = LOOPBACK_TIMEOUT_DEFAULT
    loopback_startup_grace: float = LOOPBACK_STARTUP_GRACE_DEFAULT
    assertion_lifetime: int = ASSERTION_LIFETIME_DEFAULT
    device_poll_interval: int = DEVICE_POLL_INTERVAL_DEFAULT
    user_agent: str | None = None
    hmac_double_encode: bool = True
