"""Server settings."""

from __future__ import annotations

from decimal import Decimal
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from atxp_demo import __version__


class Settings(BaseSettings):
    """Payment demo server settings.

    All settings can be configured via environment variables with the prefix ATXP_DEMO_.
    For example, ATXP_DEMO_PORT=8080 will set port=8080.
    """

    model_config = SettingsConfigDict(
        env_prefix="ATXP_DEMO_",
        env_file=".env",
        extra="ignore",
    )

    # Server settings
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    server_name: str = "atxp-min-demo"
    server_version: str = __version__

    # HTTP settings
    host: str = "127.0.0.1"
    port: int = 3000
    http_path: str = "/"

    # Elicitation settings
    elicitation_timeout: float = 30.0
    """Seconds a tool call waits for the client to answer a payment elicitation."""

    # Session settings
    session_idle_timeout: float = 300.0
    """Seconds a session with no call in flight is kept before it is closed. 0 keeps sessions until shutdown."""

    # Ledger settings
    ledger_url: str = "https://auth.atxp.ai"
    ledger_timeout: float = 10.0

    # Payment settings
    payment_destination: str = "HQeMf9hmaus7gJhfBtPrPwPPsDLGfeVf8Aeri3uPP3Fy"
    payment_network: str = "base"
    payment_currency: str = "USDC"
    tool_price: Decimal = Decimal("0.01")
    payee_name: str = "ATXP Example Resource Server"
