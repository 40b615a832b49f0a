"""
config.py - Centralised settings for the Blackgate DID engine
"""
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


class DIDSettings(BaseSettings):
    # DID addressing
    DID_METHOD: str = "ethr"
    DID_NETWORK: str = "blackgate"
    KMS_NAME: str = "local"

    # Node identity persistence (import data of the node DID)
    CREDENTIALS_FILE: Path = Path("data") / "credentials.json"

    # Presentations
    PRESENTATION_EXPIRATION_HOURS: float = 24
    PRESENTATION_FORMAT_VERSION: str = "1.0.0"

    # Remote DID resolution (universal resolver compatible); unset = local only
    RESOLVER_URL: Optional[str] = None
    RESOLVER_TIMEOUT: float = 5.0

    # Chain settings, reported by the node info endpoint only
    BLOCKCHAIN_RPC_URL: Optional[str] = None
    BLOCKCHAIN_CHAIN_ID: Optional[int] = None
    BLOCKCHAIN_DID_REGISTRY_ADDR: Optional[str] = None

    # HTTP server
    HOST: str = "0.0.0.0"
    PORT: int = 3001

    class Config:
        env_file = ".env"
        env_prefix = "BLACKGATE_"


settings = DIDSettings()
