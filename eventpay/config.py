"""Configuration for eventpay.

``Settings`` is loaded from the environment (and ``.env``) once per process.
Services never read it directly: they receive an immutable ``EventPayConfig``
built by :meth:`Settings.to_config`.
"""

from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings

from eventpay.cipher import decrypt

TESTNET_HORIZON_URL = "https://horizon-testnet.stellar.org"
TESTNET_PASSPHRASE = "Test SDF Network ; September 2015"
PUBLIC_PASSPHRASE = "Public Global Stellar Network ; September 2015"

DEFAULT_SUPPORTED_ASSETS = ("XLM", "USDC")


@dataclass(frozen=True)
class EventPayConfig:
    """Immutable runtime configuration injected into the services."""

    horizon_url: str = TESTNET_HORIZON_URL
    network_passphrase: str = TESTNET_PASSPHRASE
    escrow_wallet_public_key: str = ""
    funding_secret: Optional[str] = field(default=None, repr=False)
    nonce_ttl_seconds: int = 300
    supported_assets: tuple[str, ...] = DEFAULT_SUPPORTED_ASSETS
    native_asset_code: str = "XLM"
    request_timeout: float = 30.0
    base_fee: int = 100
    tx_timeout_seconds: int = 30
    # Optional issuer pinning: ((code, issuer), ...)
    asset_issuers: tuple[tuple[str, str], ...] = ()

    def __post_init__(self):
        if self.nonce_ttl_seconds <= 0:
            raise ValueError("nonce_ttl_seconds must be positive")
        if self.base_fee <= 0:
            raise ValueError("base_fee must be positive")
        # Normalize the allow-list once so lookups are case-insensitive
        object.__setattr__(
            self,
            "supported_assets",
            tuple(code.upper() for code in self.supported_assets),
        )
        object.__setattr__(
            self,
            "asset_issuers",
            tuple((code.upper(), issuer) for code, issuer in self.asset_issuers),
        )

    def is_supported_asset(self, code: Optional[str]) -> bool:
        """Case-insensitive membership test against the asset allow-list."""
        return bool(code) and code.upper() in self.supported_assets

    def issuer_for(self, code: str) -> Optional[str]:
        """Pinned issuer for an asset code, if one is configured."""
        for pinned_code, issuer in self.asset_issuers:
            if pinned_code == code.upper():
                return issuer
        return None


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Ledger
    horizon_url: str = TESTNET_HORIZON_URL
    network_passphrase: str = TESTNET_PASSPHRASE
    request_timeout: float = 30.0
    base_fee: int = 100
    tx_timeout_seconds: int = 30

    # Escrow
    escrow_wallet_public_key: str = ""
    # Funding account secret, encrypted with secret_encryption_key
    funding_secret_encrypted: str | None = None
    secret_encryption_key: str | None = None

    # Payments
    supported_assets: list[str] = list(DEFAULT_SUPPORTED_ASSETS)
    native_asset_code: str = "XLM"
    # e.g. {"USDC": "GA5ZSEJYB37JRC5AVCIA5MOP4RHTM335X2KGX3IHOJAPP5RE34K4KZVN"}
    asset_issuers: dict[str, str] = {}

    # Wallet challenges
    nonce_ttl_seconds: int = 300

    # Supabase (optional; in-memory storage is used when unset)
    supabase_url: str | None = None
    supabase_secret_key: str | None = None

    # App
    log_level: str = "INFO"

    class Config:
        env_prefix = "EVENTPAY_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra env vars not in model

    def to_config(self) -> EventPayConfig:
        """Build the immutable service config, decrypting the funding secret."""
        funding_secret = None
        if self.funding_secret_encrypted:
            if not self.secret_encryption_key:
                raise ValueError(
                    "EVENTPAY_SECRET_ENCRYPTION_KEY must be set to decrypt the funding secret"
                )
            funding_secret = decrypt(self.funding_secret_encrypted, self.secret_encryption_key)

        return EventPayConfig(
            horizon_url=self.horizon_url,
            network_passphrase=self.network_passphrase,
            escrow_wallet_public_key=self.escrow_wallet_public_key,
            funding_secret=funding_secret,
            nonce_ttl_seconds=self.nonce_ttl_seconds,
            supported_assets=tuple(self.supported_assets),
            native_asset_code=self.native_asset_code,
            asset_issuers=tuple(self.asset_issuers.items()),
            request_timeout=self.request_timeout,
            base_fee=self.base_fee,
            tx_timeout_seconds=self.tx_timeout_seconds,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
