"""
Configuration management for the Print Order Service.

Loads settings from .env via pydantic-settings.

Notes:
    - Every external call has its own deadline here; the checkout flow is
      bounded by their sum.
    - validate_production_settings() refuses simulation modes in production.
"""
import logging

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ── Database ────────────────────────────────────────────────────
    database_url: str = "sqlite:///./data/print_orders.db"

    # ── Merchant ────────────────────────────────────────────────────
    merchant_name: str = "Micro UV Printers"
    merchant_tagline: str = "High Quality UV Printing Solutions"
    merchant_address: str = "123 Print Avenue, Industrial Area, Delhi, India - 110001"
    merchant_gstin: str = "07AABCU9603R1ZP"
    merchant_support_email: str = "support@microuvprinters.com"
    merchant_copy_email: str = ""          # owner copy of every invoice mail
    currency: str = "INR"
    default_hsn_code: str = "4911"         # printed matter
    cgst_percent: float = 9.0
    sgst_percent: float = 9.0

    # ── Razorpay ────────────────────────────────────────────────────
    razorpay_key_id: str = "rzp_test_1DP5mmOlF5G5ag"
    razorpay_key_secret: str = ""
    razorpay_api_base: str = "https://api.razorpay.com/v1"
    payment_simulation_mode: bool = True   # local gateway refs, no Razorpay API calls

    # ── Supervisor deadlines (seconds) ──────────────────────────────
    store_timeout_seconds: float = 5.0
    store_query_timeout_seconds: float = 8.0
    store_verify_timeout_seconds: float = 2.0
    gateway_timeout_seconds: float = 3.0
    payment_widget_timeout_seconds: float = 300.0
    settlement_write_timeout_seconds: float = 3.0
    invoice_render_timeout_seconds: float = 3.0
    mail_timeout_seconds: float = 10.0
    fallback_degrade_threshold: int = 2    # fallbacks per collaborator before a session stops calling it

    # ── Checkout policy ─────────────────────────────────────────────
    duplicate_window_minutes: int = 5
    payment_timeout_policy: str = "optimistic"   # "optimistic" | "pessimistic"
    checkout_session_ttl_seconds: int = 3600

    # ── Invoices ────────────────────────────────────────────────────
    invoice_storage_dir: str = "data/invoices"
    invoice_public_base_url: str = ""      # prefix for document links; file path when empty
    invoice_render_workers: int = 4

    # ── Mail ────────────────────────────────────────────────────────
    mail_api_url: str = ""
    mail_api_key: str = ""
    mail_from: str = "invoices@microuvprinters.com"
    mail_simulation_mode: bool = True      # log instead of sending

    # ── Application ─────────────────────────────────────────────────
    environment: str = "development"

    # ── Auth (JWT issued by the identity provider) ──────────────────
    jwt_secret: str = ""
    jwt_issuer: str = "print-orders-auth"
    jwt_access_ttl_minutes: int = 60
    allow_header_auth: bool = True         # X-Customer-Id fallback (non-production)
    admin_api_key: str = ""

    # ── CORS ────────────────────────────────────────────────────────
    cors_origins: str = "http://localhost:8080,http://127.0.0.1:8080,http://localhost:5173,http://127.0.0.1:5173"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # allow unknown .env keys without crashing
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def optimistic_payment_timeout(self) -> bool:
        return self.payment_timeout_policy.lower() == "optimistic"

    def validate_production_settings(self):
        """
        Validate settings for production safety.

        Called during app startup.
        """
        if self.payment_timeout_policy.lower() not in ("optimistic", "pessimistic"):
            raise ValueError(
                "PAYMENT_TIMEOUT_POLICY must be 'optimistic' or 'pessimistic', "
                f"got '{self.payment_timeout_policy}'"
            )

        if self.environment == "production":
            if "*" in self.cors_origins:
                raise ValueError(
                    "CORS_ORIGINS must not contain '*' in production. "
                    "Set explicit allowed origins."
                )
            if self.payment_simulation_mode:
                raise ValueError(
                    "PAYMENT_SIMULATION_MODE must be false in production. "
                    "Simulated gateway references are never captured."
                )
            if not self.razorpay_key_secret:
                raise ValueError(
                    "RAZORPAY_KEY_SECRET must be set in production. "
                    "It is required to create orders and verify payment callbacks."
                )
            if not self.jwt_secret:
                raise ValueError(
                    "JWT_SECRET must be set in production. "
                    "It is used to verify customer access tokens."
                )
            if self.allow_header_auth:
                raise ValueError(
                    "ALLOW_HEADER_AUTH must be false in production. "
                    "X-Customer-Id is not an authenticated identity."
                )
            logger.info("✅ Production settings validated")
        else:
            warnings = []
            if self.payment_simulation_mode:
                warnings.append("PAYMENT_SIMULATION_MODE=true (no real captures)")
            if self.mail_simulation_mode:
                warnings.append("MAIL_SIMULATION_MODE=true (invoice mails are logged only)")
            if self.allow_header_auth:
                warnings.append("ALLOW_HEADER_AUTH=true (X-Customer-Id accepted)")
            if "*" in self.cors_origins:
                warnings.append("CORS_ORIGINS contains '*' (open access)")
            for w in warnings:
                logger.warning(f"⚠️  {w}")


# Global settings instance
settings = Settings()
