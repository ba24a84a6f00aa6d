from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_COMPANY_NAME = "Mercato Marketplace"
DEFAULT_COMPANY_ADDRESS = "Marktplatz 1\n1010 Wien\nÖsterreich"
DEFAULT_COMPANY_EMAIL = "billing@mercato.example"

PAYMENT_PROVIDERS = ("card", "stripe", "paypal", "bank_transfer", "blik", "cash_on_delivery")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str = Field(..., alias="DATABASE_URL")
    app_storage_dir: Path = Field(Path("/data"), alias="APP_STORAGE_DIR")

    basic_auth_username: str = Field(..., alias="BASIC_AUTH_USERNAME")
    basic_auth_password: str = Field(..., alias="BASIC_AUTH_PASSWORD")

    cors_origins: str | None = Field(None, alias="CORS_ORIGINS")
    currency_code: str = Field("EUR", alias="CURRENCY_CODE")

    # Platform identity printed on commission invoices.
    company_name: str = Field(DEFAULT_COMPANY_NAME, alias="COMPANY_NAME")
    company_address: str = Field(DEFAULT_COMPANY_ADDRESS, alias="COMPANY_ADDRESS")
    company_email: str | None = Field(DEFAULT_COMPANY_EMAIL, alias="COMPANY_EMAIL")
    company_vat_id: str | None = Field(None, alias="COMPANY_VAT_ID")

    # --- Orders / returns ---
    return_window_days: int = Field(30, alias="RETURN_WINDOW_DAYS")
    return_seller_response_days: int = Field(3, alias="RETURN_SELLER_RESPONSE_DAYS")
    shipping_base_cents: int = Field(500, alias="SHIPPING_BASE_CENTS")
    shipping_additional_item_cents: int = Field(200, alias="SHIPPING_ADDITIONAL_ITEM_CENTS")
    shipping_free_threshold_cents: int | None = Field(5000, alias="SHIPPING_FREE_THRESHOLD_CENTS")

    # --- Escrow / commission ---
    escrow_hold_days: int = Field(7, alias="ESCROW_HOLD_DAYS")
    commission_default_rate_bp: int = Field(1000, alias="COMMISSION_DEFAULT_RATE_BP")
    commission_default_fixed_cents: int = Field(50, alias="COMMISSION_DEFAULT_FIXED_CENTS")

    # --- Payouts ---
    payout_minimum_cents: int = Field(5000, alias="PAYOUT_MINIMUM_CENTS")
    payout_max_retries: int = Field(3, alias="PAYOUT_MAX_RETRIES")
    payout_retry_delay_hours: int = Field(24, alias="PAYOUT_RETRY_DELAY_HOURS")

    # --- Commission invoices ---
    commission_invoice_tax_rate_bp: int = Field(2000, alias="COMMISSION_INVOICE_TAX_RATE_BP")
    commission_invoice_due_days: int = Field(30, alias="COMMISSION_INVOICE_DUE_DAYS")

    # --- Payment provider ---
    payment_provider: str = Field("mock", alias="PAYMENT_PROVIDER")
    payment_provider_base_url: str | None = Field(None, alias="PAYMENT_PROVIDER_BASE_URL")
    payment_provider_api_key: str | None = Field(None, alias="PAYMENT_PROVIDER_API_KEY")
    payment_provider_timeout_seconds: float = Field(20.0, alias="PAYMENT_PROVIDER_TIMEOUT_SECONDS")
    enabled_payment_methods: str = Field(",".join(PAYMENT_PROVIDERS), alias="ENABLED_PAYMENT_METHODS")
    payment_return_url: str = Field("http://localhost:8000/checkout/return", alias="PAYMENT_RETURN_URL")

    # --- Background pipeline ---
    scheduler_enabled: bool = Field(True, alias="SCHEDULER_ENABLED")
    scheduler_tick_seconds: int = Field(300, alias="SCHEDULER_TICK_SECONDS")
    scheduler_lock_ttl_seconds: int = Field(900, alias="SCHEDULER_LOCK_TTL_SECONDS")
    scheduler_error_backoff_seconds: int = Field(600, alias="SCHEDULER_ERROR_BACKOFF_SECONDS")
    monthly_close_day: int = Field(1, alias="MONTHLY_CLOSE_DAY")

    @field_validator("company_address", mode="before")
    @classmethod
    def _normalize_company_address(cls, v: object) -> object:
        # `.env` files carry "\n" escapes; PDFs need real line breaks.
        if isinstance(v, str):
            return v.replace("\\n", "\n").replace("\r\n", "\n").strip()
        return v

    @field_validator("company_email", "company_vat_id", "payment_provider_base_url", "payment_provider_api_key", mode="before")
    @classmethod
    def _blank_to_none(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip() or None
        return v

    @field_validator("payment_provider", mode="before")
    @classmethod
    def _normalize_payment_provider(cls, v: object) -> object:
        if isinstance(v, str):
            name = v.strip().lower()
            if name not in {"mock", "http"}:
                raise ValueError("PAYMENT_PROVIDER must be 'mock' or 'http'")
            return name
        return v

    @field_validator("monthly_close_day")
    @classmethod
    def _validate_monthly_close_day(cls, v: int) -> int:
        if not 1 <= v <= 28:
            raise ValueError("MONTHLY_CLOSE_DAY must be between 1 and 28")
        return v

    @property
    def pdf_dir(self) -> Path:
        return self.app_storage_dir / "pdfs"

    @property
    def payment_methods(self) -> set[str]:
        return {m.strip().lower() for m in self.enabled_payment_methods.split(",") if m.strip()}


@lru_cache
def get_settings() -> Settings:
    return Settings()
