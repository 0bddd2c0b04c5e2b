from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        validate_assignment=True,
    )

    app_env: str = "dev"
    database_url: str

    # WhatsApp Cloud API (or a BSP proxying it)
    whatsapp_verify_token: str
    whatsapp_access_token: str
    whatsapp_phone_number_id: str
    whatsapp_app_secret: str | None = None  # App Secret for webhook signature verification
    whatsapp_dry_run: bool = True  # Set to False in production to enable real sending
    whatsapp_api_base_url: str = "https://graph.facebook.com"
    whatsapp_graph_version: str = "v21.0"

    # Order notification template
    order_template_name: str = "evio_orden"
    order_template_language: str = "es_AR"

    # Phone numbers without an international prefix are read as numbers of this country
    default_country_code: str = "54"

    # Pending orders still AWAITING_CONFIRMATION after this many hours are swept to EXPIRED
    pending_order_retention_hours: int = 72

    # Reply classifier vocabulary (section of app/copy/reply_keywords.yml)
    reply_locale: str = "es_AR"

    # Send the full order details to the supplier once they confirm
    send_order_details_on_confirm: bool = True

    admin_api_key: str | None = (
        None  # Optional - if not set, admin endpoints are unprotected (dev mode)
    )

    # Shared secret for the realtime change-feed webhook (X-Webhook-Secret header)
    realtime_webhook_secret: str | None = None

    # Polling fallback: BSP endpoint listing recent messages
    bsp_poll_url: str | None = None
    bsp_api_key: str | None = None
    poll_batch_size: int = 50


# Settings will load from environment variables or .env file
# Required fields will raise ValidationError if missing (fail-fast)
settings = Settings()
