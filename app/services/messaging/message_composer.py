"""
Message composer service - loads copy from YAML and selects variants deterministically.

Uses the order id to select a variant (the same order always gets the same wording,
so a resend never looks like a different order).
"""

import hashlib
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, cast

import yaml

from app.schemas.orders import OrderSnapshot

logger = logging.getLogger(__name__)

# Path to copy files
COPY_DIR = Path(__file__).resolve().parent.parent.parent / "copy"
DEFAULT_LOCALE = "es_AR"


class MessageComposer:
    """Composes messages from YAML copy files with deterministic variant selection."""

    def __init__(self, locale: str = DEFAULT_LOCALE):
        self.locale = locale
        self.copy_file = COPY_DIR / f"{locale}.yml"
        self._copy_data: dict[str, Any] = {}
        self._load_copy()

    def _load_copy(self) -> None:
        """Load copy from YAML file."""
        if not self.copy_file.exists():
            logger.warning(f"Copy file not found: {self.copy_file}, using empty copy")
            self._copy_data = {}
            return

        try:
            with open(self.copy_file, encoding="utf-8") as f:
                self._copy_data = yaml.safe_load(f) or {}
            logger.info(f"Loaded copy from {self.copy_file}")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load copy from {self.copy_file}: {e}")
            self._copy_data = {}

    def _select_variant(self, key: str, seed: str | None = None) -> str:
        if key not in self._copy_data:
            logger.warning(f"Message key not found: {key}")
            return f"[MISSING: {key}]"

        variants = self._copy_data[key]
        if not isinstance(variants, list):
            return variants if isinstance(variants, str) else str(variants)

        if not variants:
            logger.warning(f"No variants found for key: {key}")
            return ""

        if seed is not None:
            hash_value = int(hashlib.md5(f"{key}:{seed}".encode()).hexdigest(), 16)
            variant_index = hash_value % len(variants)
        else:
            variant_index = 0

        return cast(str, variants[variant_index])

    def text(self, key: str, default: str = "") -> str:
        """Plain (non-template) copy value."""
        value = self._copy_data.get(key)
        return value if isinstance(value, str) else default

    def render(self, key: str, seed: str | None = None, **kwargs: Any) -> str:
        """
        Render a message from copy.

        Args:
            key: Message key in YAML
            seed: Value hashed to pick a variant (order id); None = first variant
            **kwargs: Template variables to substitute

        Example:
            composer.render("order_fallback_text", seed="ORD-1", provider_name="Lácteos Sur", ...)
        """
        template = self._select_variant(key, seed)
        try:
            return template.format(**kwargs)
        except (KeyError, IndexError) as e:
            logger.warning(f"Missing template variable {e} for key {key}")
            return template


# Global instance (reset in tests so temp COPY_DIR doesn't leak)
_composer: MessageComposer | None = None


def reset_cache() -> None:
    """Clear the global composer cache."""
    global _composer
    _composer = None


def get_composer(locale: str = DEFAULT_LOCALE) -> MessageComposer:
    global _composer
    if _composer is None or _composer.locale != locale:
        _composer = MessageComposer(locale=locale)
    return _composer


def render_message(key: str, seed: str | None = None, locale: str = DEFAULT_LOCALE, **kwargs: Any) -> str:
    return get_composer(locale).render(key, seed=seed, **kwargs)


def _format_quantity(quantity: float) -> str:
    return f"{quantity:g}"


def format_order_fallback_text(
    order: OrderSnapshot,
    provider_name: str,
    contact_name: str | None,
    locale: str = DEFAULT_LOCALE,
) -> str:
    """Plain-text stand-in for the order template: names the order and asks for a reply."""
    composer = get_composer(locale)
    return composer.render(
        "order_fallback_text",
        seed=order.order_id,
        provider_name=provider_name,
        contact_name=contact_name or composer.text("contact_fallback_name", "equipo"),
        order_reference=order.reference,
    )


def format_order_details(
    order: OrderSnapshot,
    provider_name: str,
    locale: str = DEFAULT_LOCALE,
    now: datetime | None = None,
) -> str:
    """Full order details sent after the supplier confirms."""
    composer = get_composer(locale)

    lines = []
    for item in order.items:
        price = f" - ${item.price:g}" if item.price is not None else ""
        lines.append(
            composer.render(
                "order_item_line",
                name=item.name,
                quantity=_format_quantity(item.quantity),
                unit=item.unit or "unidades",
                price=price,
            )
        )
    items = "\n".join(lines) if lines else composer.text("order_no_items", "-")

    delivery_date = composer.text("order_no_delivery_date", "-")
    if order.desired_delivery_date:
        delivery_date = order.desired_delivery_date.strftime("%d/%m/%Y")
        if order.desired_delivery_times:
            delivery_date = f"{delivery_date} - {', '.join(order.desired_delivery_times)}"

    today = (now or datetime.now(UTC)).strftime("%d/%m/%Y")
    return composer.render(
        "order_details",
        date=today,
        provider_name=provider_name,
        order_reference=order.order_number or order.order_id,
        delivery_date=delivery_date,
        payment_method=order.payment_method or composer.text("order_no_payment_method", "-"),
        notes=order.notes or composer.text("order_no_notes", "-"),
        items=items,
    )
