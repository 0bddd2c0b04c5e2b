"""
Send capability - template and plain-text WhatsApp messages.

The notifier depends only on the MessageSender protocol; WhatsAppCloudSender is the
Cloud API (or BSP proxy) implementation over httpx. Expected outcomes come back as a
SendResult - rejections and transport failures are values, not exceptions.
"""

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from app.constants.whatsapp_errors import POLICY_REJECTION_CODES
from app.core.config import settings
from app.services.integrations.http_client import create_httpx_client
from app.services.phone_normalization import NormalizationError, normalize_phone

logger = logging.getLogger(__name__)

SEND_SENT = "sent"
SEND_REJECTED = "rejected"
SEND_FAILED = "failed"


@dataclass
class SendResult:
    status: str
    message_id: str | None = None
    reason_code: str | None = None
    error: str | None = None
    dry_run: bool = False

    @property
    def sent(self) -> bool:
        return self.status == SEND_SENT


def is_policy_rejection(result: SendResult) -> bool:
    """True for engagement-window rejections that a plain text message can work around."""
    if result.status != SEND_REJECTED or result.reason_code is None:
        return False
    try:
        return int(result.reason_code) in POLICY_REJECTION_CODES
    except ValueError:
        return False


class MessageSender(Protocol):
    async def send_template(
        self, phone: str, template_name: str, variables: dict[str, Any]
    ) -> SendResult: ...

    async def send_text(self, phone: str, body: str) -> SendResult: ...


def _recipient(phone: str) -> str:
    """Cloud API wants international digits without "+"."""
    normalized = normalize_phone(phone)
    if isinstance(normalized, NormalizationError):
        return "".join(ch for ch in phone if ch.isdigit())
    return normalized.digits


def _error_from_response(response: httpx.Response) -> SendResult:
    try:
        body = response.json()
    except ValueError:
        body = {}
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("code") is not None:
        details = (error.get("error_data") or {}).get("details")
        message = error.get("message") or ""
        return SendResult(
            status=SEND_REJECTED,
            reason_code=str(error["code"]),
            error=f"{message}: {details}" if details else message,
        )
    # No Graph API error body (proxy / gateway failure)
    return SendResult(
        status=SEND_FAILED,
        reason_code=f"http_{response.status_code}",
        error=response.text[:500],
    )


class WhatsAppCloudSender:
    """MessageSender backed by the WhatsApp Cloud API messages endpoint."""

    def __init__(
        self,
        access_token: str | None = None,
        phone_number_id: str | None = None,
        *,
        dry_run: bool | None = None,
        language: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.access_token = access_token or settings.whatsapp_access_token
        self.phone_number_id = phone_number_id or settings.whatsapp_phone_number_id
        self.dry_run = settings.whatsapp_dry_run if dry_run is None else dry_run
        self.language = language or settings.order_template_language
        self.transport = transport

    @property
    def messages_url(self) -> str:
        base = settings.whatsapp_api_base_url.rstrip("/")
        return f"{base}/{settings.whatsapp_graph_version}/{self.phone_number_id}/messages"

    async def _post(self, payload: dict[str, Any]) -> SendResult:
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }
        try:
            async with create_httpx_client(headers=headers, transport=self.transport) as client:
                response = await client.post(self.messages_url, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"WhatsApp send to {payload.get('to')} failed: {type(e).__name__}: {e}")
            return SendResult(status=SEND_FAILED, reason_code="transport_error", error=str(e)[:500])

        if response.is_error:
            result = _error_from_response(response)
            logger.warning(
                f"WhatsApp rejected {payload.get('type')} message to {payload.get('to')}: "
                f"code={result.reason_code} {result.error}"
            )
            return result

        try:
            data = response.json()
        except ValueError:
            data = {}
        message_id = ((data.get("messages") or [{}])[0] or {}).get("id")
        return SendResult(status=SEND_SENT, message_id=message_id)

    async def send_template(
        self, phone: str, template_name: str, variables: dict[str, Any]
    ) -> SendResult:
        to = _recipient(phone)
        if self.dry_run:
            logger.info(
                f"[DRY-RUN] Would send WhatsApp template '{template_name}' to {to} "
                f"with params: {variables}"
            )
            return SendResult(status=SEND_SENT, dry_run=True)

        template: dict[str, Any] = {
            "name": template_name,
            "language": {"code": self.language},
        }
        if variables:
            # Named parameters ({{contact_name}}) in the approved template body
            template["components"] = [
                {
                    "type": "body",
                    "parameters": [
                        {"type": "text", "parameter_name": name, "text": str(value)}
                        for name, value in variables.items()
                    ],
                }
            ]
        payload = {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "template",
            "template": template,
        }
        return await self._post(payload)

    async def send_text(self, phone: str, body: str) -> SendResult:
        to = _recipient(phone)
        if self.dry_run:
            logger.info(f"[DRY-RUN] Would send WhatsApp message to {to}: {body}")
            return SendResult(status=SEND_SENT, dry_run=True)

        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": "text",
            "text": {"body": body},
        }
        return await self._post(payload)
