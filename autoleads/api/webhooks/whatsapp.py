"""
WhatsApp Webhook Handler - Bot Gateway Layer

The gateway posts one delivery per request and sends back whatever reply we return.
An empty reply means nothing should be sent (bulk photo uploads).
"""
from typing import Optional

from fastapi import APIRouter, Depends, Path, Request
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from autoleads.core.logging import get_logger
from autoleads.core.validation import PhoneNumberValidator, TextSanitizer
from autoleads.db.database import get_db
from autoleads.state_machine.handlers import (
    AdminBotHandler,
    IncomingMessage,
    IntakeServices,
    MediaAttachment,
)

logger = get_logger(__name__)

router = APIRouter()


class InboundMedia(BaseModel):
    # may be a placeholder such as "No URL" when the gateway could not fetch it
    url: Optional[str] = None
    type: str = "image"


class InboundMessage(BaseModel):
    """Incoming WhatsApp message structure"""

    user: str = Field(min_length=1)
    text: str = ""
    media: Optional[InboundMedia] = None
    catalog_domain: Optional[str] = None

    @field_validator("text", mode="before")
    @classmethod
    def _sanitize_text(cls, v):
        return TextSanitizer.sanitize(v)


class WebhookReply(BaseModel):
    reply: str = ""


def get_intake_services(request: Request) -> IntakeServices:
    return request.app.state.intake_services


@router.post(
    "/whatsapp/{tenant_id}",
    response_model=WebhookReply,
    summary="Webhook - WhatsApp (inbound admin message)",
    description="Routes one inbound admin message through the vehicle intake conversation.",
)
async def whatsapp_webhook(
    payload: InboundMessage,
    tenant_id: int = Path(gt=0),
    db: AsyncSession = Depends(get_db),
    services: IntakeServices = Depends(get_intake_services),
) -> WebhookReply:
    user_handle = PhoneNumberValidator.normalize(payload.user)
    logger.info(
        "WhatsApp message received",
        extra_data={
            "tenant_id": tenant_id,
            "user": PhoneNumberValidator.mask(user_handle),
            "has_media": payload.media is not None,
            "text_length": len(payload.text),
        },
    )

    message = IncomingMessage(
        tenant_id=tenant_id,
        user_handle=user_handle,
        text=payload.text,
        media=MediaAttachment(url=payload.media.url, type=payload.media.type) if payload.media else None,
        catalog_domain=payload.catalog_domain,
    )
    response = await AdminBotHandler(db, services).handle_message(message)
    return WebhookReply(reply=response.text)
