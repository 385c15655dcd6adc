"""
State Handlers - Process admin messages based on the active intake flow
"""
import enum
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from autoleads.core.config import settings
from autoleads.core.exceptions import (
    ConversationBusyError,
    ExternalServiceException,
    MediaDownloadError,
    MediaUnavailableError,
    VehicleException,
)
from autoleads.core.formatting import format_km, format_price_short, vehicle_slug
from autoleads.core.locks import ConversationLock, KeyedLock
from autoleads.core.logging import bind_conversation, get_logger, log_async_operation
from autoleads.db.models.vehicle import Vehicle, VehicleStatus
from autoleads.db.repositories.vehicle_repository import VehicleCreate, VehicleRepository
from autoleads.domain.services import parser
from autoleads.domain.services.copywriting_service import CopywritingEnhancer, template_copy
from autoleads.domain.services.display_code_service import DisplayCodeGenerator
from autoleads.domain.services.extraction_service import NaturalLanguageExtractor
from autoleads.domain.services.llm.base_provider import BaseLLMProvider
from autoleads.domain.services.media_service import (
    MediaStorageService,
    file_extension,
    generate_filename,
)
from autoleads.domain.vehicle_draft import (
    DEFAULT_COLOR,
    DEFAULT_TRANSMISSION,
    GuidedIntakeDraft,
    QuickIntakeDraft,
    dump_draft,
)
from autoleads.state_machine import messages
from autoleads.state_machine.manager import ActiveConversation, IntakeDraftModel, StateManager
from autoleads.state_machine.states import ConversationScope, IntakeFlow, IntakeStep

logger = get_logger(__name__)

CANCEL_COMMANDS = {"/cancel", "/batal"}
YES_WORDS = {"ya", "yes", "y"}
NO_WORDS = {"tidak", "no", "n"}
SKIP_WORDS = {"skip", "-"}
DONE_WORDS = {"selesai"}

# photo acknowledgement cadence during bulk sends
PHOTO_ACK_EVERY = 5


class MessageResponse:
    """Response to be sent to user. Empty text means send nothing."""

    def __init__(self, text: str = ""):
        self.text = text

    @property
    def is_silent(self) -> bool:
        return not self.text


@dataclass(frozen=True)
class MediaAttachment:
    url: Optional[str]
    type: str = "image"

    @property
    def is_image(self) -> bool:
        return (self.type or "").lower().startswith("image")


@dataclass(frozen=True)
class IncomingMessage:
    """One inbound delivery. Text and media are independent signals."""

    tenant_id: int
    user_handle: str
    text: str = ""
    media: Optional[MediaAttachment] = None
    catalog_domain: Optional[str] = None

    @property
    def command(self) -> str:
        return self.text.strip().lower()


@dataclass
class IntakeServices:
    """Process-wide collaborators, created once by the application lifespan"""

    llm_provider: Optional[BaseLLMProvider]
    media_store: MediaStorageService
    conversation_lock: ConversationLock
    code_locks: KeyedLock


class StepAction(str, enum.Enum):
    STAY = "stay"
    ADVANCE = "advance"
    FINISH = "finish"


@dataclass
class StepResult:
    response: MessageResponse
    action: StepAction = StepAction.STAY
    # draft to store; None keeps the stored one
    draft: Optional[IntakeDraftModel] = None


StepHandler = Callable[[ActiveConversation, IncomingMessage], Awaitable[StepResult]]


class VehicleIntakeHandler:
    """Step handlers of both intake flows and the shared persistence step"""

    def __init__(self, db: AsyncSession, services: IntakeServices):
        self.db = db
        self.state_manager = StateManager(db)
        self.vehicles = VehicleRepository(db)
        self.extractor = NaturalLanguageExtractor(services.llm_provider)
        self.enhancer = CopywritingEnhancer(services.llm_provider)
        self.code_generator = DisplayCodeGenerator(self.vehicles, locks=services.code_locks)
        self.media_store = services.media_store
        self.max_photos = settings.MAX_PHOTOS_PER_VEHICLE

    # ==================== Entry ====================

    async def start_quick(self, message: IncomingMessage, listing: str) -> MessageResponse:
        """Extract the whole listing from one message and go straight to photos"""
        result = await self.extractor.extract(listing)
        if not result.success:
            logger.info(
                "Intake not started, extraction incomplete",
                extra_data={"missing_fields": result.missing_fields},
            )
            return MessageResponse(messages.extraction_failed(result.errors))

        draft = QuickIntakeDraft(
            **result.data.model_dump(),
            extraction_method=result.method.value,
            confidence=result.confidence.value,
        )
        await self.state_manager.start(
            message.tenant_id,
            message.user_handle,
            IntakeFlow.VEHICLE_INTAKE,
            draft,
            ConversationScope.ADMIN,
        )
        logger.info(
            "Intake started",
            extra_data={
                "flow": IntakeFlow.VEHICLE_INTAKE.value,
                "method": result.method.value,
                "confidence": result.confidence.value,
            },
        )
        return MessageResponse(
            messages.extraction_succeeded(result.data, result.method.value, result.confidence.value)
        )

    async def start_guided(self, message: IncomingMessage) -> MessageResponse:
        await self.state_manager.start(
            message.tenant_id,
            message.user_handle,
            IntakeFlow.VEHICLE_INTAKE_GUIDED,
            GuidedIntakeDraft(),
            ConversationScope.ADMIN,
        )
        logger.info(
            "Intake started",
            extra_data={"flow": IntakeFlow.VEHICLE_INTAKE_GUIDED.value},
        )
        return MessageResponse(messages.GUIDED_INTRO + messages.STEP_BRAND_MODEL)

    # ==================== Dispatch ====================

    async def handle(self, conversation: ActiveConversation, message: IncomingMessage) -> MessageResponse:
        handler = self._get_handler(conversation.step)
        result = await handler(conversation, message)

        tenant_id, user_handle = conversation.tenant_id, conversation.user_handle
        if result.action is StepAction.ADVANCE:
            await self.state_manager.advance(tenant_id, user_handle, result.draft or conversation.draft)
        elif result.action is StepAction.FINISH:
            await self.state_manager.clear(tenant_id, user_handle)
        elif result.draft is not None:
            await self.state_manager.update_draft(tenant_id, user_handle, result.draft)

        return result.response

    def _get_handler(self, step: IntakeStep) -> StepHandler:
        handlers: dict[IntakeStep, StepHandler] = {
            IntakeStep.BRAND_MODEL: self._handle_brand_model,
            IntakeStep.YEAR_COLOR: self._handle_year_color,
            IntakeStep.TRANSMISSION_KM: self._handle_transmission_km,
            IntakeStep.PRICE: self._handle_price,
            IntakeStep.PLATE: self._handle_plate,
            IntakeStep.FEATURES: self._handle_features,
            IntakeStep.PHOTOS: self._handle_photos,
            IntakeStep.CONFIRM: self._handle_confirm,
        }
        return handlers[step]

    # ==================== Guided steps ====================

    async def _handle_brand_model(self, conversation: ActiveConversation, message: IncomingMessage) -> StepResult:
        parsed = parser.parse_brand_model(message.text)
        if not parsed.brand:
            return StepResult(MessageResponse(messages.INVALID_BRAND_MODEL))

        draft = conversation.draft.model_copy(update={"brand": parsed.brand, "model": parsed.model or ""})
        return StepResult(
            MessageResponse(f"✅ Brand: {draft.brand}, Model: {draft.model or '-'}\n\n{messages.STEP_YEAR_COLOR}"),
            StepAction.ADVANCE,
            draft,
        )

    async def _handle_year_color(self, conversation: ActiveConversation, message: IncomingMessage) -> StepResult:
        parsed = parser.parse_year_color(message.text)
        if parsed.year is None:
            return StepResult(MessageResponse(messages.INVALID_YEAR_COLOR))

        draft = conversation.draft.model_copy(
            update={"year": parsed.year, "color": parsed.color or DEFAULT_COLOR}
        )
        return StepResult(
            MessageResponse(f"✅ Tahun: {draft.year}, Warna: {draft.color}\n\n{messages.STEP_TRANSMISSION_KM}"),
            StepAction.ADVANCE,
            draft,
        )

    async def _handle_transmission_km(self, conversation: ActiveConversation, message: IncomingMessage) -> StepResult:
        parsed = parser.parse_transmission_km(message.text)
        if parsed.transmission is None and parsed.km is None:
            return StepResult(MessageResponse(messages.INVALID_TRANSMISSION_KM))

        draft = conversation.draft.model_copy(update={
            "transmission": parsed.transmission or DEFAULT_TRANSMISSION,
            "km": parsed.km or 0,
        })
        return StepResult(
            MessageResponse(
                f"✅ Transmisi: {draft.transmission.value}, KM: {format_km(draft.km)}\n\n{messages.STEP_PRICE}"
            ),
            StepAction.ADVANCE,
            draft,
        )

    async def _handle_price(self, conversation: ActiveConversation, message: IncomingMessage) -> StepResult:
        price = parser.parse_price(message.text)
        if not price or price <= 0:
            return StepResult(MessageResponse(messages.INVALID_PRICE))

        draft = conversation.draft.model_copy(update={"price": price})
        return StepResult(
            MessageResponse(f"✅ Harga: {format_price_short(price)}\n\n{messages.STEP_PLATE}"),
            StepAction.ADVANCE,
            draft,
        )

    async def _handle_plate(self, conversation: ActiveConversation, message: IncomingMessage) -> StepResult:
        plate = None
        if message.command not in SKIP_WORDS:
            plate = parser.parse_plate_number(message.text, strict=False)

        # an unreadable plate counts as skipped
        plate_number, plate_clean = plate if plate else (None, None)
        draft = conversation.draft.model_copy(
            update={"plate_number": plate_number, "plate_number_clean": plate_clean}
        )
        status = f"✅ Plat: {plate_number}" if plate_number else "⏭️ Plat dilewati"
        return StepResult(
            MessageResponse(f"{status}\n\n{messages.STEP_FEATURES}"),
            StepAction.ADVANCE,
            draft,
        )

    async def _handle_features(self, conversation: ActiveConversation, message: IncomingMessage) -> StepResult:
        features: list[str] = []
        if message.command not in SKIP_WORDS:
            features = parser.parse_features(message.text)

        draft = conversation.draft.model_copy(update={"key_features": features})
        status = f"✅ Fitur: {', '.join(features)}" if features else "⏭️ Fitur dilewati"
        return StepResult(
            MessageResponse(f"{status}\n\n{messages.step_photos()}"),
            StepAction.ADVANCE,
            draft,
        )

    # ==================== Photos ====================

    async def _handle_photos(self, conversation: ActiveConversation, message: IncomingMessage) -> StepResult:
        draft = conversation.draft
        command = message.command

        if message.media is not None and message.media.is_image:
            result = await self._collect_photo(conversation, message.media)
            if command in DONE_WORDS:
                # caption "selesai" on the last photo
                return await self._enter_confirm(result.draft or draft)
            return result

        if command in SKIP_WORDS:
            return await self._enter_confirm(draft.model_copy(update={"photos": []}))

        if command in DONE_WORDS:
            return await self._enter_confirm(draft)

        if not command:
            # text-only echo of a media delivery
            return StepResult(MessageResponse())

        return StepResult(MessageResponse(messages.PHOTOS_REPROMPT))

    async def _collect_photo(self, conversation: ActiveConversation, media: MediaAttachment) -> StepResult:
        draft = conversation.draft

        if len(draft.photos) >= self.max_photos:
            if draft.photo_limit_notice_sent:
                return StepResult(MessageResponse())
            return StepResult(
                MessageResponse(messages.photo_limit_reached(self.max_photos)),
                draft=draft.model_copy(update={"photo_limit_notice_sent": True}),
            )

        filename = generate_filename("car", file_extension(media.url or ""))
        try:
            stored = await self.media_store.save(media.url, conversation.tenant_id, filename)
        except MediaUnavailableError:
            updated = draft.model_copy(update={
                "pending_photo_count": draft.pending_photo_count + 1,
                "pending_photo_notice_sent": True,
            })
            logger.info(
                "Photo without retrievable URL counted",
                extra_data={"pending": updated.pending_photo_count},
            )
            if draft.pending_photo_notice_sent:
                return StepResult(MessageResponse(), draft=updated)
            return StepResult(MessageResponse(messages.PHOTO_PENDING), draft=updated)
        except (MediaDownloadError, ExternalServiceException) as exc:
            logger.warning(
                "Photo download failed",
                extra_data={"error": exc.message, "error_code": exc.error_code.value},
            )
            return StepResult(MessageResponse(messages.PHOTO_DOWNLOAD_FAILED))

        updated = draft.model_copy(update={"photos": [*draft.photos, stored]})
        count = len(updated.photos)
        if count == 1:
            text = messages.first_photo_received(self.max_photos)
        elif count % PHOTO_ACK_EVERY == 0:
            text = messages.photo_count(count, self.max_photos)
        else:
            text = ""
        return StepResult(MessageResponse(text), draft=updated)

    # ==================== Confirm ====================

    async def _enter_confirm(self, draft: IntakeDraftModel) -> StepResult:
        """Generate the listing copy and show the summary"""
        copy = await self.enhancer.enhance(draft)
        draft = draft.model_copy(update={"enhanced": copy})
        return StepResult(
            MessageResponse(messages.confirmation(draft, copy)),
            StepAction.ADVANCE,
            draft,
        )

    async def _handle_confirm(self, conversation: ActiveConversation, message: IncomingMessage) -> StepResult:
        command = message.command
        if command in YES_WORDS:
            return await self._save(conversation, message)
        if command in NO_WORDS:
            return StepResult(MessageResponse(messages.CANCELLED), StepAction.FINISH)
        return StepResult(MessageResponse(messages.CONFIRM_REPROMPT))

    @log_async_operation("vehicle_save")
    async def _save(self, conversation: ActiveConversation, message: IncomingMessage) -> StepResult:
        draft = conversation.draft
        copy = draft.enhanced or template_copy(draft)

        async def persist(code: str) -> Vehicle:
            public_name = f"{copy.public_name} {code}"
            return await self.vehicles.create(VehicleCreate(
                tenant_id=conversation.tenant_id,
                display_code=code,
                public_name=public_name,
                slug=vehicle_slug(copy.public_name, code),
                brand=draft.brand,
                model=draft.model or "",
                year=draft.year,
                color=draft.color or DEFAULT_COLOR,
                transmission=(draft.transmission or DEFAULT_TRANSMISSION).value,
                km=draft.km or 0,
                price=draft.price,
                fuel_type=draft.fuel_type.value if draft.fuel_type else None,
                plate_number=draft.plate_number,
                plate_number_clean=draft.plate_number_clean,
                stock_code=draft.stock_code,
                key_features=draft.key_features,
                condition_notes=copy.condition_notes or draft.notes,
                description=copy.description,
                photos=draft.photos,
                pending_photo_count=draft.pending_photo_count,
                status=VehicleStatus.AVAILABLE,
                created_by=conversation.user_handle,
            ))

        try:
            vehicle = await self.code_generator.allocate(
                conversation.tenant_id, draft.brand, draft.model, persist
            )
        except (VehicleException, SQLAlchemyError) as exc:
            await self.db.rollback()
            logger.error(
                "Vehicle could not be saved",
                extra_data={
                    "error": str(exc),
                    "draft": dump_draft(draft),
                    "draft_kept": settings.KEEP_DRAFT_ON_SAVE_FAILURE,
                },
                exc_info=True,
            )
            if settings.KEEP_DRAFT_ON_SAVE_FAILURE:
                return StepResult(MessageResponse(messages.SAVE_FAILED_RETRY))
            return StepResult(MessageResponse(messages.SAVE_FAILED), StepAction.FINISH)

        return StepResult(
            MessageResponse(messages.upload_succeeded(
                vehicle.display_code,
                vehicle.public_name,
                vehicle.price,
                len(vehicle.photos or []),
                vehicle.slug,
                message.catalog_domain or settings.DEFAULT_CATALOG_DOMAIN,
            )),
            StepAction.FINISH,
        )


class AdminBotHandler:
    """Routes one admin message: cancel first, then commands, then the active flow"""

    def __init__(self, db: AsyncSession, services: IntakeServices):
        self.db = db
        self.services = services
        self.intake = VehicleIntakeHandler(db, services)
        self.state_manager = self.intake.state_manager

    async def handle_message(self, message: IncomingMessage) -> MessageResponse:
        with bind_conversation(message.tenant_id, message.user_handle):
            try:
                async with self.services.conversation_lock.hold(message.tenant_id, message.user_handle):
                    return await self._dispatch(message)
            except ConversationBusyError:
                logger.warning("Conversation busy, asked user to resend")
                return MessageResponse(messages.BUSY)
            except Exception as exc:
                await self.db.rollback()
                logger.error(
                    "Error in admin bot handler",
                    extra_data={"error": str(exc), "error_type": type(exc).__name__},
                    exc_info=True,
                )
                return MessageResponse(messages.GENERIC_ERROR)

    async def _dispatch(self, message: IncomingMessage) -> MessageResponse:
        parts = message.text.strip().split(maxsplit=1)
        command = parts[0].lower() if parts else ""
        payload = parts[1].strip() if len(parts) > 1 else ""

        if command in CANCEL_COMMANDS:
            cleared = await self.state_manager.clear(message.tenant_id, message.user_handle)
            if cleared:
                logger.info("Intake cancelled")
                return MessageResponse(messages.CANCELLED)
            return MessageResponse(messages.CANCELLED_NO_SESSION)

        if command == "/upload":
            if payload:
                return await self.intake.start_quick(message, payload)
            return await self.intake.start_guided(message)

        if command == "/help":
            return MessageResponse(messages.help_text())

        conversation = await self.state_manager.get(message.tenant_id, message.user_handle)
        if conversation is not None:
            return await self.intake.handle(conversation, message)

        if message.command in YES_WORDS or message.command in NO_WORDS:
            return MessageResponse(messages.NO_ACTIVE_SESSION)
        return MessageResponse(messages.help_text())
