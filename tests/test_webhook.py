"""
Tests for the WhatsApp webhook - POST /api/webhooks/whatsapp/{tenant_id}

Covers:
- request validation
- handle normalization before the conversation is looked up
- replies for text and media deliveries
"""
import httpx
import pytest
from sqlalchemy import select

from autoleads.db.models.conversation_state import ConversationState
from autoleads.state_machine import messages

WEBHOOK = "/api/webhooks/whatsapp/1"


class TestWebhookValidation:

    @pytest.mark.unit
    async def test_tenant_must_be_positive(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.post("/api/webhooks/whatsapp/0", json={"user": "6281234567890", "text": "/help"})
        assert response.status_code == 422

    @pytest.mark.unit
    async def test_tenant_must_be_numeric(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.post("/api/webhooks/whatsapp/abc", json={"user": "6281234567890"})
        assert response.status_code == 422

    @pytest.mark.unit
    async def test_user_is_required(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.post(WEBHOOK, json={"user": "", "text": "/help"})
        assert response.status_code == 422

    @pytest.mark.unit
    async def test_correlation_id_header(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.post(
            WEBHOOK,
            json={"user": "6281234567890", "text": "/help"},
            headers={"X-Correlation-ID": "wa-delivery-42"},
        )
        assert response.status_code == 200
        assert response.headers["x-correlation-id"] == "wa-delivery-42"


class TestWebhookConversation:

    @pytest.mark.integration
    async def test_quick_upload_reply(self, test_client: httpx.AsyncClient, db_session) -> None:
        response = await test_client.post(
            WEBHOOK,
            json={"user": "0812-3456-7890", "text": "/upload honda jazz 2019 hitam harga 187jt"},
        )

        assert response.status_code == 200
        assert response.json()["reply"].startswith("✅ *Data Mobil Berhasil Diproses!*")

        result = await db_session.execute(select(ConversationState))
        row = result.scalar_one()
        assert row.tenant_id == 1
        assert row.user_handle == "6281234567890"

    @pytest.mark.integration
    async def test_handle_formats_share_one_conversation(self, test_client: httpx.AsyncClient) -> None:
        await test_client.post(WEBHOOK, json={"user": "081234567890", "text": "/upload"})

        response = await test_client.post(
            WEBHOOK, json={"user": "6281234567890@c.us", "text": "Toyota Avanza 1.3 G"},
        )

        assert response.json()["reply"].startswith("✅ Brand: Toyota, Model: Avanza 1.3 G")

    @pytest.mark.integration
    async def test_media_without_url_is_pending(self, test_client: httpx.AsyncClient) -> None:
        await test_client.post(
            WEBHOOK, json={"user": "6281234567890", "text": "/upload honda jazz 2019 hitam harga 187jt"},
        )

        response = await test_client.post(
            WEBHOOK,
            json={"user": "6281234567890", "text": "", "media": {"url": "No URL", "type": "image"}},
        )

        assert response.status_code == 200
        assert response.json()["reply"] == messages.PHOTO_PENDING

    @pytest.mark.integration
    async def test_silent_reply_is_empty_string(self, test_client: httpx.AsyncClient) -> None:
        await test_client.post(
            WEBHOOK, json={"user": "6281234567890", "text": "/upload honda jazz 2019 hitam harga 187jt"},
        )

        response = await test_client.post(WEBHOOK, json={"user": "6281234567890", "text": "   "})

        assert response.json() == {"reply": ""}

    @pytest.mark.integration
    async def test_control_characters_are_stripped(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.post(WEBHOOK, json={"user": "6281234567890", "text": "/hel\x00p"})

        assert response.json()["reply"] == messages.help_text()
