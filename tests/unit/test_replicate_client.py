import httpx
import pytest

from pixee_backend.exceptions import UpstreamError


class TestReplicateClient:
    """Тесты HTTP клиента Replicate"""

    @pytest.mark.asyncio
    async def test_error_message_from_body(self, replicate_factory):
        """Тест извлечения сообщения об ошибке из тела ответа"""
        client = replicate_factory(
            lambda request: httpx.Response(402, json={"error": {"message": "Insufficient credit"}})
        )

        with pytest.raises(UpstreamError) as exc_info:
            await client.get_model("owner/model")

        assert exc_info.value.status == 402
        assert exc_info.value.message == "Upstream API error 402: Insufficient credit"

    @pytest.mark.asyncio
    async def test_non_json_body(self, replicate_factory):
        """Тест ответа с телом не в формате JSON"""
        client = replicate_factory(lambda request: httpx.Response(502, text="Bad Gateway"))

        with pytest.raises(UpstreamError) as exc_info:
            await client.list_versions("owner/model")
        assert exc_info.value.body == "Bad Gateway"

    @pytest.mark.asyncio
    async def test_transport_error(self, replicate_factory):
        """Тест транспортной ошибки"""
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        client = replicate_factory(handler)

        with pytest.raises(UpstreamError) as exc_info:
            await client.get_prediction("https://api.replicate.com/v1/predictions/p1")
        assert exc_info.value.status == 0

    @pytest.mark.asyncio
    async def test_wait_hint_omitted_when_disabled(self, replicate_factory):
        """Тест отсутствия заголовка ожидания при отключенном wait"""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(201, json={"id": "p1", "status": "starting"})

        client = replicate_factory(handler)
        await client.create_prediction("v1", {"prompt": "x"}, wait_seconds=0)

        assert "Prefer" not in seen[0].headers
