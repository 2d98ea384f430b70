"""
Tests for DocumentsApiClient against an httpx mock transport.
"""

import httpx
import pytest

from client.api_client import ApiClientError, DocumentsApiClient


def make_client(handler, api_key=None):
    transport = httpx.MockTransport(handler)
    http = httpx.AsyncClient(transport=transport, base_url="http://testserver")
    return DocumentsApiClient("http://testserver", user_id=7, api_key=api_key, client=http), http


# ============================================
# REQUEST TESTS
# ============================================

class TestRequests:
    """Tests for paths, params and headers."""

    @pytest.mark.asyncio
    async def test_identity_headers(self):
        seen = {}

        def handler(request):
            seen.update(request.headers)
            return httpx.Response(200, json=[])

        api, http = make_client(handler, api_key="secret")
        await api.get_producer_options()
        await http.aclose()

        assert seen["x-user-id"] == "7"
        assert seen["x-api-key"] == "secret"

    @pytest.mark.asyncio
    async def test_empty_params_dropped(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=[{"id": 1, "value": 1, "label": "PLCY-1001"}])

        api, http = make_client(handler)
        options = await api.get_policy_options(search="", producer_id=3)
        await http.aclose()

        assert options[0]["label"] == "PLCY-1001"
        assert requests[0].url.path == "/api/metadata/options/policies"
        assert dict(requests[0].url.params) == {"producer_id": "3", "limit": "25"}
        assert "x-api-key" not in requests[0].headers

    @pytest.mark.asyncio
    async def test_dependent_option_paths(self):
        paths = []

        def handler(request):
            paths.append(request.url.path)
            return httpx.Response(200, json=[])

        api, http = make_client(handler)
        await api.get_loss_options(4, search="hail")
        await api.get_claimant_options(9)
        await api.get_user_options()
        await http.aclose()

        assert paths == [
            "/api/metadata/options/losses/4",
            "/api/metadata/options/claimants/9",
            "/api/metadata/options/users",
        ]

    @pytest.mark.asyncio
    async def test_metadata_unwraps_data(self):
        def handler(request):
            if request.method == "PUT":
                assert request.read() == b'{"description":"New"}'
            return httpx.Response(200, json={"data": {"id": 5, "description": "New"}})

        api, http = make_client(handler)
        metadata = await api.get_document_metadata(5)
        updated = await api.update_document_metadata(5, {"description": "New"})
        await http.aclose()

        assert metadata["id"] == 5
        assert updated["description"] == "New"


# ============================================
# ERROR TESTS
# ============================================

class TestErrors:
    """Tests for error translation."""

    @pytest.mark.asyncio
    async def test_structured_error(self):
        def handler(request):
            return httpx.Response(422, json={"error": {
                "code": "METADATA_VALIDATION_ERROR",
                "message": "The selected loss does not belong to the policy.",
                "field": "loss_id",
                "errors": {"loss_id": "The selected loss does not belong to the policy."},
            }})

        api, http = make_client(handler)
        with pytest.raises(ApiClientError) as exc_info:
            await api.update_document_metadata(5, {"loss_id": 99})
        await http.aclose()

        assert exc_info.value.status_code == 422
        assert "loss_id" in exc_info.value.errors
        assert str(exc_info.value) == "The selected loss does not belong to the policy."

    @pytest.mark.asyncio
    async def test_flat_message_error(self):
        def handler(request):
            return httpx.Response(429, json={"error": "Too many requests", "message": "Slow down"})

        api, http = make_client(handler)
        with pytest.raises(ApiClientError, match="Slow down") as exc_info:
            await api.get_producer_options()
        await http.aclose()

        assert exc_info.value.status_code == 429
        assert exc_info.value.errors == {}

    @pytest.mark.asyncio
    async def test_non_json_error(self):
        def handler(request):
            return httpx.Response(502, text="Bad gateway")

        api, http = make_client(handler)
        with pytest.raises(ApiClientError, match="HTTP 502"):
            await api.get_producer_options()
        await http.aclose()

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        api, http = make_client(handler)
        with pytest.raises(ApiClientError, match="Request failed") as exc_info:
            await api.get_producer_options()
        await http.aclose()

        assert exc_info.value.status_code is None
