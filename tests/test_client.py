"""Tests for the async API client façade."""
import httpx
import pytest
import pytest_asyncio

from app.client import UserProfileClient


@pytest_asyncio.fixture
async def api(app):
    async with UserProfileClient("http://test/api", transport=httpx.ASGITransport(app=app)) as c:
        yield c


class TestUserProfileClient:

    @pytest.mark.asyncio
    async def test_create_get_delete(self, api, ada_payload):
        created = await api.create_user(ada_payload)
        assert created.success
        assert created.status_code == 201
        assert created.message == "User created successfully"
        user_id = created.data["id"]

        fetched = await api.get_user(user_id)
        assert fetched.data["email"] == "ada@example.com"
        assert await api.user_exists(user_id)

        deleted = await api.delete_user(user_id)
        assert deleted.success
        assert deleted.data is True
        assert not await api.user_exists(user_id)

    @pytest.mark.asyncio
    async def test_error_result_carries_message(self, api, ada_payload):
        await api.create_user(ada_payload)
        dup = await api.create_user(ada_payload)
        assert not dup.success
        assert dup.status_code == 409
        assert dup.message == "User with this email already exists"

    @pytest.mark.asyncio
    async def test_validation_errors_exposed(self, api):
        result = await api.create_user({"fullName": "No Email"})
        assert not result.success
        assert result.status_code == 400
        assert any(e["path"] == "body.email" for e in result.errors)

    @pytest.mark.asyncio
    async def test_listing_and_search(self, api, people):
        created = await api.create_many(people)
        assert created.success
        assert len(created.data) == len(people)

        page = await api.get_users(limit=2, sort_by="fullName", sort_order="asc")
        assert [u["fullName"] for u in page.data] == ["Alice Smith", "Bob Jones"]
        assert page.pagination["total"] == 5

        found = await api.search_users("  chess ")
        assert [u["fullName"] for u in found.data] == ["Dave Brown"]

    @pytest.mark.asyncio
    async def test_update(self, api, ada_payload):
        user_id = (await api.create_user(ada_payload)).data["id"]
        result = await api.update_user(user_id, {"bio": "Poetical science"})
        assert result.success
        assert result.data["bio"] == "Poetical science"

    @pytest.mark.asyncio
    async def test_network_failure_does_not_raise(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with UserProfileClient("http://test/api", transport=httpx.MockTransport(refuse)) as c:
            result = await c.get_users()
        assert not result.success
        assert result.status_code is None
        assert "connection refused" in result.message

    @pytest.mark.asyncio
    async def test_non_json_error_body(self):
        def broken(request):
            return httpx.Response(502, text="<html>Bad Gateway</html>")

        async with UserProfileClient("http://test/api", transport=httpx.MockTransport(broken)) as c:
            result = await c.get_user("abc")
        assert not result.success
        assert result.message == "HTTP error! status: 502"
