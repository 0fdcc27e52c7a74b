import asyncio

import httpx
import pytest

from app.core.hasura import HasuraClient, HasuraError

QUERY = "query Ping { partners { id } }"


def make_client(handler, secret="test-secret"):
    return HasuraClient("http://hasura.test/v1/graphql", secret, transport=httpx.MockTransport(handler))


def test_returns_data_and_sends_admin_secret():
    seen = {}

    def handler(request):
        seen["secret"] = request.headers.get("x-hasura-admin-secret")
        return httpx.Response(200, json={"data": {"partners": [{"id": "p1"}]}})

    data = asyncio.run(make_client(handler).execute(QUERY))
    assert data == {"partners": [{"id": "p1"}]}
    assert seen["secret"] == "test-secret"


def test_no_secret_header_when_unset():
    seen = {}

    def handler(request):
        seen["has_secret"] = "x-hasura-admin-secret" in request.headers
        return httpx.Response(200, json={"data": {}})

    asyncio.run(make_client(handler, secret="").execute(QUERY))
    assert seen["has_secret"] is False


def test_graphql_errors_raise_first_message():
    def handler(request):
        return httpx.Response(200, json={"errors": [{"message": "field 'orders' not found"}, {"message": "other"}]})

    with pytest.raises(HasuraError) as exc:
        asyncio.run(make_client(handler).execute(QUERY))
    assert exc.value.message == "field 'orders' not found"
    assert len(exc.value.errors) == 2


def test_non_json_body_raises():
    def handler(request):
        return httpx.Response(502, text="<html>Bad gateway</html>")

    with pytest.raises(HasuraError) as exc:
        asyncio.run(make_client(handler).execute(QUERY))
    assert exc.value.status_code == 502


def test_http_error_status_raises():
    def handler(request):
        return httpx.Response(500, json={"message": "boom"})

    with pytest.raises(HasuraError):
        asyncio.run(make_client(handler).execute(QUERY))


def test_connection_error_raises():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(HasuraError) as exc:
        asyncio.run(make_client(handler).execute(QUERY))
    assert "Connection error" in exc.value.message
