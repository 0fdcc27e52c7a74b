import json
import re
from datetime import datetime, timezone

import httpx
import pytest

from app.core.hasura import HasuraClient

OPERATION_RE = re.compile(r"(?:query|mutation)\s+(\w+)")


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class FakeHasura:
    """
    In-memory Hasura endpoint.

    Responses are registered per GraphQL operation name; a response can be
    a data dict, a callable taking the variables, or a ready httpx.Response.
    """

    def __init__(self):
        self.responses = {}
        self.calls = []

    def on(self, operation, response):
        self.responses[operation] = response
        return self

    def variables(self, operation):
        return [variables for name, variables in self.calls if name == operation]

    def operations(self):
        return [name for name, _ in self.calls]

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        operation = OPERATION_RE.search(body["query"]).group(1)
        self.calls.append((operation, body.get("variables") or {}))

        if operation not in self.responses:
            return httpx.Response(200, json={"errors": [{"message": f"no fake for {operation}"}]})

        response = self.responses[operation]
        if callable(response):
            response = response(body.get("variables") or {})
        if isinstance(response, httpx.Response):
            return response
        return httpx.Response(200, json={"data": response})

    def client(self) -> HasuraClient:
        return HasuraClient(
            endpoint="http://hasura.test/v1/graphql",
            admin_secret="test-secret",
            transport=httpx.MockTransport(self.handler),
        )


@pytest.fixture
def hasura():
    return FakeHasura()


def subscription_row(id="s1", plan="flexible", type="monthly",
                     created_at="2024-01-01T00:00:00+00:00",
                     expiry_date="2024-02-01T00:00:00+00:00", partner_id="p1"):
    return {
        "id": id,
        "partner_id": partner_id,
        "plan": plan,
        "type": type,
        "created_at": created_at,
        "expiry_date": expiry_date,
    }


def payment_row(id="pay1", amount=100, date="2024-01-10", partner_id="p1"):
    return {"id": id, "partner_id": partner_id, "amount": amount, "date": date}


def order_rows(count, status="completed"):
    return [
        {
            "id": f"o{i}",
            "status": status,
            "created_at": "2024-01-05T10:00:00+00:00",
            "total_price": 250.0,
        }
        for i in range(count)
    ]
