from __future__ import annotations

import json

import httpx
import pytest

from acumatica_gateway.services.acumatica_client import key_identity
from acumatica_gateway.services.errors import PollFailedError, PollTimeoutError

from conftest import ENTITY_BASE

STATUS_URL = f"{ENTITY_BASE}/SalesOrder/ReleaseSalesOrder/status/7f3c"


class TestInvokeAction:
    async def test_posts_entity_and_parameters_to_action_path(self, fake, acumatica):
        fake.entity_handler = lambda request: httpx.Response(204)

        result = await acumatica.invoke_action(
            "/SalesOrder",
            "5b2d0a6e-0000-0000-0000-000000000001",
            "ReleaseSalesOrder",
            {"Notes": {"value": "release"}},
        )

        assert result is None
        request = fake.entity_requests[0]
        assert request.method == "POST"
        assert str(request.url) == f"{ENTITY_BASE}/SalesOrder/ReleaseSalesOrder"
        assert json.loads(request.content) == {
            "entity": {"id": "5b2d0a6e-0000-0000-0000-000000000001"},
            "parameters": {"Notes": {"value": "release"}},
        }

    async def test_parameters_default_to_empty_object(self, fake, acumatica):
        fake.entity_handler = lambda request: httpx.Response(204)

        await acumatica.invoke_action("/Invoice", "abc", "ReleaseInvoice")

        assert json.loads(fake.entity_requests[0].content)["parameters"] == {}

    async def test_key_record_identity_is_sent_as_given(self, fake, acumatica):
        fake.entity_handler = lambda request: httpx.Response(204)

        await acumatica.invoke_action(
            "/Invoice",
            key_identity(Type="Invoice", ReferenceNbr="AR000123"),
            "ReleaseInvoice",
        )

        assert json.loads(fake.entity_requests[0].content)["entity"] == {
            "Type": {"value": "Invoice"},
            "ReferenceNbr": {"value": "AR000123"},
        }


class TestPollOperation:
    async def test_returns_completed_status(self, fake, acumatica):
        statuses = iter(
            [
                {"status": "InProcess"},
                {"status": "InProcess"},
                {"status": "Completed", "id": "42"},
            ]
        )
        fake.entity_handler = lambda request: httpx.Response(200, json=next(statuses))

        result = await acumatica.poll_operation(STATUS_URL, max_attempts=5, interval_seconds=0)

        assert result == {"status": "Completed", "id": "42"}
        assert len(fake.entity_requests) == 3
        assert all(str(request.url) == STATUS_URL for request in fake.entity_requests)

    async def test_failed_status_stops_polling(self, fake, acumatica):
        fake.entity_handler = lambda request: httpx.Response(
            200, json={"status": "Failed", "message": "Credit limit exceeded"}
        )

        with pytest.raises(PollFailedError, match="Operation failed: Credit limit exceeded"):
            await acumatica.poll_operation(STATUS_URL, max_attempts=5, interval_seconds=0)
        assert len(fake.entity_requests) == 1

    async def test_failed_status_without_message(self, fake, acumatica):
        fake.entity_handler = lambda request: httpx.Response(200, json={"status": "Failed"})

        with pytest.raises(PollFailedError, match="Unknown error"):
            await acumatica.poll_operation(STATUS_URL, max_attempts=2, interval_seconds=0)

    async def test_times_out_after_max_attempts(self, fake, acumatica):
        fake.entity_handler = lambda request: httpx.Response(200, json={"status": "InProcess"})

        with pytest.raises(PollTimeoutError, match="timed out"):
            await acumatica.poll_operation(STATUS_URL, max_attempts=3, interval_seconds=0)
        assert len(fake.entity_requests) == 3
