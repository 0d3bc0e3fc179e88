import pytest
from starlette.requests import Request

from routers import rate_limit
from services.session_token import create_session_token


def _request(headers=None, client=("10.0.0.9", 5000)):
    raw_headers = [(key.lower().encode(), value.encode()) for key, value in (headers or {}).items()]
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw_headers, "client": client})


def test_caller_identifier_prefers_session_subject():
    token = create_session_token("quota-user")["token"]

    assert rate_limit.caller_identifier(_request({"Authorization": f"Bearer {token}"})) == "user:quota-user"
    assert rate_limit.caller_identifier(_request({"Authorization": "Bearer not-a-token"})) == "ip:10.0.0.9"
    assert rate_limit.caller_identifier(_request({"X-Forwarded-For": "203.0.113.5, 10.0.0.1"})) == "ip:203.0.113.5"


@pytest.mark.asyncio
async def test_local_quota_blocks_after_limit_within_window():
    key = "ida:rate:test:user:quota-user"

    first = await rate_limit.consume_local_quota(key, limit=2, window_seconds=60)
    second = await rate_limit.consume_local_quota(key, limit=2, window_seconds=60)
    third = await rate_limit.consume_local_quota(key, limit=2, window_seconds=60)

    assert first[0] is True
    assert second[0] is True
    assert third[0] is False
    assert 1 <= third[1] <= 60
