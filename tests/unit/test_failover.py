import httpx
import pytest

from rewrite_gateway.errors import ForwardError, InvalidURLError
from rewrite_gateway.failover import FailoverController, replace_host
from rewrite_gateway.forwarder import OutboundAttempt, buffer_body
from rewrite_gateway.testing.fake_forwarder import FakeForwarder


@pytest.mark.parametrize("url, mirror, expected", [
    ("http://example.com/path/to/file", "https://mirror.com", "https://mirror.com/path/to/file"),
    ("http://example.com/path?query=value", "https://mirror.com", "https://mirror.com/path?query=value"),
    ("https://secure.com/file", "http://mirror.com", "http://mirror.com/file"),
    ("https://secure.com/file", "http://mirror.com:8080/base", "http://mirror.com:8080/file"),
])
def test_replace_host(url, mirror, expected):
    assert replace_host(url, mirror) == expected


@pytest.mark.parametrize("url, mirror", [
    ("://invalid", "https://mirror.com"),
    ("https://example.com/path", "://invalid"),
    ("https://example.com/path", "mirror.com"),
])
def test_replace_host_rejects_invalid_urls(url, mirror):
    with pytest.raises(InvalidURLError):
        replace_host(url, mirror)


def get_attempt():
    return OutboundAttempt(method="GET", headers=[], client_address="10.0.0.1")


async def test_primary_success_skips_mirrors():
    forwarder = FakeForwarder({"primary": 200, "m1": 200})
    controller = FailoverController(forwarder)

    response = await controller.forward_with_failover(
        get_attempt(), "http://primary/file", ["http://m1"]
    )

    assert response.status_code == 200
    assert forwarder.calls == ["http://primary/file"]


async def test_mirrors_tried_in_order_until_not_404():
    forwarder = FakeForwarder({"primary": 404, "m1": 404, "m2": 200, "m3": 200})
    controller = FailoverController(forwarder)

    response = await controller.forward_with_failover(
        get_attempt(), "http://primary/repo/file.tcz?v=1", ["http://m1", "http://m2", "http://m3"]
    )

    assert response.status_code == 200
    assert response.content == b"m2"
    assert forwarder.calls == [
        "http://primary/repo/file.tcz?v=1",
        "http://m1/repo/file.tcz?v=1",
        "http://m2/repo/file.tcz?v=1",
    ]
    # discarded 404 responses are closed
    assert all(r.is_closed for r in forwarder.responses[:2])


async def test_non_404_error_status_is_returned_from_mirror():
    forwarder = FakeForwarder({"primary": 404, "m1": 500, "m2": 200})
    controller = FailoverController(forwarder)

    response = await controller.forward_with_failover(
        get_attempt(), "http://primary/x", ["http://m1", "http://m2"]
    )

    assert response.status_code == 500
    assert len(forwarder.calls) == 2


async def test_all_mirrors_404_returns_last_404():
    forwarder = FakeForwarder({"primary": 404, "m1": 404, "m2": 404})
    controller = FailoverController(forwarder)

    for _ in range(2):
        response = await controller.forward_with_failover(
            get_attempt(), "http://primary/x", ["http://m1", "http://m2"]
        )
        assert response.status_code == 404
        assert response.content == b"m2"


async def test_primary_transport_error_is_not_retried():
    forwarder = FakeForwarder({"primary": httpx.ConnectError("Connection refused"), "m1": 200})
    controller = FailoverController(forwarder)

    with pytest.raises(ForwardError) as exc_info:
        await controller.forward_with_failover(get_attempt(), "http://primary/x", ["http://m1"])

    assert exc_info.value.target == "http://primary/x"
    assert forwarder.calls == ["http://primary/x"]


async def test_failing_mirror_is_skipped():
    forwarder = FakeForwarder({
        "primary": 404,
        "m1": httpx.ConnectError("Connection refused"),
        "m2": 200,
    })
    controller = FailoverController(forwarder)

    response = await controller.forward_with_failover(
        get_attempt(), "http://primary/x", ["http://m1", "http://m2"]
    )

    assert response.status_code == 200
    assert response.content == b"m2"


async def test_failing_last_mirror_keeps_previous_404():
    forwarder = FakeForwarder({"primary": 404, "m1": httpx.ConnectTimeout("timed out")})
    controller = FailoverController(forwarder)

    response = await controller.forward_with_failover(get_attempt(), "http://primary/x", ["http://m1"])

    assert response.status_code == 404
    assert response.content == b"primary"


async def test_unparsable_mirror_is_skipped():
    forwarder = FakeForwarder({"primary": 404, "m2": 200})
    controller = FailoverController(forwarder)

    response = await controller.forward_with_failover(
        get_attempt(), "http://primary/x", ["://invalid", "http://m2"]
    )

    assert response.status_code == 200
    assert forwarder.calls == ["http://primary/x", "http://m2/x"]


async def test_streamed_body_disables_failover():
    async def chunks():
        yield b"0123"
        yield b"456789"

    body = await buffer_body(chunks(), limit=4)
    attempt = OutboundAttempt(method="POST", headers=[], body=body)
    forwarder = FakeForwarder({"primary": 404, "m1": 200})
    controller = FailoverController(forwarder)

    response = await controller.forward_with_failover(attempt, "http://primary/x", ["http://m1"])

    assert attempt.replayable is False
    assert response.status_code == 404
    assert forwarder.calls == ["http://primary/x"]
