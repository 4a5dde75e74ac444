import pytest

from weather_mcp.server.streamable_http import DEFAULT_MAX_PENDING_NOTIFICATIONS, StreamableHTTPServerTransport
from weather_mcp.server.transport import TransportState
from weather_mcp.shared.exceptions import StructuralError, TransportClosedError
from weather_mcp.types import INVALID_REQUEST, JSONRPCNotification, JSONRPCResponse

LIST_CHANGED = JSONRPCNotification(method="notifications/tools/list_changed")


@pytest.mark.anyio
async def test_first_call_activates_transport():
    transport = StreamableHTTPServerTransport("s1")
    assert transport.state is TransportState.Uninitialized

    async with transport.open_call([1]):
        assert transport.state is TransportState.Active


@pytest.mark.anyio
async def test_responses_are_routed_to_their_call():
    transport = StreamableHTTPServerTransport("s1")

    async with transport.open_call([1, 2]) as call:
        await transport.send(JSONRPCResponse(id=2, result={"n": 2}))
        await transport.send(JSONRPCResponse(id=1, result={"n": 1}))
        replies = call.collect()

    assert [r.id for r in replies] == [1, 2]  # type: ignore[union-attr]


@pytest.mark.anyio
async def test_notifications_wait_for_next_call():
    transport = StreamableHTTPServerTransport("s1")
    async with transport.open_call([1]):
        pass

    await transport.send(LIST_CHANGED)
    assert transport.pending_notifications == 1

    async with transport.open_call([2]) as call:
        await transport.send(JSONRPCResponse(id=2, result={}))
        replies = call.collect()

    assert replies[0] == LIST_CHANGED
    assert replies[1].id == 2  # type: ignore[union-attr]
    assert transport.pending_notifications == 0


@pytest.mark.anyio
async def test_notification_during_call_waits_for_the_next_one():
    transport = StreamableHTTPServerTransport("s1")

    async with transport.open_call([1]) as call:
        await transport.send(LIST_CHANGED)
        await transport.send(JSONRPCResponse(id=1, result={}))
        first = call.collect()

    async with transport.open_call([]) as call:
        second = call.collect()

    assert [type(r) for r in first] == [JSONRPCResponse]
    assert second == [LIST_CHANGED]


@pytest.mark.anyio
async def test_duplicate_in_flight_request_id_is_rejected():
    transport = StreamableHTTPServerTransport("s1")

    async with transport.open_call(["req-1"]):
        with pytest.raises(StructuralError) as excinfo:
            async with transport.open_call(["req-1"]):
                pass
        assert excinfo.value.error.code == INVALID_REQUEST

    # Released once the first call finishes
    async with transport.open_call(["req-1"]):
        pass


@pytest.mark.anyio
async def test_response_without_open_call_is_dropped():
    transport = StreamableHTTPServerTransport("s1")
    async with transport.open_call([1]):
        pass

    await transport.send(JSONRPCResponse(id=99, result={}))

    assert transport.pending_notifications == 0
    assert transport.state is TransportState.Active


@pytest.mark.anyio
async def test_close_discards_queue_and_rejects_calls():
    transport = StreamableHTTPServerTransport("s1")
    async with transport.open_call([]):
        pass
    await transport.send(LIST_CHANGED)

    await transport.close()

    assert transport.pending_notifications == 0
    with pytest.raises(TransportClosedError):
        async with transport.open_call([1]):
            pass


@pytest.mark.anyio
async def test_pending_notifications_keep_only_the_newest():
    transport = StreamableHTTPServerTransport("s1", max_pending_notifications=3)
    async with transport.open_call([]):
        pass

    for i in range(10):
        await transport.send(JSONRPCNotification(method=f"notifications/n{i}"))
    assert transport.pending_notifications == 3

    async with transport.open_call([]) as call:
        replies = call.collect()

    methods = [r.method for r in replies]  # type: ignore[union-attr]
    assert methods == ["notifications/n7", "notifications/n8", "notifications/n9"]


@pytest.mark.anyio
async def test_pending_notifications_are_bounded_by_default():
    transport = StreamableHTTPServerTransport("s1")
    async with transport.open_call([]):
        pass

    for _ in range(DEFAULT_MAX_PENDING_NOTIFICATIONS * 100):
        await transport.send(LIST_CHANGED)

    assert transport.pending_notifications == DEFAULT_MAX_PENDING_NOTIFICATIONS
