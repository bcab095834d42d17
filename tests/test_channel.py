import anyio
import pytest

from atxp_demo.channel import SessionChannel
from atxp_demo.exceptions import ChannelClosedError, DuplicateRequestId
from atxp_demo.types.json_rpc import INVALID_REQUEST, JSONRPCNotification

pytestmark = pytest.mark.anyio


async def test_push_lands_on_the_related_call_stream() -> None:
    channel = SessionChannel("s1")
    _, recv_a = channel.open_stream(1)
    _, recv_b = channel.open_stream(2)

    await channel.push(JSONRPCNotification(method="notifications/progress"), related_request_id=2)

    event = recv_b.receive_nowait()
    assert event.message.method == "notifications/progress"  # type: ignore[union-attr]
    assert not event.is_final
    with pytest.raises(anyio.WouldBlock):
        recv_a.receive_nowait()


async def test_push_without_open_stream_raises() -> None:
    channel = SessionChannel("s1")
    with pytest.raises(ChannelClosedError):
        await channel.push(JSONRPCNotification(method="x"), related_request_id=1)


async def test_push_after_release_raises() -> None:
    channel = SessionChannel("s1")
    channel.open_stream(1)
    channel.release(1)
    with pytest.raises(ChannelClosedError):
        await channel.push(JSONRPCNotification(method="x"), related_request_id=1)


async def test_push_to_abandoned_stream_raises() -> None:
    channel = SessionChannel("s1")
    _, recv = channel.open_stream(1)
    await recv.aclose()
    with pytest.raises(ChannelClosedError):
        await channel.push(JSONRPCNotification(method="x"), related_request_id=1)


async def test_close_runs_callbacks_once_and_ends_streams() -> None:
    channel = SessionChannel("s1")
    _, recv = channel.open_stream(1)
    calls: list[str] = []
    channel.on_close(lambda: calls.append("first"))
    channel.on_close(lambda: calls.append("second"))

    channel.close()
    channel.close()

    assert calls == ["first", "second"]
    assert channel.closed
    with pytest.raises(anyio.EndOfStream):
        await recv.receive()


async def test_open_stream_after_close_raises() -> None:
    channel = SessionChannel("s1")
    channel.close()
    with pytest.raises(ChannelClosedError):
        channel.open_stream(1)


async def test_request_id_already_in_flight_is_refused() -> None:
    channel = SessionChannel("s1")
    sink, _ = channel.open_stream(1)

    with pytest.raises(DuplicateRequestId) as exc_info:
        channel.open_stream(1)

    assert exc_info.value.error.code == INVALID_REQUEST
    # The original call's stream is untouched
    await channel.push(JSONRPCNotification(method="x"), related_request_id=1)
    assert sink.started


async def test_idle_tracks_open_streams() -> None:
    channel = SessionChannel("s1")
    assert channel.idle

    channel.open_stream(1)
    assert not channel.idle

    channel.release(1)
    assert channel.idle
    # A released id can be reused
    channel.open_stream(1)
