"""RoomRegistry 테스트.

룸 정원, 입장/퇴장 이벤트, 메시지 릴레이, 동시 입장 경쟁을 검증합니다.
"""

import asyncio

import pytest

from modules.signaling import (
    InvalidMessageError,
    RoomFullError,
    RoomNotFoundError,
    RoomRegistry,
)

from conftest import Outbox


class YieldingOutbox(Outbox):
    """전송마다 이벤트 루프에 제어를 넘겨, 다른 join이 끼어들 수 있게 하는 send."""

    async def send(self, connection_id: str, message: dict):
        await asyncio.sleep(0)
        await super().send(connection_id, message)


@pytest.fixture
def registry(outbox):
    return RoomRegistry(send=outbox.send)


async def test_create_room_makes_caller_initiator(registry, outbox):
    room_id = await registry.create_room("conn-a")

    room = registry.get_room(room_id)
    assert room.participants == ["conn-a"]
    assert room.initiator == "conn-a"
    assert registry.get_connection_room("conn-a") == room_id
    assert len(registry) == 1
    assert outbox.types("conn-a") == []


async def test_create_returns_distinct_room_ids(registry):
    first = await registry.create_room("conn-a")
    second = await registry.create_room("conn-b")
    assert first != second
    assert len(registry) == 2


async def test_join_notifies_only_existing_participant(registry, outbox):
    room_id = await registry.create_room("conn-a")

    room = await registry.join_room(room_id, "conn-b")

    assert room.participants == ["conn-a", "conn-b"]
    assert outbox.messages["conn-a"] == [{"type": "peer-joined", "data": {"room_id": room_id}}]
    assert outbox.messages["conn-b"] == []


async def test_third_join_is_rejected_without_mutation(registry, outbox):
    room_id = await registry.create_room("conn-a")
    await registry.join_room(room_id, "conn-b")

    with pytest.raises(RoomFullError) as exc_info:
        await registry.join_room(room_id, "conn-c")

    assert exc_info.value.code == "RoomFull"
    assert exc_info.value.room_id == room_id
    assert registry.get_room(room_id).participants == ["conn-a", "conn-b"]
    assert registry.get_connection_room("conn-c") is None
    assert outbox.types("conn-a") == ["peer-joined"]


async def test_full_room_rejection_keeps_caller_in_previous_room(registry):
    full_room = await registry.create_room("conn-a")
    await registry.join_room(full_room, "conn-b")
    own_room = await registry.create_room("conn-c")

    with pytest.raises(RoomFullError):
        await registry.join_room(full_room, "conn-c")

    assert registry.get_connection_room("conn-c") == own_room
    assert registry.get_room_count(own_room) == 1


async def test_join_unknown_room(registry):
    with pytest.raises(RoomNotFoundError) as exc_info:
        await registry.join_room("missing-room", "conn-a")

    assert exc_info.value.to_dict() == {
        "code": "RoomNotFound",
        "message": "Room not found: missing-room",
        "room_id": "missing-room",
    }
    assert registry.get_connection_room("conn-a") is None


async def test_join_same_room_twice_is_idempotent(registry, outbox):
    room_id = await registry.create_room("conn-a")
    await registry.join_room(room_id, "conn-b")

    room = await registry.join_room(room_id, "conn-b")

    assert room.participants == ["conn-a", "conn-b"]
    assert outbox.types("conn-a") == ["peer-joined"]


async def test_racing_joins_for_last_slot(registry):
    room_id = await registry.create_room("conn-a")

    results = await asyncio.gather(
        registry.join_room(room_id, "conn-b"),
        registry.join_room(room_id, "conn-c"),
        return_exceptions=True,
    )

    joined = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, RoomFullError)]
    assert len(joined) == 1
    assert len(rejected) == 1
    assert registry.get_room_count(room_id) == 2


async def test_leave_notifies_remaining_participant(registry, outbox):
    room_id = await registry.create_room("conn-a")
    await registry.join_room(room_id, "conn-b")

    left_room = await registry.leave("conn-b")

    assert left_room == room_id
    assert registry.get_room(room_id).participants == ["conn-a"]
    assert outbox.messages["conn-a"][-1] == {"type": "peer-left", "data": {"room_id": room_id}}


async def test_last_leave_deletes_room(registry, outbox):
    room_id = await registry.create_room("conn-a")
    await registry.join_room(room_id, "conn-b")
    await registry.leave("conn-a")

    await registry.leave("conn-b")

    assert registry.get_room(room_id) is None
    assert len(registry) == 0
    assert registry.get_connection_room("conn-b") is None
    # 빈 룸 삭제 시에는 받을 사람이 없음
    assert outbox.types("conn-b") == ["peer-left"]


async def test_remaining_participant_becomes_initiator(registry):
    room_id = await registry.create_room("conn-a")
    await registry.join_room(room_id, "conn-b")

    await registry.leave("conn-a")
    await registry.join_room(room_id, "conn-c")

    assert registry.get_room(room_id).initiator == "conn-b"


async def test_leave_without_room_is_noop(registry, outbox):
    assert await registry.leave("conn-x") is None
    assert outbox.messages == {}


async def test_create_room_leaves_previous_room(registry, outbox):
    room_id = await registry.create_room("conn-a")
    await registry.join_room(room_id, "conn-b")

    new_room = await registry.create_room("conn-b")

    assert registry.get_connection_room("conn-b") == new_room
    assert registry.get_room(room_id).participants == ["conn-a"]
    assert outbox.types("conn-a") == ["peer-joined", "peer-left"]


async def test_relay_forwards_to_other_participant(registry, outbox):
    room_id = await registry.create_room("conn-a")
    await registry.join_room(room_id, "conn-b")

    delivered = await registry.relay("offer", room_id, {"sdp": "v=0", "type": "offer"}, "conn-a")

    assert delivered == 1
    assert outbox.messages["conn-b"] == [{
        "type": "offer",
        "data": {"sdp": "v=0", "type": "offer", "from": "conn-a"},
    }]
    assert outbox.types("conn-a") == ["peer-joined"]


async def test_relay_from_non_member_is_dropped(registry, outbox):
    room_id = await registry.create_room("conn-a")

    assert await registry.relay("candidate", room_id, {"candidate": "x"}, "conn-z") == 0
    assert await registry.relay("answer", "missing-room", {"sdp": "x"}, "conn-a") == 0
    assert outbox.types("conn-a") == []


async def test_relay_rejects_unknown_kind(registry):
    room_id = await registry.create_room("conn-a")

    with pytest.raises(InvalidMessageError):
        await registry.relay("peer-joined", room_id, {}, "conn-a")


async def test_send_failure_does_not_change_membership():
    async def broken_send(connection_id, message):
        raise ConnectionError("socket gone")

    registry = RoomRegistry(send=broken_send)
    room_id = await registry.create_room("conn-a")

    await registry.join_room(room_id, "conn-b")

    assert registry.get_room_count(room_id) == 2


async def test_room_list(registry):
    room_id = await registry.create_room("conn-a")

    rooms = registry.get_room_list()

    assert len(rooms) == 1
    assert rooms[0]["room_id"] == room_id
    assert rooms[0]["peer_count"] == 1
    assert rooms[0]["participants"] == ["conn-a"]


def assert_membership_consistent(registry):
    for connection_id, room_id in registry.connection_rooms.items():
        assert connection_id in registry.get_room(room_id).participants
    for room in registry.rooms.values():
        for connection_id in room.participants:
            assert registry.get_connection_room(connection_id) == room.room_id


async def test_racing_join_from_another_room_with_yielding_send():
    outbox = YieldingOutbox()
    registry = RoomRegistry(send=outbox.send)
    room_x = await registry.create_room("conn-c")
    await registry.join_room(room_x, "conn-d")
    room_r = await registry.create_room("conn-a")

    results = await asyncio.gather(
        registry.join_room(room_r, "conn-c"),
        registry.join_room(room_r, "conn-b"),
        return_exceptions=True,
    )

    # conn-c가 이전 룸을 떠나기 전에 자리를 먼저 확보함
    assert results[0].room_id == room_r
    assert isinstance(results[1], RoomFullError)
    assert registry.get_room(room_r).participants == ["conn-a", "conn-c"]
    assert registry.get_room(room_x).participants == ["conn-d"]
    assert outbox.types("conn-d")[-1] == "peer-left"
    assert registry.get_connection_room("conn-b") is None
    assert_membership_consistent(registry)


async def test_rejected_racing_join_keeps_previous_room():
    outbox = YieldingOutbox()
    registry = RoomRegistry(send=outbox.send)
    room_x = await registry.create_room("conn-c")
    await registry.join_room(room_x, "conn-d")
    room_r = await registry.create_room("conn-a")

    results = await asyncio.gather(
        registry.join_room(room_r, "conn-b"),
        registry.join_room(room_r, "conn-c"),
        return_exceptions=True,
    )

    assert results[0].room_id == room_r
    assert isinstance(results[1], RoomFullError)
    assert registry.get_connection_room("conn-c") == room_x
    assert registry.get_room(room_x).participants == ["conn-c", "conn-d"]
    assert "peer-left" not in outbox.types("conn-d")
    assert_membership_consistent(registry)
