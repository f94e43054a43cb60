"""WebRTC 시그널링 WebSocket 라우터.

1:1 통화를 위한 WebSocket 엔드포인트를 제공합니다.
룸 생성/입장/퇴장과 offer/answer/candidate 릴레이를 담당하며,
WebSocket 연결 하나가 연결 ID 하나에 대응합니다.
"""

import json
import logging
import uuid
from typing import Dict, Optional, TYPE_CHECKING

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from modules.signaling.errors import InvalidMessageError, SignalingError
from modules.signaling.schemas import (
    CONNECTION_ID,
    CREATE_ROOM,
    ERROR,
    JOIN_ROOM,
    LEAVE_ROOM,
    RELAY_KINDS,
    ROOM_CREATED,
    ROOM_JOINED,
    JoinRoomData,
    RelayData,
    SignalMessage,
)

if TYPE_CHECKING:
    from modules import RoomRegistry

logger = logging.getLogger(__name__)

router = APIRouter()

# 글로벌 레지스트리 참조 (app.py에서 설정됨)
_registry: Optional["RoomRegistry"] = None

# connection_id -> WebSocket
_connections: Dict[str, WebSocket] = {}


def init_registry(registry: "RoomRegistry"):
    """룸 레지스트리 인스턴스를 초기화합니다.

    app.py에서 호출하여 글로벌 레지스트리 참조를 설정하고, 레지스트리가
    이벤트를 보낼 때 사용할 전송 콜백을 연결합니다.

    Args:
        registry: RoomRegistry 인스턴스
    """
    global _registry
    _registry = registry
    registry.send = send_to_connection
    logger.info("시그널링 라우터 레지스트리 초기화 완료")


def get_registry() -> Optional["RoomRegistry"]:
    """현재 룸 레지스트리를 반환합니다."""
    return _registry


def get_connection_count() -> int:
    return len(_connections)


async def send_to_connection(connection_id: str, message: dict):
    """연결 ID로 WebSocket 메시지를 보냅니다.

    Raises:
        ConnectionError: 이미 끊어진 연결일 때
    """
    websocket = _connections.get(connection_id)
    if websocket is None:
        raise ConnectionError(f"Unknown connection: {connection_id}")
    await websocket.send_json(message)


async def close_all_connections():
    """서버 종료 시 모든 WebSocket 연결을 닫습니다."""
    for connection_id, websocket in list(_connections.items()):
        try:
            await websocket.close(code=1001, reason="Server shutting down")
        except Exception as e:
            logger.warning(f"연결 {connection_id[:8]} 종료 중 오류: {e}")
    _connections.clear()


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """1:1 통화 시그널링을 위한 WebSocket 엔드포인트.

    처리하는 메시지 타입:
        - create-room: 새 룸 생성 (응답: room-created)
        - join-room: 기존 룸 입장 (응답: room-joined 또는 error)
        - leave-room: 현재 룸에서 퇴장
        - offer / answer / candidate: 같은 룸의 상대방에게 릴레이

    연결이 끊기면 자동으로 leave 처리되어 남은 참가자에게 peer-left가 전달됩니다.

    Args:
        websocket: FastAPI WebSocket 연결 객체
    """
    if _registry is None:
        logger.error("레지스트리가 초기화되지 않음")
        await websocket.close(code=1011, reason="Server not ready")
        return

    await websocket.accept()

    connection_id = str(uuid.uuid4())
    _connections[connection_id] = websocket
    logger.info(f"연결 {connection_id[:8]} 수락")

    # 클라이언트에 connection ID 전송
    await websocket.send_json({
        "type": CONNECTION_ID,
        "data": {"connection_id": connection_id}
    })

    try:
        while True:
            text = await websocket.receive_text()
            await _handle_message(websocket, connection_id, text)

    except WebSocketDisconnect:
        logger.info(f"연결 {connection_id[:8]} 끊김")
    except Exception as e:
        logger.error(f"연결 {connection_id[:8]}의 WebSocket 처리 중 오류: {e}")
    finally:
        _connections.pop(connection_id, None)
        await _registry.leave(connection_id)
        logger.info(f"연결 {connection_id[:8]} 정리 완료")


async def _handle_message(websocket: WebSocket, connection_id: str, text: str):
    """수신한 메시지 하나를 처리합니다. 요청 단위 오류는 error 응답으로 돌려줍니다."""
    try:
        message = SignalMessage.model_validate_json(text)
    except (ValidationError, json.JSONDecodeError) as e:
        logger.warning(f"연결 {connection_id[:8]}의 잘못된 메시지: {e}")
        await websocket.send_json({
            "type": ERROR,
            "data": InvalidMessageError("Malformed signaling message").to_dict()
        })
        return

    try:
        if message.type == CREATE_ROOM:
            room_id = await _registry.create_room(connection_id)
            await websocket.send_json(message.reply(ROOM_CREATED, {"room_id": room_id}))

        elif message.type == JOIN_ROOM:
            join_data = JoinRoomData.model_validate(message.data)
            room = await _registry.join_room(join_data.room_id, connection_id)
            await websocket.send_json(message.reply(ROOM_JOINED, {
                "room_id": room.room_id,
                "peer_count": len(room.participants),
            }))

        elif message.type == LEAVE_ROOM:
            await _registry.leave(connection_id)

        elif message.type in RELAY_KINDS:
            relay_data = RelayData.model_validate(message.data)
            await _registry.relay(message.type, relay_data.to, relay_data.payload(), connection_id)

        else:
            raise InvalidMessageError(f"Unknown message type: {message.type}")

    except ValidationError as e:
        logger.warning(f"연결 {connection_id[:8]}의 {message.type} 데이터 오류: {e}")
        await websocket.send_json(message.reply(
            ERROR, InvalidMessageError(f"Invalid data for {message.type}").to_dict()
        ))
    except SignalingError as e:
        logger.info(f"연결 {connection_id[:8]}의 {message.type} 거부: {e.code}")
        await websocket.send_json(message.reply(ERROR, e.to_dict()))
