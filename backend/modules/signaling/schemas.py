"""시그널링 메시지 스키마.

WebSocket으로 오가는 JSON 메시지의 형식과 메시지 타입 상수를 정의합니다.
모든 메시지는 ``{"type": ..., "data": {...}, "request_id": ...}`` 형태입니다.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

# 클라이언트 → 릴레이
CREATE_ROOM = "create-room"
JOIN_ROOM = "join-room"
LEAVE_ROOM = "leave-room"

# 릴레이 → 클라이언트
CONNECTION_ID = "connection-id"
ROOM_CREATED = "room-created"
ROOM_JOINED = "room-joined"
PEER_JOINED = "peer-joined"
PEER_LEFT = "peer-left"
ERROR = "error"

# 클라이언트 → 릴레이 → 클라이언트 (payload는 릴레이가 해석하지 않음)
OFFER = "offer"
ANSWER = "answer"
CANDIDATE = "candidate"

RELAY_KINDS = frozenset({OFFER, ANSWER, CANDIDATE})


class SignalMessage(BaseModel):
    """WebSocket 시그널링 메시지."""

    type: str
    data: Dict[str, Any] = Field(default_factory=dict)
    request_id: Optional[str] = None

    def reply(self, message_type: str, data: Optional[dict] = None) -> dict:
        """요청의 ``request_id``를 그대로 담은 응답 메시지를 만듭니다."""
        message = {"type": message_type, "data": data or {}}
        if self.request_id is not None:
            message["request_id"] = self.request_id
        return message


class JoinRoomData(BaseModel):
    """join-room 요청 데이터."""

    room_id: str = Field(min_length=1)


class RelayData(BaseModel):
    """offer/answer/candidate 요청 데이터.

    ``to``(대상 룸 ID)만 검증하고 나머지 필드는 그대로 전달합니다.
    """

    model_config = {"extra": "allow"}

    to: str = Field(min_length=1)

    def payload(self) -> dict:
        return dict(self.model_extra or {})
