"""시그널링 릴레이 모듈.

1:1 통화 룸 관리와 협상 메시지 릴레이 기능을 제공합니다.

Classes:
    RoomRegistry: 룸 생성/입장/퇴장 및 메시지 릴레이
    Room: 룸 데이터 클래스
    SignalMessage: WebSocket 시그널링 메시지 스키마

Config:
    relay_config: 릴레이 서버 설정
"""

from .room_registry import RoomRegistry, Room
from .schemas import SignalMessage
from .errors import (
    SignalingError,
    RoomNotFoundError,
    RoomFullError,
    InvalidMessageError,
)
from .config import relay_config, RelayConfig

__all__ = [
    # Classes
    "RoomRegistry",
    "Room",
    "SignalMessage",
    # Errors
    "SignalingError",
    "RoomNotFoundError",
    "RoomFullError",
    "InvalidMessageError",
    # Config
    "relay_config",
    "RelayConfig",
]
