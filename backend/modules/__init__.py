"""Backend modules package.

이 패키지는 1:1 P2P 영상 통화 시스템의 핵심 모듈을 포함합니다.

Modules:
    signaling: 룸 레지스트리 및 협상 메시지 릴레이 (서버 측)
    webrtc: 피어 세션 협상 상태 머신 및 로컬 미디어 (클라이언트 측)
    client: 시그널링 클라이언트 및 통화 컨트롤러 (클라이언트 측)
"""

from .signaling import RoomRegistry, Room, SignalingError, RoomNotFoundError, RoomFullError
from .webrtc import PeerSession, CandidateBuffer, LocalMediaStream
from .client import SignalingClient, CallController

__all__ = [
    # Signaling
    "RoomRegistry",
    "Room",
    "SignalingError",
    "RoomNotFoundError",
    "RoomFullError",
    # WebRTC
    "PeerSession",
    "CandidateBuffer",
    "LocalMediaStream",
    # Client
    "SignalingClient",
    "CallController",
]
