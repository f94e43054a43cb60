"""WebRTC 모듈.

클라이언트 측 피어 세션(협상 상태 머신), 로컬 미디어 캡처, ICE candidate
버퍼 기능을 제공합니다.

Classes:
    PeerSession: offer/answer 협상 및 연결 상태 관리
    CandidateBuffer: remote description 이전에 도착한 candidate 버퍼
    LocalMediaStream: 로컬 캡처 트랙 묶음

Config:
    ice_config: ICE 서버 설정
    media_config: 로컬 미디어 캡처 설정
    client_config: 시그널링 클라이언트 설정
"""

from .candidate_buffer import CandidateBuffer
from .media import LocalMediaStream, acquire_local_media
from .peer_session import (
    PeerSession,
    Role,
    SignalingStatus,
    ConnectionStatus,
)
from .errors import (
    PeerSessionError,
    MediaAccessDeniedError,
    StaleNegotiationMessage,
    ConnectivityFailedError,
    NegotiationError,
    SessionClosedError,
)
from .config import (
    ice_config,
    media_config,
    client_config,
    ICEServerConfig,
    MediaConfig,
    ClientConfig,
)

__all__ = [
    # Classes
    "PeerSession",
    "Role",
    "SignalingStatus",
    "ConnectionStatus",
    "CandidateBuffer",
    "LocalMediaStream",
    "acquire_local_media",
    # Errors
    "PeerSessionError",
    "MediaAccessDeniedError",
    "StaleNegotiationMessage",
    "ConnectivityFailedError",
    "NegotiationError",
    "SessionClosedError",
    # Config
    "ice_config",
    "media_config",
    "client_config",
    "ICEServerConfig",
    "MediaConfig",
    "ClientConfig",
]
