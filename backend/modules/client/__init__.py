"""통화 클라이언트 모듈.

시그널링 서버 접속과 통화 컨트롤러를 제공합니다.

Classes:
    SignalingClient: 릴레이 서버 WebSocket 클라이언트
    CallController: 시그널링 메시지를 PeerSession 연산으로 연결
"""

from .signaling_client import SignalingClient
from .call import CallController

__all__ = [
    "SignalingClient",
    "CallController",
]
