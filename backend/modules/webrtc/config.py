"""WebRTC 모듈 설정.

TURN/STUN 서버, 로컬 미디어 캡처, 시그널링 클라이언트 관련 상수와
환경변수 기반 설정.
"""

import os
import logging
from pathlib import Path
from dataclasses import dataclass
from typing import List, Optional

# 환경변수 로드 (상위에서 이미 로드됨)
from dotenv import load_dotenv
from aiortc import RTCConfiguration, RTCIceServer

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)


# ============================================================
# ICE Server 설정
# ============================================================

@dataclass(frozen=True)
class ICEServerConfig:
    """ICE 서버 설정."""

    # TURN 서버
    TURN_SERVER_URL: Optional[str] = os.getenv("TURN_SERVER_URL")
    TURN_USERNAME: Optional[str] = os.getenv("TURN_USERNAME")
    TURN_CREDENTIAL: Optional[str] = os.getenv("TURN_CREDENTIAL")

    # STUN 서버
    STUN_SERVER_URL: Optional[str] = os.getenv("STUN_SERVER_URL")

    # 기본 공개 STUN 서버 (fallback)
    DEFAULT_STUN_SERVERS: tuple = (
        "stun:stun.l.google.com:19302",
        "stun:stun1.l.google.com:19302",
    )

    @property
    def has_turn_server(self) -> bool:
        """TURN 서버 설정 완료 여부."""
        return all([self.TURN_SERVER_URL, self.TURN_USERNAME, self.TURN_CREDENTIAL])

    def ice_servers_as_dicts(self) -> List[dict]:
        """브라우저/클라이언트에 내려줄 iceServers 형식의 리스트."""
        ice_servers = []
        if self.STUN_SERVER_URL:
            ice_servers.append({"urls": self.STUN_SERVER_URL})
        for stun_url in self.DEFAULT_STUN_SERVERS:
            ice_servers.append({"urls": stun_url})
        if self.has_turn_server:
            ice_servers.append({
                "urls": self.TURN_SERVER_URL,
                "username": self.TURN_USERNAME,
                "credential": self.TURN_CREDENTIAL,
            })
        return ice_servers

    def build_rtc_configuration(self) -> RTCConfiguration:
        """aiortc RTCPeerConnection에 넘길 RTCConfiguration을 만듭니다."""
        ice_servers = [
            RTCIceServer(
                urls=[server["urls"]],
                username=server.get("username"),
                credential=server.get("credential"),
            )
            for server in self.ice_servers_as_dicts()
        ]
        return RTCConfiguration(iceServers=ice_servers)


# ============================================================
# 로컬 미디어 캡처 설정
# ============================================================

@dataclass(frozen=True)
class MediaConfig:
    """로컬 오디오/비디오 캡처 설정."""

    # synthetic: aiortc 기본 트랙 (무음 + 검은 화면), device: 실제 장치 캡처
    MEDIA_SOURCE: str = os.getenv("MEDIA_SOURCE", "synthetic")

    # 장치 캡처 설정 (ffmpeg 입력 형식)
    VIDEO_DEVICE: str = os.getenv("VIDEO_DEVICE", "/dev/video0")
    AUDIO_DEVICE: Optional[str] = os.getenv("AUDIO_DEVICE")
    VIDEO_FORMAT: str = os.getenv("VIDEO_FORMAT", "v4l2")
    AUDIO_FORMAT: str = os.getenv("AUDIO_FORMAT", "pulse")
    VIDEO_SIZE: str = os.getenv("VIDEO_SIZE", "640x480")
    FRAMERATE: str = os.getenv("FRAMERATE", "30")


# ============================================================
# 시그널링 클라이언트 설정
# ============================================================

@dataclass(frozen=True)
class ClientConfig:
    """시그널링 서버 접속 설정."""

    SIGNALING_URL: str = os.getenv("SIGNALING_URL", "ws://localhost:8000/ws")

    # create-room / join-room 응답 대기 시간 (초)
    REQUEST_TIMEOUT: float = float(os.getenv("REQUEST_TIMEOUT", "10.0"))


# ============================================================
# 싱글톤 인스턴스
# ============================================================

ice_config = ICEServerConfig()
media_config = MediaConfig()
client_config = ClientConfig()


# ============================================================
# 설정 로드 확인 로그
# ============================================================

logger.info(f"[WebRTC Config] .env 경로: {_env_path} (존재: {_env_path.exists()})")
logger.info(f"[WebRTC Config] TURN 서버 설정 완료: {ice_config.has_turn_server}")
if ice_config.STUN_SERVER_URL:
    logger.info(f"[WebRTC Config] STUN URL: {ice_config.STUN_SERVER_URL}")
else:
    logger.info(f"[WebRTC Config] STUN URL: 기본 Google STUN 사용")
logger.info(f"[WebRTC Config] 미디어 소스: {media_config.MEDIA_SOURCE}")
