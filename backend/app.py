"""FastAPI 1:1 WebRTC 시그널링 릴레이 서버.

이 모듈은 두 참가자 간 peer-to-peer 영상/음성 통화를 위한
시그널링 서버를 제공합니다. 미디어는 서버를 거치지 않으며,
서버는 룸 관리와 협상 메시지 전달만 담당합니다.

주요 기능:
    - 최대 2명 정원의 룸 생성/입장/퇴장
    - WebRTC offer/answer, ICE candidate 릴레이
    - 참가자 입/퇴장 알림 (peer-joined / peer-left)
    - STUN/TURN 서버 목록 제공
    - CORS 설정을 통한 크로스 오리진 요청 지원

Architecture:
    - P2P (mesh) 패턴: 미디어는 두 클라이언트가 직접 주고받음
    - RoomRegistry: 룸 및 참가자 상태 관리, 이벤트 전송
    - WebSocket: 실시간 시그널링 메시지 전송
"""
import logging
from contextlib import asynccontextmanager
import os
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from modules import RoomRegistry
from modules.signaling import relay_config
from modules.webrtc.config import ice_config
from routes import (
    health_router, signaling_router, init_signaling_registry, close_all_connections
)
from dotenv import load_dotenv
from pathlib import Path

# 환경변수 로드 (config/.env)
load_dotenv(Path(__file__).parent / "config" / ".env")


# 로그 설정
os.makedirs("logs", exist_ok=True)
log_filename = f"logs/server_{__import__('datetime').datetime.now().strftime('%Y%m%d')}.log"

# 환경별 로그 레벨 설정 (환경변수로 제어)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
ENV = os.getenv("ENV", "development")

# 로그 보관 기간 (일) - 기본 60일
LOG_RETENTION_DAYS = int(os.getenv("LOG_RETENTION_DAYS", "60"))


def cleanup_old_logs(log_dir: str = "logs", retention_days: int = LOG_RETENTION_DAYS) -> int:
    """오래된 로그 파일을 삭제합니다.

    Args:
        log_dir: 로그 디렉토리 경로
        retention_days: 보관 기간 (일)

    Returns:
        삭제된 파일 수
    """
    import glob
    from datetime import datetime, timedelta

    if not os.path.exists(log_dir):
        return 0

    cutoff_date = datetime.now() - timedelta(days=retention_days)
    deleted_count = 0

    # server_YYYYMMDD.log, client_YYYYMMDD.log
    log_patterns = [
        (os.path.join(log_dir, "server_*.log"), "server_", ".log"),
        (os.path.join(log_dir, "client_*.log"), "client_", ".log"),
    ]

    for log_pattern, prefix, suffix in log_patterns:
        for log_file in glob.glob(log_pattern):
            try:
                filename = os.path.basename(log_file)
                date_str = filename.replace(prefix, "").replace(suffix, "")
                file_date = datetime.strptime(date_str, "%Y%m%d")

                if file_date < cutoff_date:
                    os.remove(log_file)
                    deleted_count += 1
            except (ValueError, OSError):
                continue

    return deleted_count

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.StreamHandler(),  # 콘솔 출력
        logging.FileHandler(log_filename, encoding="utf-8"),  # 파일 저장
    ]
)
logger = logging.getLogger(__name__)
logger.info(f"로깅 초기화 완료: level={LOG_LEVEL}, env={ENV}")


# 글로벌 레지스트리 인스턴스
registry = RoomRegistry(max_participants=relay_config.MAX_PARTICIPANTS)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI 앱의 생명주기를 관리하는 컨텍스트 매니저.

    서버 시작 시 오래된 로그를 정리하고, 종료 시 남은 WebSocket 연결을 닫습니다.

    Args:
        app (FastAPI): FastAPI 애플리케이션 인스턴스

    Yields:
        None: 앱이 실행되는 동안 제어를 반환
    """
    logger.info("WebRTC 시그널링 릴레이 시작 중...")

    deleted_logs = cleanup_old_logs()
    if deleted_logs > 0:
        logger.info(f"오래된 로그 파일 {deleted_logs}개 정리 완료 ({LOG_RETENTION_DAYS}일 이상)")

    yield

    logger.info("서버 종료 중...")
    await close_all_connections()
    logger.info(f"종료 시점 활성 룸: {len(registry)}개")


app = FastAPI(title="WebRTC 1:1 Signaling Relay", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=relay_config.ALLOWED_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 라우터 등록
app.include_router(health_router)
app.include_router(signaling_router)

# WebSocket 시그널링 라우터에 레지스트리 전달
init_signaling_registry(registry)


@app.get("/")
async def root():
    """서버 상태 확인 엔드포인트.

    Returns:
        dict: 서버 상태 정보
            - status (str): 서버 상태
            - service (str): 서비스 이름

    Examples:
        >>> response = await root()
        >>> print(response)
        {"status": "ok", "service": "WebRTC 1:1 Signaling Relay"}
    """
    return {"status": "ok", "service": "WebRTC 1:1 Signaling Relay"}


@app.get("/api/rooms")
async def get_rooms_api():
    """활성화된 모든 룸의 목록을 조회합니다.

    Returns:
        dict: 룸 목록 (room_id, 참가자 수, 생성 시각)
    """
    return {"rooms": registry.get_room_list()}


@app.get("/api/ice-servers")
async def get_ice_servers():
    """클라이언트가 RTCPeerConnection에 사용할 ICE 서버 목록을 제공합니다.

    TURN 자격 증명은 서버 환경변수에서만 관리되고, 이 엔드포인트를 통해
    클라이언트에 전달됩니다.

    Returns:
        list: iceServers 형식의 STUN/TURN 서버 목록

    Environment Variables:
        TURN_SERVER_URL, TURN_USERNAME, TURN_CREDENTIAL: TURN 서버 (선택)
        STUN_SERVER_URL: 커스텀 STUN 서버 (선택)
    """
    ice_servers = ice_config.ice_servers_as_dicts()
    if ice_config.has_turn_server:
        logger.info("ICE 서버 제공: STUN + TURN")
    else:
        logger.info("ICE 서버 제공: STUN만 (TURN 미설정)")
    return ice_servers


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=relay_config.HOST, port=relay_config.PORT, log_level="info")
