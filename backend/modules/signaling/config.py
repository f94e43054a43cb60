"""시그널링 릴레이 설정.

룸 정원, 서버 바인딩, CORS 등 릴레이 서버 관련 상수와 환경변수 기반 설정.
"""

import os
import logging
from pathlib import Path
from dataclasses import dataclass

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)


# ============================================================
# 릴레이 서버 설정
# ============================================================

@dataclass(frozen=True)
class RelayConfig:
    """시그널링 릴레이 설정."""

    # 룸 정원 (1:1 통화 전용)
    MAX_PARTICIPANTS: int = 2

    # 서버 바인딩
    HOST: str = os.getenv("RELAY_HOST", "0.0.0.0")
    PORT: int = int(os.getenv("RELAY_PORT", "8000"))

    # CORS 허용 origin (로컬 개발 환경 기본값)
    ALLOWED_ORIGIN_REGEX: str = os.getenv(
        "ALLOWED_ORIGIN_REGEX",
        r"^http://(localhost|127\.0\.0\.1)(:\d+)?$",
    )


relay_config = RelayConfig()

logger.info(f"[Signaling Config] .env 경로: {_env_path} (존재: {_env_path.exists()})")
logger.info(f"[Signaling Config] 룸 정원: {relay_config.MAX_PARTICIPANTS}명")
