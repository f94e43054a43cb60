"""Health Check API 라우터.

서비스 상태 확인을 위한 엔드포인트를 제공합니다.
"""

from fastapi import APIRouter

from .signaling import get_connection_count, get_registry

router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("")
async def health_check():
    """릴레이 서버 상태를 확인합니다.

    Returns:
        dict: 서버 상태와 활성 룸/연결 수
    """
    registry = get_registry()
    if registry is None:
        return {"status": "error", "message": "Registry not initialized"}

    return {
        "status": "ok",
        "rooms": len(registry),
        "connections": get_connection_count(),
    }
