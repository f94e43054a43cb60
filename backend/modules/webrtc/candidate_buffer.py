"""원격 ICE candidate 버퍼.

remote description이 설정되기 전에 도착한 candidate를 도착 순서대로
보관했다가, description 적용 직후 한 번만 꺼내 적용합니다.
"""

import logging
from collections import deque
from typing import Awaitable, Callable, Deque

logger = logging.getLogger(__name__)


class CandidateBuffer:
    """아직 적용할 수 없는 원격 candidate의 FIFO 버퍼.

    Note:
        - drain()은 버퍼를 비운 뒤 꺼낸 항목을 순서대로 적용함
        - 이미 비워진 버퍼를 다시 drain()해도 아무 일도 하지 않음 (에러 아님)
        - 꺼낸 항목은 다시 재생되지 않음
    """

    def __init__(self):
        self._items: Deque[dict] = deque()

    def append(self, candidate: dict) -> None:
        self._items.append(candidate)

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    async def drain(self, apply: Callable[[dict], Awaitable[None]]) -> int:
        """버퍼의 모든 candidate를 도착 순서대로 적용합니다.

        항목을 먼저 버퍼에서 떼어낸 뒤 적용하므로, 적용 중 실패가 나도
        같은 candidate가 다시 적용되지 않습니다. 개별 실패는 로그만 남기고
        나머지를 계속 적용합니다.

        Args:
            apply: candidate 하나를 적용하는 비동기 함수

        Returns:
            int: 꺼낸 candidate 수
        """
        items = list(self._items)
        self._items.clear()
        for candidate in items:
            try:
                await apply(candidate)
            except Exception as e:
                logger.warning(f"[WebRTC] 버퍼된 candidate 적용 실패: {e}")
        if items:
            logger.info(f"[WebRTC] 버퍼된 candidate {len(items)}개 적용")
        return len(items)
