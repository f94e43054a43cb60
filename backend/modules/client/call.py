"""1:1 통화 컨트롤러 모듈.

시그널링 클라이언트와 PeerSession을 연결하는 호출자(컨트롤러) 역할을 합니다.
룸을 만든 쪽은 initiator, 입장한 쪽은 joiner 세션을 만들고, 릴레이가 전달한
메시지를 세션 연산으로 바꿔 호출합니다.

Workflow:
    initiator: 로컬 캡처 → create-room → (peer-joined) → offer → (answer)
    joiner:    로컬 캡처 → join-room → (offer) → answer

Note:
    - 수신 메시지는 inbox 큐에 넣고 워커 태스크 하나가 도착 순서대로 처리하므로
      시그널링 수신 루프는 협상 작업 때문에 막히지 않음
    - peer-left 수신 시 현재 세션을 닫고, 남은 참가자(이제 룸의 첫 참가자)로서
      새 initiator 세션을 준비함
    - 연결 영구 실패나 협상 실패는 상태 콜백으로 알린 뒤 통화를 종료함
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

from aiortc import MediaStreamTrack

from .signaling_client import DISCONNECTED, SignalingClient
from ..signaling.schemas import ANSWER, CANDIDATE, OFFER, PEER_JOINED, PEER_LEFT
from ..webrtc.errors import (
    ConnectivityFailedError,
    MediaAccessDeniedError,
    NegotiationError,
    PeerSessionError,
)
from ..webrtc.peer_session import ConnectionStatus, PeerSession, Role

logger = logging.getLogger(__name__)

# 세션 실패를 워커에 알리는 내부 이벤트
SESSION_FAILED = "session-failed"

INBOX_EVENTS = (PEER_JOINED, PEER_LEFT, OFFER, ANSWER, CANDIDATE, DISCONNECTED)


class CallController:
    """시그널링 메시지와 피어 세션을 연결하는 통화 컨트롤러.

    Attributes:
        signaling (SignalingClient): 릴레이 서버 클라이언트
        session (Optional[PeerSession]): 현재 통화 시도의 세션
        room_id (Optional[str]): 참가 중인 룸 ID
        ended (asyncio.Event): 통화 종료 시 set

    Args:
        signaling: 접속이 완료된 SignalingClient
        session_factory: ``(role, send_signal) -> PeerSession`` (테스트에서 교체)
        on_status: ``(status, error)`` 연결 상태 콜백 (UI 갱신용)
        on_remote_track: 원격 트랙 수신 콜백 (렌더링/녹화용)
    """

    def __init__(
        self,
        signaling: SignalingClient,
        session_factory: Callable[..., PeerSession] = PeerSession,
        on_status: Optional[Callable[[ConnectionStatus, Optional[PeerSessionError]], Any]] = None,
        on_remote_track: Optional[Callable[[MediaStreamTrack], Any]] = None,
    ):
        self.signaling = signaling
        self.session_factory = session_factory
        self.on_status = on_status
        self.on_remote_track = on_remote_track

        self.session: Optional[PeerSession] = None
        self.room_id: Optional[str] = None
        self.ended = asyncio.Event()

        self._inbox: asyncio.Queue = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None

        for event in INBOX_EVENTS:
            self.signaling.on(event, self._enqueue_handler(event))

    def _enqueue_handler(self, event: str):
        def handler(data: dict) -> None:
            self._inbox.put_nowait((event, data))
        return handler

    async def create(self) -> str:
        """로컬 캡처를 획득한 뒤 룸을 만들고 initiator로 상대를 기다립니다.

        Returns:
            str: 상대방에게 공유할 룸 ID

        Raises:
            MediaAccessDeniedError: 로컬 캡처 실패 (룸은 만들지 않음)
        """
        await self._start_session(Role.INITIATOR)
        self.room_id = await self.signaling.create_room()
        self._start_worker()
        return self.room_id

    async def join(self, room_id: str) -> None:
        """로컬 캡처를 획득한 뒤 룸에 joiner로 입장합니다.

        Raises:
            MediaAccessDeniedError: 로컬 캡처 실패
            RoomNotFoundError / RoomFullError: 입장 거부 (세션은 닫힘)
        """
        session = await self._start_session(Role.JOINER)
        session.begin_as_joiner()
        try:
            await self.signaling.join_room(room_id)
        except Exception:
            await session.close()
            self.session = None
            raise
        self.room_id = room_id
        self._start_worker()

    async def hang_up(self) -> None:
        """통화를 끝내고 세션, 룸 참가, 시그널링 연결을 정리합니다."""
        if self.ended.is_set():
            return
        self.ended.set()

        if self.session is not None:
            await self.session.close()
        try:
            await self.signaling.leave_room()
        except Exception as e:
            logger.warning(f"[Client] leave-room 전송 실패: {e}")
        await self.signaling.close()

        if self._worker is not None and self._worker is not asyncio.current_task():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        logger.info("[Client] 통화 종료")

    async def _start_session(self, role: Role) -> PeerSession:
        session = self.session_factory(role, self._send_signal)
        session.on_connection_state_changed(self._session_status_handler(session))
        if self.on_remote_track is not None:
            session.on_remote_track(self.on_remote_track)
        self.session = session
        try:
            await session.initialize_local_capture()
        except Exception:
            await session.close()
            self.session = None
            raise
        return session

    def _session_status_handler(self, session: PeerSession):
        async def handler(status: ConnectionStatus, error: Optional[PeerSessionError]) -> None:
            if session is not self.session:
                return
            if self.on_status is not None:
                result = self.on_status(status, error)
                if inspect.isawaitable(result):
                    await result
            if isinstance(error, (ConnectivityFailedError, NegotiationError)):
                self._inbox.put_nowait((SESSION_FAILED, {"error": str(error)}))
        return handler

    async def _send_signal(self, kind: str, payload: dict) -> None:
        if self.room_id is None:
            logger.warning(f"[Client] 룸 없음, {kind} 전송 생략")
            return
        await self.signaling.send_signal(kind, self.room_id, payload)

    def _start_worker(self) -> None:
        if self._worker is None:
            self._worker = asyncio.create_task(self._run())

    async def _run(self) -> None:
        while not self.ended.is_set():
            event, data = await self._inbox.get()
            try:
                await self._handle(event, data)
            except MediaAccessDeniedError as e:
                logger.error(f"[Client] 로컬 캡처 실패로 통화 종료: {e}")
                await self.hang_up()
            except Exception as e:
                logger.error(f"[Client] {event} 처리 오류: {e}", exc_info=True)

    async def _handle(self, event: str, data: dict) -> None:
        session = self.session

        if event == PEER_JOINED:
            logger.info("[Client] 상대방 입장, offer 시작")
            if session is None or session.closed:
                session = await self._restart_as_initiator()
            await session.begin_as_initiator()

        elif event == PEER_LEFT:
            logger.info("[Client] 상대방 퇴장, 새 참가자 대기")
            await self._restart_as_initiator()

        elif event == OFFER and session is not None:
            await session.on_offer(data)

        elif event == ANSWER and session is not None:
            await session.on_answer(data)

        elif event == CANDIDATE and session is not None:
            await session.on_candidate(data)

        elif event == SESSION_FAILED:
            logger.error(f"[Client] 세션 실패로 통화 종료: {data.get('error')}")
            await self.hang_up()

        elif event == DISCONNECTED:
            logger.info("[Client] 시그널링 연결이 끊겨 통화 종료")
            await self.hang_up()

    async def _restart_as_initiator(self) -> PeerSession:
        if self.session is not None:
            await self.session.close()
        return await self._start_session(Role.INITIATOR)
