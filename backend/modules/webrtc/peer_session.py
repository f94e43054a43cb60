"""1:1 통화 피어 세션 모듈.

이 모듈은 클라이언트 측 WebRTC 협상 상태 머신을 구현합니다. 통화 시도 하나당
PeerSession 하나가 RTCPeerConnection 하나를 소유하며, 역할(initiator/joiner)에
맞는 offer/answer 순서를 진행하고, remote description보다 먼저 도착한 ICE
candidate를 버퍼링합니다.

State Machine:
    idle → local-stream-ready → negotiating → connected → closed

    - initiator: negotiating = offer 전송 후 answer 대기
    - joiner: negotiating = offer 대기
    - 어느 상태에서든 close() 또는 ICE 영구 실패 시 closed (재사용 불가)

Concurrency:
    - 연결 객체 변경(description 적용, candidate 추가)은 세션 락으로 직렬화
    - close()는 await 이전에 세션을 닫힘으로 표시하고 로컬 트랙을 정지
    - close 이후 완료된 협상 단계의 결과는 적용하지 않고 버림

Error Delivery:
    - MediaAccessDeniedError: initialize_local_capture()에서 raise
    - StaleNegotiationMessage: 로그만 남기고 무시
    - ConnectivityFailedError / NegotiationError: 연결 상태 콜백으로 전달

Examples:
    >>> session = PeerSession(Role.INITIATOR, send_signal=send)
    >>> session.on_connection_state_changed(lambda status, error: print(status))
    >>> await session.initialize_local_capture()
    >>> await session.begin_as_initiator()   # peer-joined 수신 시
    >>> await session.on_answer({"sdp": "...", "type": "answer"})
    >>> await session.close()

See Also:
    modules/client/call.py: 세션을 생성하고 시그널링 메시지를 연결하는 컨트롤러
    aiortc Documentation: https://aiortc.readthedocs.io/
"""
import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from aiortc import MediaStreamTrack, RTCPeerConnection, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from .candidate_buffer import CandidateBuffer
from .config import ice_config
from .errors import (
    ConnectivityFailedError,
    MediaAccessDeniedError,
    NegotiationError,
    PeerSessionError,
    SessionClosedError,
    StaleNegotiationMessage,
)
from .media import LocalMediaStream, acquire_local_media

logger = logging.getLogger(__name__)


class Role(str, Enum):
    INITIATOR = "initiator"
    JOINER = "joiner"


class SignalingStatus(str, Enum):
    IDLE = "idle"
    LOCAL_STREAM_READY = "local-stream-ready"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    CLOSED = "closed"


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


# (kind, payload) -> None
SignalSender = Callable[[str, dict], Awaitable[None]]
# (status, error) -> None | Awaitable
StateCallback = Callable[[ConnectionStatus, Optional[PeerSessionError]], Any]
TrackCallback = Callable[[MediaStreamTrack], Any]


def default_connection_factory() -> RTCPeerConnection:
    return RTCPeerConnection(configuration=ice_config.build_rtc_configuration())


def candidate_to_dict(candidate) -> dict:
    """aiortc RTCIceCandidate를 브라우저 RTCIceCandidateInit 형식으로 변환합니다."""
    return {
        "candidate": "candidate:" + candidate_to_sdp(candidate),
        "sdpMid": candidate.sdpMid,
        "sdpMLineIndex": candidate.sdpMLineIndex,
    }


def candidate_from_dict(payload: dict):
    """RTCIceCandidateInit 형식의 dict를 aiortc RTCIceCandidate로 변환합니다."""
    candidate_str = payload.get("candidate", "")
    if candidate_str.startswith("candidate:"):
        candidate_str = candidate_str[10:]

    ice_candidate = candidate_from_sdp(candidate_str)
    ice_candidate.sdpMid = payload.get("sdpMid")
    ice_candidate.sdpMLineIndex = payload.get("sdpMLineIndex")
    return ice_candidate


async def _invoke(callback, *args) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class PeerSession:
    """통화 시도 하나의 협상 상태 머신.

    Attributes:
        role (Role): initiator(먼저 입장, offer 전송) 또는 joiner(answer 전송)
        pc (RTCPeerConnection): 세션이 단독으로 소유하는 피어 연결
        local_stream (Optional[LocalMediaStream]): 로컬 캡처 트랙 (세션당 한 번 생성)
        remote_tracks (List[MediaStreamTrack]): 상대방에게서 수신한 트랙
        candidate_buffer (CandidateBuffer): 아직 적용할 수 없는 원격 candidate
        signaling_status (SignalingStatus): 협상 상태
        connection_status (ConnectionStatus): 미디어 연결 상태

    Args:
        role: 세션 역할
        send_signal: offer/answer/candidate를 릴레이로 보내는 비동기 함수
        connection_factory: RTCPeerConnection 생성 함수 (테스트에서 교체)
        media_factory: LocalMediaStream을 반환하는 비동기 함수 (테스트에서 교체)
    """

    def __init__(
        self,
        role: Role,
        send_signal: SignalSender,
        connection_factory: Callable[[], RTCPeerConnection] = default_connection_factory,
        media_factory: Callable[[], Awaitable[LocalMediaStream]] = acquire_local_media,
    ):
        self.role = Role(role)
        self.send_signal = send_signal
        self.media_factory = media_factory

        self.pc = connection_factory()
        self.local_stream: Optional[LocalMediaStream] = None
        self.remote_tracks: List[MediaStreamTrack] = []
        self.candidate_buffer = CandidateBuffer()

        self.signaling_status = SignalingStatus.IDLE
        self.connection_status = ConnectionStatus.DISCONNECTED

        self._state_callbacks: List[StateCallback] = []
        self._track_callbacks: List[TrackCallback] = []
        self._lock = asyncio.Lock()
        self._closed = False

        self._register_handlers()

    @property
    def closed(self) -> bool:
        return self._closed

    def on_connection_state_changed(self, callback: StateCallback) -> None:
        """연결 상태 변경 콜백을 등록합니다.

        콜백은 ``(status, error)``로 호출되며, 비동기 협상 중 발생한 오류
        (ConnectivityFailedError, NegotiationError)도 이 경로로 전달됩니다.
        """
        self._state_callbacks.append(callback)

    def on_remote_track(self, callback: TrackCallback) -> None:
        """원격 미디어 트랙 수신 콜백을 등록합니다."""
        self._track_callbacks.append(callback)

    def _register_handlers(self) -> None:
        pc = self.pc

        # aiortc는 후보를 SDP에 포함하므로 이 이벤트를 발생시키지 않음 (trickle 구현 호환용)
        @pc.on("icecandidate")
        async def on_ice_candidate(candidate):
            # trickle: 협상 상태와 무관하게 즉시 릴레이
            if candidate is None or self._closed:
                return
            await self._emit_signal("candidate", candidate_to_dict(candidate))

        @pc.on("connectionstatechange")
        async def on_connection_state_change():
            await self._handle_link_state(pc.connectionState)

        @pc.on("iceconnectionstatechange")
        async def on_ice_connection_state_change():
            logger.info(f"[WebRTC] {self.role.value} ICE 상태: {pc.iceConnectionState}")

        @pc.on("track")
        async def on_track(track: MediaStreamTrack):
            if self._closed:
                return
            logger.info(f"[WebRTC] {self.role.value} 원격 {track.kind} 트랙 수신")
            self.remote_tracks.append(track)
            for callback in list(self._track_callbacks):
                await _invoke(callback, track)

    async def initialize_local_capture(self) -> LocalMediaStream:
        """로컬 오디오/비디오를 획득하고 연결에 트랙을 추가합니다.

        ``idle → local-stream-ready`` 전이. 이미 획득했다면 같은 스트림을
        반환합니다.

        Returns:
            LocalMediaStream: 로컬 캡처 트랙 묶음

        Raises:
            MediaAccessDeniedError: 캡처가 거부되었을 때 (세션은 idle 유지)
            SessionClosedError: 이미 닫힌 세션일 때
        """
        async with self._lock:
            if self._closed:
                raise SessionClosedError("Peer session is closed")
            if self.local_stream is not None:
                return self.local_stream

            try:
                stream = await self.media_factory()
            except MediaAccessDeniedError:
                logger.error(f"[WebRTC] 로컬 캡처 거부 (role={self.role.value})")
                raise
            except Exception as e:
                logger.error(f"[WebRTC] 로컬 캡처 실패: {e}")
                raise MediaAccessDeniedError(str(e)) from e

            if self._closed:
                stream.stop()
                raise SessionClosedError("Peer session closed during capture")

            self.local_stream = stream
            for track in stream.tracks:
                self.pc.addTrack(track)
            self.signaling_status = SignalingStatus.LOCAL_STREAM_READY
            logger.info(f"[WebRTC] 로컬 스트림 준비 완료: 트랙 {len(stream.tracks)}개")
            return stream

    async def begin_as_initiator(self) -> None:
        """peer-joined 수신 시 offer를 생성해 릴레이로 보냅니다.

        ``local-stream-ready → negotiating`` 전이. 이미 offer를 보낸 상태에서
        중복된 peer-joined가 오면 무시합니다.

        Raises:
            SessionClosedError: 이미 닫힌 세션일 때
            PeerSessionError: joiner 세션이거나 로컬 스트림이 준비되지 않았을 때
        """
        self._check_can_begin(Role.INITIATOR)

        async with self._lock:
            if self._closed:
                return
            if self.signaling_status is not SignalingStatus.LOCAL_STREAM_READY:
                logger.warning(f"[WebRTC] offer 생성 생략: 이미 {self.signaling_status.value} 상태")
                return

            try:
                offer = await self.pc.createOffer()
                if self._closed:
                    return
                await self.pc.setLocalDescription(offer)
                if self._closed:
                    return
            except Exception as e:
                await self._fail_negotiation("offer 생성", e)
                return

            self.signaling_status = SignalingStatus.NEGOTIATING
            local = self.pc.localDescription
            logger.info(f"[WebRTC] offer 생성 완료, answer 대기 "
                        f"(SDP 후보 수: {local.sdp.count('a=candidate:')})")

        await self._emit_signal("offer", {"sdp": local.sdp, "type": local.type})

    def begin_as_joiner(self) -> None:
        """offer 대기 상태로 들어갑니다 (``local-stream-ready → negotiating``)."""
        self._check_can_begin(Role.JOINER)
        if self.signaling_status is SignalingStatus.LOCAL_STREAM_READY:
            self.signaling_status = SignalingStatus.NEGOTIATING
            logger.info("[WebRTC] joiner offer 대기")

    def _check_can_begin(self, role: Role) -> None:
        if self._closed:
            raise SessionClosedError("Peer session is closed")
        if self.role is not role:
            raise PeerSessionError(f"Session role is {self.role.value}, not {role.value}")
        if self.local_stream is None:
            raise PeerSessionError("Local capture must be initialized first")

    async def on_offer(self, payload: dict) -> None:
        """상대방 offer를 적용하고 answer를 생성해 보냅니다 (joiner).

        Workflow:
            1. 시그널링 상태가 stable이 아니면 rollback 먼저 수행
            2. offer를 remote description으로 적용
            3. candidate 버퍼 drain
            4. answer 생성 및 local description 설정
            5. answer 릴레이

        Note:
            - initiator가 받은 offer나 닫힌 세션의 offer는 stale로 무시
            - 실패는 NegotiationError로 상태 콜백에 전달되고 세션은 닫힘
        """
        async with self._lock:
            if self._closed or self.role is not Role.JOINER:
                self._ignore_stale("offer")
                return

            try:
                if self.pc.signalingState != "stable":
                    logger.info(f"[WebRTC] 시그널링 {self.pc.signalingState} 상태, offer 적용 전 rollback")
                    await self.pc.setLocalDescription(RTCSessionDescription(sdp="", type="rollback"))
                    if self._closed:
                        return

                await self.pc.setRemoteDescription(
                    RTCSessionDescription(sdp=payload["sdp"], type=payload.get("type", "offer"))
                )
                if self._closed:
                    return

                await self.candidate_buffer.drain(self._add_candidate)

                answer = await self.pc.createAnswer()
                if self._closed:
                    return
                await self.pc.setLocalDescription(answer)
                if self._closed:
                    return
            except Exception as e:
                await self._fail_negotiation("offer 처리", e)
                return

            if self.signaling_status is not SignalingStatus.CONNECTED:
                self.signaling_status = SignalingStatus.NEGOTIATING
            local = self.pc.localDescription
            logger.info(f"[WebRTC] answer 생성 완료 (SDP 후보 수: {local.sdp.count('a=candidate:')})")

        await self._emit_signal("answer", {"sdp": local.sdp, "type": local.type})

    async def on_answer(self, payload: dict) -> None:
        """상대방 answer를 remote description으로 적용합니다 (initiator).

        협상이 이미 끝난 상태(stable)에서 온 answer는 중복 또는 늦은
        메시지이므로 적용하지 않습니다. 기존 remote description은 바뀌지 않습니다.
        """
        async with self._lock:
            if (self._closed
                    or self.role is not Role.INITIATOR
                    or self.pc.signalingState != "have-local-offer"):
                self._ignore_stale("answer")
                return

            try:
                await self.pc.setRemoteDescription(
                    RTCSessionDescription(sdp=payload["sdp"], type=payload.get("type", "answer"))
                )
                if self._closed:
                    return
                await self.candidate_buffer.drain(self._add_candidate)
            except Exception as e:
                await self._fail_negotiation("answer 처리", e)
                return

            logger.info("[WebRTC] answer 적용 완료, 연결 확인 대기")

    async def on_candidate(self, payload: Optional[dict]) -> None:
        """상대방 ICE candidate를 적용하거나 버퍼에 보관합니다.

        remote description이 있으면 즉시 적용하고, 없으면 도착 순서대로
        버퍼에 넣습니다. end-of-candidates(빈 candidate)는 무시합니다.
        """
        if not payload or not payload.get("candidate"):
            return

        async with self._lock:
            if self._closed:
                return
            if self.pc.remoteDescription is None:
                self.candidate_buffer.append(payload)
                logger.debug(f"[WebRTC] candidate 버퍼링 (대기 {len(self.candidate_buffer)}개)")
                return
            try:
                await self._add_candidate(payload)
            except Exception as e:
                logger.warning(f"[WebRTC] ICE candidate 추가 실패: {e}")

    async def _add_candidate(self, payload: dict) -> None:
        await self.pc.addIceCandidate(candidate_from_dict(payload))

    async def _handle_link_state(self, state: str) -> None:
        logger.info(f"[WebRTC] {self.role.value} 연결 상태: {state}")
        if self._closed:
            return

        if state in ("connecting", "checking"):
            await self._set_connection_status(ConnectionStatus.CONNECTING)
        elif state in ("connected", "completed"):
            self.signaling_status = SignalingStatus.CONNECTED
            await self._set_connection_status(ConnectionStatus.CONNECTED)
        elif state == "disconnected":
            # 일시적 끊김은 ICE가 스스로 복구할 수 있으므로 세션 유지
            logger.warning(f"[WebRTC] {self.role.value} 일시적 연결 끊김, 복구 대기")
        elif state == "failed":
            await self._close(ConnectivityFailedError("ICE connection failed"))
        elif state == "closed":
            await self._close(None)

    async def _set_connection_status(
        self,
        status: ConnectionStatus,
        error: Optional[PeerSessionError] = None,
    ) -> None:
        if status is self.connection_status and error is None:
            return
        self.connection_status = status
        for callback in list(self._state_callbacks):
            try:
                await _invoke(callback, status, error)
            except Exception as e:
                logger.error(f"[WebRTC] 연결 상태 콜백 오류: {e}", exc_info=True)

    async def _emit_signal(self, kind: str, payload: dict) -> None:
        if self._closed:
            return
        try:
            await self.send_signal(kind, payload)
        except Exception as e:
            logger.error(f"[WebRTC] {kind} 전송 실패: {e}")

    def _ignore_stale(self, kind: str) -> None:
        error = StaleNegotiationMessage(
            f"{kind} ignored (role={self.role.value}, signaling={self.pc.signalingState}, "
            f"closed={self._closed})"
        )
        logger.warning(f"[WebRTC] stale 메시지 무시: {error}")

    async def _fail_negotiation(self, step: str, error: Exception) -> None:
        logger.error(f"[WebRTC] {step} 실패: {error}")
        await self._close(NegotiationError(f"{step} failed: {error}"))

    async def close(self) -> None:
        """세션을 닫고 로컬 캡처와 피어 연결을 해제합니다.

        여러 번 호출해도 안전하며, 닫힌 세션은 다시 사용할 수 없습니다.
        """
        await self._close(None)

    async def _close(self, error: Optional[PeerSessionError]) -> None:
        if self._closed:
            return

        # await 이전에 닫힘 표시 및 트랙 정지 (이후 이벤트/협상 결과 무시)
        self._closed = True
        self.signaling_status = SignalingStatus.CLOSED
        if self.local_stream is not None:
            self.local_stream.stop()
        self.candidate_buffer = CandidateBuffer()

        if error is not None:
            logger.error(f"[WebRTC] {self.role.value} 세션 종료: {error}")
        else:
            logger.info(f"[WebRTC] {self.role.value} 세션 종료")

        try:
            await self.pc.close()
        except Exception as e:
            logger.warning(f"[WebRTC] 피어 연결 종료 중 오류: {e}")

        await self._set_connection_status(ConnectionStatus.DISCONNECTED, error)
