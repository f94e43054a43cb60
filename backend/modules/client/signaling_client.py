"""시그널링 서버 WebSocket 클라이언트.

릴레이 서버(/ws)에 접속해 룸 생성/입장 요청을 보내고, 릴레이가 전달하는
이벤트(peer-joined, peer-left, offer, answer, candidate)를 등록된 핸들러로
넘겨줍니다.

Note:
    - 요청/응답은 ``request_id``로 짝을 맞춤
    - 수신 루프는 핸들러를 기다리지 않아야 하므로, 핸들러는 큐에 넣는 정도로
      가볍게 유지해야 함 (CallController 참고)
    - 연결이 끊기면 로컬 이벤트 ``disconnected``를 핸들러에 전달
"""

import asyncio
import inspect
import json
import logging
import uuid
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

import websockets

from ..signaling.errors import ERRORS_BY_CODE, SignalingError
from ..signaling.schemas import (
    CONNECTION_ID,
    CREATE_ROOM,
    ERROR,
    JOIN_ROOM,
    LEAVE_ROOM,
)
from ..webrtc.config import client_config

logger = logging.getLogger(__name__)

# 로컬 전용 이벤트 (서버가 보내지 않음)
DISCONNECTED = "disconnected"

MessageHandler = Callable[[dict], Any]


def error_from_reply(data: dict) -> SignalingError:
    """error 응답을 대응하는 SignalingError 하위 예외로 변환합니다."""
    code = data.get("code", SignalingError.code)
    message = data.get("message", "")
    error_cls = ERRORS_BY_CODE.get(code)
    if error_cls is not None:
        return error_cls(data.get("room_id", ""))
    error = SignalingError(message)
    error.code = code
    return error


class SignalingClient:
    """릴레이 서버와의 WebSocket 세션.

    Attributes:
        url (str): 시그널링 서버 WebSocket URL
        connection_id (Optional[str]): 서버가 발급한 연결 ID
        room_id (Optional[str]): 현재 참가 중인 룸 ID

    Examples:
        >>> client = SignalingClient("ws://localhost:8000/ws")
        >>> client.on("peer-joined", handle_peer_joined)
        >>> await client.connect()
        >>> room_id = await client.create_room()
        >>> await client.send_signal("offer", room_id, {"sdp": "...", "type": "offer"})
        >>> await client.close()
    """

    def __init__(
        self,
        url: str = client_config.SIGNALING_URL,
        request_timeout: float = client_config.REQUEST_TIMEOUT,
        connect: Callable = websockets.connect,
    ):
        self.url = url
        self.request_timeout = request_timeout
        self._connect = connect

        self.ws = None
        self.connection_id: Optional[str] = None
        self.room_id: Optional[str] = None

        self._handlers: Dict[str, List[MessageHandler]] = defaultdict(list)
        self._pending: Dict[str, asyncio.Future] = {}
        self._reader_task: Optional[asyncio.Task] = None

    def on(self, message_type: str, handler: MessageHandler) -> None:
        """메시지 타입별 핸들러를 등록합니다. 핸들러는 ``data`` dict를 받습니다."""
        self._handlers[message_type].append(handler)

    async def connect(self) -> str:
        """서버에 접속하고 발급된 연결 ID를 반환합니다."""
        logger.info(f"[Client] 시그널링 서버 접속: {self.url}")
        self.ws = await self._connect(self.url, ping_interval=20, ping_timeout=10)

        first = json.loads(await asyncio.wait_for(self.ws.recv(), timeout=self.request_timeout))
        if first.get("type") != CONNECTION_ID:
            logger.warning(f"[Client] 예상하지 못한 첫 메시지: {first.get('type')}")
        else:
            self.connection_id = first.get("data", {}).get("connection_id")
            logger.info(f"[Client] 연결 ID: {self.connection_id}")

        self._reader_task = asyncio.create_task(self._read_loop())
        return self.connection_id

    async def create_room(self) -> str:
        """새 룸을 만들고 룸 ID를 반환합니다. 이 연결이 initiator가 됩니다."""
        data = await self._request(CREATE_ROOM)
        self.room_id = data["room_id"]
        logger.info(f"[Client] 룸 생성: {self.room_id}")
        return self.room_id

    async def join_room(self, room_id: str) -> dict:
        """기존 룸에 입장합니다.

        Raises:
            RoomNotFoundError: 룸이 존재하지 않을 때
            RoomFullError: 룸이 가득 찼을 때
        """
        data = await self._request(JOIN_ROOM, {"room_id": room_id})
        self.room_id = room_id
        logger.info(f"[Client] 룸 입장: {room_id} (참가자 {data.get('peer_count')}명)")
        return data

    async def leave_room(self) -> None:
        if self.ws is None or self.room_id is None:
            return
        await self._send({"type": LEAVE_ROOM, "data": {}})
        self.room_id = None

    async def send_signal(self, kind: str, room_id: str, payload: dict) -> None:
        """offer/answer/candidate를 룸의 상대방에게 보냅니다."""
        data = dict(payload)
        data["to"] = room_id
        await self._send({"type": kind, "data": data})

    async def close(self) -> None:
        if self._reader_task is not None and not self._reader_task.done():
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
        if self.ws is not None:
            await self.ws.close()
            self.ws = None
        logger.info("[Client] 시그널링 연결 종료")

    async def _request(self, message_type: str, data: Optional[dict] = None) -> dict:
        request_id = uuid.uuid4().hex
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        try:
            await self._send({"type": message_type, "data": data or {}, "request_id": request_id})
            reply = await asyncio.wait_for(future, timeout=self.request_timeout)
        finally:
            self._pending.pop(request_id, None)

        reply_data = reply.get("data", {})
        if reply.get("type") == ERROR:
            raise error_from_reply(reply_data)
        return reply_data

    async def _send(self, message: dict) -> None:
        if self.ws is None:
            raise ConnectionError("Signaling client is not connected")
        await self.ws.send(json.dumps(message))

    async def _read_loop(self) -> None:
        try:
            async for raw in self.ws:
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("[Client] JSON이 아닌 메시지 무시")
                    continue

                request_id = message.get("request_id")
                future = self._pending.get(request_id) if request_id else None
                if future is not None:
                    if not future.done():
                        future.set_result(message)
                    continue

                await self._dispatch(message.get("type"), message.get("data", {}))
        except websockets.exceptions.ConnectionClosed as e:
            logger.info(f"[Client] 시그널링 연결 끊김: {e}")
        finally:
            for future in self._pending.values():
                if not future.done():
                    future.set_exception(ConnectionError("Signaling connection closed"))
            self._pending.clear()
            await self._dispatch(DISCONNECTED, {})

    async def _dispatch(self, message_type: Optional[str], data: dict) -> None:
        handlers = self._handlers.get(message_type)
        if not handlers:
            logger.debug(f"[Client] 처리하지 않는 메시지 타입: {message_type}")
            return
        for handler in list(handlers):
            try:
                result = handler(data)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"[Client] {message_type} 핸들러 오류: {e}", exc_info=True)
