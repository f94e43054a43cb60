"""1:1 통화 룸 레지스트리 모듈.

이 모듈은 시그널링 릴레이의 룸(방)과 참가자 연결을 관리합니다.
각 룸은 최대 2개의 연결 ID를 입장 순서대로 보관하며, 먼저 입장한 참가자가
offer를 보내는 initiator가 됩니다. 레지스트리는 미디어나 SDP 내용을 전혀
해석하지 않는 단순 파이프 역할만 합니다.

주요 기능:
    - 룸 생성 (UUID 기반 룸 ID 발급)
    - 룸 입장 (정원 2명 강제, 기존 참가자에게 peer-joined 알림)
    - offer/answer/candidate 메시지 릴레이 (룸 단위 주소 지정)
    - 퇴장 처리 (남은 참가자에게 peer-left 알림, 빈 룸 즉시 삭제)

Architecture:
    - rooms: Dict[str, Room] - 룸 ID → 룸 레코드
    - connection_rooms: Dict[str, str] - 연결 ID → 룸 ID (빠른 조회용)
    - Room.lock: 룸별 asyncio.Lock (join/leave 직렬화)
    - send: 전송 계층이 주입하는 비동기 콜백 (연결 ID로 메시지 전달)

Classes:
    Room: 룸 정보를 담는 데이터 클래스
    RoomRegistry: 룸 및 참가자 관리 클래스

Examples:
    기본 사용법:
        >>> registry = RoomRegistry(send=send_to_connection)
        >>> room_id = await registry.create_room("conn-a")
        >>> await registry.join_room(room_id, "conn-b")  # conn-a에게 peer-joined
        >>> await registry.relay("offer", room_id, {"sdp": "..."}, "conn-a")

See Also:
    routes/signaling.py: WebSocket 시그널링 엔드포인트
    modules/webrtc/peer_session.py: 클라이언트 측 협상 상태 머신
"""
import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

from .config import relay_config
from .errors import InvalidMessageError, RoomFullError, RoomNotFoundError
from .schemas import PEER_JOINED, PEER_LEFT, RELAY_KINDS

logger = logging.getLogger(__name__)

# (connection_id, message) -> None
SendCallback = Callable[[str, dict], Awaitable[None]]


@dataclass
class Room:
    """1:1 통화 룸을 나타내는 데이터 클래스.

    Attributes:
        room_id (str): 레지스트리가 발급한 룸 ID (UUID)
        participants (List[str]): 입장 순서대로 정렬된 연결 ID 목록.
            첫 번째 참가자가 initiator
        created_at (float): 룸 생성 시각 (epoch seconds)
        lock (asyncio.Lock): 같은 룸에 대한 join/leave를 직렬화하는 락
    """
    room_id: str
    participants: List[str] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    @property
    def initiator(self) -> Optional[str]:
        """먼저 입장한 참가자의 연결 ID."""
        return self.participants[0] if self.participants else None

    def others(self, connection_id: str) -> List[str]:
        return [p for p in self.participants if p != connection_id]

    def to_dict(self) -> dict:
        return {
            "room_id": self.room_id,
            "peer_count": len(self.participants),
            "participants": list(self.participants),
            "created_at": self.created_at,
        }


class RoomRegistry:
    """룸과 참가자 연결을 관리하는 핵심 클래스.

    룸 ID로 룸 레코드를 찾는 arena 구조에 룸별 락을 더해, 두 연결이 동시에
    두 번째 자리에 입장하려 해도 하나만 성공하도록 보장합니다.

    Attributes:
        rooms (Dict[str, Room]): 룸 ID를 키로 하는 룸 딕셔너리
        connection_rooms (Dict[str, str]): 연결 ID → 룸 ID 역 매핑
        send (Optional[SendCallback]): 이벤트/릴레이 메시지 전송 콜백
        max_participants (int): 룸 정원 (기본 2)

    Invariants:
        - 참가자가 0명인 룸은 즉시 삭제됨
        - 룸의 참가자 수는 max_participants를 넘지 않음
        - 하나의 연결 ID는 동시에 최대 한 개의 룸에만 속함

    Examples:
        >>> registry = RoomRegistry(send=send_to_connection)
        >>> room_id = await registry.create_room("conn-a")
        >>> await registry.join_room(room_id, "conn-b")
        >>> registry.get_room_count(room_id)
        2
        >>> await registry.join_room(room_id, "conn-c")
        Traceback (most recent call last):
        RoomFullError: Room is full: ...
    """

    def __init__(
        self,
        send: Optional[SendCallback] = None,
        max_participants: int = relay_config.MAX_PARTICIPANTS,
    ):
        # room_id -> Room
        self.rooms: Dict[str, Room] = {}

        # connection_id -> room_id (for quick lookup)
        self.connection_rooms: Dict[str, str] = {}

        self.send = send
        self.max_participants = max_participants

    async def create_room(self, connection_id: str) -> str:
        """호출한 연결만 참가한 새 룸을 만들고 룸 ID를 반환합니다.

        호출한 연결이 이미 다른 룸에 있으면 먼저 그 룸에서 퇴장시킵니다.
        이 작업은 실패하지 않습니다.

        Args:
            connection_id (str): 룸을 만드는 연결의 ID

        Returns:
            str: 새로 발급된 룸 ID
        """
        await self.leave(connection_id)

        room_id = str(uuid.uuid4())
        self.rooms[room_id] = Room(room_id=room_id, participants=[connection_id])
        self.connection_rooms[connection_id] = room_id

        logger.info(f"[Signaling] 룸 {room_id[:8]} 생성 (initiator={connection_id[:8]})")
        return room_id

    async def join_room(self, room_id: str, connection_id: str) -> Room:
        """연결을 기존 룸에 입장시킵니다.

        입장에 성공하면 기존 참가자에게 ``peer-joined`` 이벤트를 룸 단위로
        보냅니다. 기존 참가자는 새 참가자의 연결 ID를 알 필요가 없습니다.

        Args:
            room_id (str): 입장할 룸 ID
            connection_id (str): 입장하는 연결의 ID

        Returns:
            Room: 입장한 룸 레코드

        Raises:
            RoomNotFoundError: 룸 ID가 존재하지 않을 때
            RoomFullError: 룸에 이미 정원만큼 참가자가 있을 때 (멤버십 변경 없음)

        Note:
            - 이미 같은 룸에 있으면 이벤트 없이 그대로 성공
            - 다른 룸에 있으면 새 룸에 자리를 얻은 뒤 이전 룸에서 퇴장.
              입장이 거부되면 이전 룸 멤버십은 그대로 유지
        """
        room = self.rooms.get(room_id)
        if room is None:
            raise RoomNotFoundError(room_id)

        previous_room_id = self.connection_rooms.get(connection_id)
        if previous_room_id == room_id:
            logger.info(f"[Signaling] 연결 {connection_id[:8]} 이미 룸 {room_id[:8]}에 있음")
            return room

        # 자리 확보는 룸 락 안에서만. 이전 룸 퇴장은 자리를 얻은 뒤에 수행
        async with room.lock:
            if self.rooms.get(room_id) is not room:
                raise RoomNotFoundError(room_id)
            if len(room.participants) >= self.max_participants:
                logger.info(f"[Signaling] 룸 {room_id[:8]} 정원 초과, 입장 거부: {connection_id[:8]}")
                raise RoomFullError(room_id)

            room.participants.append(connection_id)
            self.connection_rooms[connection_id] = room_id

        logger.info(f"[Signaling] 연결 {connection_id[:8]} 룸 {room_id[:8]} 입장. "
                    f"참가자 {len(room.participants)}명 (initiator={room.initiator[:8]})")

        if previous_room_id is not None:
            await self._remove_from_room(previous_room_id, connection_id)

        await self._emit(room, PEER_JOINED, {"room_id": room_id}, exclude=connection_id)
        return room

    async def relay(
        self,
        kind: str,
        target_room_id: str,
        payload: dict,
        sender_connection_id: str,
    ) -> int:
        """협상 메시지를 같은 룸의 상대방에게 그대로 전달합니다.

        payload 내용은 검사하지 않으며, 수신자가 답장할 수 있도록
        ``from`` 필드에 보낸 연결 ID를 붙입니다.

        Args:
            kind (str): 메시지 종류 (offer, answer, candidate)
            target_room_id (str): 대상 룸 ID
            payload (dict): 불투명한 협상 데이터
            sender_connection_id (str): 보낸 연결의 ID

        Returns:
            int: 메시지를 전달한 수신자 수. 룸이 없거나 보낸 연결이
                룸 멤버가 아니면 0

        Raises:
            InvalidMessageError: 릴레이 대상이 아닌 메시지 종류일 때
        """
        if kind not in RELAY_KINDS:
            raise InvalidMessageError(f"Unsupported relay kind: {kind}")

        room = self.rooms.get(target_room_id)
        if room is None or sender_connection_id not in room.participants:
            logger.warning(f"[Signaling] {kind} 릴레이 무시: 연결 {sender_connection_id[:8]}은 "
                           f"룸 {target_room_id[:8]}의 참가자가 아님")
            return 0

        data = dict(payload)
        data["from"] = sender_connection_id
        delivered = await self._emit(room, kind, data, exclude=sender_connection_id)
        logger.debug(f"[Signaling] {kind} 릴레이: {sender_connection_id[:8]} -> 룸 {target_room_id[:8]} "
                     f"({delivered}명)")
        return delivered

    async def leave(self, connection_id: str) -> Optional[str]:
        """연결을 현재 속한 룸에서 제거합니다.

        룸이 비면 즉시 삭제하고, 남은 참가자가 있으면 ``peer-left`` 이벤트를
        보냅니다. 어떤 룸에도 속하지 않은 연결이면 아무 일도 하지 않습니다.

        Args:
            connection_id (str): 퇴장할 연결의 ID

        Returns:
            Optional[str]: 연결이 속해 있던 룸 ID. 속한 룸이 없었으면 None
        """
        room_id = self.connection_rooms.pop(connection_id, None)
        if room_id is None:
            return None

        if not await self._remove_from_room(room_id, connection_id):
            return None
        return room_id

    async def _remove_from_room(self, room_id: str, connection_id: str) -> bool:
        """지정한 룸에서 연결을 제거합니다. ``connection_rooms``는 건드리지 않습니다.

        Returns:
            bool: 실제로 제거했으면 True
        """
        room = self.rooms.get(room_id)
        if room is None:
            return False

        async with room.lock:
            if connection_id not in room.participants:
                return False

            room.participants.remove(connection_id)

            if not room.participants:
                self.rooms.pop(room_id, None)
                logger.info(f"[Signaling] 룸 {room_id[:8]} 삭제 (빈 룸)")
                return True

        logger.info(f"[Signaling] 연결 {connection_id[:8]} 룸 {room_id[:8]} 퇴장. "
                    f"참가자 {len(room.participants)}명")
        await self._emit(room, PEER_LEFT, {"room_id": room_id})
        return True

    async def _emit(
        self,
        room: Room,
        message_type: str,
        data: dict,
        exclude: Optional[str] = None,
    ) -> int:
        """룸의 참가자들에게 메시지를 보냅니다 (exclude 제외).

        전송 실패는 로그만 남기며 멤버십은 되돌리지 않습니다. 끊어진 연결의
        정리는 전송 계층의 disconnect 처리에서 leave()로 이루어집니다.
        """
        if self.send is None:
            logger.warning(f"[Signaling] send 콜백 미설정, {message_type} 전송 생략")
            return 0

        message = {"type": message_type, "data": data}
        delivered = 0
        for connection_id in list(room.participants):
            if connection_id == exclude:
                continue
            try:
                await self.send(connection_id, message)
                delivered += 1
            except Exception as e:
                logger.error(f"[Signaling] 연결 {connection_id[:8]}에 {message_type} 전송 실패: {e}")
        return delivered

    def get_room(self, room_id: str) -> Optional[Room]:
        """룸 ID로 룸 레코드를 조회합니다."""
        return self.rooms.get(room_id)

    def get_connection_room(self, connection_id: str) -> Optional[str]:
        """연결이 속한 룸 ID를 반환합니다. 없으면 None."""
        return self.connection_rooms.get(connection_id)

    def get_room_count(self, room_id: str) -> int:
        """룸의 현재 참가자 수를 반환합니다. 룸이 없으면 0."""
        room = self.rooms.get(room_id)
        return len(room.participants) if room else 0

    def get_room_list(self) -> List[dict]:
        """모든 룸의 정보를 리스트로 반환합니다.

        Returns:
            List[dict]: 룸 정보 딕셔너리 리스트
                - room_id (str): 룸 ID
                - peer_count (int): 현재 참가자 수
                - participants (List[str]): 입장 순서대로 정렬된 연결 ID
                - created_at (float): 생성 시각
        """
        return [room.to_dict() for room in self.rooms.values()]

    def __len__(self) -> int:
        return len(self.rooms)
