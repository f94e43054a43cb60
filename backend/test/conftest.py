"""테스트 공용 fixture.

PeerSession은 aiortc RTCPeerConnection과 같은 이벤트 에미터(pyee) 위에 만든
메모리 내 가짜 연결로 테스트합니다. 실제 ICE/DTLS 없이 시그널링 상태 전이만
흉내 냅니다.
"""

from collections import defaultdict

import pytest
from aiortc import RTCSessionDescription
from pyee.asyncio import AsyncIOEventEmitter

from modules.webrtc import LocalMediaStream, PeerSession

OFFER_SDP = "v=0\r\no=- 1 1 IN IP4 0.0.0.0\r\ns=offer\r\n"
ANSWER_SDP = "v=0\r\no=- 2 2 IN IP4 0.0.0.0\r\ns=answer\r\n"


def candidate_payload(port: int) -> dict:
    return {
        "candidate": f"candidate:1 1 udp 2130706431 192.168.1.2 {port} typ host",
        "sdpMid": "0",
        "sdpMLineIndex": 0,
    }


class FakePeerConnection(AsyncIOEventEmitter):
    """RTCPeerConnection의 시그널링 상태 전이만 흉내 내는 가짜 연결."""

    def __init__(self):
        super().__init__()
        self.signalingState = "stable"
        self.connectionState = "new"
        self.iceConnectionState = "new"
        self.localDescription = None
        self.remoteDescription = None

        self.tracks = []
        self.added_candidates = []
        self.history = []
        self.fail_on = set()
        self.closed = False

    def addTrack(self, track):
        self.tracks.append(track)

    async def createOffer(self):
        return RTCSessionDescription(sdp=OFFER_SDP, type="offer")

    async def createAnswer(self):
        if self.signalingState != "have-remote-offer":
            raise RuntimeError(f"Cannot create answer in {self.signalingState}")
        return RTCSessionDescription(sdp=ANSWER_SDP, type="answer")

    async def setLocalDescription(self, description):
        self.history.append(f"local:{description.type}")
        if description.type == "rollback":
            self.localDescription = None
            self.signalingState = "stable"
        elif description.type == "offer":
            self.localDescription = description
            self.signalingState = "have-local-offer"
        else:
            self.localDescription = description
            self.signalingState = "stable"

    async def setRemoteDescription(self, description):
        if "setRemoteDescription" in self.fail_on:
            raise ValueError("Malformed SDP")
        self.history.append(f"remote:{description.type}")
        if description.type == "offer":
            self.remoteDescription = description
            self.signalingState = "have-remote-offer"
        elif description.type == "answer":
            if self.signalingState != "have-local-offer":
                raise RuntimeError(f"Cannot apply answer in {self.signalingState}")
            self.remoteDescription = description
            self.signalingState = "stable"

    async def addIceCandidate(self, candidate):
        self.history.append("candidate")
        self.added_candidates.append(candidate)

    async def close(self):
        self.closed = True
        self.signalingState = "closed"
        self.connectionState = "closed"

    async def set_connection_state(self, state: str):
        """연결 상태를 바꾸고 등록된 connectionstatechange 핸들러를 끝까지 실행합니다."""
        self.connectionState = state
        for listener in list(self.listeners("connectionstatechange")):
            await listener()


class FakeTrack:
    def __init__(self, kind: str):
        self.kind = kind
        self.stopped = False

    def stop(self):
        self.stopped = True


async def fake_media() -> LocalMediaStream:
    return LocalMediaStream([FakeTrack("audio"), FakeTrack("video")])


class StatusRecorder:
    """연결 상태 콜백 호출 기록."""

    def __init__(self):
        self.calls = []

    def __call__(self, status, error):
        self.calls.append((status, error))

    @property
    def statuses(self):
        return [status for status, _ in self.calls]


class Outbox:
    """RoomRegistry send 콜백 대역. 연결 ID별로 받은 메시지를 기록합니다."""

    def __init__(self):
        self.messages = defaultdict(list)

    async def send(self, connection_id: str, message: dict):
        self.messages[connection_id].append(message)

    def types(self, connection_id: str):
        return [m["type"] for m in self.messages[connection_id]]


@pytest.fixture
def sent_signals():
    return []


@pytest.fixture
def make_session(sent_signals):
    """가짜 연결과 가짜 미디어를 쓰는 PeerSession 팩토리."""

    def factory(role, media_factory=fake_media, connection_factory=FakePeerConnection):
        async def send(kind, payload):
            sent_signals.append((kind, payload))

        return PeerSession(
            role,
            send,
            connection_factory=connection_factory,
            media_factory=media_factory,
        )

    return factory


@pytest.fixture
def outbox():
    return Outbox()
