"""1:1 통화 CLI 클라이언트.

시그널링 릴레이에 접속해 룸을 만들거나 입장하고, aiortc로 상대방과
직접 미디어를 주고받습니다. 상대방의 미디어는 파일로 녹화하거나 버립니다.

Usage:
    python call_client.py create
    python call_client.py join <ROOM_ID>
    python call_client.py join <ROOM_ID> --server ws://relay:8000/ws --record remote.mp4
    python call_client.py create --media device  # 카메라/마이크 사용
"""

import asyncio
import argparse
import functools
import logging
import os
from datetime import datetime
from typing import Optional

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaBlackhole, MediaRecorder

from modules.client import CallController, SignalingClient
from modules.signaling import SignalingError
from modules.webrtc import (
    ConnectionStatus,
    MediaConfig,
    PeerSession,
    PeerSessionError,
    acquire_local_media,
    client_config,
    media_config,
)

logger = logging.getLogger(__name__)


class RemoteMediaSink:
    """상대방 트랙을 소비하는 싱크.

    ``--record`` 경로가 있으면 첫 통화의 미디어를 MediaRecorder로 저장하고,
    이후 통화나 경로가 없을 때는 MediaBlackhole로 버립니다. 연결되면 시작하고
    연결이 끊기면 정지합니다.
    """

    def __init__(self, record_path: Optional[str] = None):
        self.record_path = record_path
        self._sink = self._new_sink()
        self._started = False

    def _new_sink(self):
        if self.record_path:
            path, self.record_path = self.record_path, None
            logger.info(f"[Client] 원격 미디어 녹화: {path}")
            return MediaRecorder(path)
        return MediaBlackhole()

    def add_track(self, track: MediaStreamTrack) -> None:
        if self._started:
            logger.warning(f"[Client] 재생 중인 싱크에 {track.kind} 트랙 추가 불가, 무시")
            return
        self._sink.addTrack(track)

    async def on_status(self, status: ConnectionStatus, error: Optional[PeerSessionError]) -> None:
        if error is not None:
            print(f"연결 상태: {status.value} ({error})")
        else:
            print(f"연결 상태: {status.value}")

        if status is ConnectionStatus.CONNECTED and not self._started:
            await self._sink.start()
            self._started = True
        elif status is ConnectionStatus.DISCONNECTED:
            await self.stop()

    async def stop(self) -> None:
        if self._started:
            await self._sink.stop()
            self._started = False
        # 다음 통화는 새 싱크로 받음
        self._sink = self._new_sink()


async def run_call(args: argparse.Namespace) -> None:
    config = MediaConfig(MEDIA_SOURCE=args.media)
    session_factory = functools.partial(
        PeerSession,
        media_factory=functools.partial(acquire_local_media, config),
    )

    sink = RemoteMediaSink(args.record)
    signaling = SignalingClient(args.server)
    await signaling.connect()

    controller = CallController(
        signaling,
        session_factory=session_factory,
        on_status=sink.on_status,
        on_remote_track=sink.add_track,
    )

    try:
        if args.command == "create":
            room_id = await controller.create()
            print(f"룸 ID: {room_id}")
            print(f"상대방 실행 명령: python call_client.py join {room_id}")
        else:
            await controller.join(args.room_id)
            print(f"룸 입장: {args.room_id}")

        await controller.ended.wait()
    finally:
        await controller.hang_up()
        await sink.stop()


def setup_logging(level: str) -> None:
    os.makedirs("logs", exist_ok=True)
    log_filename = f"logs/client_{datetime.now().strftime('%Y%m%d')}.log"
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(log_filename, encoding="utf-8"),
        ]
    )


def main():
    parser = argparse.ArgumentParser(description="1:1 WebRTC call client")
    parser.add_argument(
        "--server",
        default=client_config.SIGNALING_URL,
        help="Signaling relay WebSocket URL"
    )
    parser.add_argument(
        "--media",
        choices=["synthetic", "device"],
        default=media_config.MEDIA_SOURCE,
        help="Local media source"
    )
    parser.add_argument(
        "--record",
        default=None,
        help="Record remote media to this file"
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("create", help="Create a room and wait for a peer")
    join_parser = subparsers.add_parser("join", help="Join an existing room")
    join_parser.add_argument("room_id", help="Room ID shared by the creator")

    args = parser.parse_args()
    setup_logging(args.log_level)

    try:
        asyncio.run(run_call(args))
    except KeyboardInterrupt:
        logger.info("[Client] 사용자 중단")
    except (SignalingError, PeerSessionError) as e:
        logger.error(f"[Client] 통화 실패: {e}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
