"""로컬 미디어 캡처 모듈.

통화에 사용할 로컬 오디오/비디오 트랙을 획득하고 해제합니다.

Sources:
    - synthetic: aiortc 기본 트랙 (무음 오디오 + 검은 화면 비디오).
      장치가 없는 서버나 테스트 환경에서 사용
    - device: ffmpeg 입력 장치 캡처 (aiortc.contrib.media.MediaPlayer)
"""

import logging
from typing import List, Optional

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer
from aiortc.mediastreams import AudioStreamTrack, VideoStreamTrack
from av.error import FFmpegError

from .config import MediaConfig, media_config
from .errors import MediaAccessDeniedError

logger = logging.getLogger(__name__)


class LocalMediaStream:
    """로컬 캡처 트랙 묶음.

    세션 하나에서 한 번 만들어지고, 세션이 닫힐 때 stop()으로 모든 트랙을
    정지합니다. 트랙의 음소거/카메라 끄기 같은 표현 계층 조작은 컨트롤러의
    몫입니다.

    Attributes:
        tracks (List[MediaStreamTrack]): 오디오/비디오 트랙 목록
        players (List[MediaPlayer]): 장치 캡처에 사용된 플레이어 (synthetic이면 빈 리스트)
    """

    def __init__(self, tracks: List[MediaStreamTrack], players: Optional[List[MediaPlayer]] = None):
        self.tracks = list(tracks)
        self.players = list(players or [])
        self.stopped = False

    @property
    def audio_tracks(self) -> List[MediaStreamTrack]:
        return [t for t in self.tracks if t.kind == "audio"]

    @property
    def video_tracks(self) -> List[MediaStreamTrack]:
        return [t for t in self.tracks if t.kind == "video"]

    def stop(self) -> None:
        """모든 로컬 트랙을 정지합니다. 여러 번 호출해도 안전합니다."""
        if self.stopped:
            return
        self.stopped = True
        for track in self.tracks:
            track.stop()
        logger.info(f"[WebRTC] 로컬 트랙 {len(self.tracks)}개 정지")


def _open_player(file: str, format: str, options: dict) -> MediaPlayer:
    try:
        return MediaPlayer(file, format=format, options=options)
    except (FFmpegError, OSError, ValueError) as e:
        raise MediaAccessDeniedError(f"Cannot open capture device {file!r} ({format}): {e}") from e


async def acquire_local_media(config: MediaConfig = media_config) -> LocalMediaStream:
    """설정된 소스에서 로컬 오디오/비디오 트랙을 획득합니다.

    Args:
        config (MediaConfig): 미디어 캡처 설정

    Returns:
        LocalMediaStream: 획득한 트랙 묶음

    Raises:
        MediaAccessDeniedError: 장치를 열 수 없거나 권한이 없을 때,
            또는 알 수 없는 미디어 소스일 때
    """
    if config.MEDIA_SOURCE == "synthetic":
        logger.info("[WebRTC] synthetic 로컬 미디어 사용 (무음 + 검은 화면)")
        return LocalMediaStream([AudioStreamTrack(), VideoStreamTrack()])

    if config.MEDIA_SOURCE != "device":
        raise MediaAccessDeniedError(f"Unknown media source: {config.MEDIA_SOURCE}")

    players = []
    tracks = []

    video_player = _open_player(
        config.VIDEO_DEVICE,
        config.VIDEO_FORMAT,
        {"video_size": config.VIDEO_SIZE, "framerate": config.FRAMERATE},
    )
    players.append(video_player)
    if video_player.video:
        tracks.append(video_player.video)

    if config.AUDIO_DEVICE:
        try:
            audio_player = _open_player(config.AUDIO_DEVICE, config.AUDIO_FORMAT, {})
        except MediaAccessDeniedError:
            for track in tracks:
                track.stop()
            raise
        players.append(audio_player)
        if audio_player.audio:
            tracks.append(audio_player.audio)
    elif video_player.audio:
        tracks.append(video_player.audio)

    if not tracks:
        raise MediaAccessDeniedError("Capture device produced no audio or video tracks")

    logger.info(f"[WebRTC] 장치 캡처 획득: {', '.join(t.kind for t in tracks)}")
    return LocalMediaStream(tracks, players)
