"""시그널링 릴레이 예외 모듈.

룸 레지스트리와 WebSocket 라우터가 요청 단위로 발생시키는 예외를 정의합니다.
각 예외는 클라이언트에게 전달되는 에러 코드(``code``)를 가집니다.
"""


class SignalingError(Exception):
    """시그널링 요청 처리 실패의 기본 예외."""

    code = "SignalingError"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self) -> dict:
        data = {"code": self.code, "message": self.message}
        room_id = getattr(self, "room_id", None)
        if room_id:
            data["room_id"] = room_id
        return data


class RoomNotFoundError(SignalingError):
    """존재하지 않는 룸 ID로 입장을 시도한 경우."""

    code = "RoomNotFound"

    def __init__(self, room_id: str):
        super().__init__(f"Room not found: {room_id}")
        self.room_id = room_id


class RoomFullError(SignalingError):
    """이미 2명이 참가한 룸에 입장을 시도한 경우."""

    code = "RoomFull"

    def __init__(self, room_id: str):
        super().__init__(f"Room is full: {room_id}")
        self.room_id = room_id


class InvalidMessageError(SignalingError):
    """형식이 잘못되었거나 지원하지 않는 시그널링 메시지."""

    code = "InvalidMessage"


ERRORS_BY_CODE = {
    RoomNotFoundError.code: RoomNotFoundError,
    RoomFullError.code: RoomFullError,
}
