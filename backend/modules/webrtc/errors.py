"""피어 세션 예외 모듈.

협상 중 발생하는 오류 분류:
    - MediaAccessDeniedError: 로컬 캡처 거부 (호출자에게 raise)
    - StaleNegotiationMessage: 받을 수 없는 시점의 offer/answer (로그만 남김)
    - ConnectivityFailedError: 연결 영구 실패 (상태 콜백으로 전달)
    - NegotiationError: 비동기 협상 단계 실패 (상태 콜백으로 전달)
    - SessionClosedError: 닫힌 세션에 협상 시작 요청
"""


class PeerSessionError(Exception):
    """피어 세션 오류의 기본 예외."""


class MediaAccessDeniedError(PeerSessionError):
    """로컬 오디오/비디오 캡처를 획득하지 못한 경우."""


class StaleNegotiationMessage(PeerSessionError):
    """현재 세션 상태에서 적용할 수 없는 협상 메시지."""


class ConnectivityFailedError(PeerSessionError):
    """ICE 연결이 영구적으로 실패한 경우."""


class NegotiationError(PeerSessionError):
    """offer/answer 생성 또는 description 적용 실패."""


class SessionClosedError(PeerSessionError):
    """이미 닫힌 세션을 다시 사용하려는 경우."""
