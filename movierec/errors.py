# ------------------------------------------------------------
# errors.py - 리뷰 집계/추천 코어의 예외 계층
# ------------------------------------------------------------
# HTTP 계층(main.py)의 예외 핸들러가 status_code를 그대로 응답 코드로 사용


class MovieRecError(Exception):
    """코어에서 발생하는 모든 예외의 베이스."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(MovieRecError):
    """리뷰/영화 집계가 없거나, 추천 결과를 만들 수 없을 때."""

    status_code = 404


class InvalidInputError(MovieRecError):
    """평점 범위/자릿수 오류, amount <= 0 등. 저장소 호출 전에 검출됩니다."""

    status_code = 400


class ConflictError(MovieRecError):
    """같은 사용자가 같은 영화에 리뷰를 중복 작성하려 할 때."""

    status_code = 409


class TransientError(MovieRecError):
    """저장소 타임아웃/연결 끊김 등. 작업 전체를 다시 시도해도 안전합니다."""

    status_code = 503


class ConcurrentUpdateError(TransientError):
    """다른 프로세스가 같은 영화 집계를 먼저 갱신함 (버전 불일치)."""


class DeadlineExceededError(TransientError):
    """호출자가 준 마감 시간을 넘김."""


class CancelledError(TransientError):
    """호출자가 작업을 취소함."""
