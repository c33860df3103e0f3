"""커스텀 예외 클래스들"""

from typing import Optional


class ScanClientError(Exception):
    """스캔 클라이언트의 기본 예외 클래스"""
    pass


class ConfigurationError(ScanClientError):
    """설정 관련 오류 (서버 주소 미설정 등)"""
    pass


class ValidationError(ScanClientError):
    """데이터 검증 관련 오류"""
    pass


class SessionError(ScanClientError):
    """업로드 세션 관리 관련 오류"""
    pass


class StorageError(ScanClientError):
    """저장소 읽기/쓰기 오류"""
    pass


class NetworkError(ScanClientError):
    """네트워크 관련 오류"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
