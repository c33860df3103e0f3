"""청크 단위 재개 가능 업로드 세션 관리 모듈

원본(버퍼, 폴더, 왜건, train 전체) 하나당 업로드 세션은 하나만 존재합니다.
세션은 분할 직후 저장되고, 청크 하나가 전송될 때마다 다시 저장되므로 프로세스가
중간에 종료되어도 다음 전송 시 첫 번째 미전송 청크부터 이어서 보냅니다.
"""

import threading
import time
from typing import Any, Callable, Dict, List, Optional

from core.models import (
    KIND_TRAIN, KIND_WAGON, SendMetadata, SendReport, SendSource, UploadChunk, UploadSession,
)
from utils.exceptions import NetworkError, SessionError, StorageError, ValidationError

SEND_SESSIONS_KEY = 'send_sessions'

DEFAULT_CHUNK_SIZE = 50
DEFAULT_WAGON_CHUNK_SIZE = 25
MAX_CHUNK_RETRY = 3
RETRY_DELAY_SEC = 15.0


def chunk_list(items: List[Any], size: int) -> List[List[Any]]:
    if size <= 0:
        raise ValueError("chunk size must be positive")
    return [items[idx:idx + size] for idx in range(0, len(items), size)]


class SessionStore:
    """모든 업로드 세션을 원본 키별로 하나의 저장소 키 아래에 보관합니다."""

    def __init__(self, store, key: str = SEND_SESSIONS_KEY):
        self.store = store
        self.key = key

    def _read_all(self) -> Dict[str, Any]:
        try:
            raw = self.store.get(self.key, {})
        except StorageError as e:
            print(f"업로드 세션 읽기 실패: {e}")
            return {}
        return raw if isinstance(raw, dict) else {}

    def _write_all(self, sessions: Dict[str, Any]):
        if sessions:
            self.store.set(self.key, sessions)
        else:
            self.store.delete(self.key)

    def load(self, source_key: str) -> Optional[UploadSession]:
        raw = self._read_all().get(source_key)
        if not raw:
            return None
        try:
            return UploadSession.from_dict(raw)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            print(f"업로드 세션 복원 실패 ({source_key}): {e}")
            return None

    def load_all(self) -> List[UploadSession]:
        sessions = []
        for source_key in self._read_all():
            session = self.load(source_key)
            if session:
                sessions.append(session)
        return sessions

    def save(self, session: UploadSession):
        sessions = self._read_all()
        sessions[session.source_key] = session.to_dict()
        self._write_all(sessions)

    def delete(self, source_key: str) -> bool:
        sessions = self._read_all()
        if source_key not in sessions:
            return False
        del sessions[source_key]
        self._write_all(sessions)
        return True


class UploadSessionManager:
    """원본의 스캔을 고정 크기 청크로 나누어 순서대로, 재시도하며 전송합니다."""

    def __init__(self, session_store: SessionStore, client_factory: Callable[[], Any],
                 chunk_size: int = DEFAULT_CHUNK_SIZE,
                 wagon_chunk_size: int = DEFAULT_WAGON_CHUNK_SIZE,
                 max_retry: int = MAX_CHUNK_RETRY,
                 retry_delay_sec: float = RETRY_DELAY_SEC,
                 event_logger=None,
                 sleep: Callable[[float], None] = time.sleep):
        self.session_store = session_store
        self.client_factory = client_factory
        self.chunk_size = chunk_size
        self.wagon_chunk_size = wagon_chunk_size
        self.max_retry = max(1, max_retry)
        self.retry_delay_sec = retry_delay_sec
        self.event_logger = event_logger
        self.sleep = sleep
        self._active_keys = set()
        self._active_lock = threading.Lock()

    def _log(self, event_type: str, detail: Optional[Dict[str, Any]] = None):
        if self.event_logger:
            self.event_logger.log_event(event_type, detail)

    def chunk_size_for(self, kind: str) -> int:
        return self.wagon_chunk_size if kind in (KIND_WAGON, KIND_TRAIN) else self.chunk_size

    def is_sending(self, source_key: str) -> bool:
        with self._active_lock:
            return source_key in self._active_keys

    def pending_sessions(self) -> List[UploadSession]:
        """재개를 기다리는 미완료 세션 목록"""
        return [session for session in self.session_store.load_all() if not session.is_complete]

    def discard(self, source_key: str) -> bool:
        """사용자 요청으로 저장된 세션을 버립니다."""
        if self.is_sending(source_key):
            raise SessionError(f"'{source_key}' 전송이 진행 중입니다.")
        removed = self.session_store.delete(source_key)
        if removed:
            self._log('UPLOAD_SESSION_DISCARDED', {'source': source_key})
        return removed

    def build_session(self, source: SendSource, metadata: SendMetadata) -> UploadSession:
        """원본을 청크로 나눕니다. 왜건에서 온 청크는 왜건 경계를 넘지 않고 왜건 이름이 붙습니다."""
        size = self.chunk_size_for(source.kind)
        chunks = []
        for group in source.groups:
            payload_scans = [scan.to_payload() for scan in group.scans]
            for batch in chunk_list(payload_scans, size):
                chunks.append(UploadChunk(scans=batch, wagon_name=group.wagon_name))

        return UploadSession(
            source_key=source.key,
            device={'id': metadata.device_id, 'app': metadata.app_name},
            total=source.count,
            chunk_size=size,
            chunks=chunks,
            comment=metadata.comment or None,
            target_type=metadata.target_type,
            target_name=metadata.target_name or None,
        )

    def send(self, source: SendSource, metadata: SendMetadata) -> SendReport:
        """원본을 전송합니다. 저장된 미완료 세션이 있으면 그 세션을 이어서 보냅니다."""
        with self._active_lock:
            if source.key in self._active_keys:
                raise SessionError(f"'{source.label}' 전송이 이미 진행 중입니다.")
            self._active_keys.add(source.key)
        try:
            return self._send(source, metadata)
        finally:
            with self._active_lock:
                self._active_keys.discard(source.key)

    def _send(self, source: SendSource, metadata: SendMetadata) -> SendReport:
        # 청크 전송 전에 서버 설정부터 확인 (설정 오류 시 세션을 만들지 않음)
        client = self.client_factory()

        session = self.session_store.load(source.key)
        if session and session.is_complete:
            self.session_store.delete(source.key)
            self._log('UPLOAD_STALE_SESSION_DROPPED', {'source': source.key})
            session = None

        resumed = session is not None
        if session is None:
            if source.count == 0:
                raise ValidationError(f"{source.label}에 전송할 스캔이 없습니다.")
            session = self.build_session(source, metadata)
            self.session_store.save(session)
            self._log('UPLOAD_SESSION_CREATED', {
                'source': source.key, 'total': session.total,
                'chunks': len(session.chunks), 'chunk_size': session.chunk_size,
            })
        else:
            self._log('UPLOAD_SESSION_RESUMED', {
                'source': source.key, 'sent': session.sent_count, 'chunks': len(session.chunks),
            })

        for index, chunk in enumerate(session.chunks):
            if chunk.sent:
                continue
            try:
                self._send_chunk_with_retry(client, session.build_payload(chunk), source.key, index)
            except NetworkError as e:
                self._log('UPLOAD_FAILED', {
                    'source': source.key, 'chunk': index, 'sent': session.sent_count,
                    'status': e.status_code, 'error': e.message,
                })
                raise
            chunk.sent = True
            self.session_store.save(session)
            self._log('UPLOAD_CHUNK_SENT', {
                'source': source.key, 'chunk': index, 'scans': len(chunk.scans), 'wagon': chunk.wagon_name,
            })

        self.session_store.delete(source.key)
        report = SendReport(source.key, session.scan_count, len(session.chunks), resumed)
        self._log('UPLOAD_COMPLETE', {
            'source': source.key, 'total_sent': report.total_sent, 'chunks': report.chunk_count,
        })
        return report

    def _send_chunk_with_retry(self, client, payload: Dict[str, Any], source_key: str, index: int):
        attempt = 0
        while True:
            try:
                client.send_scan_chunk(payload)
                return
            except NetworkError as e:
                attempt += 1
                if attempt >= self.max_retry:
                    raise
                delay = self.retry_delay_sec * attempt
                self._log('UPLOAD_CHUNK_RETRY', {
                    'source': source_key, 'chunk': index, 'attempt': attempt,
                    'delay_sec': delay, 'error': e.message,
                })
                self.sleep(delay)
