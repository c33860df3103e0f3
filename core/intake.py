"""하드웨어 스캔 이벤트 수신 모듈

스캐너 연동 쪽(다른 스레드일 수 있음)은 원시 이벤트 dict를 push()로 큐에 넣기만 하고,
실제 디코딩과 버퍼 저장은 process_pending()을 호출하는 스레드에서 도착 순서대로 처리합니다.
"""

import queue
import time
from typing import Any, Dict, List, Optional, Tuple

from core.models import SOURCE_HARDWARE, SOURCE_MANUAL, ScanItem
from utils.exceptions import ValidationError

# 우선순위 순서로 조회
DATA_STRING_KEYS: Tuple[str, ...] = (
    'com.symbol.datawedge.data_string',
    'data_string',
    'DATA_STRING',
    'data',
)
LABEL_TYPE_KEYS: Tuple[str, ...] = (
    'com.symbol.datawedge.label_type',
    'label_type',
    'labelType',
)
RESULT_KEYS: Tuple[str, ...] = ('COMMAND', 'RESULT', 'RESULT_CODE', 'RESULT_INFO')


def read_string_extra(event: Dict[str, Any], key: str) -> Optional[str]:
    value = event.get(key)
    return value if isinstance(value, str) else None


def first_string_extra(event: Dict[str, Any], keys: Tuple[str, ...]) -> Optional[str]:
    """키를 순서대로 조회해 처음 나오는 문자열 값을 반환합니다."""
    for key in keys:
        value = read_string_extra(event, key)
        if value is not None:
            return value
    return None


class ScanIntake:
    """원시 스캔 이벤트 큐를 소비해 정규화된 ScanItem을 버퍼에 추가합니다."""

    def __init__(self, normalizer, scan_buffer, event_logger=None, scan_delay_sec: float = 0.0,
                 clock=time.monotonic):
        self.normalizer = normalizer
        self.scan_buffer = scan_buffer
        self.event_logger = event_logger
        self.scan_delay_sec = scan_delay_sec
        self.clock = clock
        self.events: queue.Queue = queue.Queue()
        self.last_scan_time: Optional[float] = None

    def _log(self, event_type: str, detail: Optional[Dict[str, Any]] = None):
        if self.event_logger:
            self.event_logger.log_event(event_type, detail)

    def push(self, event: Dict[str, Any]):
        """스캐너 쪽에서 호출합니다. 스레드에 안전합니다."""
        self.events.put(event if isinstance(event, dict) else {})

    def process_pending(self, max_events: Optional[int] = None) -> List[ScanItem]:
        """큐에 쌓인 이벤트를 도착 순서대로 처리하고 새로 추가된 스캔을 반환합니다."""
        captured = []
        processed = 0
        while max_events is None or processed < max_events:
            try:
                event = self.events.get_nowait()
            except queue.Empty:
                break
            processed += 1
            try:
                item = self.handle_event(event)
            finally:
                self.events.task_done()
            if item:
                captured.append(item)
        return captured

    def wait_and_process(self, timeout: float = 1.0) -> List[ScanItem]:
        """이벤트가 올 때까지 최대 timeout초 기다린 뒤 처리합니다."""
        try:
            event = self.events.get(timeout=timeout)
        except queue.Empty:
            return []
        try:
            first = self.handle_event(event)
        finally:
            self.events.task_done()
        rest = self.process_pending()
        return ([first] if first else []) + rest

    def handle_event(self, event: Dict[str, Any]) -> Optional[ScanItem]:
        """이벤트 하나를 처리합니다. 스캔이 아니거나 무시된 경우 None을 반환합니다."""
        if any(key in event for key in RESULT_KEYS):
            self._log('SCANNER_RESULT', {
                'command': read_string_extra(event, 'COMMAND'),
                'result': first_string_extra(event, ('RESULT', 'RESULT_CODE')),
            })
            return None

        data_string = first_string_extra(event, DATA_STRING_KEYS)
        if data_string is None and not self.normalizer.has_byte_payload(event):
            return None

        now = self.clock()
        if self.last_scan_time is not None and now - self.last_scan_time < self.scan_delay_sec:
            self._log('SCAN_DEBOUNCED', {'data': data_string})
            return None
        self.last_scan_time = now

        code = self.normalizer.normalize(event, data_string)
        if not code:
            self._log('SCAN_EMPTY_IGNORED')
            return None

        item = ScanItem.capture(
            code=code,
            label_type=first_string_extra(event, LABEL_TYPE_KEYS),
            source=SOURCE_HARDWARE,
            raw_intent=event,
        )
        self.scan_buffer.add(item)
        self._log('SCAN_CAPTURED', {'id': item.id, 'code': code, 'label_type': item.label_type})
        return item

    def add_manual(self, code: str, label_type: Optional[str] = None) -> ScanItem:
        """수동 입력 코드를 버퍼에 추가합니다."""
        code = (code or '').strip()
        if not code:
            raise ValidationError("코드를 입력하세요.")
        item = ScanItem.capture(code=code, label_type=label_type, source=SOURCE_MANUAL)
        self.scan_buffer.add(item)
        self._log('SCAN_MANUAL_ADDED', {'id': item.id, 'code': code})
        return item
