"""스캔 코드 정규화 모듈

하드웨어 스캐너 이벤트에는 같은 값이 여러 벤더 키에 서로 다른 형태(문자열, 중첩된
숫자 배열)로 실려 옵니다. 인코딩이 일정하지 않으므로 가능한 디코딩 후보를 모두 만들어
점수를 매기고 가장 깨끗한 문자열을 고릅니다.
"""

import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

REPLACEMENT_CHAR = '\ufffd'
REPLACEMENT_PENALTY = 5

# 우선순위 순서
BYTE_PAYLOAD_KEYS: Tuple[str, ...] = (
    'com.symbol.datawedge.decode_data',
    'decode_data',
    'com.symbol.datawedge.raw_data',
    'raw_data',
)

DEFAULT_CODE_PAGE = 'cp1250'

_CONTROL_CHARS = re.compile(r'[\x00-\x1f\x7f]')


def build_code_page_table(code_page: str) -> Tuple[str, ...]:
    """0x80~0xFF 바이트에 대응하는 128개 문자 테이블을 만듭니다.

    코드 페이지에 정의되지 않은 위치는 같은 코드 포인트로 둡니다.
    """
    table = []
    for byte in range(0x80, 0x100):
        char = bytes([byte]).decode(code_page, errors='ignore')
        table.append(char or chr(byte))
    return tuple(table)


def collect_bytes(value: Any) -> List[int]:
    """중첩 배열을 순서대로 펼쳐 0~255 범위의 바이트 목록으로 만듭니다."""
    if value is None:
        return []
    if isinstance(value, (bytes, bytearray)):
        return list(value)

    result: List[int] = []
    stack = [value]
    while stack:
        current = stack.pop()
        if isinstance(current, (list, tuple)):
            stack.extend(reversed(current))
        elif isinstance(current, (bytes, bytearray)):
            result.extend(current)
        elif isinstance(current, bool):
            continue
        elif isinstance(current, int):
            result.append(current % 256)
        elif isinstance(current, float) and math.isfinite(current):
            result.append(int(current) % 256)
    return result


def decode_utf8(data: Iterable[int]) -> str:
    return bytes(data).decode('utf-8', errors='replace')


def decode_single_byte(data: Iterable[int], table: Tuple[str, ...]) -> str:
    return ''.join(chr(b) if b < 0x80 else table[b - 0x80] for b in data)


def sanitize_printable(value: str) -> str:
    return _CONTROL_CHARS.sub('', value).strip()


@dataclass(frozen=True)
class Candidate:
    value: str
    score: int


def evaluate_candidate(value: Optional[str]) -> Optional[Candidate]:
    """정제 후 길이에서 대체 문자 개수의 5배를 뺀 점수를 매깁니다."""
    if not value:
        return None
    sanitized = sanitize_printable(value)
    if not sanitized:
        return None
    score = len(sanitized) - sanitized.count(REPLACEMENT_CHAR) * REPLACEMENT_PENALTY
    return Candidate(sanitized, score)


def strip_corrupted_segments(value: str) -> str:
    """';'로 나뉜 'key:value' 구간에서 한쪽만 깨졌으면 깨지지 않은 쪽만 남깁니다."""
    segments = []
    for part in value.split(';'):
        trimmed = part.strip()
        if not trimmed:
            continue

        left, sep, right = trimmed.partition(':')
        if not sep:
            segments.append(trimmed)
            continue

        left_broken = REPLACEMENT_CHAR in left
        right_broken = REPLACEMENT_CHAR in right
        if left_broken and not right_broken:
            segments.append(right.strip())
        elif right_broken and not left_broken:
            segments.append(left.strip())
        else:
            segments.append(trimmed)

    return '; '.join(segment for segment in segments if segment)


class CodeNormalizer:
    """원시 스캔 이벤트를 하나의 정리된 문자열로 변환합니다."""

    def __init__(self, code_page: str = DEFAULT_CODE_PAGE,
                 byte_keys: Tuple[str, ...] = BYTE_PAYLOAD_KEYS):
        self.code_page = code_page
        self.byte_keys = byte_keys
        self._table = build_code_page_table(code_page)

    def has_byte_payload(self, event: Dict[str, Any]) -> bool:
        return any(collect_bytes(event.get(key)) for key in self.byte_keys)

    def candidates(self, event: Dict[str, Any]) -> List[Candidate]:
        """바이트 키마다 UTF-8과 코드 페이지 디코딩 후보를 우선순위 순서로 만듭니다."""
        found = []
        for key in self.byte_keys:
            data = collect_bytes(event.get(key))
            if not data:
                continue
            for decoded in (decode_utf8(data), decode_single_byte(data, self._table)):
                candidate = evaluate_candidate(decoded)
                if candidate:
                    found.append(candidate)
        return found

    def normalize(self, event: Dict[str, Any], fallback: Optional[str] = None) -> str:
        """가장 점수가 높은 후보를 골라 깨진 구간을 정리해 반환합니다. 예외를 던지지 않습니다."""
        fallback_trimmed = (fallback or '').strip()
        best = evaluate_candidate(fallback_trimmed)
        if best is None and fallback_trimmed:
            best = Candidate(fallback_trimmed, len(fallback_trimmed))

        for candidate in self.candidates(event):
            if best is None or candidate.score > best.score:
                best = candidate

        resolved = best.value if best else fallback_trimmed
        return strip_corrupted_segments(resolved)
