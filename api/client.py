"""수집 서버 REST API 클라이언트"""

import math
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from utils.exceptions import ConfigurationError, NetworkError, ValidationError

API_KEY_HEADER = 'x-api-access'
DEFAULT_TIMEOUT = 30

_API_SCANS_SUFFIX = re.compile(r'/api/scans$', re.IGNORECASE)
_SCANS_SUFFIX = re.compile(r'/scans$', re.IGNORECASE)
_API_SUFFIX = re.compile(r'/api$', re.IGNORECASE)


def get_normalized_server_root(raw_url: Optional[str]) -> str:
    return (raw_url or '').strip().rstrip('/')


def get_api_root(raw_url: Optional[str]) -> str:
    """서버 주소에서 API 루트를 구합니다.

    '/api/scans'로 끝나면 '/scans'를 떼고, '/api'로 끝나면 그대로, 그 외에는 '/api'를 붙입니다.
    비어 있으면 빈 문자열을 반환합니다.
    """
    normalized = get_normalized_server_root(raw_url)
    if not normalized:
        return ''
    if _API_SCANS_SUFFIX.search(normalized):
        return _SCANS_SUFFIX.sub('', normalized)
    if _API_SUFFIX.search(normalized):
        return normalized
    return f"{normalized}/api"


def build_scans_url(raw_url: Optional[str]) -> str:
    api_root = get_api_root(raw_url)
    if not api_root:
        return ''
    return f"{api_root.rstrip('/')}/scans"


def get_request_error_message(error: BaseException, fallback: str) -> str:
    """HTTP 상태/본문이 있으면 그것으로, 없으면 예외 메시지로 사용자용 문구를 만듭니다."""
    response = getattr(error, 'response', None)
    if response is not None:
        body = response.text or ''
        if body:
            return f"{response.status_code} {response.reason}: {body}"
        return f"{response.status_code} {response.reason}"
    message = str(error)
    return message if message else fallback


def parse_fact_value(raw_value: str) -> float:
    """사용자가 입력한 수량 문자열(쉼표 소수점 허용)을 숫자로 변환합니다."""
    trimmed = (raw_value or '').replace(',', '.').strip()
    if not trimmed:
        raise ValidationError("값을 입력하세요.")
    try:
        value = float(trimmed)
    except ValueError:
        raise ValidationError(f"잘못된 숫자입니다: {raw_value}")
    if not math.isfinite(value):
        raise ValidationError(f"잘못된 숫자입니다: {raw_value}")
    return value


@dataclass
class PrismaSummary:
    name: str
    total_count: int
    fact_scanned: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PrismaSummary":
        return cls(data.get('name', ''), int(data.get('totalCount') or 0), data.get('factScanned'))


@dataclass
class TrainSummary:
    name: str
    total_count: int
    fact_loaded: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrainSummary":
        return cls(data.get('name', ''), int(data.get('totalCount') or 0), data.get('factLoaded'))


class ApiClient:
    """수집 서버와 통신하는 클라이언트. API 키가 있으면 모든 요청에 헤더로 붙입니다."""

    def __init__(self, base_url: str, api_key: Optional[str] = None, timeout: float = DEFAULT_TIMEOUT):
        self.api_root = get_api_root(base_url)
        if not self.api_root:
            raise ConfigurationError("서버 주소가 설정되지 않았습니다.")
        self.timeout = timeout
        self.session = requests.Session()
        api_key = (api_key or '').strip()
        if api_key:
            self.session.headers[API_KEY_HEADER] = api_key

    @property
    def scans_url(self) -> str:
        return f"{self.api_root}/scans"

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.api_root}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
            return response
        except requests.exceptions.RequestException as e:
            status_code = e.response.status_code if e.response is not None else None
            raise NetworkError(get_request_error_message(e, "요청 실패"), status_code) from e

    def send_scan_chunk(self, payload: Dict[str, Any]):
        """스캔 청크 하나를 전송합니다. 2xx 이외의 응답은 NetworkError로 변환됩니다."""
        self._request('POST', '/scans', json=payload)

    def fetch_prismas(self) -> List[PrismaSummary]:
        data = self._request('GET', '/prismas').json()
        return [PrismaSummary.from_dict(item) for item in (data or {}).get('prismas') or []]

    def fetch_trains(self) -> List[TrainSummary]:
        data = self._request('GET', '/trains').json()
        return [TrainSummary.from_dict(item) for item in (data or {}).get('trains') or []]

    def update_prisma_fact(self, prisma_name: str, fact_scanned: float) -> Dict[str, Any]:
        response = self._request('PATCH', f"/prismas/{quote(prisma_name, safe='')}/fact",
                                 json={'factScanned': fact_scanned})
        return response.json()

    def update_train_fact(self, train_name: str, fact_loaded: float) -> Dict[str, Any]:
        response = self._request('PATCH', f"/trains/{quote(train_name, safe='')}/fact",
                                 json={'factLoaded': fact_loaded})
        return response.json()

    def close(self):
        self.session.close()
