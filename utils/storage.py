"""키-값 JSON 저장소 모듈

스캔 버퍼와 업로드 세션을 프로세스 재시작 후에도 유지하기 위한 영속 저장소입니다.
키 하나당 JSON 파일 하나를 사용합니다.
"""

import json
import os
import threading
from typing import Any

from utils.exceptions import StorageError
from utils.file_handler import ensure_directory_exists, get_safe_filename, write_text_atomic


class JsonFileStore:
    """문자열 키로 JSON 직렬화 가능한 값을 저장/조회/삭제합니다."""

    def __init__(self, base_dir: str):
        self.base_dir = base_dir
        self._lock = threading.Lock()
        if not ensure_directory_exists(base_dir):
            raise StorageError(f"저장소 디렉토리를 만들 수 없습니다: {base_dir}")

    def _path_for(self, key: str) -> str:
        return os.path.join(self.base_dir, f"{get_safe_filename(key)}.json")

    def get(self, key: str, default: Any = None) -> Any:
        """키에 해당하는 값을 반환합니다. 없으면 default를 반환합니다."""
        path = self._path_for(key)
        with self._lock:
            if not os.path.exists(path):
                return default
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    return json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise StorageError(f"'{key}' 읽기 실패: {e}") from e

    def set(self, key: str, value: Any):
        """값을 저장합니다."""
        path = self._path_for(key)
        try:
            content = json.dumps(value, ensure_ascii=False, indent=4)
        except (TypeError, ValueError) as e:
            raise StorageError(f"'{key}' 직렬화 실패: {e}") from e
        with self._lock:
            try:
                write_text_atomic(path, content)
            except OSError as e:
                raise StorageError(f"'{key}' 저장 실패: {e}") from e

    def delete(self, key: str):
        """키를 삭제합니다. 없는 키는 무시합니다."""
        path = self._path_for(key)
        with self._lock:
            if os.path.exists(path):
                try:
                    os.remove(path)
                except OSError as e:
                    raise StorageError(f"'{key}' 삭제 실패: {e}") from e

    def has(self, key: str) -> bool:
        return os.path.exists(self._path_for(key))
