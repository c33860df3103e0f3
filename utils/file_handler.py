"""파일 처리 유틸리티 모듈"""

import os
import re
import sys
import tempfile


def get_application_path() -> str:
    """실행 파일(또는 메인 스크립트)이 위치한 디렉토리를 반환합니다."""
    if getattr(sys, 'frozen', False):
        return os.path.dirname(sys.executable)
    return os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def resolve_path(path: str, base_path: str = None) -> str:
    """상대 경로를 애플리케이션 경로 기준의 절대 경로로 변환합니다."""
    if os.path.isabs(path):
        return path
    return os.path.join(base_path or get_application_path(), path)


def ensure_directory_exists(directory_path: str) -> bool:
    """디렉토리가 없으면 생성합니다."""
    try:
        if not os.path.exists(directory_path):
            os.makedirs(directory_path, exist_ok=True)
        return True
    except OSError as e:
        print(f"디렉토리 생성 실패: {e}")
        return False


def get_safe_filename(filename: str) -> str:
    """파일명에서 안전하지 않은 문자를 제거합니다."""
    # 파일명에 사용할 수 없는 문자들을 언더스코어로 대체
    safe_name = re.sub(r'[<>:"/\\|?*]', '_', filename)
    return safe_name.strip()


def write_text_atomic(file_path: str, content: str):
    """임시 파일에 먼저 쓴 뒤 교체하여, 쓰는 도중 종료되어도 기존 파일이 깨지지 않게 합니다."""
    directory = os.path.dirname(file_path) or '.'
    fd, temp_path = tempfile.mkstemp(dir=directory, prefix='.tmp_', suffix='.json')
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, file_path)
    except BaseException:
        if os.path.exists(temp_path):
            os.remove(temp_path)
        raise
