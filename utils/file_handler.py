"""파일 처리 유틸리티 모듈

상태 파일(JSON)과 로그/사운드 경로를 다루는 작은 함수들입니다.
"""

import json
import os
import re
import sys
from typing import Any, Dict, Optional

from utils.exceptions import FileHandlingError

_UNSAFE_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def resource_path(relative_path: str) -> str:
    """사운드 등 번들 리소스의 절대 경로. PyInstaller 실행 파일이면 압축 해제 폴더 기준."""
    base_path = getattr(sys, '_MEIPASS', None) or os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    return os.path.join(base_path, relative_path)


def ensure_directory_exists(directory_path: str) -> bool:
    try:
        os.makedirs(directory_path, exist_ok=True)
    except OSError as e:
        print(f"디렉토리 생성 실패 ({directory_path}): {e}")
        return False
    return True


def get_safe_filename(name: str, fallback: str = "") -> str:
    """스테이션 ID 등을 파일명에 넣을 수 있게 바꿉니다. 결과가 비면 fallback."""
    safe_name = _UNSAFE_CHARS.sub('_', name or "").strip()
    return safe_name or fallback


def read_json_object(path: str) -> Optional[Dict[str, Any]]:
    """JSON 객체 파일을 읽습니다. 파일이 없거나, 손상되었거나, 객체가 아니면 None."""
    if not os.path.exists(path):
        return None
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        print(f"JSON 파일 읽기 실패 ({path}): {e}")
        return None
    return data if isinstance(data, dict) else None


def write_json_atomic(path: str, data: Dict[str, Any]):
    """임시 파일에 쓴 뒤 os.replace로 교체합니다. 중간에 끊겨도 이전 내용이 남습니다."""
    folder = os.path.dirname(os.path.abspath(path))
    if not ensure_directory_exists(folder):
        raise FileHandlingError(f"폴더를 만들 수 없습니다: {folder}")
    temp_path = path + ".tmp"
    try:
        with open(temp_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, ensure_ascii=False, indent=4)
        os.replace(temp_path, path)
    except OSError as e:
        raise FileHandlingError(f"파일 저장 실패 ({path}): {e}") from e


def remove_file(path: str):
    """파일이 있으면 지웁니다."""
    if not os.path.exists(path):
        return
    try:
        os.remove(path)
    except OSError as e:
        raise FileHandlingError(f"파일 삭제 실패 ({path}): {e}") from e
