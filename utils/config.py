"""설정 관리 모듈"""

import json
import os
import sys
from typing import Dict, Any, Optional


def get_application_path() -> str:
    """실행 파일(또는 메인 스크립트)이 위치한 폴더를 반환합니다."""
    if getattr(sys, 'frozen', False):
        return os.path.dirname(sys.executable)
    return os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


class ConfigManager:
    """애플리케이션 설정을 관리하는 클래스"""

    def __init__(self, config_file: str = "config.json", base_dir: Optional[str] = None):
        self.config_file = config_file
        self.base_dir = base_dir or get_application_path()
        self.config = self._load_config()

    @property
    def config_path(self) -> str:
        return os.path.join(self.base_dir, self.config_file)

    def _load_config(self) -> Dict[str, Any]:
        """설정 파일을 로드합니다."""
        try:
            if os.path.exists(self.config_path):
                with open(self.config_path, 'r', encoding='utf-8') as f:
                    loaded = json.load(f)
                if isinstance(loaded, dict):
                    return loaded
                print(f"설정 파일 형식 오류: 최상위 값이 객체가 아닙니다 ({self.config_path})")
            return self._create_default_config()
        except (OSError, json.JSONDecodeError) as e:
            print(f"설정 파일 로드 오류: {e}")
            return self._create_default_config()

    def _create_default_config(self) -> Dict[str, Any]:
        """기본 설정을 생성합니다."""
        default_config = {
            "app": {
                "name": "Pneumatic Test Timer",
                "version": "v1.0.0",
                "description": "기밀 시험 기록 시스템"
            },
            "station": {
                "state_dir": "state",
                "log_dir": "logs"
            },
            "ledger": {
                "backend": "memory",
                "project_id": "",
                "database": "(default)",
                "api_key": "",
                "timeout_sec": 12
            },
            "timer": {
                "refresh_ms": 250
            },
            "leak": {
                "reasons": ["O-ring", "Weld", "Fitting", "Gasket", "Others"]
            },
            "ui": {
                "window_title": "기밀 시험 타이머",
                "window_geometry": "1000x720",
                "scale_factor": 1.0
            },
            "sound": {
                "enabled": True
            }
        }
        self.save_config(default_config)
        return default_config

    def get(self, key_path: str, default=None):
        """점 표기법으로 설정값을 가져옵니다. 예: 'ledger.timeout_sec'"""
        keys = key_path.split('.')
        value = self.config

        try:
            for key in keys:
                value = value[key]
            return value
        except (KeyError, TypeError):
            return default

    def set(self, key_path: str, value):
        """점 표기법으로 설정값을 설정합니다."""
        keys = key_path.split('.')
        config = self.config

        for key in keys[:-1]:
            if key not in config or not isinstance(config[key], dict):
                config[key] = {}
            config = config[key]

        config[keys[-1]] = value

    def save_config(self, config_data=None):
        """설정을 파일로 저장합니다."""
        try:
            data = config_data if config_data is not None else self.config
            with open(self.config_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, ensure_ascii=False, indent=4)
        except OSError as e:
            print(f"설정 파일 저장 오류: {e}")

    def resolve_path(self, key_path: str, default: str) -> str:
        """설정에 적힌 상대 경로를 애플리케이션 폴더 기준의 절대 경로로 바꿉니다."""
        path = self.get(key_path, default) or default
        if os.path.isabs(path):
            return path
        return os.path.join(self.base_dir, path)
