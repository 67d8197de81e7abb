"""통합 테스트 - 모듈 구성과 기본 설정 확인"""

import unittest
import tempfile
import shutil
import json
import sys
import os

# 상위 디렉토리의 모듈들을 import 하기 위해 경로 추가
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.ledger_factory import create_ledger_store
from core.ledger_store import InMemoryLedgerStore
from core.firestore_store import FirestoreLedgerStore
from utils.config import ConfigManager
from utils.exceptions import ConfigurationError


class TestIntegration(unittest.TestCase):
    """설정 → 원장 저장소 선택 통합 테스트"""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config = ConfigManager("config.json", base_dir=self.temp_dir)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_default_backend_is_memory(self):
        self.assertIsInstance(create_ledger_store(self.config), InMemoryLedgerStore)

    def test_firestore_backend(self):
        self.config.set('ledger.backend', 'Firestore')
        self.config.set('ledger.project_id', 'demo-project')
        self.config.set('ledger.timeout_sec', 5)

        store = create_ledger_store(self.config)

        self.assertIsInstance(store, FirestoreLedgerStore)
        self.assertEqual(store.timeout, 5.0)
        self.assertEqual(store.documents_path, "projects/demo-project/databases/(default)/documents")

    def test_firestore_without_project_fails(self):
        self.config.set('ledger.backend', 'firestore')
        with self.assertRaises(ConfigurationError):
            create_ledger_store(self.config)

    def test_unknown_backend_fails(self):
        self.config.set('ledger.backend', 'sqlite')
        with self.assertRaises(ConfigurationError):
            create_ledger_store(self.config)

    def test_default_config_file_written(self):
        with open(os.path.join(self.temp_dir, "config.json"), 'r', encoding='utf-8') as f:
            config_data = json.load(f)

        required_sections = ['app', 'station', 'ledger', 'timer', 'leak', 'ui', 'sound']
        for section in required_sections:
            self.assertIn(section, config_data, f"설정 파일에 {section} 섹션이 없습니다")


class TestSystemHealth(unittest.TestCase):
    """시스템 건강성 검사"""

    def test_required_files_exist(self):
        """필수 파일들이 존재하는지 확인"""
        base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
        required_files = [
            'Pneumatic_tester.py',
            'pyproject.toml',
            'core/models.py',
            'core/validators.py',
            'core/epoch_timer.py',
            'core/ledger.py',
            'core/ledger_store.py',
            'core/firestore_store.py',
            'core/recovery.py',
            'core/session.py',
            'utils/config.py',
            'utils/file_handler.py',
            'utils/logger.py',
            'utils/exceptions.py',
            'ui/base_ui.py',
            'ui/components.py',
            'ui/dialogs.py',
            'tests/run_tests.py'
        ]

        for file_path in required_files:
            full_path = os.path.join(base_dir, file_path)
            self.assertTrue(os.path.exists(full_path),
                            f"필수 파일 {file_path}이 존재하지 않습니다")

    def test_module_imports(self):
        """핵심 모듈들이 정상적으로 import되는지 확인"""
        try:
            from core.models import VesselIdentity, OperatorIdentity, SessionState
            from core.session import SessionCoordinator
            from core.ledger import SegmentLedger
            from utils.file_handler import resource_path
            from utils.logger import EventLogger
            from utils.exceptions import PneumaticTestError
        except ImportError as e:
            self.fail(f"핵심 모듈 import 실패: {e}")

    def test_test_coverage_completeness(self):
        """테스트 모듈 구성 확인"""
        expected_test_modules = [
            'test_config',
            'test_models',
            'test_validators',
            'test_epoch_timer',
            'test_ledger',
            'test_firestore_store',
            'test_recovery',
            'test_session',
            'test_logger',
            'test_file_handler',
            'test_integration'
        ]

        test_dir = os.path.dirname(os.path.abspath(__file__))
        existing_test_files = [f[:-3] for f in os.listdir(test_dir)
                               if f.startswith('test_') and f.endswith('.py')]

        for module in expected_test_modules:
            self.assertIn(module, existing_test_files,
                          f"필수 테스트 모듈 {module}이 누락되었습니다")


if __name__ == '__main__':
    unittest.main()
