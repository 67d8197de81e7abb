"""설정에 따라 원장 저장소를 만듭니다."""

from core.firestore_store import FirestoreLedgerStore
from core.ledger_store import InMemoryLedgerStore, LedgerStore
from utils.config import ConfigManager
from utils.exceptions import ConfigurationError

BACKEND_MEMORY = "memory"
BACKEND_FIRESTORE = "firestore"


def create_ledger_store(config: ConfigManager) -> LedgerStore:
    backend = str(config.get('ledger.backend', BACKEND_MEMORY)).strip().lower()
    if backend == BACKEND_FIRESTORE:
        return FirestoreLedgerStore(
            project_id=config.get('ledger.project_id', ""),
            api_key=config.get('ledger.api_key', ""),
            database=config.get('ledger.database', "(default)"),
            timeout=float(config.get('ledger.timeout_sec', 12)),
        )
    if backend == BACKEND_MEMORY:
        print("경고: 메모리 원장을 사용합니다. 프로그램 종료 시 구간 기록이 사라집니다.")
        return InMemoryLedgerStore()
    raise ConfigurationError(f"알 수 없는 원장 종류입니다: '{backend}' (memory 또는 firestore)")
