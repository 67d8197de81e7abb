"""세션 복구용 로컬 상태 파일

확정된 전환이 있을 때마다 세션 상태를 문자열 키/값으로 기록해 두었다가,
프로그램이 비정상 종료된 뒤 다시 켜질 때 한 번 읽어 화면과 스톱워치를 복원합니다.
"""

from typing import Dict, Optional

from utils.file_handler import read_json_object, write_json_atomic, remove_file

KEY_RUNNING = "running"
KEY_START_ISO = "start_iso"
KEY_START_EPOCH = "start_epoch"
KEY_SERIAL = "serial"
KEY_SEGMENT_ID = "segment_id"
KEY_VESSEL = "vessel"
KEY_OPERATOR = "operator"
KEY_CONFIRMED_VESSEL = "confirmed_vessel"
KEY_CONFIRMED_OPERATOR = "confirmed_operator"
KEY_MANPOWER = "manpower"

ALL_KEYS = (KEY_RUNNING, KEY_START_ISO, KEY_START_EPOCH, KEY_SERIAL, KEY_SEGMENT_ID,
            KEY_VESSEL, KEY_OPERATOR, KEY_CONFIRMED_VESSEL, KEY_CONFIRMED_OPERATOR, KEY_MANPOWER)


def state_file_name(computer_id: str) -> str:
    return f"_current_pneumatic_state_{computer_id}.json"


class RecoveryStore:
    """세션 스냅샷을 JSON 파일 하나에 보관합니다."""

    def __init__(self, state_path: str):
        self.state_path = state_path

    def read(self) -> Dict[str, str]:
        """저장된 스냅샷을 읽습니다. 파일이 없거나 손상되었으면 빈 딕셔너리."""
        data = read_json_object(self.state_path) or {}
        return {str(k): "" if v is None else str(v) for k, v in data.items() if k in ALL_KEYS}

    def write(self, values: Dict[str, str]):
        """스냅샷 전체를 원자적으로 교체합니다. 실패하면 FileHandlingError."""
        write_json_atomic(self.state_path, values)

    def clear(self):
        remove_file(self.state_path)

    @staticmethod
    def get_int(values: Dict[str, str], key: str) -> Optional[int]:
        """정수 값을 꺼냅니다. 비어 있거나 숫자가 아니면 None."""
        try:
            return int(values.get(key, ""))
        except ValueError:
            return None
