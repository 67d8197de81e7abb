"""시험 세션 상태 관리 모듈

단계: AWAITING_OPERATOR → AWAITING_VESSEL → READY → RUNNING
합격/누설 처리가 끝나면 로컬 세션 전체를 비우고 처음 단계로 돌아갑니다.

원장을 바꾸는 명령(start/pass_test/report_leak)이 진행 중일 때는 busy 상태가 되어
모든 can_* 조건이 거짓이 됩니다. UI는 can_* 값으로 버튼을 켜고 끄며,
조건이 거짓인 명령이 호출되면 StateGuardViolation이 발생합니다.
"""

import asyncio
import datetime
import json
from typing import Any, Dict, Optional

from core.epoch_timer import EpochTimer, epoch_to_datetime, parse_iso, to_iso
from core.ledger import SegmentLedger
from core.models import SessionState, Phase, VesselIdentity, OperatorIdentity
from core.recovery import (RecoveryStore, KEY_RUNNING, KEY_START_ISO, KEY_START_EPOCH, KEY_SERIAL,
                           KEY_SEGMENT_ID, KEY_VESSEL, KEY_OPERATOR, KEY_CONFIRMED_VESSEL,
                           KEY_CONFIRMED_OPERATOR, KEY_MANPOWER)
from core.validators import (parse_operator, parse_vessel, validate_manpower, validate_leak_report)
from utils.async_helpers import run_with_timeout, create_safe_task
from utils.exceptions import (PneumaticTestError, FileHandlingError, ValidationError,
                              StateGuardViolation)
from utils.logger import EventLogger

DEFAULT_LEDGER_TIMEOUT_SEC = 12.0


def _load_vessel(raw: Optional[str]) -> Optional[VesselIdentity]:
    """스냅샷에 저장된 용기 정보를 다시 검증하여 읽습니다. 손상되었으면 None."""
    if not raw:
        return None
    try:
        return parse_vessel(VesselIdentity.from_dict(json.loads(raw)).to_payload())
    except (ValueError, KeyError, TypeError, AttributeError, ValidationError):
        return None


def _load_operator(raw: Optional[str]) -> Optional[OperatorIdentity]:
    if not raw:
        return None
    try:
        return parse_operator(OperatorIdentity.from_dict(json.loads(raw)).to_payload())
    except (ValueError, KeyError, TypeError, AttributeError, ValidationError):
        return None


class SessionCoordinator:
    """작업자/용기 확인부터 시험 시작·합격·누설까지의 전환을 담당합니다."""

    def __init__(self, ledger: SegmentLedger, recovery: RecoveryStore,
                 timer: Optional[EpochTimer] = None,
                 event_logger: Optional[EventLogger] = None,
                 timeout_sec: float = DEFAULT_LEDGER_TIMEOUT_SEC):
        self.ledger = ledger
        self.recovery = recovery
        self.timer = timer or EpochTimer()
        self.event_logger = event_logger
        self.timeout_sec = timeout_sec
        self.state = SessionState()
        self.busy = False
        self.prompting = False
        # 누설 버튼을 누른 시각. TEST 종료/LEAK 시작 시각으로 기록됩니다.
        self.leak_marked_at: Optional[datetime.datetime] = None
        self.header_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # 명령 가능 여부 (UI 버튼 활성화 조건)
    # ------------------------------------------------------------------

    @property
    def can_scan_operator(self) -> bool:
        return not self.busy and not self.state.running and not self.state.operator_confirmed

    @property
    def can_confirm_operator(self) -> bool:
        return self.can_scan_operator and self.state.operator is not None

    @property
    def can_scan_vessel(self) -> bool:
        return (not self.busy and not self.state.running
                and self.state.operator_confirmed and not self.state.vessel_confirmed)

    @property
    def can_confirm_vessel(self) -> bool:
        return self.can_scan_vessel and self.state.vessel is not None

    @property
    def can_start(self) -> bool:
        s = self.state
        return (not self.busy and not self.prompting and not s.running
                and s.operator_confirmed and s.vessel_confirmed)

    @property
    def can_finish(self) -> bool:
        """합격/누설 버튼 조건"""
        return (not self.busy and not self.prompting
                and self.state.running and self.state.active_segment_id is not None)

    @property
    def can_reset(self) -> bool:
        return not self.busy and not self.prompting and not self.state.running

    def _guard(self, allowed: bool, command: str):
        if not allowed:
            raise StateGuardViolation(
                f"'{command}' 명령을 지금 실행할 수 없습니다 (단계: {self.state.phase.value}, busy={self.busy}).")

    def elapsed(self) -> int:
        return self.timer.elapsed()

    # ------------------------------------------------------------------
    # 작업자/용기 확인
    # ------------------------------------------------------------------

    def scan_operator(self, text: str) -> OperatorIdentity:
        self._guard(self.can_scan_operator, "작업자 스캔")
        operator = parse_operator(text)
        self.state.operator = operator
        return operator

    def confirm_operator(self, manpower_raw) -> int:
        self._guard(self.can_confirm_operator, "작업자 확인")
        manpower = validate_manpower(manpower_raw)
        if manpower is None:
            raise ValidationError("투입 인원을 입력한 뒤 확인을 눌러주세요.")

        self.state.manpower = manpower
        self.state.operator_confirmed = True
        self.state.phase = Phase.AWAITING_VESSEL
        if self.event_logger:
            self.event_logger.set_operator(self.state.operator.employee_name)
        self._persist()
        self._log_event('OPERATOR_CONFIRMED', {
            'employee_id': self.state.operator.employee_id,
            'station': self.state.operator.station,
            'manpower': manpower,
        })
        return manpower

    def scan_vessel(self, text: str) -> VesselIdentity:
        self._guard(self.can_scan_vessel, "용기 스캔")
        vessel = parse_vessel(text)
        self.state.vessel = vessel
        return vessel

    def confirm_vessel(self):
        self._guard(self.can_confirm_vessel, "용기 확인")
        self.state.vessel_confirmed = True
        self.state.phase = Phase.READY
        self._persist()
        self._log_event('VESSEL_CONFIRMED', {
            'serial': self.state.vessel.serial,
            'project_name': self.state.vessel.project_name,
            'vessel_type': self.state.vessel.vessel_type.value,
        })

    # ------------------------------------------------------------------
    # 시험 시작 / 합격 / 누설
    # ------------------------------------------------------------------

    async def start(self) -> str:
        """스톱워치를 먼저 시작한 뒤 TEST 구간을 엽니다. 실패하면 시작 전 상태로 되돌립니다."""
        self._guard(self.can_start, "시작")
        s = self.state
        self.busy = True
        try:
            start_epoch = self.timer.start()
            started_at = epoch_to_datetime(start_epoch)
            s.running = True
            s.session_start_epoch = start_epoch
            s.session_start_time = to_iso(started_at)

            try:
                segment_id = await run_with_timeout(
                    self.ledger.open_test_segment(s.vessel, s.operator, s.manpower, started_at),
                    self.timeout_sec, "TEST 시작")
            except Exception as e:
                self.timer.clear()
                s.running = False
                s.session_start_epoch = None
                s.session_start_time = None
                s.phase = Phase.READY
                self._log_event('TEST_START_FAILED', {'serial': s.vessel.serial, 'error': str(e)})
                raise

            s.active_segment_id = segment_id
            s.phase = Phase.RUNNING
            self._persist()
            self._log_event('TEST_START', {
                'serial': s.vessel.serial,
                'segment_id': segment_id,
                'start_time': s.session_start_time,
                'manpower': s.manpower,
            })
        finally:
            self.busy = False

        # 헤더 갱신은 busy 밖에서 별도 태스크로 실행
        self.header_task = create_safe_task(self._upsert_vessel_header(s.vessel), name="vessel-header")
        return segment_id

    def begin_prompt(self, kind: str = "PASS"):
        """합격 비고/누설 사유 입력 창을 여는 동안 화면 갱신을 멈춥니다."""
        self._guard(self.can_finish, f"{kind} 입력")
        self.prompting = True
        self.timer.stop()
        if kind == "LEAK":
            self.leak_marked_at = epoch_to_datetime(self.timer.now())
        self._log_event('PROMPT_OPENED', {'kind': kind, 'segment_id': self.state.active_segment_id})

    def cancel_prompt(self, kind: str = "PASS"):
        """입력 취소. 원장은 건드리지 않고 원래 시작 시각 그대로 스톱워치를 이어갑니다."""
        self._guard(self.prompting and not self.busy, f"{kind} 취소")
        self.prompting = False
        self.leak_marked_at = None
        self.timer.resume()
        self._log_event('PROMPT_CANCELLED', {'kind': kind, 'elapsed_sec': self.timer.elapsed()})

    async def pass_test(self, remark: Optional[str] = None) -> str:
        """현재 TEST 구간을 합격으로 닫고 세션을 비웁니다. 종료 시각을 반환합니다."""
        self._guard(self._can_close(), "합격")
        s = self.state
        segment_id = s.active_segment_id
        self.busy = True
        self.timer.stop()
        try:
            end_time = await run_with_timeout(
                self.ledger.close_test_as_pass(s.vessel.serial, segment_id, remark),
                self.timeout_sec, "합격 처리")
        except Exception as e:
            self._restore_running(e, 'TEST_PASS_FAILED')
            raise
        finally:
            self.busy = False

        self._log_event('TEST_PASS', {
            'serial': s.vessel.serial,
            'segment_id': segment_id,
            'start_time': s.session_start_time,
            'end_time': end_time,
            'remark': remark or None,
        })
        self._clear_session()
        return end_time

    async def report_leak(self, reason: Optional[str], remark: Optional[str] = None) -> str:
        """현재 TEST 구간을 누설로 닫고 LEAK 구간을 연 뒤 세션을 비웁니다.

        사유 검증에 실패하면 ValidationError가 발생하며 입력 창은 열린 상태로 남습니다.
        """
        self._guard(self._can_close(), "누설")
        report = validate_leak_report(reason, remark)
        s = self.state
        segment_id = s.active_segment_id
        self.busy = True
        self.timer.stop()
        try:
            leak_id = await run_with_timeout(
                self.ledger.close_test_as_leak_and_open_leak(segment_id, s.vessel, s.operator,
                                                             s.manpower, report, ended_at=self.leak_marked_at),
                self.timeout_sec, "누설 처리")
        except Exception as e:
            self._restore_running(e, 'TEST_LEAK_FAILED')
            raise
        finally:
            self.busy = False

        self._log_event('TEST_LEAK', {
            'serial': s.vessel.serial,
            'segment_id': segment_id,
            'leak_segment_id': leak_id,
            'reason': report.reason,
            'remark': report.remark,
        })
        self._clear_session()
        return leak_id

    def reset(self):
        """진행 중인 시험이 없을 때 세션을 처음부터 다시 시작합니다 (작업자 변경 등)."""
        self._guard(self.can_reset, "초기화")
        self._log_event('SESSION_RESET', {'phase': self.state.phase.value})
        self._clear_session()

    def _can_close(self) -> bool:
        return not self.busy and self.state.running and self.state.active_segment_id is not None

    def _restore_running(self, error: Exception, event_type: str):
        self.prompting = False
        self.leak_marked_at = None
        self.timer.resume()
        self._log_event(event_type, {'segment_id': self.state.active_segment_id, 'error': str(error)})

    async def _upsert_vessel_header(self, vessel: VesselIdentity):
        try:
            await run_with_timeout(
                self.ledger.upsert_vessel_header(vessel.serial, vessel.project_name, vessel.vessel_type.value),
                self.timeout_sec, "용기 헤더")
        except PneumaticTestError as e:
            print(f"용기 헤더 갱신 실패 (시험은 정상 시작됨): {e}")
            self._log_event('HEADER_UPSERT_FAILED', {'serial': vessel.serial, 'error': str(e)})

    def _clear_session(self):
        self.timer.clear()
        self.prompting = False
        self.leak_marked_at = None
        self.state = SessionState()
        if self.event_logger:
            self.event_logger.set_operator("")
        try:
            self.recovery.clear()
        except FileHandlingError as e:
            print(f"복구 상태 삭제 실패: {e}")
            self._log_event('RECOVERY_WRITE_FAILED', {'error': str(e)})

    # ------------------------------------------------------------------
    # 복구 스냅샷
    # ------------------------------------------------------------------

    def snapshot(self) -> Dict[str, str]:
        s = self.state
        return {
            KEY_RUNNING: "1" if s.running else "0",
            KEY_START_ISO: s.session_start_time or "",
            KEY_START_EPOCH: str(s.session_start_epoch) if s.session_start_epoch else "",
            KEY_SERIAL: s.vessel.serial if s.vessel else "",
            KEY_SEGMENT_ID: s.active_segment_id or "",
            KEY_VESSEL: json.dumps(s.vessel.to_dict(), ensure_ascii=False) if s.vessel else "",
            KEY_OPERATOR: json.dumps(s.operator.to_dict(), ensure_ascii=False) if s.operator else "",
            KEY_CONFIRMED_VESSEL: "1" if s.vessel_confirmed else "0",
            KEY_CONFIRMED_OPERATOR: "1" if s.operator_confirmed else "0",
            KEY_MANPOWER: "" if s.manpower is None else str(s.manpower),
        }

    def _persist(self):
        try:
            self.recovery.write(self.snapshot())
        except FileHandlingError as e:
            print(f"복구 상태 저장 실패: {e}")
            self._log_event('RECOVERY_WRITE_FAILED', {'error': str(e)})

    def restore(self) -> Phase:
        """시작 시 한 번 호출합니다. 진행 중이던 시험이면 원장 조회 없이 바로 RUNNING으로 돌아갑니다."""
        values = self.recovery.read()
        s = SessionState()
        s.operator = _load_operator(values.get(KEY_OPERATOR))
        s.vessel = _load_vessel(values.get(KEY_VESSEL))
        try:
            s.manpower = validate_manpower(values.get(KEY_MANPOWER, ""))
        except ValidationError:
            s.manpower = None
        s.operator_confirmed = (values.get(KEY_CONFIRMED_OPERATOR) == "1"
                                and s.operator is not None and s.manpower is not None)
        s.vessel_confirmed = (s.operator_confirmed and values.get(KEY_CONFIRMED_VESSEL) == "1"
                              and s.vessel is not None)
        self.state = s
        self.prompting = False
        self.leak_marked_at = None

        if s.operator_confirmed and self.event_logger:
            self.event_logger.set_operator(s.operator.employee_name)

        if values.get(KEY_RUNNING) == "1":
            if self._resume_running(values):
                self._log_event('SESSION_RESUMED', {
                    'serial': s.vessel.serial,
                    'segment_id': s.active_segment_id,
                    'elapsed_sec': self.timer.elapsed(),
                })
                return s.phase
            self._log_event('RECOVERY_DISCARDED', {'reason': 'incomplete running snapshot'})

        self.timer.clear()
        s.phase = self._wizard_phase()
        if values:
            self._persist()
        return s.phase

    def _resume_running(self, values: Dict[str, Any]) -> bool:
        s = self.state
        segment_id = values.get(KEY_SEGMENT_ID, "")
        start_iso = values.get(KEY_START_ISO, "")
        start_epoch = RecoveryStore.get_int(values, KEY_START_EPOCH)
        serial = values.get(KEY_SERIAL, "")

        if not (s.vessel_confirmed and segment_id and start_iso and start_epoch and start_epoch > 0):
            return False
        if serial != s.vessel.serial:
            return False
        try:
            parse_iso(start_iso)
        except ValueError:
            return False

        s.running = True
        s.active_segment_id = segment_id
        s.session_start_time = start_iso
        s.session_start_epoch = start_epoch
        s.phase = Phase.RUNNING
        self.timer.start(start_epoch)
        return True

    def _wizard_phase(self) -> Phase:
        if not self.state.operator_confirmed:
            return Phase.AWAITING_OPERATOR
        if not self.state.vessel_confirmed:
            return Phase.AWAITING_VESSEL
        return Phase.READY

    def _log_event(self, event_type: str, detail: Optional[Dict] = None):
        if self.event_logger:
            self.event_logger.log_event(event_type, detail)
