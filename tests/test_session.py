"""시험 세션 상태 관리 테스트"""

import unittest
import asyncio
import tempfile
import shutil
import sys
import os

# 상위 디렉토리의 모듈들을 import 하기 위해 경로 추가
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.epoch_timer import EpochTimer, epoch_to_datetime, to_iso
from core.ledger import SegmentLedger
from core.ledger_store import InMemoryLedgerStore
from core.models import (Phase, STATUS_PASSED, STATUS_LEAK, STATUS_LEAK_OPEN, STATUS_LEAK_CLOSED,
                         STATUS_RUNNING, STATUS_ABANDONED)
from core.recovery import (RecoveryStore, KEY_RUNNING, KEY_SEGMENT_ID, KEY_START_EPOCH,
                           KEY_SERIAL, KEY_CONFIRMED_VESSEL)
from core.session import SessionCoordinator
from utils.exceptions import LedgerError, LedgerTimeoutError, ValidationError, StateGuardViolation

OPERATOR_QR = "EMP;E100;Kim_Min;ST-3"


def vessel_qr(serial):
    return f"V1;PRJ-A;{serial};EVAPORATOR"


class FakeClock:
    def __init__(self, now=1_714_550_400_000):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += int(seconds * 1000)


class RecordingLogger:
    """EventLogger 대신 이벤트를 메모리에 모읍니다."""

    def __init__(self):
        self.events = []
        self.operator = ""

    def set_operator(self, name):
        self.operator = name

    def log_event(self, event_type, detail=None):
        self.events.append((event_type, detail or {}))

    def names(self):
        return [name for name, _ in self.events]


class FailingCommitStore(InMemoryLedgerStore):
    def __init__(self):
        super().__init__()
        self.fail_commit = False

    async def commit(self, writes):
        if self.fail_commit:
            raise LedgerError("원장 오류 (503): unavailable")
        await super().commit(writes)


class SlowCommitStore(InMemoryLedgerStore):
    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def commit(self, writes):
        await self.release.wait()
        await super().commit(writes)


class BrokenHeaderStore(InMemoryLedgerStore):
    async def merge_header(self, serial, fields):
        raise LedgerError("header rejected")


class SlowHeaderStore(InMemoryLedgerStore):
    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def merge_header(self, serial, fields):
        await self.release.wait()
        await super().merge_header(serial, fields)


class LandedThenStalledStore(InMemoryLedgerStore):
    """배치는 반영되지만 응답이 돌아오지 않는 저장소 (클라이언트 시간 초과 재현)"""

    def __init__(self):
        super().__init__()
        self.stall = False

    async def commit(self, writes):
        await super().commit(writes)
        if self.stall:
            await asyncio.Event().wait()


class SessionTestBase(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.state_path = os.path.join(self.temp_dir, "_current_pneumatic_state_test.json")
        self.clock = FakeClock()
        self.store = self.make_store()
        self.coordinator = self.make_coordinator()

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def make_store(self):
        return InMemoryLedgerStore()

    def make_coordinator(self, timeout_sec=12.0):
        self.logger = RecordingLogger()
        ledger = SegmentLedger(self.store, clock=lambda: epoch_to_datetime(self.clock.now))
        return SessionCoordinator(ledger, RecoveryStore(self.state_path),
                                  timer=EpochTimer(clock=self.clock),
                                  event_logger=self.logger, timeout_sec=timeout_sec)

    def prepare_ready(self, serial="SN-001", manpower="2"):
        c = self.coordinator
        c.scan_operator(OPERATOR_QR)
        c.confirm_operator(manpower)
        c.scan_vessel(vessel_qr(serial))
        c.confirm_vessel()
        return c

    def segments(self, serial):
        return self.store.segments.get(serial, {})


class TestWizard(SessionTestBase):
    """작업자/용기 확인 단계 테스트"""

    def test_initial_state(self):
        c = self.coordinator
        self.assertIs(c.state.phase, Phase.AWAITING_OPERATOR)
        self.assertTrue(c.can_scan_operator)
        self.assertFalse(c.can_confirm_operator)
        self.assertFalse(c.can_scan_vessel)
        self.assertFalse(c.can_start)
        self.assertFalse(c.can_finish)

    def test_operator_then_vessel(self):
        c = self.coordinator
        operator = c.scan_operator(OPERATOR_QR)
        self.assertEqual(operator.employee_name, "Kim Min")
        self.assertTrue(c.can_confirm_operator)
        self.assertIs(c.state.phase, Phase.AWAITING_OPERATOR)

        c.confirm_operator("3")
        self.assertIs(c.state.phase, Phase.AWAITING_VESSEL)
        self.assertEqual(c.state.manpower, 3)
        self.assertEqual(self.logger.operator, "Kim Min")
        self.assertFalse(c.can_scan_operator)
        self.assertTrue(c.can_scan_vessel)

        c.scan_vessel(vessel_qr("SN-001"))
        c.confirm_vessel()
        self.assertIs(c.state.phase, Phase.READY)
        self.assertTrue(c.can_start)
        self.assertEqual(self.logger.names(), ['OPERATOR_CONFIRMED', 'VESSEL_CONFIRMED'])

        values = c.recovery.read()
        self.assertEqual(values[KEY_CONFIRMED_VESSEL], "1")
        self.assertEqual(values[KEY_RUNNING], "0")

    def test_manpower_required(self):
        c = self.coordinator
        c.scan_operator(OPERATOR_QR)
        with self.assertRaises(ValidationError):
            c.confirm_operator("")
        with self.assertRaises(ValidationError):
            c.confirm_operator("1.5")
        self.assertIs(c.state.phase, Phase.AWAITING_OPERATOR)
        self.assertFalse(c.state.operator_confirmed)

    def test_invalid_scan_keeps_previous_identity(self):
        c = self.coordinator
        c.scan_operator(OPERATOR_QR)
        with self.assertRaises(ValidationError):
            c.scan_operator("V1;PRJ-A;SN-001;EVAPORATOR")
        self.assertEqual(c.state.operator.employee_id, "E100")

    def test_commands_out_of_order_are_rejected(self):
        c = self.coordinator
        with self.assertRaises(StateGuardViolation):
            c.scan_vessel(vessel_qr("SN-001"))
        with self.assertRaises(StateGuardViolation):
            c.confirm_operator("2")
        with self.assertRaises(StateGuardViolation):
            c.begin_prompt()

    async def test_start_before_ready_is_rejected(self):
        with self.assertRaises(StateGuardViolation):
            await self.coordinator.start()
        self.assertEqual(self.store.write_log, [])

    def test_reset_returns_to_operator_step(self):
        c = self.prepare_ready()
        c.reset()

        self.assertIs(c.state.phase, Phase.AWAITING_OPERATOR)
        self.assertIsNone(c.state.operator)
        self.assertFalse(os.path.exists(self.state_path))
        self.assertIn('SESSION_RESET', self.logger.names())


class TestPassFlow(SessionTestBase):
    """합격 흐름 테스트"""

    async def test_start_and_pass(self):
        c = self.prepare_ready("SN-001")
        segment_id = await c.start()

        self.assertIs(c.state.phase, Phase.RUNNING)
        self.assertTrue(c.timer.refreshing)
        self.assertTrue(c.can_finish)
        self.assertFalse(c.can_reset)
        record = self.segments("SN-001")[segment_id]
        self.assertEqual(record['status'], STATUS_RUNNING)
        self.assertEqual(record['start_time'], c.state.session_start_time)
        self.assertEqual(len(self.store.write_log), 1)
        await c.header_task
        self.assertEqual(self.store.headers["SN-001"]['project_name'], "PRJ-A")

        values = c.recovery.read()
        self.assertEqual(values[KEY_RUNNING], "1")
        self.assertEqual(values[KEY_SEGMENT_ID], segment_id)
        self.assertEqual(values[KEY_START_EPOCH], str(self.clock.now))

        self.clock.advance(95)
        self.assertEqual(c.elapsed(), 95)

        c.begin_prompt("PASS")
        self.assertFalse(c.timer.refreshing)
        self.assertFalse(c.can_finish)

        end_time = await c.pass_test("looks good")

        record = self.segments("SN-001")[segment_id]
        self.assertEqual(record['status'], STATUS_PASSED)
        self.assertEqual(record['end_time'], end_time)
        self.assertEqual(record['duration_sec'], 95)
        self.assertEqual(record['remark'], "looks good")
        self.assertIs(c.state.phase, Phase.AWAITING_OPERATOR)
        self.assertIsNone(c.timer.start_epoch)
        self.assertFalse(c.prompting)
        self.assertFalse(os.path.exists(self.state_path))
        self.assertEqual(self.logger.operator, "")
        self.assertIn('TEST_PASS', self.logger.names())

    async def test_cancel_prompt_keeps_original_start(self):
        c = self.prepare_ready()
        await c.start()
        start_epoch = c.timer.start_epoch
        writes = len(self.store.write_log)

        self.clock.advance(30)
        c.begin_prompt("PASS")
        self.clock.advance(20)
        c.cancel_prompt("PASS")

        self.assertTrue(c.timer.refreshing)
        self.assertEqual(c.timer.start_epoch, start_epoch)
        self.assertEqual(c.elapsed(), 50)
        self.assertTrue(c.can_finish)
        self.assertEqual(len(self.store.write_log), writes)
        self.assertIn('PROMPT_CANCELLED', self.logger.names())

    async def test_cancel_without_prompt_is_rejected(self):
        c = self.prepare_ready()
        await c.start()
        with self.assertRaises(StateGuardViolation):
            c.cancel_prompt("LEAK")


class TestLeakFlow(SessionTestBase):
    """누설 흐름 테스트"""

    async def test_leak_then_next_session_closes_leak(self):
        c = self.prepare_ready("SN-002")
        first_test = await c.start()
        self.clock.advance(40)
        c.begin_prompt("LEAK")
        leak_id = await c.report_leak("Weld", "")

        segments = self.segments("SN-002")
        self.assertEqual(segments[first_test]['status'], STATUS_LEAK)
        self.assertEqual(segments[first_test]['reason'], "Weld")
        self.assertEqual(segments[first_test]['duration_sec'], 40)
        self.assertEqual(segments[leak_id]['status'], STATUS_LEAK_OPEN)
        self.assertIsNone(segments[leak_id]['remark'])
        self.assertIs(c.state.phase, Phase.AWAITING_OPERATOR)

        # 수리 후 같은 용기로 새 세션
        self.clock.advance(600)
        self.prepare_ready("SN-002", manpower="1")
        writes_before = len(self.store.write_log)
        second_test = await c.start()

        self.assertEqual(len(self.store.write_log) - writes_before, 2)
        self.assertEqual(segments[leak_id]['status'], STATUS_LEAK_CLOSED)
        self.assertEqual(segments[leak_id]['end_time'], segments[second_test]['start_time'])
        self.assertEqual(segments[leak_id]['duration_sec'], 600)
        self.assertEqual(segments[second_test]['manpower'], 1)

    async def test_others_without_remark_keeps_prompt_open(self):
        c = self.prepare_ready()
        await c.start()
        c.begin_prompt("LEAK")
        writes = len(self.store.write_log)

        with self.assertRaises(ValidationError):
            await c.report_leak("Others", "  ")

        self.assertTrue(c.prompting)
        self.assertFalse(c.busy)
        self.assertIs(c.state.phase, Phase.RUNNING)
        self.assertEqual(len(self.store.write_log), writes)

        leak_id = await c.report_leak("Others", "crack at nozzle")
        leak = next(s for sid, s in self.segments("SN-001").items() if sid == leak_id)
        self.assertEqual(leak['remark'], "crack at nozzle")

    async def test_leak_end_is_the_button_press(self):
        c = self.prepare_ready("SN-003")
        started = self.clock.now
        test_id = await c.start()
        self.clock.advance(40)
        c.begin_prompt("LEAK")
        # 사유를 고르는 동안 흐른 시간은 시험 시간에 들어가지 않음
        self.clock.advance(30)
        leak_id = await c.report_leak("Weld")

        segments = self.segments("SN-003")
        self.assertEqual(segments[test_id]['duration_sec'], 40)
        self.assertEqual(segments[test_id]['end_time'], segments[leak_id]['start_time'])
        self.assertEqual(segments[leak_id]['start_time'], to_iso(epoch_to_datetime(started + 40_000)))
        self.assertIsNone(c.leak_marked_at)

    async def test_cancel_leak_prompt_changes_nothing(self):
        c = self.prepare_ready()
        await c.start()
        start_epoch = c.timer.start_epoch
        writes = len(self.store.write_log)

        self.clock.advance(15)
        c.begin_prompt("LEAK")
        self.assertIsNotNone(c.leak_marked_at)
        c.cancel_prompt("LEAK")

        self.assertEqual(len(self.store.write_log), writes)
        self.assertEqual(c.timer.start_epoch, start_epoch)
        self.assertTrue(c.can_finish)
        self.assertIsNone(c.leak_marked_at)

        # 취소 후 다시 누르면 새 시각 기준
        self.clock.advance(25)
        c.begin_prompt("LEAK")
        test_id = c.state.active_segment_id
        await c.report_leak("Valve")
        self.assertEqual(self.segments("SN-001")[test_id]['duration_sec'], 40)


class TestFailureHandling(SessionTestBase):
    """원장 실패/시간 초과 처리 테스트"""

    def make_store(self):
        return FailingCommitStore()

    async def test_failed_start_rolls_back(self):
        c = self.prepare_ready()
        self.store.fail_commit = True

        with self.assertRaises(LedgerError):
            await c.start()

        self.assertIs(c.state.phase, Phase.READY)
        self.assertFalse(c.state.running)
        self.assertIsNone(c.state.active_segment_id)
        self.assertIsNone(c.timer.start_epoch)
        self.assertFalse(c.timer.refreshing)
        self.assertFalse(c.busy)
        self.assertTrue(c.can_start)
        self.assertEqual(c.recovery.read()[KEY_RUNNING], "0")
        self.assertIn('TEST_START_FAILED', self.logger.names())

        # 자동 재시도 없음: 작업자가 다시 누르면 새로 시도
        self.store.fail_commit = False
        await c.start()
        self.assertIs(c.state.phase, Phase.RUNNING)

    async def test_failed_pass_returns_to_running(self):
        c = self.prepare_ready()
        segment_id = await c.start()
        c.begin_prompt("PASS")
        self.store.fail_commit = True

        with self.assertRaises(LedgerError):
            await c.pass_test("")

        self.assertIs(c.state.phase, Phase.RUNNING)
        self.assertEqual(c.state.active_segment_id, segment_id)
        self.assertTrue(c.timer.refreshing)
        self.assertFalse(c.prompting)
        self.assertTrue(c.can_finish)
        self.assertEqual(self.segments("SN-001")[segment_id]['status'], STATUS_RUNNING)
        self.assertEqual(c.recovery.read()[KEY_SEGMENT_ID], segment_id)

    async def test_failed_leak_writes_nothing(self):
        c = self.prepare_ready()
        segment_id = await c.start()
        c.begin_prompt("LEAK")
        self.store.fail_commit = True

        with self.assertRaises(LedgerError):
            await c.report_leak("Weld")

        self.assertEqual(list(self.segments("SN-001")), [segment_id])
        self.assertIn('TEST_LEAK_FAILED', self.logger.names())


class TestTimeoutAndBusy(SessionTestBase):

    def make_store(self):
        return SlowCommitStore()

    async def test_start_timeout_rolls_back(self):
        self.coordinator = self.make_coordinator(timeout_sec=0.05)
        c = self.prepare_ready()

        with self.assertRaises(LedgerTimeoutError):
            await c.start()

        self.assertIs(c.state.phase, Phase.READY)
        self.assertIsNone(c.timer.start_epoch)
        self.assertFalse(c.busy)

    async def test_commands_disabled_while_busy(self):
        c = self.prepare_ready()
        task = asyncio.ensure_future(c.start())
        for _ in range(5):
            await asyncio.sleep(0)

        self.assertTrue(c.busy)
        self.assertFalse(c.can_start)
        self.assertFalse(c.can_reset)
        self.assertFalse(c.can_finish)
        with self.assertRaises(StateGuardViolation):
            c.reset()

        self.store.release.set()
        await task
        self.assertFalse(c.busy)
        self.assertIs(c.state.phase, Phase.RUNNING)


class TestLandedStartTimeout(SessionTestBase):
    """시작 배치는 반영되었지만 응답이 시간 초과된 경우"""

    def make_store(self):
        return LandedThenStalledStore()

    async def test_retry_abandons_orphan_test(self):
        self.coordinator = self.make_coordinator(timeout_sec=0.05)
        c = self.prepare_ready("SN-010")
        self.store.stall = True

        with self.assertRaises(LedgerTimeoutError):
            await c.start()
        self.assertIs(c.state.phase, Phase.READY)
        (orphan_id,) = list(self.segments("SN-010"))

        self.store.stall = False
        self.clock.advance(5)
        segment_id = await c.start()

        segments = self.segments("SN-010")
        running = [sid for sid, s in segments.items() if s['status'] == STATUS_RUNNING]
        self.assertEqual(running, [segment_id])
        self.assertEqual(segments[orphan_id]['status'], STATUS_ABANDONED)
        self.assertEqual(segments[orphan_id]['end_time'], segments[segment_id]['start_time'])
        self.assertEqual(segments[orphan_id]['duration_sec'], 5)


class TestHeaderUpsert(SessionTestBase):

    def make_store(self):
        return BrokenHeaderStore()

    async def test_header_failure_does_not_fail_start(self):
        c = self.prepare_ready()
        segment_id = await c.start()

        self.assertIs(c.state.phase, Phase.RUNNING)
        self.assertIn(segment_id, self.segments("SN-001"))
        await c.header_task
        self.assertIn('HEADER_UPSERT_FAILED', self.logger.names())


class TestSlowHeaderUpsert(SessionTestBase):

    def make_store(self):
        return SlowHeaderStore()

    async def test_buttons_enabled_while_header_pending(self):
        c = self.prepare_ready()
        segment_id = await c.start()

        self.assertFalse(c.busy)
        self.assertTrue(c.can_finish)
        self.assertFalse(c.header_task.done())

        c.begin_prompt("PASS")
        await c.pass_test("")
        self.assertEqual(self.segments("SN-001")[segment_id]['status'], STATUS_PASSED)
        self.assertNotIn("SN-001", self.store.headers)

        self.store.release.set()
        await c.header_task
        self.assertEqual(self.store.headers["SN-001"]['project_name'], "PRJ-A")


class TestRecovery(SessionTestBase):
    """비정상 종료 후 복구 테스트"""

    async def test_resume_running_session(self):
        c = self.prepare_ready()
        segment_id = await c.start()
        writes = len(self.store.write_log)
        self.clock.advance(3600)

        restarted = self.make_coordinator()
        phase = restarted.restore()

        self.assertIs(phase, Phase.RUNNING)
        self.assertEqual(restarted.state.active_segment_id, segment_id)
        self.assertEqual(restarted.elapsed(), 3600)
        self.assertTrue(restarted.timer.refreshing)
        self.assertTrue(restarted.can_finish)
        self.assertEqual(self.logger.operator, "Kim Min")
        self.assertIn('SESSION_RESUMED', self.logger.names())
        # 원장은 조회하지 않음
        self.assertEqual(len(self.store.write_log), writes)

        await restarted.pass_test("")
        self.assertEqual(self.segments("SN-001")[segment_id]['duration_sec'], 3600)

    def test_resume_wizard_step(self):
        c = self.coordinator
        c.scan_operator(OPERATOR_QR)
        c.confirm_operator("2")

        restarted = self.make_coordinator()
        self.assertIs(restarted.restore(), Phase.AWAITING_VESSEL)
        self.assertEqual(restarted.state.manpower, 2)

    async def test_running_snapshot_without_start_epoch_is_discarded(self):
        c = self.prepare_ready()
        await c.start()
        values = c.recovery.read()
        values[KEY_START_EPOCH] = ""
        c.recovery.write(values)

        restarted = self.make_coordinator()
        phase = restarted.restore()

        self.assertIs(phase, Phase.READY)
        self.assertFalse(restarted.state.running)
        self.assertIsNone(restarted.timer.start_epoch)
        self.assertIn('RECOVERY_DISCARDED', self.logger.names())
        self.assertEqual(restarted.recovery.read()[KEY_RUNNING], "0")

    async def test_serial_mismatch_is_discarded(self):
        c = self.prepare_ready()
        await c.start()
        values = c.recovery.read()
        values[KEY_SERIAL] = "SN-OTHER"
        c.recovery.write(values)

        restarted = self.make_coordinator()
        self.assertIs(restarted.restore(), Phase.READY)

    def test_corrupted_identity_falls_back_to_operator_step(self):
        self.coordinator.recovery.write({'operator': "{broken", 'confirmed_operator': "1", 'manpower': "2"})

        restarted = self.make_coordinator()
        self.assertIs(restarted.restore(), Phase.AWAITING_OPERATOR)
        self.assertFalse(restarted.state.operator_confirmed)

    def test_no_snapshot(self):
        self.assertIs(self.coordinator.restore(), Phase.AWAITING_OPERATOR)
        self.assertFalse(os.path.exists(self.state_path))


if __name__ == '__main__':
    unittest.main()
