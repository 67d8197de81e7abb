"""구간 원장 프로토콜

TEST/LEAK 구간은 다음처럼 빈틈도 겹침도 없이 이어집니다.

    TEST(running) --누설--> TEST(leak) + LEAK(open)
    LEAK(open)    --다음 시험 시작--> LEAK(closed) + TEST(running)
    TEST(running) --합격--> TEST(passed)

    TEST(running, 응답 유실로 남은 구간) --다음 시험 시작--> TEST(abandoned)

두 건 이상이 함께 바뀌는 전환은 모두 하나의 commit 배치로 보내므로,
저장소가 배치를 거부하면 어느 쪽도 반영되지 않습니다.
"""

import datetime
import math
from typing import Any, Callable, Dict, Optional

from core.epoch_timer import parse_iso, to_iso, utc_now
from core.ledger_store import LedgerStore, LedgerWrite
from core.models import (VesselIdentity, OperatorIdentity, LeakReport, Segment, SegmentType,
                         STATUS_RUNNING, STATUS_PASSED, STATUS_LEAK, STATUS_ABANDONED,
                         STATUS_LEAK_OPEN, STATUS_LEAK_CLOSED)
from utils.exceptions import LedgerError


def duration_between(start_iso: str, end_iso: str) -> int:
    """두 시각 사이의 초(반올림). 시계 오차로 음수가 나오면 0으로 처리합니다."""
    seconds = (parse_iso(end_iso) - parse_iso(start_iso)).total_seconds()
    return max(0, int(math.floor(seconds + 0.5)))


def snapshot_fields(vessel: VesselIdentity, operator: OperatorIdentity,
                    manpower: Optional[int]) -> Dict[str, Any]:
    """구간 레코드에 함께 남기는 용기/작업자 정보"""
    return {
        'project_version': vessel.format_version,
        'project_name': vessel.project_name,
        'serial_number': vessel.serial,
        'vessel_type': vessel.vessel_type.value,
        'employee_version': operator.format_version,
        'employee_id': operator.employee_id,
        'employee_name': operator.employee_name,
        'station': operator.station,
        'manpower': manpower,
    }


class SegmentLedger:
    """원장 저장소 위에서 TEST/LEAK 구간의 열기·닫기 규칙을 수행합니다."""

    def __init__(self, store: LedgerStore,
                 clock: Callable[[], datetime.datetime] = utc_now):
        self.store = store
        self._clock = clock

    async def find_open_leak(self, serial: str) -> Optional[Segment]:
        """열린 LEAK 구간 중 가장 최근에 시작된 것. 없으면 None."""
        found = await self.store.find_latest_open(serial, SegmentType.LEAK.value)
        if found is None:
            return None
        return Segment.from_record(*found)

    async def find_open_test(self, serial: str) -> Optional[Segment]:
        found = await self.store.find_latest_open(serial, SegmentType.TEST.value)
        if found is None:
            return None
        return Segment.from_record(*found)

    async def get_segment(self, serial: str, segment_id: str) -> Optional[Segment]:
        record = await self.store.get_segment(serial, segment_id)
        return Segment.from_record(segment_id, record) if record is not None else None

    async def open_test_segment(self, vessel: VesselIdentity, operator: OperatorIdentity,
                                manpower: Optional[int],
                                started_at: Optional[datetime.datetime] = None) -> str:
        """새 TEST 구간을 엽니다. 열린 LEAK 구간이 있으면 같은 배치에서 닫습니다.

        이전 시작 요청이 응답 없이 저장소에 반영되어 열린 TEST가 남아 있으면
        그 구간은 abandoned로 닫습니다. 시리얼당 열린 TEST는 항상 하나 이하입니다.
        """
        start_iso = to_iso(started_at or self._clock())
        writes = []

        orphan = await self.find_open_test(vessel.serial)
        if orphan is not None:
            writes.append(LedgerWrite(vessel.serial, orphan.id, {
                'end_time': start_iso,
                'duration_sec': duration_between(orphan.start_time, start_iso),
                'status': STATUS_ABANDONED,
            }))

        open_leak = await self.find_open_leak(vessel.serial)
        if open_leak is not None:
            writes.append(LedgerWrite(vessel.serial, open_leak.id, {
                'end_time': start_iso,
                'duration_sec': duration_between(open_leak.start_time, start_iso),
                'status': STATUS_LEAK_CLOSED,
            }))

        segment_id = self.store.new_segment_id()
        record = {
            'segment_type': SegmentType.TEST.value,
            'start_time': start_iso,
            'end_time': None,
            'duration_sec': None,
            'status': STATUS_RUNNING,
            'reason': None,
            'remark': None,
        }
        record.update(snapshot_fields(vessel, operator, manpower))
        writes.append(LedgerWrite(vessel.serial, segment_id, record, create=True))

        await self.store.commit(writes)
        return segment_id

    async def close_test_as_pass(self, serial: str, segment_id: str, remark: Optional[str] = None,
                                 ended_at: Optional[datetime.datetime] = None) -> str:
        """TEST 구간을 합격으로 닫고 종료 시각을 반환합니다."""
        test = await self._require_open_test(serial, segment_id)
        end_iso = to_iso(ended_at or self._clock())

        await self.store.commit([LedgerWrite(serial, segment_id, {
            'end_time': end_iso,
            'duration_sec': duration_between(test.start_time, end_iso),
            'status': STATUS_PASSED,
            'remark': remark or None,
        })])
        return end_iso

    async def close_test_as_leak_and_open_leak(self, segment_id: str, vessel: VesselIdentity,
                                               operator: OperatorIdentity, manpower: Optional[int],
                                               report: LeakReport,
                                               ended_at: Optional[datetime.datetime] = None) -> str:
        """TEST 구간을 누설로 닫고 LEAK 구간을 엽니다. 새 LEAK 구간의 id를 반환합니다.

        LEAK 구간은 다음 세션에서 같은 시리얼의 TEST가 시작될 때 닫힙니다.
        """
        serial = vessel.serial
        test = await self._require_open_test(serial, segment_id)
        end_iso = to_iso(ended_at or self._clock())

        leak_id = self.store.new_segment_id()
        leak_record = {
            'segment_type': SegmentType.LEAK.value,
            'start_time': end_iso,
            'end_time': None,
            'duration_sec': None,
            'status': STATUS_LEAK_OPEN,
            'reason': report.reason,
            'remark': report.remark,
        }
        leak_record.update(snapshot_fields(vessel, operator, manpower))

        await self.store.commit([
            LedgerWrite(serial, segment_id, {
                'end_time': end_iso,
                'duration_sec': duration_between(test.start_time, end_iso),
                'status': STATUS_LEAK,
                'reason': report.reason,
                'remark': report.remark,
            }),
            LedgerWrite(serial, leak_id, leak_record, create=True),
        ])
        return leak_id

    async def upsert_vessel_header(self, serial: str, project_name: str, vessel_type: str):
        await self.store.merge_header(serial, {
            'serial_number': serial,
            'project_name': project_name,
            'vessel_type': vessel_type,
        })

    async def _require_open_test(self, serial: str, segment_id: str) -> Segment:
        segment = await self.get_segment(serial, segment_id)
        if segment is None:
            raise LedgerError(f"구간을 찾을 수 없습니다: {serial}/{segment_id}")
        if segment.segment_type is not SegmentType.TEST:
            raise LedgerError(f"TEST 구간이 아닙니다: {segment_id}")
        if not segment.is_open:
            raise LedgerError(f"이미 종료된 구간입니다: {segment_id}")
        return segment
