"""구간 원장 저장소 인터페이스와 메모리 구현

저장 구조 (Firestore와 동일한 경로 개념):
    serial_timelines/{serial}                  용기 헤더 (병합 갱신)
    serial_timelines/{serial}/segments/{id}    TEST/LEAK 구간
"""

import copy
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from core.epoch_timer import parse_iso, to_iso, utc_now
from utils.exceptions import LedgerError

CREATED_AT = "createdAt"
LAST_UPDATED_AT = "lastUpdatedAt"


@dataclass
class LedgerWrite:
    """원장 쓰기 한 건. create=True면 신규 생성, 아니면 기존 문서 수정(amend)."""
    serial: str
    segment_id: str
    fields: Dict[str, Any] = field(default_factory=dict)
    create: bool = False


class LedgerStore(ABC):
    """원장 저장소의 공통 인터페이스. commit()은 전부 반영되거나 전부 실패해야 합니다."""

    def new_segment_id(self) -> str:
        return uuid.uuid4().hex[:20]

    @abstractmethod
    async def get_segment(self, serial: str, segment_id: str) -> Optional[Dict[str, Any]]:
        """구간 레코드를 반환합니다. 없으면 None."""
        pass

    @abstractmethod
    async def find_latest_open(self, serial: str, segment_type: str) -> Optional[Tuple[str, Dict[str, Any]]]:
        """end_time이 비어 있는 구간 중 start_time이 가장 늦은 것 하나를 반환합니다."""
        pass

    @abstractmethod
    async def commit(self, writes: List[LedgerWrite]):
        """여러 쓰기를 하나의 원자적 배치로 반영합니다."""
        pass

    @abstractmethod
    async def merge_header(self, serial: str, fields: Dict[str, Any]):
        """용기 헤더 문서에 필드를 병합합니다 (덮어쓰지 않음)."""
        pass


class InMemoryLedgerStore(LedgerStore):
    """프로세스 메모리에 원장을 보관하는 저장소 (오프라인/데모, 테스트용)"""

    def __init__(self, clock: Callable[[], str] = lambda: to_iso(utc_now())):
        self._clock = clock
        self.segments: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.headers: Dict[str, Dict[str, Any]] = {}
        self.write_log: List[LedgerWrite] = []

    async def get_segment(self, serial, segment_id):
        record = self.segments.get(serial, {}).get(segment_id)
        return copy.deepcopy(record) if record is not None else None

    async def find_latest_open(self, serial, segment_type):
        candidates = [
            (segment_id, record) for segment_id, record in self.segments.get(serial, {}).items()
            if record.get('segment_type') == segment_type and record.get('end_time') is None
        ]
        if not candidates:
            return None
        segment_id, record = max(candidates, key=lambda item: parse_iso(item[1]['start_time']))
        return segment_id, copy.deepcopy(record)

    async def commit(self, writes):
        # 배치 전체를 먼저 검증한 뒤에만 반영합니다.
        pending_ids = set()
        for write in writes:
            key = (write.serial, write.segment_id)
            exists = write.segment_id in self.segments.get(write.serial, {}) or key in pending_ids
            if write.create and exists:
                raise LedgerError(f"이미 존재하는 구간입니다: {write.serial}/{write.segment_id}")
            if not write.create and not exists:
                raise LedgerError(f"구간을 찾을 수 없습니다: {write.serial}/{write.segment_id}")
            pending_ids.add(key)

        stamp = self._clock()
        for write in writes:
            collection = self.segments.setdefault(write.serial, {})
            fields = copy.deepcopy(write.fields)
            if write.create:
                fields[CREATED_AT] = stamp
                fields[LAST_UPDATED_AT] = stamp
                collection[write.segment_id] = fields
            else:
                collection[write.segment_id].update(fields)
                collection[write.segment_id][LAST_UPDATED_AT] = stamp
            self.write_log.append(copy.deepcopy(write))

    async def merge_header(self, serial, fields):
        header = self.headers.setdefault(serial, {})
        header.update(copy.deepcopy(fields))
        header[LAST_UPDATED_AT] = self._clock()
