"""데이터 모델 정의 모듈"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Dict, Optional, Any


class VesselType(Enum):
    """시험 대상 용기 종류. 값은 원장에 기록되는 표기입니다."""
    EVAPORATOR = "EVAPORATOR"
    OIL_SEPARATOR = "OIL SEPARATOR"
    CONDENSER = "CONDENSER"
    ECONOMIZER = "ECONOMIZER"


class SegmentType(Enum):
    TEST = "TEST"
    LEAK = "LEAK"


class Phase(Enum):
    """시험 마법사 단계"""
    AWAITING_OPERATOR = "AWAITING_OPERATOR"
    AWAITING_VESSEL = "AWAITING_VESSEL"
    READY = "READY"
    RUNNING = "RUNNING"


# 구간 상태값
STATUS_RUNNING = "running"
STATUS_PASSED = "passed"
STATUS_LEAK = "leak"
STATUS_ABANDONED = "abandoned"
STATUS_LEAK_OPEN = "open"
STATUS_LEAK_CLOSED = "closed"

OPERATOR_FORMAT_VERSION = "EMP"
LEAK_REASON_OTHERS = "Others"


@dataclass(frozen=True)
class VesselIdentity:
    """용기 QR 한 장에서 읽어낸 식별 정보"""
    format_version: str
    project_name: str
    serial: str
    vessel_type: VesselType

    def to_payload(self) -> str:
        """스캔 원문 형식(version;project;serial;type)으로 되돌립니다."""
        return ";".join([self.format_version, self.project_name, self.serial, self.vessel_type.value])

    def to_dict(self) -> Dict[str, str]:
        return {
            'format_version': self.format_version,
            'project_name': self.project_name,
            'serial': self.serial,
            'vessel_type': self.vessel_type.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VesselIdentity":
        return cls(
            format_version=data['format_version'],
            project_name=data['project_name'],
            serial=data['serial'],
            vessel_type=VesselType(data['vessel_type']),
        )


@dataclass(frozen=True)
class OperatorIdentity:
    """작업자 QR에서 읽어낸 식별 정보. 투입 인원(manpower)은 세션에 따로 보관합니다."""
    employee_id: str
    employee_name: str
    station: str
    format_version: str = OPERATOR_FORMAT_VERSION

    def to_payload(self) -> str:
        return ";".join([self.format_version, self.employee_id,
                         self.employee_name.replace(" ", "_"), self.station])

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OperatorIdentity":
        return cls(
            employee_id=data['employee_id'],
            employee_name=data['employee_name'],
            station=data['station'],
            format_version=data.get('format_version', OPERATOR_FORMAT_VERSION),
        )


@dataclass(frozen=True)
class LeakReport:
    """누설 판정 시 입력받는 사유와 비고"""
    reason: str
    remark: Optional[str] = None


@dataclass
class Segment:
    """원장에 기록되는 TEST/LEAK 구간 한 건"""
    id: str
    segment_type: SegmentType
    start_time: str
    end_time: Optional[str] = None
    duration_sec: Optional[int] = None
    status: str = STATUS_RUNNING
    serial: str = ""
    reason: Optional[str] = None
    remark: Optional[str] = None
    manpower: Optional[int] = None
    fields: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    @classmethod
    def from_record(cls, segment_id: str, record: Dict[str, Any]) -> "Segment":
        """원장 레코드(딕셔너리)를 Segment로 변환합니다."""
        return cls(
            id=segment_id,
            segment_type=SegmentType(record['segment_type']),
            start_time=record['start_time'],
            end_time=record.get('end_time'),
            duration_sec=record.get('duration_sec'),
            status=record.get('status') or "",
            serial=record.get('serial_number', ""),
            reason=record.get('reason'),
            remark=record.get('remark'),
            manpower=record.get('manpower'),
            fields=dict(record),
        )


@dataclass
class SessionState:
    """현재 시험 세션 상태. SessionCoordinator만 변경합니다."""
    phase: Phase = Phase.AWAITING_OPERATOR
    vessel: Optional[VesselIdentity] = None
    operator: Optional[OperatorIdentity] = None
    manpower: Optional[int] = None
    vessel_confirmed: bool = False
    operator_confirmed: bool = False
    running: bool = False
    active_segment_id: Optional[str] = None
    session_start_time: Optional[str] = None
    session_start_epoch: Optional[int] = None
