"""스캔 데이터 검증 모듈

용기 QR:   version;project_name;serial_number;type
작업자 QR: EMP;employee_id;employee_name;station

모든 함수는 부작용이 없으며, 실패 시 ValidationError를 발생시킵니다.
"""

import math
from typing import List, Optional, Union

from core.models import (VesselIdentity, OperatorIdentity, VesselType, LeakReport,
                         OPERATOR_FORMAT_VERSION, LEAK_REASON_OTHERS)
from utils.exceptions import ValidationError

FIELD_SEPARATOR = ";"
PAYLOAD_FIELD_COUNT = 4

_VESSEL_TYPE_ALIASES = {
    "EVAPORATOR": VesselType.EVAPORATOR,
    "OIL SEPARATOR": VesselType.OIL_SEPARATOR,
    "OIL_SEPARATOR": VesselType.OIL_SEPARATOR,
    "OILSEPARATOR": VesselType.OIL_SEPARATOR,
    "CONDENSER": VesselType.CONDENSER,
    "ECONOMIZER": VesselType.ECONOMIZER,
}


def normalize_vessel_type(raw: Optional[str]) -> Optional[VesselType]:
    """대소문자/표기 차이를 흡수하여 용기 종류를 반환합니다. 모르는 값이면 None."""
    key = str(raw or "").strip().upper()
    return _VESSEL_TYPE_ALIASES.get(key)


def _split_payload(text: Optional[str], kind: str) -> List[str]:
    parts = [part.strip() for part in str(text or "").strip().split(FIELD_SEPARATOR)]
    if len(parts) != PAYLOAD_FIELD_COUNT:
        raise ValidationError(f"{kind} QR 형식 오류: 필드가 {PAYLOAD_FIELD_COUNT}개여야 합니다 (현재 {len(parts)}개).")
    return parts


def parse_vessel(text: Optional[str]) -> VesselIdentity:
    """용기 QR 문자열을 VesselIdentity로 변환합니다."""
    version, project_name, serial, raw_type = _split_payload(text, "용기")
    if not (version and project_name and serial and raw_type):
        raise ValidationError("용기 QR 형식 오류: 비어 있는 필드가 있습니다.")

    vessel_type = normalize_vessel_type(raw_type)
    if vessel_type is None:
        raise ValidationError(f"알 수 없는 용기 종류입니다: '{raw_type}'")

    return VesselIdentity(format_version=version, project_name=project_name,
                          serial=serial, vessel_type=vessel_type)


def parse_operator(text: Optional[str]) -> OperatorIdentity:
    """작업자 QR 문자열을 OperatorIdentity로 변환합니다."""
    version, employee_id, employee_name, station = _split_payload(text, "작업자")
    if version.upper() != OPERATOR_FORMAT_VERSION:
        raise ValidationError(f"작업자 QR이 아닙니다: 첫 필드가 '{OPERATOR_FORMAT_VERSION}'이어야 합니다.")

    employee_name = employee_name.replace("_", " ").strip()
    if not (employee_id and employee_name and station):
        raise ValidationError("작업자 QR 형식 오류: 비어 있는 필드가 있습니다.")

    return OperatorIdentity(employee_id=employee_id, employee_name=employee_name,
                            station=station, format_version=OPERATOR_FORMAT_VERSION)


def validate_manpower(raw: Union[str, int, None]) -> Optional[int]:
    """투입 인원을 검증합니다.

    빈 입력은 '아직 입력되지 않음'으로 보고 None을 반환합니다.
    그 외에는 1 이상의 정수(예: "3", "3.0")만 허용합니다.
    """
    if isinstance(raw, bool):
        raise ValidationError("투입 인원은 1 이상의 정수여야 합니다 (1, 2, 3, ...).")
    if raw is None:
        return None
    if isinstance(raw, int):
        value = float(raw)
    else:
        text = str(raw).strip()
        if text == "":
            return None
        try:
            value = float(text)
        except ValueError:
            raise ValidationError("투입 인원은 1 이상의 정수여야 합니다 (1, 2, 3, ...).")

    if not math.isfinite(value) or value <= 0 or not value.is_integer():
        raise ValidationError("투입 인원은 1 이상의 정수여야 합니다 (1, 2, 3, ...).")
    return int(value)


def validate_leak_report(reason: Optional[str], remark: Optional[str]) -> LeakReport:
    """누설 사유와 비고를 검증합니다. 사유가 'Others'이면 비고가 필수입니다."""
    reason = (reason or "").strip()
    remark = (remark or "").strip()

    if not reason:
        raise ValidationError("누설 사유를 선택해주세요.")
    if reason == LEAK_REASON_OTHERS and not remark:
        raise ValidationError("사유가 'Others'인 경우 비고를 입력해야 합니다.")

    return LeakReport(reason=reason, remark=remark or None)
