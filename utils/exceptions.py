"""커스텀 예외 클래스들"""


class PneumaticTestError(Exception):
    """기밀 시험 시스템의 기본 예외 클래스"""
    pass


class ConfigurationError(PneumaticTestError):
    """설정 관련 오류"""
    pass


class FileHandlingError(PneumaticTestError):
    """파일 처리 관련 오류"""
    pass


class ValidationError(PneumaticTestError):
    """스캔 데이터/입력값 검증 오류. 원장에는 절대 도달하지 않습니다."""
    pass


class LedgerError(PneumaticTestError):
    """원장(원격 저장소)이 요청을 거부했거나 통신에 실패한 경우"""
    pass


class LedgerTimeoutError(LedgerError):
    """원장 요청이 제한 시간을 넘긴 경우"""
    pass


class SessionError(PneumaticTestError):
    """세션 관리 관련 오류"""
    pass


class StateGuardViolation(SessionError):
    """조건이 맞지 않는 상태에서 명령이 실행된 경우 (프로그램 결함)"""
    pass
