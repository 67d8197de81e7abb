"""에포크 기반 스톱워치

화면 갱신 콜백이 지연되거나 건너뛰어져도(창 최소화, 절전 등) 표시 시간이
틀리지 않도록, 경과 시간은 항상 '시작 시각'과 '현재 시각' 두 값으로만 계산합니다.
주기적 갱신은 표시용일 뿐이며 경과 시간의 근거가 되지 않습니다.
"""

import datetime
import time
from typing import Callable, Optional


def now_epoch_ms() -> int:
    """현재 시각을 epoch 밀리초로 반환합니다."""
    return int(time.time() * 1000)


def elapsed_seconds(start_epoch: Optional[int], now_epoch: int) -> int:
    """두 시각 사이의 경과 초. 음수가 되지 않으며 호출 횟수와 무관합니다."""
    if not start_epoch:
        return 0
    return max(0, (now_epoch - start_epoch) // 1000)


def epoch_to_datetime(epoch_ms: int) -> datetime.datetime:
    return datetime.datetime.fromtimestamp(epoch_ms / 1000, tz=datetime.timezone.utc)


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def to_iso(moment: datetime.datetime) -> str:
    """UTC ISO-8601 문자열(밀리초, 'Z' 접미사)로 변환합니다. 예: 2024-05-01T08:30:00.000Z"""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=datetime.timezone.utc)
    text = moment.astimezone(datetime.timezone.utc).isoformat(timespec='milliseconds')
    return text.replace('+00:00', 'Z')


def parse_iso(text: str) -> datetime.datetime:
    """ISO-8601 문자열을 timezone이 있는 datetime으로 변환합니다."""
    text = text.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    moment = datetime.datetime.fromisoformat(text)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=datetime.timezone.utc)
    return moment


def format_hhmmss(total_seconds: int) -> str:
    hours, rest = divmod(max(0, int(total_seconds)), 3600)
    mins, secs = divmod(rest, 60)
    return f"{hours:02d}:{mins:02d}:{secs:02d}"


class EpochTimer:
    """시작 시각 하나만 기억하는 스톱워치"""

    def __init__(self, clock: Callable[[], int] = now_epoch_ms):
        self._clock = clock
        self.start_epoch: Optional[int] = None
        self.refreshing = False

    def start(self, start_epoch: Optional[int] = None) -> int:
        """기준 시각을 기록하고 화면 갱신을 켭니다."""
        self.start_epoch = start_epoch if start_epoch is not None else self._clock()
        self.refreshing = True
        return self.start_epoch

    def stop(self):
        """화면 갱신만 멈춥니다. 기준 시각은 다음 start() 전까지 유지됩니다."""
        self.refreshing = False

    def resume(self):
        """멈췄던 화면 갱신을 원래 기준 시각 그대로 다시 켭니다."""
        if self.start_epoch is not None:
            self.refreshing = True

    def clear(self):
        self.refreshing = False
        self.start_epoch = None

    def now(self) -> int:
        return self._clock()

    def elapsed(self, now: Optional[int] = None) -> int:
        return elapsed_seconds(self.start_epoch, self._clock() if now is None else now)

    def display(self, now: Optional[int] = None) -> str:
        return format_hhmmss(self.elapsed(now))
