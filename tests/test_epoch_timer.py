"""에포크 스톱워치 테스트"""

import unittest
import datetime
import sys
import os

# 상위 디렉토리의 모듈들을 import 하기 위해 경로 추가
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.epoch_timer import (EpochTimer, elapsed_seconds, format_hhmmss, to_iso, parse_iso,
                              epoch_to_datetime)


class FakeClock:
    """테스트에서 직접 움직이는 시계 (epoch ms)"""

    def __init__(self, now=1_700_000_000_000):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += int(seconds * 1000)


class TestElapsedSeconds(unittest.TestCase):

    def test_no_start(self):
        self.assertEqual(elapsed_seconds(None, 123456), 0)

    def test_floor_and_clamp(self):
        self.assertEqual(elapsed_seconds(1000, 3999), 2)
        self.assertEqual(elapsed_seconds(5000, 1000), 0)

    def test_format(self):
        self.assertEqual(format_hhmmss(0), "00:00:00")
        self.assertEqual(format_hhmmss(3723), "01:02:03")
        self.assertEqual(format_hhmmss(-5), "00:00:00")


class TestEpochTimer(unittest.TestCase):
    """EpochTimer 테스트"""

    def setUp(self):
        self.clock = FakeClock()
        self.timer = EpochTimer(clock=self.clock)

    def test_elapsed_depends_only_on_start_and_now(self):
        """갱신 콜백이 몇 번 불렸는지와 상관없이 경과 시간이 같아야 합니다"""
        self.timer.start()
        self.clock.advance(3600)

        # 한 시간 동안 화면 갱신이 한 번도 없었어도 바로 정확한 값
        self.assertEqual(self.timer.elapsed(), 3600)
        self.assertEqual(self.timer.display(), "01:00:00")

    def test_stop_keeps_start_instant(self):
        start = self.timer.start()
        self.clock.advance(10)
        self.timer.stop()

        self.assertFalse(self.timer.refreshing)
        self.assertEqual(self.timer.start_epoch, start)
        self.clock.advance(5)
        self.assertEqual(self.timer.elapsed(), 15)

    def test_resume_continues_from_original_start(self):
        self.timer.start()
        self.clock.advance(7)
        self.timer.stop()
        self.clock.advance(20)
        self.timer.resume()

        self.assertTrue(self.timer.refreshing)
        self.assertEqual(self.timer.elapsed(), 27)

    def test_resume_without_start_does_nothing(self):
        self.timer.resume()
        self.assertFalse(self.timer.refreshing)

    def test_start_with_recovered_instant(self):
        self.timer.start(self.clock.now - 90_000)
        self.assertEqual(self.timer.elapsed(), 90)

    def test_clear(self):
        self.timer.start()
        self.clock.advance(30)
        self.timer.clear()

        self.assertIsNone(self.timer.start_epoch)
        self.assertEqual(self.timer.elapsed(), 0)
        self.assertEqual(self.timer.display(), "00:00:00")


class TestIsoHelpers(unittest.TestCase):

    def test_to_iso_uses_z_suffix_and_milliseconds(self):
        moment = datetime.datetime(2024, 5, 1, 8, 30, 0, 123456, tzinfo=datetime.timezone.utc)
        self.assertEqual(to_iso(moment), "2024-05-01T08:30:00.123Z")

    def test_to_iso_converts_other_timezones(self):
        kst = datetime.timezone(datetime.timedelta(hours=9))
        moment = datetime.datetime(2024, 5, 1, 17, 30, tzinfo=kst)
        self.assertEqual(to_iso(moment), "2024-05-01T08:30:00.000Z")

    def test_parse_iso(self):
        parsed = parse_iso("2024-05-01T08:30:00.000Z")
        self.assertEqual(parsed, datetime.datetime(2024, 5, 1, 8, 30, tzinfo=datetime.timezone.utc))

        with self.assertRaises(ValueError):
            parse_iso("not a date")

    def test_epoch_to_datetime(self):
        self.assertEqual(to_iso(epoch_to_datetime(0)), "1970-01-01T00:00:00.000Z")


if __name__ == '__main__':
    unittest.main()
