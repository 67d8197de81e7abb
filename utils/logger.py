"""이벤트 로깅 유틸리티 모듈

시험 이벤트를 일자별 CSV 파일에 남깁니다. 쓰기는 백그라운드 스레드가 담당하므로
호출 측(UI 루프)은 파일 I/O를 기다리지 않습니다.
"""

import csv
import datetime
import json
import os
import queue
import threading
from typing import Dict, Optional

from utils.file_handler import ensure_directory_exists, get_safe_filename

LOG_FIELDNAMES = ['timestamp', 'operator', 'event', 'details']


class EventLogger:
    """이벤트 로깅을 담당하는 클래스"""

    def __init__(self, log_dir: str, station_id: str):
        self.log_dir = log_dir
        self.station_id = get_safe_filename(station_id, fallback="station")
        self.operator_name = ""
        self.log_queue: queue.Queue = queue.Queue()
        self.log_writer_running = True
        ensure_directory_exists(self.log_dir)
        self._log_thread = threading.Thread(target=self._event_log_writer, daemon=True)
        self._log_thread.start()

    def log_file_path(self, day: Optional[datetime.date] = None) -> str:
        day = day or datetime.date.today()
        return os.path.join(self.log_dir, f"pneumatic_events_{self.station_id}_{day.strftime('%Y%m%d')}.csv")

    def set_operator(self, operator_name: str):
        self.operator_name = operator_name or ""

    def _event_log_writer(self):
        """이벤트 로그를 파일에 작성하는 스레드 함수"""
        while self.log_writer_running:
            try:
                log_entry = self.log_queue.get(timeout=1)
            except queue.Empty:
                continue

            if log_entry is None:
                self.log_queue.task_done()
                break

            try:
                target_path = self.log_file_path()
                file_exists = os.path.exists(target_path) and os.stat(target_path).st_size > 0
                with open(target_path, mode='a', newline='', encoding='utf-8-sig') as csvfile:
                    writer = csv.DictWriter(csvfile, fieldnames=LOG_FIELDNAMES)
                    if not file_exists:
                        writer.writeheader()
                    writer.writerow(log_entry)
            except OSError as e:
                print(f"로그 작성 오류: {e}")
            finally:
                self.log_queue.task_done()

    def log_event(self, event_type: str, detail: Optional[Dict] = None):
        """이벤트를 로그에 기록합니다."""
        log_entry = {
            'timestamp': datetime.datetime.now().isoformat(),
            'operator': self.operator_name or "System",
            'event': event_type,
            'details': json.dumps(detail, ensure_ascii=False) if detail else ""
        }
        self.log_queue.put(log_entry)

    def flush(self):
        """대기 중인 로그가 모두 기록될 때까지 기다립니다."""
        self.log_queue.join()

    def stop_logger(self, timeout: float = 1.0):
        """로깅을 중지합니다."""
        self.log_queue.put(None)  # 종료 신호
        self._log_thread.join(timeout=timeout)
        self.log_writer_running = False
