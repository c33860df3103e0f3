"""로깅 유틸리티 모듈"""

import csv
import json
import datetime
import os
import queue
import threading
from typing import Dict, Any, Optional, List

LOG_FIELDNAMES = ['timestamp', 'device', 'event', 'details']


class EventLogger:
    """스캔/업로드 이벤트를 CSV 파일에 기록하는 클래스"""

    def __init__(self, log_file_path: str, device_id: str = "System"):
        self.log_file_path = log_file_path
        self.device_id = device_id
        self.log_queue = queue.Queue()
        self.log_writer_running = True
        self._start_log_writer_thread()

    def _start_log_writer_thread(self):
        """로그 작성 스레드를 시작합니다."""
        self.log_thread = threading.Thread(target=self._event_log_writer, daemon=True)
        self.log_thread.start()

    def _event_log_writer(self):
        """이벤트 로그를 파일에 작성하는 스레드 함수"""
        while self.log_writer_running:
            try:
                log_entry = self.log_queue.get(timeout=1)
            except queue.Empty:
                continue

            try:
                if log_entry is None:
                    break

                file_exists = os.path.exists(self.log_file_path) and os.stat(self.log_file_path).st_size > 0
                with open(self.log_file_path, mode='a', newline='', encoding='utf-8') as csvfile:
                    writer = csv.DictWriter(csvfile, fieldnames=LOG_FIELDNAMES)

                    if not file_exists:
                        writer.writeheader()

                    writer.writerow(log_entry)
                    csvfile.flush()
            except OSError as e:
                print(f"로그 작성 오류: {e}")
            finally:
                self.log_queue.task_done()

    def log_event(self, event_type: str, detail: Optional[Dict] = None):
        """이벤트를 로그에 기록합니다."""
        log_entry = {
            'timestamp': datetime.datetime.now().isoformat(),
            'device': self.device_id,
            'event': event_type,
            'details': json.dumps(detail, ensure_ascii=False) if detail else ""
        }
        self.log_queue.put(log_entry)

    def flush(self):
        """대기 중인 로그가 모두 기록될 때까지 기다립니다."""
        if self.log_thread.is_alive():
            self.log_queue.join()

    def _read_rows(self, file_path: str) -> List[Dict[str, Any]]:
        rows = []
        if not os.path.exists(file_path):
            return rows

        try:
            with open(file_path, mode='r', encoding='utf-8') as csvfile:
                for row in csv.DictReader(csvfile):
                    try:
                        details = json.loads(row['details']) if row.get('details') else {}
                    except json.JSONDecodeError:
                        continue
                    rows.append({
                        'timestamp': row['timestamp'],
                        'device': row.get('device', ''),
                        'event': row['event'],
                        'details': details
                    })
        except (OSError, csv.Error, KeyError) as e:
            print(f"로그 파일 읽기 오류: {e}")
        return rows

    def find_log_in_file(self, file_path: str, search_key: str, event_type: Optional[str] = None) -> Optional[Dict]:
        """파일에서 search_key가 details에 포함된 마지막 로그를 찾습니다."""
        found = None
        for row in self._read_rows(file_path):
            if event_type is not None and row['event'] != event_type:
                continue
            if search_key in json.dumps(row['details'], ensure_ascii=False):
                found = row
        return found

    def get_todays_logs(self, event_type: Optional[str] = None) -> List[Dict[str, Any]]:
        """오늘 날짜의 로그를 반환합니다. event_type을 주면 해당 이벤트만 반환합니다."""
        today = datetime.date.today().isoformat()
        return [
            row for row in self._read_rows(self.log_file_path)
            if row['timestamp'].startswith(today) and (event_type is None or row['event'] == event_type)
        ]

    def stop_logger(self):
        """로깅을 중지합니다."""
        self.log_queue.put(None)  # 종료 신호
        if self.log_thread.is_alive():
            self.log_thread.join(timeout=1.0)
        self.log_writer_running = False
