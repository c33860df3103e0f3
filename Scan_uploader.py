import datetime
import json
import os
import socket
import sys
import threading
import uuid
from typing import Any, Dict, List, Optional

from api.client import ApiClient, get_request_error_message, parse_fact_value
from core.intake import ScanIntake
from core.models import (
    KIND_BUFFER, KIND_FOLDER, TARGET_PRISMA, TARGET_TRAIN, SendMetadata, SendReport, SendSource,
)
from core.normalizer import CodeNormalizer
from core.scan_buffer import ScanBuffer, source_kind_for_key
from core.upload_manager import SessionStore, UploadSessionManager
from utils.exceptions import ScanClientError, ValidationError
from utils.file_handler import ensure_directory_exists, get_application_path, resolve_path
from utils.logger import EventLogger
from utils.storage import JsonFileStore

# #####################################################################
# # 설정 관리 클래스
# #####################################################################

class ConfigManager:
    """애플리케이션 설정을 관리하는 클래스"""

    def __init__(self, config_file: str = "config.json"):
        self.config_file = config_file
        self.config = self._load_config()

    @property
    def config_path(self) -> str:
        script_dir = os.path.dirname(os.path.abspath(__file__))
        return os.path.join(script_dir, self.config_file)

    def _load_config(self) -> Dict[str, Any]:
        """설정 파일을 로드합니다."""
        try:
            if os.path.exists(self.config_path):
                with open(self.config_path, 'r', encoding='utf-8') as f:
                    return json.load(f)
            else:
                # 기본 설정 생성
                return self._create_default_config()
        except (OSError, json.JSONDecodeError) as e:
            print(f"설정 파일 로드 오류: {e}")
            return self._create_default_config()

    def _create_default_config(self) -> Dict[str, Any]:
        """기본 설정을 생성합니다."""
        default_config = {
            "app": {
                "name": "Scan Uploader",
                "version": "v1.0.0"
            },
            "device": {
                "name": ""
            },
            "server": {
                "base_url": "",
                "api_key": "",
                "request_timeout": 30
            },
            "upload": {
                "chunk_size": 50,
                "wagon_chunk_size": 25,
                "max_chunk_retry": 3,
                "retry_delay_sec": 15
            },
            "scanner": {
                "code_page": "cp1250",
                "scan_delay_sec": 0.0
            },
            "storage": {
                "data_dir": "data"
            },
            "logging": {
                "enabled": True,
                "log_file": "scan_event_log.csv"
            }
        }
        self.save_config(default_config)
        return default_config

    def get(self, key_path: str, default=None):
        """점 표기법으로 설정값을 가져옵니다. 예: 'server.base_url'"""
        keys = key_path.split('.')
        value = self.config

        try:
            for key in keys:
                value = value[key]
            return value
        except (KeyError, TypeError):
            return default

    def set(self, key_path: str, value):
        """점 표기법으로 설정값을 설정합니다."""
        keys = key_path.split('.')
        config = self.config

        for key in keys[:-1]:
            if key not in config or not isinstance(config[key], dict):
                config[key] = {}
            config = config[key]

        config[keys[-1]] = value

    def save_config(self, config_data=None):
        """설정을 파일로 저장합니다."""
        data = config_data if config_data is not None else self.config
        try:
            with open(self.config_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, ensure_ascii=False, indent=4)
        except OSError as e:
            print(f"설정 파일 저장 오류: {e}")


def get_computer_id() -> str:
    try:
        return hex(uuid.getnode())
    except Exception:
        return socket.gethostname()


# #####################################################################
# # 메인 어플리케이션
# #####################################################################

class ScanUploaderProgram:
    """스캔 수집과 업로드 서비스를 한 번만 만들어 연결하는 메인 어플리케이션 클래스입니다."""

    def __init__(self, config: Optional[ConfigManager] = None, sleep=None):
        self.config = config or ConfigManager()

        self.device_id = self.config.get('device.name') or get_computer_id()
        self.app_name = self.config.get('app.name', 'Scan Uploader')

        self.data_dir = resolve_path(self.config.get('storage.data_dir', 'data'), get_application_path())
        ensure_directory_exists(self.data_dir)

        self.event_logger: Optional[EventLogger] = None
        if self.config.get('logging.enabled', True):
            log_file = self.config.get('logging.log_file', 'scan_event_log.csv')
            self.event_logger = EventLogger(resolve_path(log_file, self.data_dir), self.device_id)

        self.store = JsonFileStore(self.data_dir)
        self.scan_buffer = ScanBuffer(self.store, self.event_logger)
        self.normalizer = CodeNormalizer(self.config.get('scanner.code_page', 'cp1250'))
        self.intake = ScanIntake(
            self.normalizer, self.scan_buffer, self.event_logger,
            scan_delay_sec=float(self.config.get('scanner.scan_delay_sec', 0.0)),
        )

        manager_options = {}
        if sleep is not None:
            manager_options['sleep'] = sleep
        self.upload_manager = UploadSessionManager(
            SessionStore(self.store),
            self.create_api_client,
            chunk_size=int(self.config.get('upload.chunk_size', 50)),
            wagon_chunk_size=int(self.config.get('upload.wagon_chunk_size', 25)),
            max_retry=int(self.config.get('upload.max_chunk_retry', 3)),
            retry_delay_sec=float(self.config.get('upload.retry_delay_sec', 15)),
            event_logger=self.event_logger,
            **manager_options,
        )

    def _log_event(self, event_type: str, detail: Optional[Dict] = None):
        if self.event_logger:
            self.event_logger.log_event(event_type, detail)

    def create_api_client(self) -> ApiClient:
        return ApiClient(
            self.config.get('server.base_url', ''),
            self.config.get('server.api_key', ''),
            timeout=float(self.config.get('server.request_timeout', 30)),
        )

    def build_metadata(self, source: SendSource, comment: Optional[str] = None,
                       target_type: Optional[str] = None, target_name: Optional[str] = None) -> SendMetadata:
        """폴더는 prisma, train/왜건은 train을 기본 대상으로 하고 이름이 없으면 폴더 이름을 씁니다."""
        if source.kind != KIND_BUFFER:
            target_type = target_type or (TARGET_PRISMA if source.kind == KIND_FOLDER else TARGET_TRAIN)
            target_name = target_name or source.folder_name
        elif target_type is None:
            target_type = TARGET_PRISMA
        return SendMetadata(
            device_id=self.device_id,
            app_name=self.app_name,
            comment=(comment or '').strip() or None,
            target_type=target_type,
            target_name=(target_name or '').strip() or None,
        )

    def send_source(self, source_key: str, comment: Optional[str] = None,
                    target_type: Optional[str] = None, target_name: Optional[str] = None) -> SendReport:
        """선택한 원본을 서버로 전송합니다. 전송 후에도 원본 스캔은 지우지 않습니다.

        폴더나 왜건이 삭제되었어도 저장된 세션이 있으면 그 스냅샷으로 이어서 보냅니다.
        """
        try:
            source = self.scan_buffer.get_source(source_key)
        except ValidationError:
            if self.upload_manager.session_store.load(source_key) is None:
                raise
            source = SendSource(source_key, source_kind_for_key(source_key), source_key)
        metadata = self.build_metadata(source, comment, target_type, target_name)
        return self.upload_manager.send(source, metadata)

    def last_upload_error(self, source_key: str) -> Optional[str]:
        """이벤트 로그에서 해당 원본의 마지막 전송 실패 사유를 찾습니다."""
        if not self.event_logger:
            return None
        self.event_logger.flush()
        row = self.event_logger.find_log_in_file(
            self.event_logger.log_file_path, json.dumps({'source': source_key}, ensure_ascii=False)[1:-1], 'UPLOAD_FAILED')
        return row['details'].get('error') if row else None

    def list_sources(self) -> List[SendSource]:
        return self.scan_buffer.source_options()

    def fetch_summaries(self, kind: str) -> list:
        client = self.create_api_client()
        try:
            return client.fetch_prismas() if kind == 'prismas' else client.fetch_trains()
        finally:
            client.close()

    @staticmethod
    def summary_fact(summary):
        value = getattr(summary, 'fact_scanned', None)
        if value is None:
            value = getattr(summary, 'fact_loaded', None)
        return '-' if value is None else value

    def update_fact(self, target_type: str, name: str, raw_value: str) -> Dict[str, Any]:
        """prisma/train 실적 수량을 서버에 저장합니다. 쉼표 소수점을 허용합니다."""
        value = parse_fact_value(raw_value)
        client = self.create_api_client()
        try:
            if target_type == TARGET_TRAIN:
                result = client.update_train_fact(name, value)
            else:
                result = client.update_prisma_fact(name, value)
        finally:
            client.close()
        self._log_event('FACT_UPDATED', {'target': target_type, 'name': name, 'value': value})
        return result

    def _read_console(self, stop_event: threading.Event):
        """키보드 웨지 방식 스캐너 입력을 한 줄씩 이벤트 큐로 넘깁니다."""
        for line in sys.stdin:
            if stop_event.is_set():
                break
            line = line.strip()
            if line:
                self.intake.push({'data_string': line})
        stop_event.set()

    def run(self):
        stop_event = threading.Event()
        reader = threading.Thread(target=self._read_console, args=(stop_event,), daemon=True)
        reader.start()
        self._log_event('CAPTURE_STARTED')

        pending = self.upload_manager.pending_sessions()
        for session in pending:
            print(f"이어서 보낼 업로드가 있습니다: {session.source_key} ({session.sent_count}/{len(session.chunks)})")

        try:
            while not stop_event.is_set() or not self.intake.events.empty():
                for item in self.intake.wait_and_process(timeout=0.5):
                    print(f"[{item.friendly_name}] {item.code}")
        except KeyboardInterrupt:
            pass
        finally:
            stop_event.set()
            self.on_closing()

    def on_closing(self):
        self._log_event('CAPTURE_STOPPED', {'buffered': len(self.scan_buffer.items)})
        if self.event_logger:
            self.event_logger.stop_logger()


BUFFER_COMMANDS = {
    'scans': "scans [source_key]",
    'add': "add <code> [label_type]",
    'remove': "remove <scan_id> [folder_id [wagon_id]]",
    'clear': "clear [folder_id [wagon_id]]",
    'folder': "folder create <name> [prisma|train] | folder rename <folder_id> <name> | folder delete <folder_id>",
    'wagon': "wagon add <folder_id> <name> | wagon delete <folder_id> <wagon_id>",
    'move': "move <folder_id> [--wagon <wagon_id>] <scan_id> ...",
    'unmove': "unmove <folder_id> [--wagon <wagon_id>] <scan_id> ...",
}


def _split_wagon_option(args: List[str]):
    """'<folder_id> [--wagon <wagon_id>] <scan_id> ...' 인자를 나눕니다."""
    folder_id, rest = args[0], args[1:]
    wagon_id = None
    if len(rest) >= 2 and rest[0] == '--wagon':
        wagon_id, rest = rest[1], rest[2:]
    return folder_id, wagon_id, rest


def run_buffer_command(app: ScanUploaderProgram, command: str, args: List[str]) -> int:
    """스캔 버퍼/폴더/왜건 관리 명령을 실행합니다."""
    buffer = app.scan_buffer
    usage = f"사용법: Scan_uploader.py {BUFFER_COMMANDS[command]}"

    if command == 'scans':
        source = buffer.get_source(args[0] if args else 'buffer')
        for group in source.groups:
            for scan in group.scans:
                wagon = f"\t{group.wagon_name}" if group.wagon_name else ""
                print(f"{scan.id}\t{scan.friendly_name}\t{scan.code}{wagon}")
        return 0

    if command == 'add':
        if not args:
            print(usage)
            return 2
        item = app.intake.add_manual(args[0], args[1] if len(args) > 1 else None)
        print(f"[{item.friendly_name}] {item.code} ({item.id})")
        return 0

    if command == 'remove':
        if not args or len(args) > 3:
            print(usage)
            return 2
        if len(args) == 1:
            removed = buffer.remove(args[0])
        elif len(args) == 2:
            removed = buffer.remove_from_folder(args[1], args[0])
        else:
            removed = buffer.remove_from_wagon(args[1], args[2], args[0])
        print("삭제했습니다." if removed else "해당 스캔이 없습니다.")
        return 0

    if command == 'clear':
        if len(args) > 2:
            print(usage)
            return 2
        if not args:
            count = buffer.clear()
        elif len(args) == 1:
            count = buffer.clear_folder(args[0])
        else:
            count = buffer.clear_wagon(args[0], args[1])
        print(f"{count}개 스캔을 비웠습니다.")
        return 0

    if command == 'folder':
        action = args[0] if args else ''
        if action == 'create' and len(args) >= 2:
            name_parts, target = args[1:], TARGET_PRISMA
            if len(name_parts) >= 2 and name_parts[-1] in (TARGET_PRISMA, TARGET_TRAIN):
                target = name_parts.pop()
            folder = buffer.create_folder(' '.join(name_parts), target)
            print(f"{folder.id}\t{folder.name}\t{folder.target}")
            return 0
        if action == 'rename' and len(args) >= 3:
            folder = buffer.rename_folder(args[1], ' '.join(args[2:]))
            print(f"{folder.id}\t{folder.name}")
            return 0
        if action == 'delete' and len(args) == 2:
            folder = buffer.delete_folder(args[1])
            print(f"'{folder.name}' 폴더를 삭제했습니다.")
            return 0
        print(usage)
        return 2

    if command == 'wagon':
        action = args[0] if args else ''
        if action == 'add' and len(args) >= 3:
            wagon = buffer.add_wagon(args[1], ' '.join(args[2:]))
            print(f"{wagon.id}\t{wagon.name}")
            return 0
        if action == 'delete' and len(args) == 3:
            wagon = buffer.delete_wagon(args[1], args[2])
            print(f"'{wagon.name}' 왜건을 삭제했습니다.")
            return 0
        print(usage)
        return 2

    # move / unmove
    if len(args) < 2:
        print(usage)
        return 2
    folder_id, wagon_id, scan_ids = _split_wagon_option(args)
    if not scan_ids:
        print(usage)
        return 2
    if command == 'move':
        if wagon_id:
            moved = buffer.move_to_wagon(scan_ids, folder_id, wagon_id)
        else:
            moved = buffer.move_to_folder(scan_ids, folder_id)
    else:
        moved = buffer.move_to_buffer(scan_ids, folder_id, wagon_id)
    print(f"{moved}개 스캔을 옮겼습니다.")
    return 0


def main(argv: List[str]) -> int:
    app = ScanUploaderProgram()
    command = argv[1] if len(argv) > 1 else 'capture'

    try:
        if command == 'capture':
            app.run()
            return 0
        if command == 'sources':
            for source in app.list_sources():
                print(f"{source.key}\t{source.label}\t{source.count}")
        elif command == 'pending':
            for session in app.upload_manager.pending_sessions():
                error = app.last_upload_error(session.source_key) or '-'
                print(f"{session.source_key}\t{session.sent_count}/{len(session.chunks)}\t{session.created_at}\t{error}")
        elif command == 'discard':
            if len(argv) < 3:
                print("사용법: Scan_uploader.py discard <source_key>")
                return 2
            removed = app.upload_manager.discard(argv[2])
            print("세션을 삭제했습니다." if removed else "저장된 세션이 없습니다.")
        elif command in ('prismas', 'trains'):
            for summary in app.fetch_summaries(command):
                print(f"{summary.name}\t{summary.total_count}\t{app.summary_fact(summary)}")
        elif command == 'fact':
            if len(argv) < 5 or argv[2] not in (TARGET_PRISMA, TARGET_TRAIN):
                print("사용법: Scan_uploader.py fact <prisma|train> <name> <value>")
                return 2
            app.update_fact(argv[2], argv[3], argv[4])
            print(f"{argv[3]} 실적을 저장했습니다.")
        elif command == 'send':
            if len(argv) < 3:
                print("사용법: Scan_uploader.py send <source_key> [comment]")
                return 2
            comment = ' '.join(argv[3:]) or None
            report = app.send_source(argv[2], comment=comment)
            print(f"{report.total_sent}개 스캔을 {report.chunk_count}개 요청으로 전송했습니다. "
                  f"({datetime.datetime.now().strftime('%H:%M:%S')})")
        elif command in BUFFER_COMMANDS:
            return run_buffer_command(app, command, argv[2:])
        else:
            print(f"알 수 없는 명령: {command}")
            print("사용 가능한 명령: capture, sources, pending, discard, send, prismas, trains, fact, "
                  + ", ".join(BUFFER_COMMANDS))
            return 2
    except ValidationError as e:
        print(f"확인 필요: {e}")
        return 1
    except ScanClientError as e:
        print(f"전송 오류: {get_request_error_message(e, 'Upload failed')}")
        return 1
    finally:
        if command != 'capture':
            app.on_closing()
    return 0


def cli():
    sys.exit(main(sys.argv))


if __name__ == "__main__":
    cli()
