"""통합 테스트 - 스캔 수집부터 서버 전송까지"""

import unittest
import tempfile
import os
import shutil
import sys
from unittest.mock import patch

import requests

# 상위 디렉토리의 모듈들을 import 하기 위해 경로 추가
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from Scan_uploader import ConfigManager, ScanUploaderProgram, main
from core.models import SOURCE_MANUAL, TARGET_PRISMA, TARGET_TRAIN
from core.scan_buffer import train_source_key, wagon_source_key
from utils.exceptions import ConfigurationError, NetworkError, ValidationError


def make_response(status_code=201, body=b'{}', reason='Created'):
    response = requests.Response()
    response.status_code = status_code
    response.reason = reason
    response._content = body
    response.encoding = 'utf-8'
    response.url = 'https://scan.example/api/scans'
    return response


class TestIntegration(unittest.TestCase):
    """ScanUploaderProgram 전체 흐름 테스트"""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config = ConfigManager(os.path.join(self.temp_dir, "config.json"))
        self.config.set('storage.data_dir', os.path.join(self.temp_dir, "data"))
        self.config.set('server.base_url', 'https://scan.example')
        self.config.set('server.api_key', 'secret')
        self.config.set('device.name', 'TC-52')

        patcher = patch.object(requests.Session, 'request', return_value=make_response())
        self.mock_request = patcher.start()
        self.addCleanup(patcher.stop)

        self.sleeps = []
        self.program = ScanUploaderProgram(self.config, sleep=self.sleeps.append)

    def tearDown(self):
        self.program.on_closing()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _scan(self, *codes):
        for code in codes:
            self.program.intake.push({'com.symbol.datawedge.data_string': code, 'label_type': 'CODE128'})
        return self.program.intake.process_pending()

    def _posted_payloads(self):
        return [c[1]['json'] for c in self.mock_request.call_args_list if c[0][0] == 'POST']

    def test_scan_folder_and_send(self):
        """스캔 → 폴더 이동 → 전송, 전송 후에도 폴더 스캔 유지"""
        items = self._scan('P-001', 'P-002', 'P-003')
        folder = self.program.scan_buffer.create_folder('Prisma 7')
        self.program.scan_buffer.move_to_folder([item.id for item in items[:2]], folder.id)

        report = self.program.send_source(folder.id, comment=' nocna zmiana ')

        self.assertEqual((report.total_sent, report.chunk_count), (2, 1))
        payload = self._posted_payloads()[0]
        self.assertEqual(payload['device'], {'id': 'TC-52', 'app': 'Scan Uploader'})
        self.assertEqual(payload['prisma'], 'Prisma 7')
        self.assertEqual(payload['comment'], 'nocna zmiana')
        self.assertEqual([scan['code'] for scan in payload['scans']], ['P-001', 'P-002'])
        self.assertEqual(payload['scans'][0]['labelType'], 'CODE128')
        self.assertEqual(self.mock_request.call_args[0][1], 'https://scan.example/api/scans')
        self.assertEqual(self.program.scan_buffer.get_folder(folder.id).scan_count, 2)

        self.program.event_logger.flush()
        self.assertEqual(len(self.program.event_logger.get_todays_logs('UPLOAD_COMPLETE')), 1)
        self.assertEqual(len(self.program.event_logger.get_todays_logs('SCAN_CAPTURED')), 3)

    def test_buffer_send_without_target_name(self):
        self._scan('B-1')

        self.program.send_source('buffer')

        payload = self._posted_payloads()[0]
        self.assertNotIn('prisma', payload)
        self.assertNotIn('comment', payload)

    def test_train_and_wagon_sources(self):
        items = self._scan('T-1', 'T-2')
        train = self.program.scan_buffer.create_folder('Train 3', TARGET_TRAIN)
        wagon = self.program.scan_buffer.add_wagon(train.id, 'W-12')
        self.program.scan_buffer.move_to_wagon([item.id for item in items], train.id, wagon.id)

        self.program.send_source(wagon_source_key(train.id, wagon.id))
        self.program.send_source(train_source_key(train.id))

        for payload in self._posted_payloads():
            self.assertEqual(payload['train'], 'Train 3')
            self.assertEqual(payload['wagon'], 'W-12')

    def test_failed_upload_resumes_after_restart(self):
        """전송 실패 후 프로그램을 다시 만들어도 남은 청크부터 전송"""
        self.config.set('upload.chunk_size', 2)
        self.program.on_closing()
        self.program = ScanUploaderProgram(self.config, sleep=self.sleeps.append)
        self._scan('A', 'B', 'C', 'D', 'E')

        self.mock_request.side_effect = [make_response()] + [make_response(503, b'', 'Service Unavailable')] * 3
        with self.assertRaises(NetworkError):
            self.program.send_source('buffer')
        self.assertEqual(self.sleeps, [15.0, 30.0])

        self.program.on_closing()
        self.program = ScanUploaderProgram(self.config, sleep=self.sleeps.append)
        self.assertEqual(len(self.program.upload_manager.pending_sessions()), 1)

        self.mock_request.side_effect = None
        self.mock_request.return_value = make_response()
        report = self.program.send_source('buffer')

        self.assertEqual((report.total_sent, report.chunk_count, report.resumed), (5, 3, True))
        self.assertEqual(self.program.upload_manager.pending_sessions(), [])
        first_codes = [p['scans'][0]['code'] for p in self._posted_payloads()]
        self.assertEqual(first_codes, ['A', 'C', 'C', 'C', 'C', 'E'])

    def _restart_with_chunk_size(self, chunk_size):
        self.config.set('upload.chunk_size', chunk_size)
        self.config.set('upload.wagon_chunk_size', chunk_size)
        self.program.on_closing()
        self.program = ScanUploaderProgram(self.config, sleep=self.sleeps.append)

    def _fail_second_chunk(self, source_key):
        self.mock_request.side_effect = [make_response()] + [make_response(503, b'', 'Service Unavailable')] * 3
        with self.assertRaises(NetworkError):
            self.program.send_source(source_key)
        self.mock_request.side_effect = None
        self.mock_request.return_value = make_response()

    def test_deleted_folder_session_resumes(self):
        """폴더를 삭제해도 저장된 세션은 이어서 전송됨"""
        self._restart_with_chunk_size(1)
        items = self._scan('F-1', 'F-2')
        folder = self.program.scan_buffer.create_folder('Prisma 9')
        self.program.scan_buffer.move_to_folder([item.id for item in items], folder.id)

        self._fail_second_chunk(folder.id)
        self.assertEqual(self.program.last_upload_error(folder.id), '503 Service Unavailable')
        self.program.scan_buffer.delete_folder(folder.id)

        report = self.program.send_source(folder.id)

        self.assertEqual((report.total_sent, report.chunk_count, report.resumed), (2, 2, True))
        last_payload = self._posted_payloads()[-1]
        self.assertEqual(last_payload['prisma'], 'Prisma 9')
        self.assertEqual(last_payload['scans'][0]['code'], 'F-2')
        self.assertEqual(self.program.upload_manager.pending_sessions(), [])

    def test_deleted_wagon_session_resumes(self):
        self._restart_with_chunk_size(1)
        items = self._scan('W-1', 'W-2')
        train = self.program.scan_buffer.create_folder('Train 4', TARGET_TRAIN)
        wagon = self.program.scan_buffer.add_wagon(train.id, 'W-7')
        self.program.scan_buffer.move_to_wagon([item.id for item in items], train.id, wagon.id)
        source_key = wagon_source_key(train.id, wagon.id)

        self._fail_second_chunk(source_key)
        self.program.scan_buffer.delete_wagon(train.id, wagon.id)

        report = self.program.send_source(source_key)

        self.assertEqual((report.total_sent, report.resumed), (2, True))
        self.assertEqual(self._posted_payloads()[-1]['wagon'], 'W-7')

    def test_unknown_source_without_session(self):
        with self.assertRaises(ValidationError):
            self.program.send_source('missing-folder')
        self.assertIsNone(self.program.last_upload_error('missing-folder'))

    def test_buffer_commands(self):
        """폴더/왜건/이동/수동 입력 명령"""
        with patch('Scan_uploader.ScanUploaderProgram', return_value=self.program):
            self.assertEqual(main(['Scan_uploader.py', 'add', ' CODE-1 ', 'QR']), 0)
            item = self.program.scan_buffer.last_scan
            self.assertEqual((item.code, item.source, item.label_type), ('CODE-1', SOURCE_MANUAL, 'QR'))

            self.assertEqual(main(['Scan_uploader.py', 'folder', 'create', 'Train', '5', 'train']), 0)
            train = self.program.scan_buffer.folders[-1]
            self.assertEqual((train.name, train.target), ('Train 5', TARGET_TRAIN))

            self.assertEqual(main(['Scan_uploader.py', 'wagon', 'add', train.id, 'W', '1']), 0)
            wagon = train.wagons[0]
            self.assertEqual(wagon.name, 'W 1')

            self.assertEqual(main(['Scan_uploader.py', 'move', train.id, '--wagon', wagon.id, item.id]), 0)
            self.assertEqual(wagon.scans, [item])
            self.assertEqual(self.program.scan_buffer.items, [])
            self.assertEqual(main(['Scan_uploader.py', 'scans', wagon_source_key(train.id, wagon.id)]), 0)

            self.assertEqual(main(['Scan_uploader.py', 'unmove', train.id, '--wagon', wagon.id, item.id]), 0)
            self.assertEqual(self.program.scan_buffer.items, [item])

            self.assertEqual(main(['Scan_uploader.py', 'folder', 'rename', train.id, 'Train', '6']), 0)
            self.assertEqual(train.name, 'Train 6')

            self.assertEqual(main(['Scan_uploader.py', 'folder', 'create', 'Prisma']), 0)
            prisma = self.program.scan_buffer.folders[-1]
            self.assertEqual(prisma.target, TARGET_PRISMA)
            self.assertEqual(main(['Scan_uploader.py', 'move', prisma.id, item.id]), 0)
            self.assertEqual(main(['Scan_uploader.py', 'remove', item.id, prisma.id]), 0)
            self.assertEqual(prisma.scans, [])

            self.assertEqual(main(['Scan_uploader.py', 'wagon', 'delete', train.id, wagon.id]), 0)
            self.assertEqual(main(['Scan_uploader.py', 'folder', 'delete', train.id]), 0)
            self.assertEqual([f.id for f in self.program.scan_buffer.folders], [prisma.id])

            self.assertEqual(main(['Scan_uploader.py', 'add', 'X']), 0)
            self.assertEqual(main(['Scan_uploader.py', 'clear']), 0)
            self.assertEqual(self.program.scan_buffer.items, [])

            self.assertEqual(main(['Scan_uploader.py', 'folder']), 2)
            self.assertEqual(main(['Scan_uploader.py', 'move', prisma.id]), 2)
            self.assertEqual(main(['Scan_uploader.py', 'folder', 'delete', 'missing']), 1)

    def test_missing_server_url(self):
        self.config.set('server.base_url', '')
        self._scan('X')

        with self.assertRaises(ConfigurationError):
            self.program.send_source('buffer')
        self.assertEqual(self.program.upload_manager.pending_sessions(), [])

    def test_main_send_command(self):
        self._scan('M-1')

        with patch('Scan_uploader.ScanUploaderProgram', return_value=self.program):
            self.assertEqual(main(['Scan_uploader.py', 'send', 'buffer', 'zmiana', 'B']), 0)
            self.assertEqual(main(['Scan_uploader.py', 'send', 'missing']), 1)
            self.assertEqual(main(['Scan_uploader.py', 'send']), 2)

        self.assertEqual(self._posted_payloads()[0]['comment'], 'zmiana B')

    def test_update_fact(self):
        """실적 입력은 쉼표 소수점을 허용하고 잘못된 값은 거부"""
        self.mock_request.return_value = make_response(200, b'{"name":"T 1","factLoaded":12.5}', 'OK')

        result = self.program.update_fact(TARGET_TRAIN, 'T 1', '12,5')

        self.assertEqual(result['factLoaded'], 12.5)
        self.mock_request.assert_called_with(
            'PATCH', 'https://scan.example/api/trains/T%201/fact', timeout=30.0, json={'factLoaded': 12.5})

        with patch('Scan_uploader.ScanUploaderProgram', return_value=self.program):
            self.assertEqual(main(['Scan_uploader.py', 'fact', 'prisma', 'P1', 'abc']), 1)
            self.assertEqual(main(['Scan_uploader.py', 'fact', 'truck', 'P1', '1']), 2)


class TestSystemHealth(unittest.TestCase):
    """시스템 건강성 검사"""

    def test_required_files_exist(self):
        """필수 파일들이 존재하는지 확인"""
        base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
        required_files = [
            'Scan_uploader.py',
            'pyproject.toml',
            'api/client.py',
            'core/models.py',
            'core/normalizer.py',
            'core/scan_buffer.py',
            'core/intake.py',
            'core/upload_manager.py',
            'utils/file_handler.py',
            'utils/logger.py',
            'utils/exceptions.py',
            'utils/storage.py',
            'tests/run_tests.py'
        ]

        for file_path in required_files:
            full_path = os.path.join(base_dir, file_path)
            self.assertTrue(os.path.exists(full_path),
                            f"필수 파일 {file_path}이 존재하지 않습니다")

    def test_module_imports(self):
        """핵심 모듈들이 정상적으로 import되는지 확인"""
        try:
            from core.models import ScanItem, UploadSession
            from core.upload_manager import UploadSessionManager
            from api.client import ApiClient
            from utils.logger import EventLogger
            from utils.exceptions import ScanClientError
        except ImportError as e:
            self.fail(f"핵심 모듈 import 실패: {e}")


if __name__ == '__main__':
    unittest.main()
