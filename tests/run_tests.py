"""테스트 실행 스크립트"""

import unittest
import sys
import os

# 상위 디렉토리의 모듈들을 import 하기 위해 경로 추가
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

# 테스트 모듈들 import
from test_config import TestConfigManager
from test_models import TestScanItem, TestFolder, TestUploadSession
from test_file_handler import TestFileHandler, TestJsonFileStore
from test_normalizer import TestCollectBytes, TestCandidateScoring, TestStripCorruptedSegments, TestCodeNormalizer
from test_scan_buffer import TestScanBuffer
from test_intake import TestScanIntake
from test_api_client import TestUrlHelpers, TestErrorMessages, TestParseFactValue, TestApiClient
from test_upload_manager import TestChunkList, TestUploadSessionManager
from test_integration import TestIntegration, TestSystemHealth

TEST_GROUPS = {
    "config": [TestConfigManager],
    "models": [TestScanItem, TestFolder, TestUploadSession],
    "file_handler": [TestFileHandler, TestJsonFileStore],
    "normalizer": [TestCollectBytes, TestCandidateScoring, TestStripCorruptedSegments, TestCodeNormalizer],
    "scan_buffer": [TestScanBuffer, TestScanIntake],
    "api": [TestUrlHelpers, TestErrorMessages, TestParseFactValue, TestApiClient],
    "upload": [TestChunkList, TestUploadSessionManager],
    "integration": [TestIntegration, TestSystemHealth],
}


def build_suite(test_classes):
    loader = unittest.TestLoader()
    suite = unittest.TestSuite()
    for test_class in test_classes:
        suite.addTest(loader.loadTestsFromTestCase(test_class))
    return suite


def run_all_tests():
    """모든 테스트를 실행합니다."""
    test_classes = [test_class for group in TEST_GROUPS.values() for test_class in group]
    runner = unittest.TextTestRunner(verbosity=2)
    return runner.run(build_suite(test_classes))


def run_specific_test(test_name):
    """특정 테스트만 실행합니다."""
    if test_name == "system":
        test_name = "integration"
    if test_name not in TEST_GROUPS:
        print(f"알 수 없는 테스트: {test_name}")
        print(f"사용 가능한 테스트: {', '.join(TEST_GROUPS)}")
        return None

    runner = unittest.TextTestRunner(verbosity=2)
    return runner.run(build_suite(TEST_GROUPS[test_name]))


if __name__ == '__main__':
    print("=" * 50)
    print("Scan Uploader 시스템 테스트 실행")
    print("=" * 50)

    if len(sys.argv) > 1:
        # 특정 테스트 실행
        test_name = sys.argv[1]
        print(f"테스트 실행: {test_name}")
        result = run_specific_test(test_name)
    else:
        # 모든 테스트 실행
        print("모든 테스트 실행")
        result = run_all_tests()

    if result:
        print("\n" + "=" * 50)
        print(f"테스트 결과: {result.testsRun}개 실행")
        print(f"성공: {result.testsRun - len(result.failures) - len(result.errors)}개")
        print(f"실패: {len(result.failures)}개")
        print(f"오류: {len(result.errors)}개")

        if result.failures:
            print("\n실패한 테스트:")
            for test, traceback in result.failures:
                print(f"- {test}")

        if result.errors:
            print("\n오류가 발생한 테스트:")
            for test, traceback in result.errors:
                print(f"- {test}")

        print("=" * 50)

        # 모든 테스트가 성공했으면 0, 실패가 있으면 1 반환
        sys.exit(0 if result.wasSuccessful() else 1)
    sys.exit(2)
