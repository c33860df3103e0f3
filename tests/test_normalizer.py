"""스캔 코드 정규화 테스트"""

import unittest
import sys
import os

# 상위 디렉토리의 모듈들을 import 하기 위해 경로 추가
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.normalizer import (
    REPLACEMENT_CHAR, CodeNormalizer, build_code_page_table, collect_bytes,
    evaluate_candidate, strip_corrupted_segments,
)

BAD = REPLACEMENT_CHAR


class TestCollectBytes(unittest.TestCase):
    """바이트 수집 테스트"""

    def test_nested_lists_flattened_in_order(self):
        self.assertEqual(collect_bytes([[1, [2, 3]], 4, [[5]]]), [1, 2, 3, 4, 5])

    def test_numbers_wrap_modulo_256(self):
        """음수와 범위 밖 숫자는 256으로 나머지 처리"""
        self.assertEqual(collect_bytes([-1, 256, 321.7, -128]), [255, 0, 65, 128])

    def test_non_numbers_ignored(self):
        self.assertEqual(collect_bytes([True, 'x', None, 66, float('nan')]), [66])
        self.assertEqual(collect_bytes(None), [])

    def test_bytes_accepted(self):
        self.assertEqual(collect_bytes([b'AB', bytearray(b'C')]), [65, 66, 67])


class TestCandidateScoring(unittest.TestCase):

    def test_score_penalizes_replacement_characters(self):
        candidate = evaluate_candidate(f"AB{BAD}C")
        self.assertEqual(candidate.score, 4 - 5)

    def test_control_characters_stripped(self):
        candidate = evaluate_candidate("\x02ABC\x7f\r\n")
        self.assertEqual(candidate.value, "ABC")
        self.assertEqual(candidate.score, 3)

    def test_empty_candidate_discarded(self):
        self.assertIsNone(evaluate_candidate("\x00 \t"))
        self.assertIsNone(evaluate_candidate(None))

    def test_code_page_table(self):
        table = build_code_page_table('cp1250')
        self.assertEqual(len(table), 128)
        self.assertEqual(table[0xA3 - 0x80], 'Ł')
        # cp1250에 정의되지 않은 0x81은 같은 코드 포인트
        self.assertEqual(table[0x81 - 0x80], '\x81')


class TestStripCorruptedSegments(unittest.TestCase):
    """깨진 구간 정리 테스트"""

    def test_keeps_clean_side(self):
        self.assertEqual(strip_corrupted_segments(f"A:{BAD};{BAD}B:C"), "A; C")

    def test_markers_on_both_sides_remain(self):
        self.assertEqual(strip_corrupted_segments(f"{BAD}A:B{BAD}"), f"{BAD}A:B{BAD}")

    def test_clean_and_empty_segments(self):
        self.assertEqual(strip_corrupted_segments(" KEY:VAL ;; X "), "KEY:VAL; X")
        self.assertEqual(strip_corrupted_segments(""), "")


class TestCodeNormalizer(unittest.TestCase):
    """CodeNormalizer.normalize 테스트"""

    def setUp(self):
        self.normalizer = CodeNormalizer()

    def test_fallback_only(self):
        """바이트 데이터가 없으면 공백을 정리한 문자열 그대로 반환"""
        self.assertEqual(self.normalizer.normalize({}, "  XYZ-123  "), "XYZ-123")

    def test_empty_event_returns_empty_string(self):
        self.assertEqual(self.normalizer.normalize({}), "")
        self.assertEqual(self.normalizer.normalize({'decode_data': []}, None), "")

    def test_clean_bytes_beat_corrupted_fallback(self):
        """대체 문자가 없는 바이트 후보가 깨진 문자열보다 우선"""
        event = {'com.symbol.datawedge.decode_data': [[0xA3, 0xF3, 0x64, 0x9F]]}
        result = self.normalizer.normalize(event, f"{BAD}{BAD}dź")
        self.assertEqual(result, "Łódź")

    def test_utf8_bytes_decoded(self):
        event = {'decode_data': [list("Zaz".encode('utf-8'))]}
        self.assertEqual(self.normalizer.normalize(event), "Zaz")

    def test_equal_score_keeps_earlier_candidate(self):
        """점수가 같으면 우선순위가 높은 후보 유지"""
        event = {'raw_data': [66], 'decode_data': [65]}
        self.assertEqual(self.normalizer.normalize(event), "A")
        self.assertEqual(self.normalizer.normalize(event, "Q"), "Q")

    def test_nested_and_negative_bytes(self):
        event = {'decode_data': [[72, [105]], 321.7, -191]}
        self.assertEqual(self.normalizer.normalize(event), "HiAA")

    def test_truncated_utf8_falls_back_to_code_page(self):
        """잘린 UTF-8 시퀀스는 코드 페이지 디코딩이 이김"""
        event = {'raw_data': [0x41, 0xC5]}
        self.assertEqual(self.normalizer.normalize(event), "AĹ")

    def test_has_byte_payload(self):
        self.assertTrue(self.normalizer.has_byte_payload({'raw_data': [1]}))
        self.assertFalse(self.normalizer.has_byte_payload({'raw_data': [], 'data_string': 'x'}))

    def test_never_raises_on_odd_input(self):
        event = {'decode_data': {'unexpected': 'shape'}, 'raw_data': 'text'}
        self.assertEqual(self.normalizer.normalize(event, " ok "), "ok")


if __name__ == '__main__':
    unittest.main()
