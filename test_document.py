#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Test suite for the Chinese Typesetter document pipeline
Covers presets, text processing, verification, DOCX rendering and the CLI
"""

import io
import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from docx.oxml.ns import qn
from rich.console import Console

from layout import LayoutEngine, TypesettingError, VisibleCharacterOutOfRange
from main import ChineseTextProcessor, TypesetDocumentBuilder, main, read_text_file
from sizes import TextBoxPresetSelector
from validation import TypesetValidator, merge_reports

TEST_PRESET = {
    'name': 'Test',
    'box_width': 55,
    'font_size': 10,
    'chars_per_line': 5,
    'alignment': 'left',
    'description': 'Five and a half characters at 10px',
}


class TestTextBoxPresetSelector(unittest.TestCase):
    """Test cases for TextBoxPresetSelector class"""

    def setUp(self):
        """Set up test fixtures"""
        self.console = Console(file=io.StringIO())
        self.selector = TextBoxPresetSelector(console=self.console)

    def test_get_preset(self):
        """Test preset lookup"""
        preset = TextBoxPresetSelector.get_preset('DIALOGUE')
        self.assertEqual(preset['name'], 'Dialogue')
        self.assertEqual(preset['box_width'], 1152)
        self.assertIsNone(TextBoxPresetSelector.get_preset('billboard'))

    def test_get_preset_returns_copy(self):
        """Test callers cannot change the shared presets"""
        preset = TextBoxPresetSelector.get_preset('narration')
        preset['box_width'] = 1
        self.assertEqual(TextBoxPresetSelector.PRESETS['narration']['box_width'], 1344)

    def test_preset_widths(self):
        """Test every preset box holds a whole number of characters"""
        for name, preset in TextBoxPresetSelector.PRESETS.items():
            if name == 'custom':
                continue
            with self.subTest(preset=name):
                self.assertEqual(preset['box_width'], preset['chars_per_line'] * preset['font_size'])
                self.assertIn(preset['alignment'], TextBoxPresetSelector.ALIGNMENTS)

    def test_calculate_box_width(self):
        """Test box width calculation"""
        dims = TextBoxPresetSelector.calculate_box_width(30, 32)
        self.assertEqual(dims, {'box_width': 960, 'font_size': 32, 'chars_per_line': 30})
        with self.assertRaises(ValueError):
            TextBoxPresetSelector.calculate_box_width(0, 32)

    @patch('sizes.Prompt.ask', return_value='2')
    def test_select_preset(self, ask):
        """Test choosing a listed preset"""
        preset = self.selector.select_preset()
        self.assertEqual(preset['name'], 'Narration')
        self.assertIn('Text Box Presets', self.console.file.getvalue())

    @patch('sizes.Prompt.ask', side_effect=['6', '40', '20', 'justified'])
    def test_select_custom_preset(self, ask):
        """Test building a custom box interactively"""
        preset = self.selector.select_preset()
        self.assertEqual(preset['box_width'], 800)
        self.assertEqual(preset['font_size'], 40)
        self.assertEqual(preset['alignment'], 'justified')
        self.assertEqual(TextBoxPresetSelector.PRESETS['custom']['box_width'], 0)


class TestChineseTextProcessor(unittest.TestCase):
    """Test cases for ChineseTextProcessor class"""

    def setUp(self):
        """Set up test fixtures"""
        self.processor = ChineseTextProcessor()

    def test_split_paragraphs(self):
        """Test blank-line and single-line paragraph splitting"""
        self.assertEqual(self.processor.split_paragraphs('甲\n\n乙\r\n\r\n丙\n'), ['甲', '乙', '丙'])
        self.assertEqual(self.processor.split_paragraphs('甲\n乙\n\n丙'), ['甲\n乙', '丙'])
        self.assertEqual(self.processor.split_paragraphs('甲\n乙\n\n丙', 'single'), ['甲', '乙', '丙'])

    def test_normalize_punctuation(self):
        """Test ASCII punctuation after Chinese characters becomes full-width"""
        self.assertEqual(self.processor.normalize_punctuation('他说,你好.'), '他说，你好。')
        self.assertEqual(self.processor.normalize_punctuation('(中文)'), '（中文）')
        self.assertEqual(self.processor.normalize_punctuation('"你好"'), '“你好”')
        self.assertEqual(self.processor.normalize_punctuation('等等...'), '等等...')
        self.assertEqual(self.processor.normalize_punctuation('version 1.2, ok.'), 'version 1.2, ok.')


class TestTypesetValidator(unittest.TestCase):
    """Test cases for TypesetValidator class"""

    def setUp(self):
        """Set up test fixtures"""
        self.engine = LayoutEngine(box_width=55, font_size=10)
        self.validator = TypesetValidator(self.engine)

    def test_compliant(self):
        """Test a correctly typeset paragraph passes"""
        report = self.validator.run_complete_validation(
            '一二，三四五六七',
            '<align="flush">一二，<space=0.2500em>三四</align>\v五六七'
        )
        self.assertEqual(report['status'], 'compliant')
        self.assertEqual(report['score'], 100)
        self.assertEqual(report['lines_before'], 2)
        self.assertEqual(report['lines_after'], 2)

    def test_visible_characters_changed(self):
        """Test losing a character is critical"""
        report = self.validator.run_complete_validation('一二三', '一二')
        self.assertEqual(report['status'], 'non_compliant')
        self.assertEqual(report['score'], 75)
        self.assertEqual(report['critical'][0]['type'], 'visible_characters_changed')

    def test_spacing_out_of_range(self):
        """Test spacing outside half an em is critical except for end margins"""
        violations = self.validator.validate_spacing_directives('一<space=0.9000em>二')
        self.assertEqual(len(violations), 1)
        self.assertEqual(violations[0]['severity'], 'critical')
        self.assertEqual(self.validator.validate_spacing_directives('一<space=2.0000em>\u00a0</align>\v二'), [])
        self.assertEqual(self.validator.validate_spacing_directives('<space=-0.5000em>“一'), [])

    def test_line_start_punctuation(self):
        """Test a line starting with closing punctuation is reported"""
        snapshot = self.engine.layout('一二三四五\v，六')
        violations = self.validator.validate_line_breaking_rules(snapshot)
        self.assertEqual([v['type'] for v in violations], ['line_start_punctuation'])
        self.assertEqual(violations[0]['line'], 1)

    def test_line_end_opening(self):
        """Test a line ending with opening punctuation is reported"""
        snapshot = self.engine.layout('一二三四“\v六')
        violations = self.validator.validate_line_breaking_rules(snapshot)
        self.assertEqual([v['type'] for v in violations], ['line_end_opening'])

    def test_orphan_line(self):
        """Test a stranded final ideograph is a warning"""
        violations = self.validator.validate_orphan_lines(self.engine.layout('一二三四五\v六'))
        self.assertEqual(len(violations), 1)
        self.assertEqual(violations[0]['severity'], 'warning')
        self.assertEqual(self.validator.validate_orphan_lines(self.engine.layout('一二三四\v五六')), [])

    def test_merge_reports(self):
        """Test per-paragraph reports combine with paragraph numbers"""
        reports = [
            self.validator.run_complete_validation('一二', '一二'),
            self.validator.run_complete_validation('一二三', '一二'),
        ]
        merged = merge_reports(reports)
        self.assertEqual(merged['status'], 'non_compliant')
        self.assertEqual(merged['paragraphs'], 2)
        self.assertEqual(merged['all_violations'][0]['paragraph'], 1)


class TestTypesetDocumentBuilder(unittest.TestCase):
    """Test cases for TypesetDocumentBuilder class"""

    def setUp(self):
        """Set up test fixtures"""
        self.builder = TypesetDocumentBuilder(preset=TEST_PRESET)
        self.text = '一二，三四五六七\n\n“你好”'

    def test_initialization(self):
        """Test builder defaults"""
        builder = TypesetDocumentBuilder()
        self.assertEqual(builder.engine.box_width, 1152)
        self.assertEqual(builder.engine.font_size, 36)
        self.assertEqual(self.builder.engine.box_width, 55)

    def test_invalid_preset(self):
        """Test a preset without a usable box is rejected"""
        with self.assertRaises(ValueError):
            TypesetDocumentBuilder(preset=TextBoxPresetSelector.get_preset('custom'))

    def test_prepare_paragraphs(self):
        """Test normalization and indentation options"""
        builder = TypesetDocumentBuilder(preset=TEST_PRESET, normalize=True, indent=True)
        self.assertEqual(builder.prepare_paragraphs('你好,世界.'), ['\u3000\u3000你好，世界。'])

    def test_typeset_document(self):
        """Test every paragraph is typeset on its own"""
        calls = []
        results = self.builder.typeset_document(self.text, progress_callback=lambda *a: calls.append(a))
        self.assertEqual(len(results), 2)
        self.assertEqual(results[0].text, '<align="flush">一二，<space=0.2500em>三四</align>\v五六七')
        self.assertEqual(results[1].text, '<space=-0.5000em>“你好”')
        self.assertEqual(calls, [(1, 2), (2, 2)])
        self.assertEqual(self.builder.typeset_markup(), results[0].text + '\n' + results[1].text)

    def test_statistics(self):
        """Test summary counts over all paragraphs"""
        self.builder.typeset_document(self.text)
        stats = self.builder.statistics()
        self.assertEqual(stats['paragraphs'], 2)
        self.assertEqual(stats['lines'], 3)
        self.assertEqual(stats['directives_inserted'], 2)
        self.assertEqual(stats['flushed_lines'], 1)
        self.assertEqual(stats['orphan_retries'], 0)

    def test_typesetting_error_is_logged(self):
        """Test a failed paragraph is logged and re-raised"""
        with patch.object(self.builder.typesetter, 'typeset', side_effect=VisibleCharacterOutOfRange('gone')):
            with self.assertLogs(level='CRITICAL'):
                with self.assertRaises(TypesettingError):
                    self.builder.typeset_document(self.text)

    def test_generate_before_typeset(self):
        """Test rendering needs typeset paragraphs"""
        with self.assertRaises(ValueError):
            self.builder.generate_docx_content()

    def test_generate_docx_content(self):
        """Test spacing, line breaks and hanging punctuation in DOCX output"""
        self.builder.typeset_document(self.text)
        doc = self.builder.generate_docx_content()
        self.assertEqual(len(doc.paragraphs), 2)

        first = doc.paragraphs[0]
        comma_runs = [run for run in first.runs if run.text == '，']
        self.assertEqual(len(comma_runs), 1)
        spacing = comma_runs[0]._r.rPr.find(qn('w:spacing'))
        self.assertEqual(spacing.get(qn('w:val')), '60')
        self.assertIn('w:br', first._p.xml)
        self.assertIn('五六七', [run.text for run in first.runs])

        second = doc.paragraphs[1]
        self.assertEqual(second.text, '“你好”')
        self.assertAlmostEqual(second.paragraph_format.first_line_indent.pt, -6.0)

    def test_run_verification(self):
        """Test the document report"""
        self.builder.typeset_document(self.text)
        report = self.builder.run_verification()
        self.assertEqual(report['status'], 'compliant')
        self.assertEqual(report['paragraphs'], 2)
        self.assertEqual(report['statistics']['paragraphs'], 2)

    def test_export_line_metadata_json(self):
        """Test JSON export of line geometry"""
        self.builder.typeset_document(self.text)
        metadata = json.loads(self.builder.export_line_metadata_json())
        self.assertEqual(len(metadata), 2)
        lines = metadata[0]['lines']
        self.assertEqual(lines[0]['alignment'], 'flush')
        self.assertEqual(lines[0]['text'], '一二，三四')
        self.assertEqual(lines[1]['text'], '五六七')
        self.assertEqual(lines[1]['length'], 30)

        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / 'lines.json'
            self.builder.export_line_metadata_json(path)
            self.assertEqual(json.loads(path.read_text(encoding='utf-8')), metadata)


class TestIntegration(unittest.TestCase):
    """Integration tests for end-to-end functionality"""

    def setUp(self):
        """Set up test fixtures"""
        self.test_text = """他说：“我们明天去北京（看长城），好吗？”她点点头，笑了。

《三体》是刘慈欣的作品——读过吗？读过。Python 3.12也发布了。

最后一段。"""

    def test_read_text_file(self):
        """Test reading a UTF-8 file with surrounding whitespace"""
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / 'input.txt'
            path.write_text('\n' + self.test_text + '\n\n', encoding='utf-8')
            self.assertEqual(read_text_file(path), self.test_text)

    def test_presets_end_to_end(self):
        """Test every preset typesets and keeps the visible text"""
        for name in ('dialogue', 'narration', 'subtitle', 'novel_page', 'narrow_column'):
            with self.subTest(preset=name):
                builder = TypesetDocumentBuilder(preset=TextBoxPresetSelector.get_preset(name))
                builder.typeset_document(self.test_text)
                report = builder.run_verification()
                self.assertEqual(report['critical'], [])

    def test_cli(self):
        """Test the command line writes markup, DOCX, JSON and a report"""
        with tempfile.TemporaryDirectory() as tmp:
            input_path = os.path.join(tmp, 'input.txt')
            with open(input_path, 'w', encoding='utf-8') as f:
                f.write(self.test_text)
            output = os.path.join(tmp, 'out.txt')
            docx_path = os.path.join(tmp, 'out.docx')
            json_path = os.path.join(tmp, 'lines.json')
            report_path = os.path.join(tmp, 'report.json')

            argv = ['main.py', input_path, '-o', output, '--preset', 'narrow_column',
                    '--docx', docx_path, '--json', json_path, '--verification-report', report_path]
            with patch('sys.argv', argv):
                main()

            with open(output, encoding='utf-8') as f:
                self.assertEqual(len(f.read().split('\n')), 3)
            self.assertGreater(os.path.getsize(docx_path), 0)
            with open(json_path, encoding='utf-8') as f:
                self.assertEqual(len(json.load(f)), 3)
            with open(report_path, encoding='utf-8') as f:
                self.assertIn(json.load(f)['status'], ('compliant', 'partial_compliance'))


class TestErrorHandling(unittest.TestCase):
    """Test error handling and edge cases"""

    def test_missing_input(self):
        """Test a missing input file exits with an error"""
        with patch('sys.argv', ['main.py', 'does-not-exist.txt']):
            with self.assertRaises(SystemExit) as cm:
                main()
        self.assertEqual(cm.exception.code, 1)

    def test_unknown_preset(self):
        """Test an unknown preset exits with an error"""
        with tempfile.TemporaryDirectory() as tmp:
            input_path = os.path.join(tmp, 'input.txt')
            with open(input_path, 'w', encoding='utf-8') as f:
                f.write('你好。')
            with patch('sys.argv', ['main.py', input_path, '--preset', 'billboard']):
                with self.assertRaises(SystemExit) as cm:
                    main()
        self.assertEqual(cm.exception.code, 1)

    def test_empty_document(self):
        """Test empty text typesets to nothing"""
        builder = TypesetDocumentBuilder(preset=TEST_PRESET)
        self.assertEqual(builder.typeset_document('  \n\n  '), [])
        self.assertEqual(builder.typeset_markup(), '')


if __name__ == '__main__':
    unittest.main(verbosity=2, buffer=True)
