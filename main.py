#!/usr/bin/env python3
"""
Chinese Typesetter - Apply Chinese punctuation kerning, line justification
and orphan avoidance to text, then export typeset markup and DOCX documents
Includes a verification pass over the typeset result
"""

import re
import argparse
import logging
import json
import sys
from typing import Dict, List, Optional
from pathlib import Path

import chardet
from docx import Document
from docx.shared import Pt
from docx.enum.text import WD_BREAK

from rich.console import Console
from rich.progress import Progress, BarColumn, TextColumn, TimeRemainingColumn, TaskProgressColumn

from docx_helpers import configure_typeset_paragraph, em_to_twips, set_east_asian_font, set_run_character_spacing
from layout import (
    HARD_BREAK,
    LINE_BOUNDARY,
    Alignment,
    FontMetrics,
    LayoutEngine,
    PillowFontMetrics,
    TypesettingError,
    iter_markup,
)
from sizes import TextBoxPresetSelector
from typesetter import ChineseTypesetter, TypesetResult
from validation import TypesetValidator, display_report, merge_reports

logging.basicConfig(level=logging.INFO, format='[%(levelname)s] %(message)s')


class ChineseTextProcessor:
    """Chinese text processor with cached patterns"""

    _blankline_pattern = re.compile(r'(?:\n[\s\u3000]*\n)+')

    # ASCII punctuation directly after a Chinese character; a run of dots is left alone
    _trailing_ascii_pattern = re.compile(r'(?<=[\u4e00-\u9fff])([,?!:;)]|\.(?!\.))')
    # Opening parenthesis directly before a Chinese character
    _leading_paren_pattern = re.compile(r'\((?=[\u4e00-\u9fff])')
    _quote_pattern = re.compile(r'"')

    _fullwidth_punctuation = {
        ',': '，', '.': '。', '?': '？', '!': '！', ':': '：', ';': '；', ')': '）',
    }

    PARAGRAPH_INDENT = '\u3000\u3000'

    @staticmethod
    def normalize_line_endings(text):
        return text.replace('\r\n', '\n').replace('\r', '\n')

    @classmethod
    def split_paragraphs(cls, text, paragraph_split_mode='blank') -> List[str]:
        """Split text into paragraphs on blank lines or on every line"""
        text = cls.normalize_line_endings(text)
        if paragraph_split_mode == 'single':
            return [p.strip() for p in text.split('\n') if p.strip()]
        return [p.strip() for p in cls._blankline_pattern.split(text) if p.strip()]

    @classmethod
    def normalize_punctuation(cls, text):
        """Convert ASCII punctuation next to Chinese characters to full-width forms"""
        text = cls._trailing_ascii_pattern.sub(lambda m: cls._fullwidth_punctuation[m.group(1)], text)
        text = cls._leading_paren_pattern.sub('（', text)

        # Straight double quotes alternate between opening and closing
        quotes = iter(['“', '”'] * (text.count('"') // 2 + 1))
        return cls._quote_pattern.sub(lambda m: next(quotes), text)


class TypesetDocumentBuilder:
    """Typesets paragraphs and builds DOCX output for them"""

    DEFAULT_PRESET = TextBoxPresetSelector.PRESETS['dialogue']

    def __init__(self, preset: Optional[Dict] = None, metrics=None, font_name='Noto Serif SC',
                 font_size_points=12, paragraph_split_mode='blank', normalize=False, indent=False):
        self.preset = dict(preset or self.DEFAULT_PRESET)
        self.font_name = font_name
        self.font_size_points = font_size_points
        self.paragraph_split_mode = paragraph_split_mode
        self.normalize = normalize
        self.indent = indent

        self.engine = LayoutEngine(
            box_width=self.preset['box_width'],
            font_size=self.preset['font_size'],
            alignment=Alignment.from_name(self.preset.get('alignment', 'left')),
            metrics=metrics or FontMetrics(),
        )
        self.typesetter = ChineseTypesetter(self.engine)
        self.text_processor = ChineseTextProcessor()

        self.paragraphs: List[str] = []
        self.results: List[TypesetResult] = []
        self.doc = None

    def prepare_paragraphs(self, text) -> List[str]:
        paragraphs = self.text_processor.split_paragraphs(text, self.paragraph_split_mode)
        if self.normalize:
            paragraphs = [self.text_processor.normalize_punctuation(p) for p in paragraphs]
        if self.indent:
            paragraphs = [self.text_processor.PARAGRAPH_INDENT + p for p in paragraphs]
        return paragraphs

    def typeset_document(self, text, progress_callback=None) -> List[TypesetResult]:
        """
        Typeset every paragraph of the text independently
        """
        try:
            self.paragraphs = self.prepare_paragraphs(text)
            self.results = []
            for index, paragraph in enumerate(self.paragraphs):
                result = self.typesetter.typeset(paragraph)
                logging.debug(
                    f"Paragraph {index}: {result.snapshot.line_count} lines, "
                    f"{result.directives_inserted} directives, {result.orphan_retries} orphan retries"
                )
                self.results.append(result)
                if progress_callback:
                    progress_callback(index + 1, len(self.paragraphs))
        except TypesettingError as e:
            logging.critical(f"Failed to typeset document: {e}")
            raise
        return self.results

    def typeset_markup(self) -> str:
        return HARD_BREAK.join(result.text for result in self.results)

    def statistics(self) -> Dict:
        return {
            'paragraphs': len(self.results),
            'lines': sum(r.snapshot.line_count for r in self.results),
            'directives_inserted': sum(r.directives_inserted for r in self.results),
            'flushed_lines': sum(r.flushed_lines for r in self.results),
            'absorbed_lines': sum(r.absorbed_lines for r in self.results),
            'orphan_retries': sum(r.orphan_retries for r in self.results),
            'layout_passes': sum(r.layout_passes for r in self.results),
        }

    def generate_docx_content(self, progress_callback=None):
        """
        Render typeset paragraphs into a new DOCX document
        """
        if not self.results:
            raise ValueError("Nothing typeset - call typeset_document first")

        self.doc = Document()
        for index, result in enumerate(self.results):
            self._render_paragraph(result.text)
            if progress_callback:
                progress_callback(index + 1, len(self.results))
        return self.doc

    def _render_paragraph(self, markup):
        """Render one paragraph of markup: forced boundaries become line breaks, spacing goes on runs"""
        segments = []  # [character, spacing after it in em]
        leading = 0.0
        for token in iter_markup(markup):
            if token.kind == 'space':
                if not segments:
                    leading += token.value
                elif segments[-1][0] in (LINE_BOUNDARY, HARD_BREAK):
                    logging.debug(f"Dropping {token.value} em at line start, offset {token.index}")
                else:
                    segments[-1][1] += token.value
            elif token.kind == 'char':
                segments.append([token.value, 0.0])

        paragraph = self.doc.add_paragraph()
        configure_typeset_paragraph(paragraph, self.font_size_points, leading)

        buffer = ''
        buffer_spacing = 0.0
        for char, spacing in segments + [[None, 0.0]]:
            if buffer and (char is None or char in (LINE_BOUNDARY, HARD_BREAK) or spacing != buffer_spacing):
                self._add_run(paragraph, buffer, buffer_spacing)
                buffer = ''
            if char is None:
                break
            if char in (LINE_BOUNDARY, HARD_BREAK):
                paragraph.add_run().add_break(WD_BREAK.LINE)
                continue
            buffer += char
            buffer_spacing = spacing
        return paragraph

    def _add_run(self, paragraph, text, spacing):
        run = paragraph.add_run(text)
        set_east_asian_font(run, self.font_name)
        run.font.size = Pt(self.font_size_points)
        if spacing:
            set_run_character_spacing(run, em_to_twips(spacing, self.font_size_points))
        return run

    def run_verification(self) -> Dict:
        """Validate every typeset paragraph against its source"""
        validator = TypesetValidator(self.engine)
        reports = [validator.run_complete_validation(paragraph, result.text)
                   for paragraph, result in zip(self.paragraphs, self.results)]
        report = merge_reports(reports)
        report['statistics'] = self.statistics()
        return report

    def export_line_metadata_json(self, output_path=None):
        """Export per-line geometry of the typeset paragraphs as JSON"""
        metadata = []
        for index, result in enumerate(self.results):
            snapshot = result.snapshot
            lines = []
            for line_index, line in enumerate(snapshot.lines):
                lines.append({
                    'line': line_index,
                    'text': ''.join(c.character for c in snapshot.line_characters(line_index) if c.is_visible),
                    'visible_characters': line.visible_character_count,
                    'length': round(line.length, 4),
                    'width': round(line.width, 4),
                    'alignment': line.alignment.name.lower(),
                })
            metadata.append({
                'paragraph': index,
                'markup': result.text,
                'orphan_retries': result.orphan_retries,
                'lines': lines,
            })

        json_str = json.dumps(metadata, ensure_ascii=False, indent=2)
        if output_path:
            with open(output_path, 'w', encoding='utf-8') as f:
                f.write(json_str)
        return json_str


def read_text_file(input_path: Path) -> str:
    """Read a text file, detecting its encoding"""
    with open(input_path, 'rb') as f:
        raw_data = f.read()
    encoding_result = chardet.detect(raw_data)
    detected_encoding = encoding_result['encoding'] if encoding_result['confidence'] > 0.7 else 'utf-8'
    try:
        return raw_data.decode(detected_encoding).strip()
    except (UnicodeDecodeError, LookupError):
        logging.warning(f"Could not decode {input_path} as {detected_encoding}, using UTF-8")
        return raw_data.decode('utf-8', errors='ignore').strip()


def resolve_preset(args, console) -> Optional[Dict]:
    """Pick the preset from arguments, asking interactively when none is given"""
    if args.box_width and (args.preset is None or args.preset.lower() == 'custom'):
        preset = TextBoxPresetSelector.get_preset('dialogue')
    elif args.preset is None or args.preset.lower() == 'custom':
        preset = TextBoxPresetSelector(console=console).select_preset()
    else:
        preset = TextBoxPresetSelector.get_preset(args.preset)
        if preset is None:
            return None

    if args.box_width:
        preset['box_width'] = args.box_width
    if args.font_size:
        preset['font_size'] = args.font_size
    if args.align:
        preset['alignment'] = args.align
    return preset


def main():
    """Main function with verification of the typeset result"""
    parser = argparse.ArgumentParser(description="Chinese punctuation kerning and line typesetting")
    parser.add_argument("input", nargs="?", help="Input text file")
    parser.add_argument("-o", "--output", help="Output file for typeset markup")
    parser.add_argument("--docx", help="Render the typeset text to a DOCX file")
    parser.add_argument("--json", help="Export per-line metadata as JSON to file")
    parser.add_argument("--preset", default=None, help="Text box preset")
    parser.add_argument("--box-width", type=float, help="Text box width in pixels")
    parser.add_argument("--font-size", type=float, help="Font size in pixels")
    parser.add_argument("--align", choices=TextBoxPresetSelector.ALIGNMENTS, help="Base alignment")
    parser.add_argument("--font-file", help="Measure advances with this TrueType/OpenType font")
    parser.add_argument("--font-name", default="Noto Serif SC", help="Font name for DOCX output")
    parser.add_argument("--point-size", type=float, default=12, help="Font size in points for DOCX output")
    parser.add_argument("--split", choices=['blank', 'single'], default='blank', help="Paragraph split mode")
    parser.add_argument("--indent", action="store_true", help="Indent paragraphs with two ideographic spaces")
    parser.add_argument("--normalize-punctuation", action="store_true",
                        help="Convert ASCII punctuation next to Chinese text to full-width")
    parser.add_argument("--skip-verification", action="store_true", help="Skip verification process")
    parser.add_argument("--verification-report", help="Save verification report to file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log per-line decisions")
    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    console = Console(color_system="auto")
    console.print("[bold yellow]Chinese Typesetter[/bold yellow]")
    console.print("[green]Punctuation kerning, justification and orphan avoidance[/green]")
    console.print()

    if not args.input:
        console.print("[bold red]No input file specified.[/bold red]")
        sys.exit(1)

    input_path = Path(args.input)
    if not input_path.exists():
        console.print(f"[bold red]Error: Input file '{input_path}' not found.[/bold red]")
        sys.exit(1)

    try:
        text = read_text_file(input_path)
    except OSError as e:
        console.print(f"[bold red]Error reading file: {e}[/bold red]")
        sys.exit(1)

    if not text:
        console.print("[bold red]Error: Input file is empty.[/bold red]")
        sys.exit(1)

    preset = resolve_preset(args, console)
    if preset is None:
        console.print(f"[bold red]Error: Unknown preset '{args.preset}'.[/bold red]")
        sys.exit(1)

    metrics = None
    if args.font_file:
        try:
            metrics = PillowFontMetrics.from_file(args.font_file)
        except OSError as e:
            console.print(f"[bold red]Error loading font '{args.font_file}': {e}[/bold red]")
            sys.exit(1)

    try:
        builder = TypesetDocumentBuilder(
            preset=preset,
            metrics=metrics,
            font_name=args.font_name,
            font_size_points=args.point_size,
            paragraph_split_mode=args.split,
            normalize=args.normalize_punctuation,
            indent=args.indent,
        )
    except ValueError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        sys.exit(1)

    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeRemainingColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Typesetting paragraphs...", total=100)
        progress_per_paragraph = 70 / max(1, len(builder.prepare_paragraphs(text)))

        def progress_callback(current, total):
            progress.update(task, advance=progress_per_paragraph,
                            description=f"Typesetting... Paragraph {current}/{total}")

        builder.typeset_document(text, progress_callback=progress_callback)

        output_path = Path(args.output) if args.output else input_path.with_name(f"{input_path.stem}_typeset.txt")
        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(builder.typeset_markup())
        progress.update(task, advance=10, description="Markup saved...")

        if args.docx:
            builder.generate_docx_content()
            builder.doc.save(args.docx)
        progress.update(task, completed=100, description="Done")

    stats = builder.statistics()
    logging.info(
        f"Typeset {stats['paragraphs']} paragraphs into {stats['lines']} lines: "
        f"{stats['directives_inserted']} directives, {stats['flushed_lines']} flushed, "
        f"{stats['absorbed_lines']} absorbed, {stats['orphan_retries']} orphan retries"
    )

    if not args.skip_verification:
        report = builder.run_verification()
        display_report(report, console)

        if args.verification_report:
            with open(args.verification_report, 'w', encoding='utf-8') as f:
                json.dump(report, f, ensure_ascii=False, indent=2)
            console.print(f"[bold green]✓ Verification report saved:[/bold green] {args.verification_report}")

        if report['status'] == 'compliant':
            console.print("\n[bold green]Typeset text passes all checks[/bold green]")
        elif report['status'] == 'partial_compliance':
            console.print(f"\n[bold yellow]Typeset text has warnings[/bold yellow] "
                          f"[yellow](score {report['score']}/100)[/yellow]")
        else:
            console.print("\n[bold red]Verification failed[/bold red]")

    console.print()
    console.print(f"[bold green]✓ Typeset markup saved:[/bold green] {output_path}")
    if args.docx:
        console.print(f"[bold green]✓ DOCX file saved:[/bold green] {args.docx}")

    if args.json:
        builder.export_line_metadata_json(args.json)
        console.print(f"[bold green]✓ Line metadata JSON saved:[/bold green] {args.json}")


if __name__ == "__main__":
    main()
