"""
Compliance checks for typeset Chinese text
Re-lays out the original and typeset markup and reports rule violations
"""

import re
from typing import Dict, List

from rich.console import Console
from rich.table import Table

from layout import HARD_BREAK, LINE_BOUNDARY, NO_BREAK_SPACE, LayoutEngine, Snapshot
from punctuation import ChinesePunctuationClassifier

_SPACE_DIRECTIVE = re.compile(r'<space=(-?\d+(?:\.\d+)?)em>')

SPACING_RANGE = (-0.5, 0.5)


class TypesetValidator:
    """Validator for visible-text preservation and Chinese line rules"""

    SEVERITY_PENALTY = {'critical': 25, 'warning': 5}

    def __init__(self, engine: LayoutEngine):
        self.engine = engine

    def validate_visible_characters(self, original: Snapshot, typeset: Snapshot) -> List[Dict]:
        """The typeset text must show exactly the original visible characters"""
        before = original.visible_text()
        after = typeset.visible_text()
        if before == after:
            return []
        return [{
            'type': 'visible_characters_changed',
            'line': None,
            'message': f'Visible characters changed: {len(before)} before, {len(after)} after',
            'severity': 'critical'
        }]

    def validate_spacing_directives(self, text: str) -> List[Dict]:
        violations = []
        low, high = SPACING_RANGE
        for m in _SPACE_DIRECTIVE.finditer(text):
            # End margins guard a following no-break space and may exceed the range
            if text.startswith(NO_BREAK_SPACE, m.end()):
                continue
            value = float(m.group(1))
            if not low <= value <= high:
                violations.append({
                    'type': 'spacing_out_of_range',
                    'line': None,
                    'message': f'Spacing {value} em at offset {m.start()} outside [{low}, {high}]',
                    'severity': 'critical'
                })
        return violations

    def validate_line_breaking_rules(self, snapshot: Snapshot) -> List[Dict]:
        """Lines must not start with following punctuation or end with opening punctuation"""
        violations = []
        cls = ChinesePunctuationClassifier
        for line_index, line in enumerate(snapshot.lines):
            if line.visible_character_count == 0:
                continue
            first = snapshot.characters[line.first_visible_character_index].character
            last = snapshot.characters[line.last_visible_character_index].character
            last_char = snapshot.characters[line.last_character_index].character

            if line_index > 0 and cls.is_following(first):
                violations.append({
                    'type': 'line_start_punctuation',
                    'line': line_index,
                    'message': f'Line starts with {first}',
                    'severity': 'warning'
                })
            if last_char != HARD_BREAK and line_index < snapshot.line_count - 1 and cls.is_opening(last):
                violations.append({
                    'type': 'line_end_opening',
                    'line': line_index,
                    'message': f'Line ends with {last}',
                    'severity': 'warning'
                })
        return violations

    def validate_orphan_lines(self, snapshot: Snapshot) -> List[Dict]:
        """The last line must not be a single ideograph when the previous line could spare one"""
        if snapshot.line_count < 2:
            return []

        cls = ChinesePunctuationClassifier
        line_index = snapshot.line_count - 1
        visible = [c.character for c in snapshot.line_characters(line_index) if c.is_visible]
        if not visible or not cls.is_chinese_character(visible[0]):
            return []
        if not all(cls.is_following(char) for char in visible[1:]):
            return []

        previous = snapshot.lines[line_index - 1]
        previous_last = snapshot.characters[previous.last_character_index].character
        if previous_last == LINE_BOUNDARY:
            previous_last = snapshot.characters[previous.last_character_index - 1].character
        if previous.character_count < 3 or not cls.is_chinese_character(previous_last):
            return []

        return [{
            'type': 'orphan_line',
            'line': line_index,
            'message': f'Last line holds only {"".join(visible)}',
            'severity': 'warning'
        }]

    def run_complete_validation(self, original_text: str, typeset_text: str) -> Dict:
        """Run all validation checks and return a report"""
        original = self.engine.layout(original_text)
        typeset = self.engine.layout(typeset_text)

        all_violations = []
        all_violations.extend(self.validate_visible_characters(original, typeset))
        all_violations.extend(self.validate_spacing_directives(typeset_text))
        all_violations.extend(self.validate_line_breaking_rules(typeset))
        all_violations.extend(self.validate_orphan_lines(typeset))

        critical = [v for v in all_violations if v['severity'] == 'critical']
        warnings = [v for v in all_violations if v['severity'] == 'warning']
        score = max(0, 100 - sum(self.SEVERITY_PENALTY[v['severity']] for v in all_violations))

        if critical:
            status = 'non_compliant'
        elif warnings:
            status = 'partial_compliance'
        else:
            status = 'compliant'

        return {
            'status': status,
            'score': score,
            'total_violations': len(all_violations),
            'critical': critical,
            'warnings': warnings,
            'all_violations': all_violations,
            'lines_before': original.line_count,
            'lines_after': typeset.line_count,
        }


def merge_reports(reports: List[Dict]) -> Dict:
    """Combine per-paragraph reports into one document report"""
    all_violations = []
    for paragraph_index, report in enumerate(reports):
        for violation in report['all_violations']:
            all_violations.append(dict(violation, paragraph=paragraph_index))

    critical = [v for v in all_violations if v['severity'] == 'critical']
    warnings = [v for v in all_violations if v['severity'] == 'warning']
    penalty = TypesetValidator.SEVERITY_PENALTY
    return {
        'status': 'non_compliant' if critical else 'partial_compliance' if warnings else 'compliant',
        'score': max(0, 100 - sum(penalty[v['severity']] for v in all_violations)),
        'total_violations': len(all_violations),
        'critical': critical,
        'warnings': warnings,
        'all_violations': all_violations,
        'paragraphs': len(reports),
    }


def display_report(report: Dict, console: Console):
    """Display a validation report as rich tables"""
    summary_table = Table(title="Typesetting Verification")
    summary_table.add_column("Metric", style="cyan")
    summary_table.add_column("Value", style="green")

    summary_table.add_row("Status", report['status'])
    summary_table.add_row("Total Violations", str(report['total_violations']))
    summary_table.add_row("Critical", f"[red]{len(report['critical'])}[/red]")
    summary_table.add_row("Warnings", f"[yellow]{len(report['warnings'])}[/yellow]")
    summary_table.add_row("Score", f"{report['score']}/100")
    console.print(summary_table)

    if report['all_violations']:
        violations_table = Table(title="Violations")
        violations_table.add_column("Type", style="cyan")
        violations_table.add_column("Location", style="yellow")
        violations_table.add_column("Message", style="white")

        for violation in report['all_violations']:
            color = 'red' if violation['severity'] == 'critical' else 'yellow'
            location = f"Paragraph {violation.get('paragraph', 'N/A')}"
            if violation.get('line') is not None:
                location += f", Line {violation['line']}"
            violations_table.add_row(f"[{color}]{violation['type']}[/{color}]", location, violation['message'])

        console.print(violations_table)
