"""
Chinese line typesetter
Applies punctuation kerning, last-gap justification and orphan avoidance
to markup text by editing it and re-running the layout engine line by line
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, NamedTuple, Sequence, Tuple

from layout import (
    ALIGN_CLOSE,
    HARD_BREAK,
    LINE_BOUNDARY,
    NO_BREAK_SPACE,
    Alignment,
    LayoutEngine,
    Snapshot,
    align_directive,
)
from punctuation import CharClass, ChinesePunctuationClassifier

# Kerning constants in em
PUNCTUATION_KERNING = -0.5
PUNCTUATION_SUB_KERNING = -0.3333

FLEXIBLE_WIDTH_RANGE = (-0.3333, 0.5)
FLEXIBLE_SUB_WIDTH_RANGE = (0.0, 0.5)
FLEXIBLE_SUB_RATIO = 0.5
END_MARGIN_THRESHOLD = 0.01

FLUSH_DIRECTIVE = align_directive(Alignment.FLUSH)

# Absorbs binary representation error before truncating to 4 decimals
_ROUND_EPSILON = 1e-9


class KernKind(Enum):
    CONCRETE = 'concrete'
    FLEXIBLE = 'flexible'
    FLEXIBLE_SUB = 'flexible_sub'


@dataclass(frozen=True)
class KerningEdit:
    """Spacing to insert before the character at a source index"""
    index: int
    kind: KernKind = KernKind.CONCRETE
    width: float = 0.0

    @classmethod
    def flexible(cls, index):
        return cls(index, KernKind.FLEXIBLE)

    @classmethod
    def flexible_sub(cls, index):
        return cls(index, KernKind.FLEXIBLE_SUB)

    def resolve(self, solution) -> float:
        if self.kind is KernKind.FLEXIBLE:
            return solution.flexible_width
        if self.kind is KernKind.FLEXIBLE_SUB:
            return solution.flexible_sub_width
        return self.width


@dataclass(frozen=True)
class KernScan:
    edits: Tuple[KerningEdit, ...] = ()
    kern_sum: float = 0.0
    flexible_count: int = 0
    flexible_sub_count: int = 0
    english_count: int = 0


@dataclass(frozen=True)
class JustificationSolution:
    flexible_width: float = 0.0
    flexible_sub_width: float = 0.0
    end_margin: float = 0.0
    need_flush: bool = False
    can_avoid_orphan: bool = True
    absorbed_width: float = 0.0


@dataclass(frozen=True)
class TypesetResult:
    text: str
    snapshot: Snapshot
    layout_passes: int
    orphan_retries: int
    flushed_lines: int
    absorbed_lines: int
    directives_inserted: int


def round_kern(kern: float) -> float:
    """Truncate toward zero at 4 decimal places, keeping the sign"""
    magnitude = math.floor(abs(kern) * 1e4 + _ROUND_EPSILON) / 1e4
    if magnitude == 0:
        return 0.0
    return -magnitude if kern < 0 else magnitude


def clamp(value, low, high):
    return max(low, min(high, value))


_KERN_DIRECTIVE_CACHE: Dict[float, str] = {}


def kern_directive(kern: float) -> str:
    directive = _KERN_DIRECTIVE_CACHE.get(kern)
    if directive is None:
        directive = f'<space={kern:.4f}em>'
        _KERN_DIRECTIVE_CACHE[kern] = directive
    return directive


def _insert(text, index, markup):
    return text[:index] + markup + text[index:]


class LineKernScanner:
    """Finds punctuation kerning pairs and flexible slots on one line"""

    @staticmethod
    def scan(snapshot: Snapshot, line_index: int) -> KernScan:
        """
        Scan a line right to left, comparing each adjacent (left, right) pair.

        Edits come out in right-to-left order, so inserting them in sequence
        never shifts a source index that is still to be processed.
        """
        line = snapshot.lines[line_index]
        if line.character_count < 2:
            return KernScan()

        classify = ChinesePunctuationClassifier.classify
        characters = snapshot.characters
        edits = []
        kern_sum = 0.0
        flexible_count = 0
        flexible_sub_count = 0
        english_count = 0

        char_idx = line.last_character_index
        left = characters[char_idx]
        left_class = classify(left.character)
        english_count += left_class is CharClass.LATIN_OR_ALNUM

        while char_idx > line.first_character_index:
            right, right_class = left, left_class
            right_open = right_class is CharClass.OPENING_PUNCTUATION
            right_close = right_class is CharClass.CLOSING_PUNCTUATION
            right_chinese = right_class is CharClass.CHINESE_IDEOGRAPH
            right_english = right_class is CharClass.LATIN_OR_ALNUM

            char_idx -= 1
            left = characters[char_idx]
            left_class = classify(left.character)
            left_open = left_class is CharClass.OPENING_PUNCTUATION
            left_close = left_class is CharClass.CLOSING_PUNCTUATION
            left_chinese = left_class is CharClass.CHINESE_IDEOGRAPH
            left_english = left_class is CharClass.LATIN_OR_ALNUM
            english_count += left_english

            if left_close and right_open:
                edits.append(KerningEdit(right.index, width=PUNCTUATION_KERNING))
                kern_sum += PUNCTUATION_KERNING
            elif (left_open and right_open) or (left_close and right_close):
                edits.append(KerningEdit(right.index, width=PUNCTUATION_SUB_KERNING))
                kern_sum += PUNCTUATION_SUB_KERNING
            elif ((left_chinese and right_open) or (left_close and right_chinese)
                  or (left_english and right_open) or (left_close and right_english)):
                edits.append(KerningEdit.flexible(right.index))
                flexible_count += 1
            elif ((left_english and right_close) or (left_open and right_english)
                  or (left_chinese and right_english) or (left_english and right_chinese)):
                edits.append(KerningEdit.flexible_sub(right.index))
                flexible_sub_count += 1

        # Opening punctuation at a left-aligned line start hangs toward the margin
        if left_open and line.alignment.is_left_aligned:
            edits.append(KerningEdit(left.index, width=PUNCTUATION_KERNING))

        return KernScan(
            edits=tuple(edits),
            kern_sum=kern_sum,
            flexible_count=flexible_count,
            flexible_sub_count=flexible_sub_count,
            english_count=english_count,
        )


class AbsorptionProfiler:
    """Measures the leading run of a line that could be pulled onto the previous one"""

    @staticmethod
    def profile(snapshot: Snapshot, line_index: int) -> Tuple[float, ...]:
        """
        Cumulative widths (in em) of the first K ideographs of a line,
        each including the following punctuation glued to it.
        """
        if line_index >= snapshot.line_count:
            return ()
        line = snapshot.lines[line_index]
        if line.character_count < 1:
            return ()

        cls = ChinesePunctuationClassifier
        characters = snapshot.characters
        first = characters[line.first_character_index]
        if not (cls.is_chinese_character(first.character) or cls.is_following(first.character)):
            return ()

        widths = []
        origin = first.origin
        advance = first.x_advance - origin
        for char_info in characters[line.first_character_index + 1:line.last_character_index + 1]:
            if cls.is_chinese_character(char_info.character):
                widths.append(advance / snapshot.font_size)
            elif not cls.is_following(char_info.character):
                break
            advance = char_info.x_advance - origin

        widths.append(advance / snapshot.font_size)
        return tuple(widths)


class JustificationSolver:
    """Distributes a line's slack over its flexible slots"""

    @staticmethod
    def solve(slack: float, flexible_count: int, flexible_sub_count: int,
              absorb_widths: Sequence[float] = (), ends_with_hard_break=False) -> JustificationSolution:
        if (flexible_count <= 0 and flexible_sub_count <= 0) or ends_with_hard_break:
            return JustificationSolution()

        need_flush = True
        absorbed = 0.0
        for i, width in enumerate(absorb_widths):
            if slack >= width and (i == len(absorb_widths) - 1 or slack < absorb_widths[i + 1]):
                absorbed = width
                slack -= width
                need_flush = False
                break

        # One extra unit is left for the trailing character spacing
        divisor = flexible_count + FLEXIBLE_SUB_RATIO * flexible_sub_count + 1
        flexible_width = slack / divisor
        flexible_sub_width = FLEXIBLE_SUB_RATIO * flexible_width

        flexible_width = round_kern(clamp(flexible_width, *FLEXIBLE_WIDTH_RANGE))
        flexible_sub_width = round_kern(clamp(flexible_sub_width, *FLEXIBLE_SUB_WIDTH_RANGE))

        achieved = (flexible_count + 1) * flexible_width + flexible_sub_count * flexible_sub_width
        end_margin = slack - achieved
        if end_margin < END_MARGIN_THRESHOLD:
            end_margin = 0.0
        else:
            end_margin = round_kern(end_margin)

        # Too much width: pulling one more character down would leave the line too loose
        can_avoid_orphan = (slack + 1) / divisor <= 1

        return JustificationSolution(
            flexible_width=flexible_width,
            flexible_sub_width=flexible_sub_width,
            end_margin=end_margin,
            need_flush=need_flush,
            can_avoid_orphan=can_avoid_orphan,
            absorbed_width=absorbed,
        )


class OrphanGuard:
    """Detects a final line holding a single ideograph"""

    @staticmethod
    def is_strandable(snapshot: Snapshot, line_index: int) -> bool:
        """
        True when the line after line_index is one ideograph plus following
        punctuation closing its paragraph, and line_index can give up its
        own last ideograph to keep it company.
        """
        if line_index >= snapshot.line_count - 1:
            return False

        cls = ChinesePunctuationClassifier
        characters = snapshot.characters
        next_line = snapshot.lines[line_index + 1]
        if next_line.character_count < 1:
            return False
        if not cls.is_chinese_character(characters[next_line.first_character_index].character):
            return False

        last_idx = next_line.last_character_index
        if line_index < snapshot.line_count - 2:
            if characters[last_idx].character != HARD_BREAK:
                return False
        if characters[last_idx].character == HARD_BREAK:
            last_idx -= 1

        for char_info in characters[next_line.first_character_index + 1:last_idx + 1]:
            if not cls.is_following(char_info.character):
                return False

        line = snapshot.lines[line_index]
        if line.character_count < 3:
            return False

        last_char = characters[line.last_character_index].character
        if last_char == LINE_BOUNDARY:
            last_char = characters[line.last_character_index - 1].character

        # A line ending in a hard break ends in '\n' and never qualifies
        return cls.is_chinese_character(last_char)


class _LineOutcome(NamedTuple):
    text: str
    snapshot: Snapshot
    can_avoid_orphan: bool
    flushed: bool
    absorbed: bool
    directives: int


class ChineseTypesetter:
    """
    Line-by-line typesetting pass over a layout engine.

    Every line is finalized once, top to bottom. Edits for a line are computed
    from one snapshot and applied together, then the text is laid out again
    before the next line is read. When orphan avoidance fires, the line's edits
    are rolled back, a forced boundary is inserted before its last ideograph,
    and the line is typeset once more.
    """

    def __init__(self, engine: LayoutEngine):
        self.engine = engine
        self._layout_passes = 0

    def apply_kerning(self, text: str) -> str:
        return self.typeset(text).text

    def typeset(self, text: str) -> TypesetResult:
        self._layout_passes = 0
        snapshot = self._layout(text)
        orphan_retries = flushed_lines = absorbed_lines = directives = 0

        line_index = 0
        while line_index < snapshot.line_count:
            old_text = text
            absorb_widths = AbsorptionProfiler.profile(snapshot, line_index + 1)
            outcome = self._typeset_line(text, snapshot, line_index, absorb_widths)

            if outcome.can_avoid_orphan and OrphanGuard.is_strandable(outcome.snapshot, line_index):
                count = outcome.snapshot.visible_count_through(line_index)
                logging.debug(f"Line {line_index}: avoiding orphan, breaking before visible character {count}")

                snapshot = self._layout(old_text)
                idx = snapshot.source_index_for_visible(count)
                text = _insert(old_text, idx, LINE_BOUNDARY)
                snapshot = self._layout(text)
                # The retry keeps the profile measured before the break was inserted
                outcome = self._typeset_line(text, snapshot, line_index, absorb_widths)
                orphan_retries += 1

            text, snapshot = outcome.text, outcome.snapshot
            flushed_lines += outcome.flushed
            absorbed_lines += outcome.absorbed
            directives += outcome.directives
            line_index += 1

        return TypesetResult(
            text=text,
            snapshot=snapshot,
            layout_passes=self._layout_passes,
            orphan_retries=orphan_retries,
            flushed_lines=flushed_lines,
            absorbed_lines=absorbed_lines,
            directives_inserted=directives,
        )

    def _layout(self, text):
        self._layout_passes += 1
        return self.engine.layout(text)

    def _typeset_line(self, text, snapshot, line_index, absorb_widths) -> _LineOutcome:
        characters = snapshot.characters
        line = snapshot.lines[line_index]
        scan = LineKernScanner.scan(snapshot, line_index)

        solution = JustificationSolution(can_avoid_orphan=False)
        if line_index < snapshot.line_count - 1:
            slack = (snapshot.box_width - line.length) / snapshot.font_size - scan.kern_sum
            ends_hard = characters[line.last_character_index].character == HARD_BREAK
            solution = JustificationSolver.solve(
                slack, scan.flexible_count, scan.flexible_sub_count, absorb_widths, ends_hard)
            logging.debug(
                f"Line {line_index}: slack={slack:.4f} flexible={scan.flexible_count}/{scan.flexible_sub_count} "
                f"width={solution.flexible_width}/{solution.flexible_sub_width} "
                f"end_margin={solution.end_margin} flush={solution.need_flush}"
            )

        edits = list(scan.edits)
        dirty = False
        directives = 0
        need_flush = solution.need_flush and line.alignment.is_left_aligned
        if need_flush:
            last_idx = characters[line.last_character_index].index
            if text[last_idx] == LINE_BOUNDARY:
                text = _insert(text, last_idx, ALIGN_CLOSE)
            else:
                last_idx += 1
                text = _insert(text, last_idx, ALIGN_CLOSE + LINE_BOUNDARY)

            if solution.end_margin != 0:
                edits.insert(0, KerningEdit(last_idx, width=solution.end_margin))
                # Keeps the end margin from being dropped at the boundary
                text = _insert(text, last_idx, NO_BREAK_SPACE)
            dirty = True

        for edit in edits:
            kern = edit.resolve(solution)
            if kern != 0:
                text = _insert(text, edit.index, kern_directive(kern))
                directives += 1
                dirty = True

        if need_flush:
            text = _insert(text, characters[line.first_character_index].index, FLUSH_DIRECTIVE)

        if dirty:
            snapshot = self._layout(text)

        return _LineOutcome(
            text=text,
            snapshot=snapshot,
            can_avoid_orphan=solution.can_avoid_orphan,
            flushed=need_flush,
            absorbed=solution.absorbed_width > 0,
            directives=directives,
        )
