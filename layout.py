"""
Reference layout engine for typesetter markup
Turns a markup string into an immutable Snapshot of lines and characters
"""

import logging
import re
import unicodedata
from dataclasses import dataclass
from enum import IntFlag
from typing import Dict, Iterator, List, NamedTuple, Optional, Tuple

from punctuation import ChinesePunctuationClassifier

HARD_BREAK = '\n'
LINE_BOUNDARY = '\v'
NO_BREAK_SPACE = '\u00a0'
ALIGN_CLOSE = '</align>'

_BREAK_CHARS = frozenset((HARD_BREAK, LINE_BOUNDARY))

# Tolerance for comparing pen positions against the box edge (pixels)
_FIT_EPSILON = 1e-4


class TypesettingError(Exception):
    """Base class for errors raised while typesetting"""


class VisibleCharacterOutOfRange(TypesettingError, IndexError):
    """A visible-character offset does not exist in the current snapshot"""


class Alignment(IntFlag):
    """Horizontal alignment flags of a laid-out line"""
    LEFT = 0x1
    CENTER = 0x2
    RIGHT = 0x4
    JUSTIFIED = 0x8
    FLUSH = 0x10

    @property
    def is_left_aligned(self):
        return bool(self & (Alignment.LEFT | Alignment.JUSTIFIED))

    @classmethod
    def from_name(cls, name):
        try:
            return cls[name.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown alignment: {name!r}") from None


def align_directive(alignment) -> str:
    return f'<align="{alignment.name.lower()}">'


# =============================================================================
# Markup tokenizer
# =============================================================================

_TAG_PATTERN = re.compile(
    r'<space=(?P<space>-?\d+(?:\.\d+)?)em>'
    r'|<align=(?P<quote>["\']?)(?P<align>left|center|right|justified|flush)(?P=quote)>'
    r'|(?P<close></align>)'
)


class MarkupToken(NamedTuple):
    kind: str     # 'char', 'space', 'align' or 'align_end'
    value: object
    index: int


def iter_markup(text: str) -> Iterator[MarkupToken]:
    """Yield characters and directives of a markup string in source order"""
    pos = 0
    length = len(text)
    while pos < length:
        if text[pos] == '<':
            m = _TAG_PATTERN.match(text, pos)
            if m:
                if m.group('space') is not None:
                    yield MarkupToken('space', float(m.group('space')), pos)
                elif m.group('align') is not None:
                    yield MarkupToken('align', Alignment.from_name(m.group('align')), pos)
                else:
                    yield MarkupToken('align_end', None, pos)
                pos = m.end()
                continue
        yield MarkupToken('char', text[pos], pos)
        pos += 1


_STRIP_PATTERN = re.compile(
    r'<space=-?\d+(?:\.\d+)?em>'
    r'|<align=["\']?(?:left|center|right|justified|flush)["\']?>'
    r'|\u00a0(?=</align>)'
    r'|</align>'
    r'|\v'
)


def strip_markup(text: str) -> str:
    """Remove typesetter directives, end-margin guards and forced boundaries"""
    return _STRIP_PATTERN.sub('', text)


# =============================================================================
# Font metrics
# =============================================================================

class FontMetrics:
    """Advance widths in em estimated from East-Asian width classes"""

    ZERO_WIDTH = frozenset('\n\v\r')

    def __init__(self, overrides: Optional[Dict[str, float]] = None, ambiguous_wide=True,
                 narrow_advance=0.5, space_advance=0.25):
        self.overrides = dict(overrides or {})
        self.ambiguous_wide = ambiguous_wide
        self.narrow_advance = narrow_advance
        self.space_advance = space_advance

    def advance(self, char: str) -> float:
        if char in self.overrides:
            return self.overrides[char]
        if char in self.ZERO_WIDTH:
            return 0.0
        if char == '\u3000':
            return 1.0
        if char.isspace():
            return self.space_advance
        east_asian = unicodedata.east_asian_width(char)
        if east_asian in ('W', 'F') or (self.ambiguous_wide and east_asian == 'A'):
            return 1.0
        return self.narrow_advance


class PillowFontMetrics(FontMetrics):
    """Advance widths measured from a Pillow font"""

    def __init__(self, font, overrides: Optional[Dict[str, float]] = None):
        super().__init__(overrides=overrides)
        self.font = font
        self.size = float(getattr(font, 'size', 0) or 0)
        if self.size <= 0:
            raise ValueError("Pillow font metrics need a sized FreeType font")
        self._cache: Dict[str, float] = {}

    @classmethod
    def from_file(cls, font_path, size=64, overrides=None):
        from PIL import ImageFont
        return cls(ImageFont.truetype(str(font_path), int(size)), overrides=overrides)

    def advance(self, char: str) -> float:
        if char in self.overrides:
            return self.overrides[char]
        if char in self.ZERO_WIDTH:
            return 0.0
        cached = self._cache.get(char)
        if cached is not None:
            return cached
        if hasattr(self.font, 'getlength'):
            width = float(self.font.getlength(char))
        else:
            x1, _, x2, _ = self.font.getbbox(char)
            width = float(x2 - x1)
        em = width / self.size
        self._cache[char] = em
        return em


# =============================================================================
# Snapshot records
# =============================================================================

@dataclass(frozen=True)
class Character:
    index: int           # source index in the markup text
    character: str
    origin: float        # pen position before the glyph, from the line's left edge
    x_advance: float     # pen position after the glyph
    is_visible: bool
    line_number: int


@dataclass(frozen=True)
class Line:
    first_character_index: int
    last_character_index: int
    first_visible_character_index: int
    last_visible_character_index: int
    character_count: int
    visible_character_count: int
    length: float        # uncompressed extent
    width: float         # extent compressed into the box
    alignment: Alignment


@dataclass(frozen=True)
class Snapshot:
    text: str
    lines: Tuple[Line, ...]
    characters: Tuple[Character, ...]
    box_width: float
    font_size: float

    @property
    def line_count(self):
        return len(self.lines)

    @property
    def visible_character_count(self):
        return sum(line.visible_character_count for line in self.lines)

    def line_characters(self, line_index) -> Tuple[Character, ...]:
        line = self.lines[line_index]
        return self.characters[line.first_character_index:line.last_character_index + 1]

    def line_text(self, line_index) -> str:
        return ''.join(c.character for c in self.line_characters(line_index))

    def visible_text(self) -> str:
        return ''.join(c.character for c in self.characters if c.is_visible)

    def visible_count_through(self, line_index) -> int:
        """Number of visible characters in lines 0..line_index"""
        return sum(line.visible_character_count for line in self.lines[:line_index + 1])

    def source_index_for_visible(self, count) -> int:
        """Source index of the count-th visible character (1-based)"""
        if count < 1:
            raise VisibleCharacterOutOfRange(f"Visible character {count} does not exist")
        remaining = count
        for line in self.lines:
            if remaining > line.visible_character_count:
                remaining -= line.visible_character_count
            elif remaining == line.visible_character_count:
                return self.characters[line.last_visible_character_index].index
            else:
                for char_idx in range(line.first_visible_character_index,
                                      line.last_visible_character_index):
                    char_info = self.characters[char_idx]
                    if not char_info.is_visible:
                        continue
                    remaining -= 1
                    if remaining == 0:
                        return char_info.index
                break
        raise VisibleCharacterOutOfRange(
            f"Visible character {count} does not exist "
            f"(snapshot has {self.visible_character_count})"
        )


# =============================================================================
# Layout engine
# =============================================================================

class _Glyph(NamedTuple):
    index: int
    character: str
    space: float         # em of pending horizontal space before the glyph
    advance: float       # em advance of the glyph itself
    alignment: Alignment


class LayoutEngine:
    """Greedy line breaker with Chinese line-breaking rules"""

    def __init__(self, box_width, font_size, alignment=Alignment.LEFT, metrics=None):
        if box_width <= 0:
            raise ValueError(f"Box width must be positive, got {box_width}")
        if font_size <= 0:
            raise ValueError(f"Font size must be positive, got {font_size}")
        if isinstance(alignment, str):
            alignment = Alignment.from_name(alignment)
        self.box_width = float(box_width)
        self.font_size = float(font_size)
        self.alignment = alignment
        self.metrics = metrics or FontMetrics()

    def layout(self, text: str) -> Snapshot:
        """Lay out markup text into a new snapshot"""
        glyphs = self._shape(text)
        lines: List[Line] = []
        characters: List[Character] = []

        start = 0
        while start < len(glyphs):
            end = self._find_line_end(glyphs, start)
            lines.append(self._build_line(glyphs, start, end, len(lines), characters))
            start = end + 1

        return Snapshot(
            text=text,
            lines=tuple(lines),
            characters=tuple(characters),
            box_width=self.box_width,
            font_size=self.font_size,
        )

    def _shape(self, text) -> List[_Glyph]:
        glyphs = []
        pending = 0.0
        align_stack = []
        for token in iter_markup(text):
            if token.kind == 'space':
                pending += token.value
            elif token.kind == 'align':
                align_stack.append(token.value)
            elif token.kind == 'align_end':
                if align_stack:
                    align_stack.pop()
            else:
                alignment = align_stack[-1] if align_stack else self.alignment
                glyphs.append(_Glyph(token.index, token.value, pending,
                                     self.metrics.advance(token.value), alignment))
                pending = 0.0
        return glyphs

    def _find_line_end(self, glyphs, start) -> int:
        """Index of the last glyph on the line beginning at start"""
        pen = 0.0
        for j in range(start, len(glyphs)):
            glyph = glyphs[j]
            if glyph.character in _BREAK_CHARS:
                return j
            right = pen + (glyph.space + glyph.advance) * self.font_size
            if (j > start and not glyph.character.isspace()
                    and right > self.box_width + _FIT_EPSILON):
                return self._choose_break(glyphs, start, j)
            pen = right
        return len(glyphs) - 1

    def _choose_break(self, glyphs, start, overflow) -> int:
        end = overflow - 1

        # Latin words break at the last space, which stays on the line
        latin = ChinesePunctuationClassifier.LATIN_CHARS
        char = glyphs[overflow].character
        prev = glyphs[end].character
        if char in latin and not char.isspace() and prev in latin and not prev.isspace():
            for k in range(end, start, -1):
                if glyphs[k].character == ' ':
                    return k

        # Push the break back over prohibited line starts and ends
        candidate = end
        while candidate >= start and not self._can_break_after(glyphs, candidate):
            candidate -= 1
        if candidate < start:
            logging.debug(f"No legal break point for line starting at glyph {start}")
            return end
        return candidate

    @staticmethod
    def _can_break_after(glyphs, idx):
        if idx + 1 >= len(glyphs):
            return True
        if glyphs[idx].character == NO_BREAK_SPACE or glyphs[idx + 1].character == NO_BREAK_SPACE:
            return False
        return (ChinesePunctuationClassifier.can_end_line(glyphs[idx].character)
                and ChinesePunctuationClassifier.can_start_line(glyphs[idx + 1].character))

    def _build_line(self, glyphs, start, end, line_number, characters) -> Line:
        first_char_idx = len(characters)
        pen = 0.0
        length = 0.0
        visible_idxs = []
        for glyph in glyphs[start:end + 1]:
            origin = pen + glyph.space * self.font_size
            pen = origin + glyph.advance * self.font_size
            is_visible = not glyph.character.isspace()
            if is_visible:
                visible_idxs.append(len(characters))
            if not glyph.character.isspace():
                length = pen
            characters.append(Character(
                index=glyph.index,
                character=glyph.character,
                origin=origin,
                x_advance=pen,
                is_visible=is_visible,
                line_number=line_number,
            ))
        last_char_idx = len(characters) - 1

        return Line(
            first_character_index=first_char_idx,
            last_character_index=last_char_idx,
            first_visible_character_index=visible_idxs[0] if visible_idxs else first_char_idx,
            last_visible_character_index=visible_idxs[-1] if visible_idxs else last_char_idx,
            character_count=last_char_idx - first_char_idx + 1,
            visible_character_count=len(visible_idxs),
            length=length,
            width=min(length, self.box_width),
            alignment=glyphs[start].alignment,
        )
