"""
Chinese punctuation classification for line typesetting
Character sets for kerning pairs and line-breaking (kinsoku) rules
"""

from enum import Enum


class CharClass(Enum):
    """Typesetting class of a single character"""
    OPENING_PUNCTUATION = 'opening'
    CLOSING_PUNCTUATION = 'closing'
    MIDDLE_PUNCTUATION = 'middle'
    CHINESE_IDEOGRAPH = 'ideograph'
    LATIN_OR_ALNUM = 'latin'
    OTHER = 'other'


class ChinesePunctuationClassifier:
    """Stateless classifier over fixed character sets"""

    # Character sets as frozensets for O(1) membership testing
    OPENING_PUNCTUATION = frozenset('‘“（【《')
    CLOSING_PUNCTUATION = frozenset('，。、；：？！’”）】》')
    MIDDLE_PUNCTUATION = frozenset('….·—⸺')
    FOLLOWING_PUNCTUATION = CLOSING_PUNCTUATION | MIDDLE_PUNCTUATION

    # Latin letters, digits and brackets (plus space) for mixed Chinese-Latin adjacency
    LATIN_CHARS = frozenset(
        '0123456789'
        'ABCDEFGHIJKLMNOPQRSTUVWXYZ'
        'abcdefghijklmnopqrstuvwxyz'
        ' ([{<)]}>'
    )

    # Line breaking rules used by the layout engine
    PROHIBITED_LINE_START = FOLLOWING_PUNCTUATION | frozenset(',.;:!?)]}')
    PROHIBITED_LINE_END = OPENING_PUNCTUATION | frozenset('([{')

    IDEOGRAPH_FIRST = 0x4E00
    IDEOGRAPH_LAST = 0x9FFF

    @classmethod
    def is_chinese_character(cls, char):
        """Check if character is in the CJK Unified Ideographs block"""
        return cls.IDEOGRAPH_FIRST <= ord(char) <= cls.IDEOGRAPH_LAST

    @classmethod
    def is_opening(cls, char):
        return char in cls.OPENING_PUNCTUATION

    @classmethod
    def is_closing(cls, char):
        return char in cls.CLOSING_PUNCTUATION

    @classmethod
    def is_following(cls, char):
        """Closing or middle punctuation that hugs the preceding character"""
        return char in cls.FOLLOWING_PUNCTUATION

    @classmethod
    def is_latin(cls, char):
        return char in cls.LATIN_CHARS

    @classmethod
    def classify(cls, char) -> CharClass:
        """Map a character to its typesetting class; unknown characters are OTHER"""
        if cls.is_chinese_character(char):
            return CharClass.CHINESE_IDEOGRAPH
        if char in cls.OPENING_PUNCTUATION:
            return CharClass.OPENING_PUNCTUATION
        if char in cls.CLOSING_PUNCTUATION:
            return CharClass.CLOSING_PUNCTUATION
        if char in cls.MIDDLE_PUNCTUATION:
            return CharClass.MIDDLE_PUNCTUATION
        if char in cls.LATIN_CHARS:
            return CharClass.LATIN_OR_ALNUM
        return CharClass.OTHER

    @classmethod
    def can_start_line(cls, char):
        return char not in cls.PROHIBITED_LINE_START

    @classmethod
    def can_end_line(cls, char):
        return char not in cls.PROHIBITED_LINE_END
