"""
Helper methods for rendering typeset lines into python-docx runs
"""

TWIPS_PER_POINT = 20


def em_to_twips(em, font_size_points):
    """Convert an em-relative width to twentieths of a point"""
    return int(round(em * font_size_points * TWIPS_PER_POINT))


def set_run_character_spacing(run, twips):
    """
    Set the spacing Word adds after every character of the run
    """
    from docx.oxml import OxmlElement
    from docx.oxml.ns import qn

    rPr = run._r.get_or_add_rPr()
    spacing = rPr.find(qn('w:spacing'))
    if spacing is None:
        spacing = OxmlElement('w:spacing')
        rPr.append(spacing)
    spacing.set(qn('w:val'), str(int(twips)))


def set_east_asian_font(run, font_name):
    """
    Apply the font to both Latin and East Asian text of the run
    """
    from docx.oxml.ns import qn

    run.font.name = font_name
    rPr = run._r.get_or_add_rPr()
    rFonts = rPr.get_or_add_rFonts()
    rFonts.set(qn('w:eastAsia'), font_name)


def configure_typeset_paragraph(paragraph, font_size_points, first_line_indent_em=0.0):
    """
    Configure a paragraph whose lines are already broken and spaced
    """
    from docx.enum.text import WD_PARAGRAPH_ALIGNMENT
    from docx.shared import Pt

    paragraph.alignment = WD_PARAGRAPH_ALIGNMENT.LEFT
    fmt = paragraph.paragraph_format
    fmt.space_before = Pt(0)
    fmt.space_after = Pt(font_size_points * 0.5)
    fmt.line_spacing = 1.5

    # Negative indent lets paragraph-leading opening punctuation hang
    if first_line_indent_em:
        fmt.first_line_indent = Pt(first_line_indent_em * font_size_points)
