"""
Interactive text box preset selector for the Chinese typesetter
Common text box geometries with pre-computed widths
"""
from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table
from rich import box


class TextBoxPresetSelector:
    """Text box preset selector with pre-computed dimensions and fast lookups"""

    # Box widths are whole multiples of the font size, so a line of plain
    # ideographs fills the box exactly
    PRESETS = {
        'dialogue': {
            'name': 'Dialogue',
            'box_width': 1152,
            'font_size': 36,
            'chars_per_line': 32,
            'alignment': 'left',
            'description': 'Visual novel dialogue box'
        },
        'narration': {
            'name': 'Narration',
            'box_width': 1344,
            'font_size': 32,
            'chars_per_line': 42,
            'alignment': 'justified',
            'description': 'Full-screen narration text'
        },
        'subtitle': {
            'name': 'Subtitle',
            'box_width': 960,
            'font_size': 40,
            'chars_per_line': 24,
            'alignment': 'center',
            'description': 'Centered subtitle line'
        },
        'novel_page': {
            'name': 'Novel Page',
            'box_width': 390,
            'font_size': 15,
            'chars_per_line': 26,
            'alignment': 'justified',
            'description': 'Printed novel body text'
        },
        'narrow_column': {
            'name': 'Narrow Column',
            'box_width': 240,
            'font_size': 16,
            'chars_per_line': 15,
            'alignment': 'left',
            'description': 'Sidebar or mobile column'
        },
        'custom': {
            'name': 'Custom',
            'box_width': 0,
            'font_size': 0,
            'chars_per_line': 0,
            'alignment': 'left',
            'description': 'Custom user-defined box'
        }
    }

    # Ordered list for display
    COMMON_PRESETS = [
        PRESETS['dialogue'],
        PRESETS['narration'],
        PRESETS['novel_page'],
        PRESETS['narrow_column'],
        PRESETS['subtitle'],
        PRESETS['custom'],
    ]

    # Pre-computed lookup table for preset names (case-insensitive)
    _PRESET_LOOKUP = {name.lower(): preset for name, preset in PRESETS.items()}

    ALIGNMENTS = ['left', 'justified', 'center', 'right']

    def __init__(self, console=None):
        self.console = console or Console()

    @classmethod
    def get_preset(cls, preset_name):
        """Case-insensitive preset lookup; returns a copy or None"""
        preset = cls._PRESET_LOOKUP.get(preset_name.lower())
        return dict(preset) if preset else None

    @staticmethod
    def calculate_box_width(chars_per_line, font_size):
        """Box width holding exactly chars_per_line full-width characters"""
        if chars_per_line <= 0 or font_size <= 0:
            raise ValueError("Characters per line and font size must be positive")
        return {
            'box_width': chars_per_line * font_size,
            'font_size': font_size,
            'chars_per_line': chars_per_line,
        }

    def show_presets(self):
        table = Table(title="Text Box Presets", box=box.ROUNDED, expand=False)

        table.add_column("#", style="cyan", width=3, justify="right")
        table.add_column("Preset", style="green", width=15)
        table.add_column("Box", style="blue", width=18, justify="center")
        table.add_column("Align", style="magenta", width=10, justify="center")
        table.add_column("Description", style="yellow")

        for i, preset in enumerate(self.COMMON_PRESETS, 1):
            if preset['name'] == 'Custom':
                box_info = "Custom"
            else:
                box_info = f"{preset['box_width']}px / {preset['font_size']}px ({preset['chars_per_line']})"
            table.add_row(str(i), preset['name'], box_info, preset['alignment'], preset['description'])

        self.console.print(table)

    def select_preset(self):
        """Show the presets and ask for one, prompting for custom dimensions"""
        self.show_presets()
        self.console.print("\n[bold cyan]Select a text box preset:[/bold cyan]")

        valid_choices = [str(i) for i in range(1, len(self.COMMON_PRESETS) + 1)]
        choice = Prompt.ask(
            "Enter selection",
            choices=valid_choices,
            default="1",
            console=self.console
        )

        selected = dict(self.COMMON_PRESETS[int(choice) - 1])

        if selected['name'] == 'Custom':
            self.console.print("\n[bold cyan]Custom Text Box:[/bold cyan]")
            font_size = int(Prompt.ask("Font size (px)", default="32", console=self.console))
            chars_per_line = int(Prompt.ask("Characters per line", default="30", console=self.console))
            alignment = Prompt.ask("Alignment", choices=self.ALIGNMENTS, default="left", console=self.console)

            dims = self.calculate_box_width(chars_per_line, font_size)
            selected.update(dims)
            selected['alignment'] = alignment
            selected['description'] = f"Custom {dims['box_width']}px box"

            self.console.print(f"\n[bold green]✓ Custom box created:[/bold green] {dims['box_width']}px, "
                               f"{chars_per_line} characters per line")
            return selected

        self.console.print(f"\n[bold green]✓ Selected:[/bold green] {selected['name']} "
                           f"({selected['box_width']}px, font {selected['font_size']}px, {selected['alignment']})")
        return selected
