"""Labels and colors used to display tissue classes and confidence levels

Colors are stored packed as 32-bit ``0xAARRGGBB`` integers, the layout used for
the pixel buffers that are turned into images.
"""
from pathlib import Path
from typing import Iterable, List, NamedTuple, Tuple, Union
import json

import numpy as np

RGBA = Tuple[int, int, int, int]


def pack_color(red: int, green: int, blue: int, alpha: int = 255) -> int:
    """Pack 8-bit channels into a ``0xAARRGGBB`` integer"""
    for value in (red, green, blue, alpha):
        if not 0 <= value <= 255:
            raise ValueError(f'Channel values must be between 0 and 255. Got {value}')
    return (alpha << 24) | (red << 16) | (green << 8) | blue


def unpack_color(packed: int) -> RGBA:
    """Split a ``0xAARRGGBB`` integer into a (red, green, blue, alpha) tuple"""
    packed = int(packed)
    return (packed >> 16) & 0xFF, (packed >> 8) & 0xFF, packed & 0xFF, (packed >> 24) & 0xFF


class PaletteEntry(NamedTuple):
    """Display information for one class index"""

    index: int
    label: str
    color: int


class Palette:
    """Fixed, ordered table of labels and colors indexed by small integers"""

    def __init__(self, entries: Iterable[PaletteEntry]):
        self.entries: Tuple[PaletteEntry, ...] = tuple(entries)
        for position, entry in enumerate(self.entries):
            assert entry.index == position, f'Entry "{entry.label}" is at position {position}, not {entry.index}'
        labels = [e.label for e in self.entries]
        duplicates = sorted({x for x in labels if labels.count(x) > 1})
        if duplicates:
            raise ValueError(f'Palette labels must be unique. Duplicates: {duplicates}')

    @classmethod
    def from_pairs(cls, pairs: Iterable[Tuple[str, int]]) -> 'Palette':
        """Build a palette from (label, color) pairs, numbered in order"""
        return cls(PaletteEntry(i, label, color) for i, (label, color) in enumerate(pairs))

    def __len__(self):
        return len(self.entries)

    def _entry(self, index: int) -> PaletteEntry:
        if not 0 <= index < len(self.entries):
            raise IndexError(f'Index {index} is outside of a palette with {len(self.entries)} entries')
        return self.entries[index]

    def label(self, index: int) -> str:
        return self._entry(index).label

    def color(self, index: int) -> int:
        return self._entry(index).color

    def rgba(self, index: int) -> RGBA:
        return unpack_color(self.color(index))

    @property
    def labels(self) -> List[str]:
        return [e.label for e in self.entries]

    @property
    def color_table(self) -> np.ndarray:
        """Packed colors as a uint32 lookup table"""
        return np.array([e.color for e in self.entries], dtype=np.uint32)

    def with_labels_from_json(self, path: Union[str, Path]) -> 'Palette':
        """Create a copy of this palette with display labels read from a JSON list

        Args:
            path: Path to a JSON file holding a list with one label per entry
        Returns:
            Palette with the same colors and the new labels
        """
        with open(path) as fp:
            labels = json.load(fp)
        if not isinstance(labels, list) or not all(isinstance(x, str) for x in labels):
            raise ValueError(f'{path} must hold a list of strings')
        if len(labels) != len(self.entries):
            raise ValueError(f'Expected {len(self.entries)} labels in {path}, found {len(labels)}')
        return Palette(PaletteEntry(e.index, label, e.color) for e, label in zip(self.entries, labels))


# Order must match the class order of the model output
TISSUE_PALETTE = Palette.from_pairs([
    ('Skin', 0xFF1E4928),
    ('Healthy Granulation', 0xFF00F772),
    ('Epithelising', 0xFFFF1493),
    ('Unhealthy Granulation', 0xFF0DE0E5),
    ('Others', 0xFF1E90FF),
    ('Necrosis', 0xFFAA6E28),
    ('Slough', 0xFFFFFF00),
])

# One entry per confidence bucket, from most to least confident
CONFIDENCE_PALETTE = Palette.from_pairs([
    ('91%-100%', 0xFF246590),
    ('81%-90%', 0xFF246590),
    ('71%-80%', 0xFF246590),
    ('61%-70%', 0xFF3DACF7),
    ('51%-60%', 0xFF79D6F9),
    ('41%-50%', 0xFFE87AA4),
    ('31%-40%', 0xFFF9D98C),
    ('21%-30%', 0xFFB8E233),
    ('11%-20%', 0xFFB8E233),
    ('1%-10%', 0xFFB8E233),
])


def class_label(index: int) -> str:
    return TISSUE_PALETTE.label(index)


def class_color(index: int) -> RGBA:
    return TISSUE_PALETTE.rgba(index)


def confidence_label(index: int) -> str:
    return CONFIDENCE_PALETTE.label(index)


def confidence_color(index: int) -> RGBA:
    return CONFIDENCE_PALETTE.rgba(index)
