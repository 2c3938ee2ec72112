"""Build the label to color legends shown next to segmentation images"""
from typing import Callable, Dict, Iterable, TypeVar
import logging

from tissueseg.palette import Palette, RGBA

logger = logging.getLogger(__name__)

C = TypeVar('C')


def build_legend(indices: Iterable[int], label_of: Callable[[int], str],
                 color_of: Callable[[int], C]) -> Dict[str, C]:
    """Make a legend holding only the classes found in an image

    Args:
        indices: Class indices observed in a segmentation map
        label_of: Function giving the display label for a class index
        color_of: Function giving the color for a class index
    Returns:
        Map of label to color, in ascending order of class index
    """
    legend = {}
    for index in sorted(set(indices)):
        label = label_of(index)
        if label in legend:
            logger.warning(f'Label "{label}" is used by more than one index. Keeping the color of index {index}')
        legend[label] = color_of(index)
    return legend


def palette_legend(indices: Iterable[int], palette: Palette) -> Dict[str, RGBA]:
    """Legend with colors as (red, green, blue, alpha) tuples from a palette"""
    return build_legend(indices, palette.label, palette.rgba)
