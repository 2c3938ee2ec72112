"""Functions to analyze decoded tissue maps"""
import logging

from skimage import measure
import numpy as np

from tissueseg.decoder import DecodedMaps
from tissueseg.palette import Palette, TISSUE_PALETTE

logger = logging.getLogger(__name__)


def analyze_composition(maps: DecodedMaps, palette: Palette = TISSUE_PALETTE) -> dict:
    """Measure how much of the image is covered by each tissue type

    Args:
        maps: Decoded class and confidence maps
        palette: Palette giving the name of each class
    Returns:
        Dictionary with:
            - ``tissues``: For each tissue found, its pixel fraction and number of connected regions
            - ``mean_confidence_bucket``: Average confidence bucket over all pixels (0 is most confident)
    """
    class_map = np.asarray(maps.class_map)
    total = class_map.size

    tissues = {}
    for index in sorted(maps.class_indices):
        region = class_map == index
        labels = measure.label(region, connectivity=2)
        tissues[palette.label(index)] = {
            'index': index,
            'fraction': float(region.sum() / total),
            'region_count': int(labels.max()),
        }

    output = {
        'tissues': tissues,
        'mean_confidence_bucket': float(np.mean(maps.confidence_map)),
    }
    logger.debug(f'Found {len(tissues)} tissue types')
    return output
