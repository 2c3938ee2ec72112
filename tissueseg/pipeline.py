"""Run a photo through segmentation, decoding and rendering"""
from time import perf_counter
from typing import Dict, NamedTuple, Optional
import logging

import numpy as np

from tissueseg.decoder import DecodedMaps, decode
from tissueseg.imaging import colorize, overlay, render_image
from tissueseg.legend import palette_legend
from tissueseg.palette import CONFIDENCE_PALETTE, Palette, RGBA, TISSUE_PALETTE
from tissueseg.segmentation import BaseSegmenter

logger = logging.getLogger(__name__)


class SegmentationResults(NamedTuple):
    """Everything needed to display the segmentation of one photo"""

    original_image: np.ndarray
    class_image: np.ndarray
    class_overlay: np.ndarray
    class_legend: Dict[str, RGBA]
    confidence_image: np.ndarray
    confidence_overlay: np.ndarray
    confidence_legend: Dict[str, RGBA]
    maps: DecodedMaps


def render_results(photo: np.ndarray, maps: DecodedMaps,
                   class_palette: Palette = TISSUE_PALETTE,
                   confidence_palette: Palette = CONFIDENCE_PALETTE,
                   alpha: float = 0.5) -> SegmentationResults:
    """Render the class and confidence maps as images, overlays and legends

    Args:
        photo: Photo which was segmented
        maps: Decoded maps for the photo
        class_palette: Labels and colors for the tissue classes
        confidence_palette: Labels and colors for the confidence buckets
        alpha: Opacity of the segmentation images when drawn over the photo
    Returns:
        Images and legends for both maps
    Raises:
        InvalidPixelData: If an image cannot be made from the maps
    """
    width, height = maps.class_map.shape

    class_image = render_image(colorize(maps.class_map, class_palette.color_table), width, height)
    confidence_image = render_image(colorize(maps.confidence_map, confidence_palette.color_table), width, height)

    return SegmentationResults(
        original_image=photo,
        class_image=class_image,
        class_overlay=overlay(photo, class_image, alpha),
        class_legend=palette_legend(maps.class_indices, class_palette),
        confidence_image=confidence_image,
        confidence_overlay=overlay(photo, confidence_image, alpha),
        confidence_legend=palette_legend(maps.confidence_indices, confidence_palette),
        maps=maps,
    )


def segment_photo(segmenter: BaseSegmenter, photo: np.ndarray,
                  timeout: Optional[float] = None,
                  use_softmax: bool = False,
                  alpha: float = 0.5,
                  class_palette: Palette = TISSUE_PALETTE) -> SegmentationResults:
    """Segment a photo and render the results

    Args:
        segmenter: Tool used to compute the class scores
        photo: Photo as a uint8 RGB array
        timeout: Maximum time to wait for the model, in seconds
        use_softmax: Whether to convert the scores to probabilities before decoding
        alpha: Opacity of the segmentation images when drawn over the photo
        class_palette: Labels and colors for the tissue classes
    Returns:
        Images and legends for the photo
    """
    # Measure when we start
    start_time = perf_counter()

    scores = segmenter.segment(photo, timeout=timeout)
    if scores.class_count > len(class_palette):
        raise ValueError(f'Model produced {scores.class_count} classes but only {len(class_palette)}'
                         ' have labels and colors')

    maps = decode(scores, use_softmax=use_softmax)
    results = render_results(photo, maps, class_palette=class_palette, alpha=alpha)
    logger.info(f'Segmented a {photo.shape[1]}x{photo.shape[0]} photo in {perf_counter() - start_time:.2f}s.'
                f' Tissues found: {", ".join(results.class_legend)}')
    return results
