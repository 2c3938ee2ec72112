"""Test running photos through the full segmentation pipeline"""
from pytest import raises
import numpy as np

from tissueseg.decoder import decode
from tissueseg.exceptions import InferenceTimeoutError
from tissueseg.palette import CONFIDENCE_PALETTE, TISSUE_PALETTE
from tissueseg.pipeline import render_results, segment_photo
from tissueseg.segmentation import ScoreTensor

from conftest import FixedSegmenter


def test_segment(fixed_segmenter, photo):
    results = segment_photo(fixed_segmenter, photo, timeout=5)
    assert results.original_image is photo

    # Images are the size of the model output, overlays the size of the photo
    assert results.class_image.shape == (2, 2, 4)
    assert results.confidence_image.shape == (2, 2, 4)
    assert results.class_overlay.shape == photo.shape
    assert results.confidence_overlay.shape == photo.shape

    # Pixel (col=1, row=0) is the 0.9-scoring pixel of class 0
    assert tuple(results.class_image[0, 1]) == TISSUE_PALETTE.rgba(0)
    assert tuple(results.class_image[0, 0]) == TISSUE_PALETTE.rgba(2)
    assert tuple(results.confidence_image[0, 1]) == CONFIDENCE_PALETTE.rgba(1)

    assert list(results.class_legend) == ['Skin', 'Epithelising']
    assert list(results.confidence_legend) == ['81%-90%', '71%-80%', '41%-50%', '31%-40%']
    assert results.maps.class_indices == {0, 2}


def test_render_results(example_scores, photo):
    maps = decode(ScoreTensor(example_scores))
    results = render_results(photo, maps, alpha=1.)

    # Fully-opaque overlay shows only the segmentation
    assert (results.class_overlay[0, 0] == TISSUE_PALETTE.rgba(2)[:3]).all()
    assert len(results.class_legend) == len(maps.class_indices)


def test_too_many_classes(photo):
    segmenter = FixedSegmenter(np.ones((2, 2, 8)))
    with raises(ValueError):
        segment_photo(segmenter, photo)


def test_timeout(slow_segmenter, photo):
    with raises(InferenceTimeoutError):
        segment_photo(slow_segmenter, photo, timeout=0.01)
