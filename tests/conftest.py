from time import sleep

from pytest import fixture
import numpy as np

from tissueseg.segmentation import BaseSegmenter, ScoreTensor


class FixedSegmenter(BaseSegmenter):
    """Segmenter which returns the same scores for every photo"""

    def __init__(self, scores: np.ndarray, delay: float = 0.):
        self.scores = ScoreTensor(scores)
        self.delay = delay

    def transform_standard_image(self, image_data: np.ndarray) -> np.ndarray:
        return image_data

    def perform_segmentation(self, image_data: np.ndarray) -> ScoreTensor:
        sleep(self.delay)
        return self.scores


@fixture()
def example_scores() -> np.ndarray:
    """Scores for a 2x2 image with 3 classes, shaped (width, height, classes)"""
    per_pixel = np.array([
        [0.2, 0.3, 0.5],
        [0.9, 0.05, 0.05],
        [0.4, 0.4, 0.2],
        [0.1, 0.1, 0.8],
    ], dtype=np.float32)  # Pixels in row-major order
    return per_pixel.reshape(2, 2, 3).transpose(1, 0, 2)


@fixture()
def fixed_segmenter(example_scores) -> FixedSegmenter:
    return FixedSegmenter(example_scores)


@fixture()
def slow_segmenter(example_scores) -> FixedSegmenter:
    return FixedSegmenter(example_scores, delay=0.5)


@fixture()
def photo() -> np.ndarray:
    """A 4x6 (height x width) RGB photo with a gradient"""
    image = np.zeros((4, 6, 3), dtype=np.uint8)
    image[:, :, 0] = np.arange(6) * 40
    image[:, :, 1] = 100
    return image
