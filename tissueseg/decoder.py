"""Convert per-pixel class scores into tissue class and confidence maps"""
from typing import FrozenSet, NamedTuple, Optional
import logging

import numpy as np

from tissueseg.exceptions import TensorReadError
from tissueseg.segmentation import ScoreTensor

logger = logging.getLogger(__name__)

# Inclusive (lower, upper) score limits of each confidence bucket, most confident first.
#  Scores which fall in none of the bands (including the gaps between them) use bucket 0
CONFIDENCE_BANDS = (
    (0.91, 1.0),
    (0.81, 0.90),
    (0.71, 0.80),
    (0.61, 0.70),
    (0.51, 0.60),
    (0.41, 0.50),
    (0.31, 0.40),
    (0.21, 0.30),
    (0.11, 0.20),
    (0.01, 0.10),
)
DEFAULT_CONFIDENCE_BUCKET = 0


class DecodedMaps(NamedTuple):
    """Label maps produced from one set of model scores

    Both maps have shape (width, height).
    """

    class_map: np.ndarray
    class_indices: FrozenSet[int]
    confidence_map: np.ndarray
    confidence_indices: FrozenSet[int]


def confidence_buckets(scores: np.ndarray) -> np.ndarray:
    """Assign each score to a confidence bucket

    Comparisons are made in single precision, the precision of the model outputs.

    Args:
        scores: Scores of the winning class
    Returns:
        Bucket index for each score, same shape as the input
    """
    scores = np.asarray(scores, dtype=np.float32)
    conditions = [(scores >= np.float32(low)) & (scores <= np.float32(high)) for low, high in CONFIDENCE_BANDS]
    return np.select(conditions, list(range(len(CONFIDENCE_BANDS))), default=DEFAULT_CONFIDENCE_BUCKET)


def confidence_bucket(score: float) -> int:
    """Confidence bucket for a single score"""
    return int(confidence_buckets(np.array([score]))[0])


def softmax(scores: np.ndarray, axis: int = -1) -> np.ndarray:
    """Normalize scores into probabilities along one axis"""
    shifted = scores - np.max(scores, axis=axis, keepdims=True)
    exp = np.exp(shifted)
    return exp / np.sum(exp, axis=axis, keepdims=True)


def _read_scores(tensor, width: int, height: int, class_count: int) -> np.ndarray:
    """Gather the scores to be decoded into a (width, height, class_count) array

    Args:
        tensor: A :class:`ScoreTensor` or any object with a ``get(x, y, z)`` method
    Raises:
        TensorReadError: If any score cannot be read
    """
    if isinstance(tensor, ScoreTensor):
        return tensor.read_block(width, height, class_count)

    block = np.empty((width, height, class_count), dtype=np.float32)
    for x in range(width):
        for y in range(height):
            for z in range(class_count):
                try:
                    value = tensor.get(x, y, z)
                except Exception as e:
                    raise TensorReadError(f'Failed to read the score at ({x}, {y}, {z}): {e}') from e
                if value is None:
                    raise TensorReadError(f'No score available at ({x}, {y}, {z})')
                block[x, y, z] = value
    return block


def decode(tensor, width: Optional[int] = None, height: Optional[int] = None,
           class_count: Optional[int] = None, use_softmax: bool = False) -> DecodedMaps:
    """Find the most likely class and its confidence bucket for each pixel

    The winning class is the first one with the highest score, so ties go to the lowest index.
    The search starts from a score of zero: a pixel where no class scores above zero is
    assigned class 0 and the confidence bucket of a zero score.

    Args:
        tensor: Scores to decode, a :class:`ScoreTensor` or any object with a ``get(x, y, z)`` method
        width: Number of columns to decode. Defaults to the width of the tensor
        height: Number of rows to decode. Defaults to the height of the tensor
        class_count: Number of classes to consider. Defaults to the class count of the tensor
        use_softmax: Whether to convert the scores to probabilities across classes before decoding
    Returns:
        Class and confidence maps with the sets of indices found in each
    Raises:
        TensorReadError: If the scores cannot be read. No maps are produced
    """
    width = tensor.width if width is None else width
    height = tensor.height if height is None else height
    class_count = tensor.class_count if class_count is None else class_count
    if width < 1 or height < 1 or class_count < 1:
        raise ValueError(f'Dimensions must be positive. Got {width}x{height}x{class_count}')

    scores = _read_scores(tensor, width, height, class_count)
    if use_softmax:
        scores = softmax(np.asarray(scores, dtype=np.float32))

    # Anything not above zero (including NaN) never displaces the starting score of zero
    candidates = np.where(scores > 0, scores, 0)
    class_map = np.argmax(candidates, axis=-1)
    max_scores = np.max(candidates, axis=-1)
    confidence_map = confidence_buckets(max_scores)

    for array in (class_map, confidence_map):
        array.flags.writeable = False
    result = DecodedMaps(
        class_map=class_map,
        class_indices=frozenset(np.unique(class_map).tolist()),
        confidence_map=confidence_map,
        confidence_indices=frozenset(np.unique(confidence_map).tolist()),
    )
    logger.debug(f'Decoded a {width}x{height} map with {class_count} classes.'
                 f' Classes found: {sorted(result.class_indices)}')
    return result
