"""Access to the per-pixel class scores produced by segmentation models"""
from concurrent.futures import Executor, Future, ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Optional, Tuple
import logging

import numpy as np

from tissueseg.exceptions import InferenceTimeoutError, TensorReadError

logger = logging.getLogger(__name__)

# Background worker used to run inference when the caller does not supply one
_executor: Optional[ThreadPoolExecutor] = None


def _default_executor() -> ThreadPoolExecutor:
    """Get the shared inference worker, starting it if needed"""
    global _executor
    if _executor is None:
        _executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='tissueseg.inference')
    return _executor


def _discard_executor(executor: ThreadPoolExecutor):
    """Stop handing work to a shared worker which is stuck on a task"""
    global _executor
    if _executor is executor:
        _executor = None
    executor.shutdown(wait=False)


def _strip_batch(array: np.ndarray, ndim: int = 3) -> np.ndarray:
    """Remove leading batch dimensions of size one"""
    while array.ndim > ndim and array.shape[0] == 1:
        array = array[0]
    return array


class ScoreTensor:
    """Read-only view over a width x height x classes array of scores

    The first axis is the column (x), the second the row (y) and the third the class.
    """

    def __init__(self, scores: np.ndarray):
        """
        Args:
            scores: Array of scores with shape (width, height, classes)
        """
        scores = np.asarray(scores)
        if scores.ndim != 3:
            raise ValueError(f'Scores must be 3-dimensional. Shape: {scores.shape}')
        scores = scores.view()
        scores.flags.writeable = False
        self._scores = scores

    @classmethod
    def from_hwc(cls, array: np.ndarray) -> 'ScoreTensor':
        """Create from a channels-last model output, (height, width, classes) with optional batch axis"""
        array = _strip_batch(np.asarray(array))
        return cls(np.transpose(array, (1, 0, 2)))

    @classmethod
    def from_chw(cls, array: np.ndarray) -> 'ScoreTensor':
        """Create from a channels-first model output, (classes, height, width) with optional batch axis"""
        array = _strip_batch(np.asarray(array))
        return cls(np.transpose(array, (2, 1, 0)))

    @property
    def width(self) -> int:
        return self._scores.shape[0]

    @property
    def height(self) -> int:
        return self._scores.shape[1]

    @property
    def class_count(self) -> int:
        return self._scores.shape[2]

    @property
    def shape(self) -> Tuple[int, int, int]:
        return self._scores.shape

    def get(self, x: int, y: int, z: int) -> Optional[float]:
        """Get the score of class ``z`` at pixel ``(x, y)``

        Returns:
            The score, or ``None`` if the coordinate is outside the tensor
        """
        for index, size in zip((x, y, z), self._scores.shape):
            if not 0 <= index < size:
                return None
        return float(self._scores[x, y, z])

    def read_block(self, width: int, height: int, class_count: int) -> np.ndarray:
        """Read the scores for the first ``width x height`` pixels and ``class_count`` classes

        Raises:
            TensorReadError: If the requested region does not lie within the tensor
        """
        if any(not 0 <= req <= size for req, size in zip((width, height, class_count), self.shape)):
            raise TensorReadError(f'Cannot read a {width}x{height}x{class_count} region'
                                  f' from a tensor of shape {self.shape}')
        return self._scores[:width, :height, :class_count]


class BaseSegmenter:
    """Base class for implementations of a segmentation tool

    Implementations must provide a function for reshaping a photo (uint8 RGB) into
    whatever is expected by this specific model, and a function that runs the model
    and returns the per-pixel class scores.
    """

    def transform_standard_image(self, image_data: np.ndarray) -> np.ndarray:
        """Transform an image into a format compatible with the model

        Args:
            image_data: Photo as a uint8 RGB array
        Returns:
            Image in whatever form needed by the model
        """
        raise NotImplementedError

    def perform_segmentation(self, image_data: np.ndarray) -> ScoreTensor:
        """Perform the image segmentation

        Args:
            image_data: Image in the format produced by :meth:`transform_standard_image`
        Returns:
            Scores for each class at each pixel
        """
        raise NotImplementedError

    def _run(self, image_data: np.ndarray) -> ScoreTensor:
        return self.perform_segmentation(self.transform_standard_image(image_data))

    def submit(self, image_data: np.ndarray, executor: Optional[Executor] = None) -> 'Future[ScoreTensor]':
        """Start segmentation of a photo in the background

        Args:
            image_data: Photo as a uint8 RGB array
            executor: Executor used to run the model. A single shared worker thread is used by default
        Returns:
            Future which resolves to the class scores
        """
        if executor is None:
            executor = _default_executor()
        return executor.submit(self._run, image_data)

    def segment(self, image_data: np.ndarray, timeout: Optional[float] = None,
                executor: Optional[Executor] = None) -> ScoreTensor:
        """Segment a photo and wait for the result

        Args:
            image_data: Photo as a uint8 RGB array
            timeout: Maximum time to wait for the model, in seconds. ``None`` waits indefinitely
            executor: Executor used to run the model. The shared worker is replaced if the model
                is still running when the timeout expires
        Returns:
            Scores for each class at each pixel
        Raises:
            InferenceTimeoutError: If the model does not finish before the timeout
        """
        shared = executor is None
        if shared:
            executor = _default_executor()
        future = self.submit(image_data, executor)
        try:
            scores = future.result(timeout=timeout)
        except FutureTimeoutError as e:
            # A running task cannot be cancelled, so later calls get a fresh worker
            if not future.cancel() and shared:
                logger.warning('Inference is still running after the timeout. Replacing the shared worker')
                _discard_executor(executor)
            raise InferenceTimeoutError(f'Inference did not complete within {timeout} s') from e
        logger.info(f'Received scores with shape {scores.shape}')
        return scores
