"""Errors raised while turning model output into segmentation images"""


class SegmentationError(Exception):
    """Base class for all failures of the segmentation pipeline"""


class TensorReadError(SegmentationError):
    """A score could not be read from the model output. Decoding is aborted"""


class InvalidPixelData(SegmentationError):
    """Pixel buffer or image dimensions are inconsistent"""


class ModelInitializationError(SegmentationError):
    """The segmentation model could not be found or loaded"""


class InferenceTimeoutError(SegmentationError):
    """The model did not produce a result before the deadline"""
