"""Utilities related to loading photos and writing segmentation outputs

Photos are handled as 8-bit RGB arrays. Outputs are written as PNG images,
with the legends stored alongside as JSON.
"""

from pathlib import Path
from typing import Dict, Union
import json

from skimage import color
from skimage.util import img_as_ubyte
import imageio.v3 as iio
import numpy as np

from tissueseg.palette import RGBA


def load_photo(path: Union[str, Path, bytes]) -> np.ndarray:
    """Load a photo from disk (or from encoded bytes) into a uint8 RGB array

    Args:
        path: Path to the file of interest, or the encoded image
    Returns:
        Photo with shape (height, width, 3)
    """
    try:
        data = iio.imread(path)
    except Exception as e:
        source = 'encoded bytes' if isinstance(path, bytes) else path
        raise ValueError(f'Failed to load image from {source}') from e

    # Standardize the format
    data = np.squeeze(data)
    if data.ndim == 2:
        data = color.gray2rgb(data)
    elif data.ndim == 3 and data.shape[-1] == 4:
        data = data[:, :, :3]
    if data.ndim != 3 or data.shape[-1] != 3:
        raise ValueError(f'Unsupported image shape: {data.shape}')
    if data.dtype != np.uint8:
        data = img_as_ubyte(data)
    return data


def encode_as_png(data: np.ndarray, compress_level: int = 9) -> bytes:
    """Encode an image as PNG

    Args:
        data: Image to be encoded, uint8 with shape (height, width) or (height, width, channels)
        compress_level: Lossless compression level, between 0 (no compression) and 9 (maximum)
    Returns:
        PNG image as a byte array
    """
    data = np.asarray(data)
    assert data.dtype == np.uint8, "Image must be 8-bit"
    assert data.ndim in (2, 3), "Image must be grayscale or color"
    return iio.imwrite('<bytes>', data, extension='.png', compress_level=compress_level)


def legend_to_json(legend: Dict[str, RGBA]) -> Dict[str, str]:
    """Convert a legend to a JSON-ready map of label to ``#RRGGBBAA`` string"""
    return dict((label, '#{:02X}{:02X}{:02X}{:02X}'.format(*rgba)) for label, rgba in legend.items())


def save_results(results, out_dir: Union[str, Path], stem: str) -> Dict[str, Path]:
    """Write the images and legends of a segmentation to disk

    Args:
        results: Segmentation outputs for one photo (:class:`~tissueseg.pipeline.SegmentationResults`)
        out_dir: Directory in which to write the files
        stem: Prefix for the file names
    Returns:
        Paths of the written files, by kind of output
    """
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    images = {
        'class_image': results.class_image,
        'class_overlay': results.class_overlay,
        'confidence_image': results.confidence_image,
        'confidence_overlay': results.confidence_overlay,
    }
    written = {}
    for kind, image in images.items():
        path = out_dir / f'{stem}-{kind.replace("_", "-")}.png'
        path.write_bytes(encode_as_png(image))
        written[kind] = path

    legend_path = out_dir / f'{stem}-legend.json'
    with legend_path.open('w') as fp:
        json.dump({
            'classes': legend_to_json(results.class_legend),
            'confidence': legend_to_json(results.confidence_legend),
        }, fp, indent=2)
    written['legend'] = legend_path
    return written
