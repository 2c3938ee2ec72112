"""Create color images from label maps and blend them over photos

Images are numpy arrays of shape (height, width, channels). Label maps are indexed
by (x, y), so they are transposed when turned into pixel buffers.
"""
import logging

from skimage import color
from skimage.transform import resize
from skimage.util import img_as_float
import numpy as np

from tissueseg.exceptions import InvalidPixelData

logger = logging.getLogger(__name__)


def colorize(index_map: np.ndarray, colors: np.ndarray) -> np.ndarray:
    """Look up the color of each pixel of a label map

    Args:
        index_map: Label map with shape (width, height)
        colors: Packed ``0xAARRGGBB`` color for each label
    Returns:
        Row-major buffer of packed colors, where pixel (col, row) is at ``row * width + col``
    """
    index_map = np.asarray(index_map)
    table = np.asarray(colors, dtype=np.uint32)
    if index_map.size > 0 and (index_map.min() < 0 or index_map.max() >= len(table)):
        raise IndexError(f'Label map holds indices from {index_map.min()} to {index_map.max()},'
                         f' but only {len(table)} colors are defined')
    return table[index_map.T].ravel()


def render_image(pixels: np.ndarray, width: int, height: int) -> np.ndarray:
    """Construct an RGBA image from a buffer of packed pixels

    Args:
        pixels: ``0xAARRGGBB`` value of each pixel, row-major
        width: Width of the image
        height: Height of the image
    Returns:
        Image as a uint8 array of shape (height, width, 4) with channels in RGBA order
    Raises:
        InvalidPixelData: If the dimensions are not positive or do not match the number of pixels
    """
    if width <= 0 or height <= 0:
        raise InvalidPixelData(f'Image dimensions must be positive. Got {width}x{height}')
    pixels = np.asarray(pixels)
    if pixels.ndim != 1 or pixels.size != width * height:
        raise InvalidPixelData(f'Expected {width * height} pixels for a {width}x{height} image.'
                               f' Got an array of shape {pixels.shape}')
    if pixels.dtype != np.uint32:
        if pixels.dtype.kind not in 'ui' or pixels.min() < 0 or pixels.max() > 0xFFFFFFFF:
            raise InvalidPixelData('Pixels must be unsigned 32-bit integers')

    # Little-endian byte order puts the channels in memory as B, G, R, A
    channels = pixels.astype('<u4').view(np.uint8).reshape(height, width, 4)
    return channels[:, :, [2, 1, 0, 3]]


def _as_float_rgba(image: np.ndarray) -> np.ndarray:
    """Convert a grayscale, RGB or RGBA image to floating-point RGBA"""
    image = np.asarray(image)
    if image.ndim == 2:
        image = color.gray2rgb(image)
    if image.ndim != 3 or image.shape[-1] not in (3, 4) or image.shape[0] == 0 or image.shape[1] == 0:
        raise InvalidPixelData(f'Expected a non-empty grayscale, RGB or RGBA image. Got shape {image.shape}')
    image = img_as_float(image)
    if image.shape[-1] == 3:
        image = np.concatenate([image, np.ones(image.shape[:2] + (1,))], axis=-1)
    return image


def overlay(base: np.ndarray, mask: np.ndarray, alpha: float = 0.5) -> np.ndarray:
    """Draw a translucent copy of ``mask`` on top of ``base``

    Args:
        base: Photo on which to draw
        mask: Image to draw. Resized to the size of ``base`` if needed
        alpha: Opacity of the mask, between 0 (invisible) and 1 (opaque)
    Returns:
        New uint8 image with the size of ``base``. RGBA if the base has an alpha channel, RGB otherwise
    """
    if not 0 <= alpha <= 1:
        raise ValueError(f'Alpha must be between 0 and 1. Got {alpha}')
    base = np.asarray(base)
    base_rgba = _as_float_rgba(base)
    mask_rgba = _as_float_rgba(mask)

    # Nearest-neighbor scaling keeps the mask colors intact
    if mask_rgba.shape[:2] != base_rgba.shape[:2]:
        logger.debug(f'Resizing mask from {mask_rgba.shape[:2]} to {base_rgba.shape[:2]}')
        mask_rgba = resize(mask_rgba, base_rgba.shape[:2], order=0, preserve_range=True, anti_aliasing=False)

    weight = alpha * mask_rgba[:, :, 3:]
    blended = base_rgba[:, :, :3] * (1 - weight) + mask_rgba[:, :, :3] * weight
    if base.ndim == 3 and base.shape[-1] == 4:
        blended = np.concatenate([blended, base_rgba[:, :, 3:]], axis=-1)
    return np.round(np.clip(blended, 0, 1) * 255).astype(np.uint8)
