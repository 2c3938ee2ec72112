from pathlib import Path
import json

from pytest import raises
import imageio.v3 as iio
import numpy as np

from tissueseg.io import encode_as_png, legend_to_json, load_photo, save_results
from tissueseg.pipeline import segment_photo


def test_load(tmpdir, photo):
    path = Path(tmpdir) / 'photo.png'
    path.write_bytes(encode_as_png(photo))
    data = load_photo(path)
    assert data.dtype == np.uint8
    assert np.array_equal(data, photo)

    # Also works from the encoded bytes
    assert np.array_equal(load_photo(path.read_bytes()), photo)


def test_load_gray_and_rgba(tmpdir, photo):
    path = Path(tmpdir) / 'gray.png'
    path.write_bytes(encode_as_png(photo[:, :, 0]))
    data = load_photo(path)
    assert data.shape == (4, 6, 3)
    assert np.array_equal(data[:, :, 2], photo[:, :, 0])

    path = Path(tmpdir) / 'rgba.png'
    rgba = np.concatenate([photo, np.full((4, 6, 1), 128, dtype=np.uint8)], axis=-1)
    path.write_bytes(encode_as_png(rgba))
    assert np.array_equal(load_photo(path), photo)


def test_load_failure(tmpdir):
    path = Path(tmpdir) / 'not-an-image.png'
    path.write_text('hello')
    with raises(ValueError):
        load_photo(path)


def test_encode(photo):
    message = encode_as_png(photo, compress_level=0)
    assert message.startswith(b'\x89PNG')
    assert np.array_equal(iio.imread(message), photo)


def test_legend_to_json():
    assert legend_to_json({'Skin': (0x1E, 0x49, 0x28, 0xFF)}) == {'Skin': '#1E4928FF'}


def test_save(tmpdir, fixed_segmenter, photo):
    results = segment_photo(fixed_segmenter, photo)
    written = save_results(results, Path(tmpdir) / 'out', 'wound')
    assert set(written) == {'class_image', 'class_overlay', 'confidence_image', 'confidence_overlay', 'legend'}
    assert written['class_overlay'].name == 'wound-class-overlay.png'

    # Images are readable and have the expected sizes
    assert iio.imread(written['class_image']).shape == (2, 2, 4)
    assert iio.imread(written['confidence_overlay']).shape == (4, 6, 3)

    legend = json.loads(written['legend'].read_text())
    assert list(legend['classes']) == ['Skin', 'Epithelising']
    assert legend['classes']['Skin'] == '#1E4928FF'
    assert len(legend['confidence']) == 4
