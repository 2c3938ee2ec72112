from datetime import datetime
from pathlib import Path
import json

from pytest import fixture
from watchdog.events import FileCreatedEvent
import imageio.v3 as iio
import torch

from tissueseg import cli
from tissueseg.cli import PhotoEventHandler, main
from tissueseg.io import encode_as_png

from conftest import FixedSegmenter


@fixture(autouse=True)
def config_path(tmpdir, monkeypatch) -> Path:
    path = Path(tmpdir) / 'config.json'
    monkeypatch.setattr(cli, '_config_path', path)
    return path


@fixture()
def photo_path(tmpdir, photo) -> Path:
    path = Path(tmpdir) / 'wound.png'
    path.write_bytes(encode_as_png(photo))
    return path


def test_config(config_path):
    main(['config', '--overlay-alpha', '0.3', '--softmax', '--input-size', '64', '32'])
    assert json.loads(config_path.read_text()) == {'overlay_alpha': 0.3, 'softmax': True, 'input_size': [64, 32]}

    # Later updates keep earlier settings
    main(['config', '--no-softmax'])
    config = cli._load_config()
    assert config['softmax'] is False
    assert config['overlay_alpha'] == 0.3
    assert config['inference_timeout'] == 60.


def test_local_handler(fixed_segmenter, photo_path, tmpdir):
    handler = PhotoEventHandler(fixed_segmenter, timeout=5)

    # Submit a photo and something which is not a photo
    bad_path = Path(tmpdir) / 'bad.png'
    bad_path.write_text('not an image')
    handler.submit_file(bad_path, datetime.now())
    handler.submit_file(photo_path, datetime.now())
    handler.queue.put(None)

    outputs = list(handler.iterate_results())
    assert len(outputs) == 1
    img_path, results, rtt, detect_time = outputs[0]
    assert img_path == photo_path
    assert results.class_overlay.shape == (4, 6, 3)
    assert rtt >= 0
    assert handler.index == 2


def test_created_event(fixed_segmenter, photo_path):
    handler = PhotoEventHandler(fixed_segmenter, file_regex=r'.*\.png$', settle_time=0)
    handler.on_created(FileCreatedEvent(str(photo_path)))
    handler.on_created(FileCreatedEvent(str(photo_path.with_suffix('.txt'))))
    assert handler.queue.qsize() == 1


def test_segment_command(tmpdir, photo_path):
    model = torch.nn.Conv2d(3, 5, kernel_size=1)
    model_path = Path(tmpdir) / 'model.pth'
    torch.save(model, model_path)
    main(['config', '--input-size', '16', '16'])

    out_dir = Path(tmpdir) / 'output'
    main(['segment', '--model-path', str(model_path), '--output-dir', str(out_dir), str(photo_path)])
    assert iio.imread(out_dir / 'wound-class-image.png').shape == (16, 16, 4)
    assert iio.imread(out_dir / 'wound-class-overlay.png').shape == (4, 6, 3)
    assert (out_dir / 'wound-legend.json').is_file()

    details = [json.loads(line) for line in (out_dir / 'segmentation-details.json').read_text().splitlines()]
    assert len(details) == 1
    assert details[0]['image-path'] == str(photo_path)
    assert abs(sum(t['fraction'] for t in details[0]['tissues'].values()) - 1) < 1e-6


def test_handler_skips_model_errors(fixed_segmenter, photo_path):
    class BrokenSegmenter(FixedSegmenter):
        def perform_segmentation(self, image_data):
            raise RuntimeError('Given groups=1, expected input to have 3 channels')

    handler = PhotoEventHandler(BrokenSegmenter(fixed_segmenter.scores.read_block(2, 2, 3)), timeout=5)
    handler.submit_file(photo_path, datetime.now())
    handler.queue.put(None)
    assert list(handler.iterate_results()) == []

    # The service keeps processing after a failure
    handler.segmenter = fixed_segmenter
    handler.submit_file(photo_path, datetime.now())
    handler.queue.put(None)
    assert len(list(handler.iterate_results())) == 1
