from argparse import ArgumentParser
from datetime import datetime
from typing import Iterator, List, Optional, Tuple, Union
from pathlib import Path
from queue import Queue
from time import sleep
import logging
import json
import re

from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler, FileCreatedEvent, DirCreatedEvent

from tissueseg.analysis import analyze_composition
from tissueseg.io import load_photo, save_results
from tissueseg.palette import Palette, TISSUE_PALETTE
from tissueseg.pipeline import SegmentationResults, segment_photo
from tissueseg.segmentation import BaseSegmenter
from tissueseg.segmentation.pytorch import PyTorchSegmenter

logger = logging.getLogger(__name__)
_config_path = Path(__file__).parent.joinpath('config.json')

_default_config = {
    'model_path': 'tissue_segmentation.pth',
    'model_url': None,
    'input_size': [224, 224],
    'labels_path': None,
    'overlay_alpha': 0.5,
    'softmax': False,
    'inference_timeout': 60.,
}


def _load_config() -> dict:
    """Read the settings, filling in defaults for anything not set"""
    config = dict(_default_config)
    if _config_path.is_file():
        with open(_config_path, 'r') as fp:
            config.update(json.load(fp))
    return config


def _set_config(**settings):
    """Update the stored configuration with any settings which are not ``None``"""

    # Read in the current configuration
    if _config_path.is_file():
        logger.info(f'Loading previous settings from {_config_path}')
        with open(_config_path, 'r') as fp:
            config = json.load(fp)
    else:
        config = {}

    # Define the configuration settings
    for key, value in settings.items():
        if key not in _default_config:
            raise ValueError(f'Unknown setting: {key}')
        if value is not None:
            config[key] = value

    # Print out the configuration settings
    for key, value in config.items():
        logger.info(f'New setting for {key}: {value}')

    # Save it
    with open(_config_path, 'w') as fp:
        json.dump(config, fp, indent=2)
    logger.info(f'Wrote configuration to {_config_path}')


def _make_palette(config: dict) -> Palette:
    if config['labels_path'] is None:
        return TISSUE_PALETTE
    return TISSUE_PALETTE.with_labels_from_json(config['labels_path'])


def _write_details(data_path: Path, img_path: Path, results: SegmentationResults,
                   palette: Palette, written: dict, **extra):
    """Append a JSON summary of one segmentation to a log file"""
    details = analyze_composition(results.maps, palette)
    details['image-path'] = str(img_path)
    details['outputs'] = dict((k, str(v)) for k, v in written.items())
    details['completed_time'] = datetime.now().isoformat()
    details.update(extra)
    with data_path.open('a') as fp:
        print(json.dumps(details), file=fp)


class PhotoEventHandler(FileSystemEventHandler):
    """Segment photos as they are written into a directory

    New files are pushed to a queue when detected, and processed in the order
    they arrived by :meth:`iterate_results`.
    """

    def __init__(self, segmenter: BaseSegmenter, file_regex: Optional[str] = None,
                 palette: Palette = TISSUE_PALETTE, alpha: float = 0.5, use_softmax: bool = False,
                 timeout: Optional[float] = None, settle_time: float = 1.):
        """
        Args:
            segmenter: Description of the segmentation tool
            file_regex: Regex string to match file names
            palette: Labels and colors for the tissue classes
            alpha: Opacity of the segmentation images in the overlays
            use_softmax: Whether to convert scores to probabilities before decoding
            timeout: Maximum time to wait for the model on each photo, in seconds
            settle_time: Time to wait after a file is created before reading it, in seconds
        """
        self.segmenter = segmenter
        self.palette = palette
        self.alpha = alpha
        self.use_softmax = use_softmax
        self.timeout = timeout
        self.settle_time = settle_time
        self._queue = Queue()
        self.index = 0
        self.file_regex = re.compile(file_regex) if file_regex is not None else None

    @property
    def queue(self):
        """Queue used to store photos waiting to be processed"""
        return self._queue

    def submit_file(self, file_path: Union[str, Path], detect_time: datetime):
        """Submit a file to be analyzed

        Args:
            file_path: Path to the file to be analyzed
            detect_time: Time at which a file was detected
        """
        self.index += 1
        self.queue.put((detect_time, Path(file_path)))

    def iterate_results(self) -> Iterator[Tuple[Path, SegmentationResults, float, datetime]]:
        """Iterate over results from processed photos

        Photos which fail to process are logged and skipped.
        Iteration ends when ``None`` is placed on the queue.

        Yields:
            - Path to the original photo
            - Segmentation images and legends
            - Time between file detection and result being ready, seconds
            - Time the photo was first detected
        """
        for detect_time, img_path in iter(self.queue.get, None):
            try:
                photo = load_photo(img_path)
                logger.info(f'Read a {photo.shape[1]}x{photo.shape[0]} photo from {img_path}')
                results = segment_photo(self.segmenter, photo, timeout=self.timeout,
                                        use_softmax=self.use_softmax, alpha=self.alpha,
                                        class_palette=self.palette)
            except Exception as e:
                logger.warning(f'Segmentation of {img_path} failed. Error: {e}')
                continue
            rtt = (datetime.now() - detect_time).total_seconds()

            yield img_path, results, rtt, detect_time

    def on_created(self, event: Union[FileCreatedEvent, DirCreatedEvent]):
        # Ignore directories
        if event.is_directory:
            logger.info('Created object is a directory. Skipping')
            return

        detect_time = datetime.now()
        file_path = Path(event.src_path)

        # Match the filename
        if self.file_regex is not None and self.file_regex.match(file_path.name.lower()) is None:
            logger.info(f'Filename "{file_path}" did not match regex. Skipping')
            return

        # Give the writer time to finish
        sleep(self.settle_time)
        self.submit_file(file_path, detect_time)


def main(args: Optional[List[str]] = None):
    """Segment wound photos, either given on the command line or as they appear in a directory"""

    # Make the argument parser
    parser = ArgumentParser()
    subparsers = parser.add_subparsers(dest='command', help='What to do', required=True)

    # Add in the configuration settings
    config_parser = subparsers.add_parser('config', help='Define the settings used for segmentation')
    config_parser.add_argument('--model-path', help='Path to the serialized PyTorch model')
    config_parser.add_argument('--model-url', help='Address from which to download the model if missing')
    config_parser.add_argument('--input-size', nargs=2, type=int, metavar=('HEIGHT', 'WIDTH'),
                               help='Image size expected by the model')
    config_parser.add_argument('--labels-path', help='JSON file with a display name for each tissue class')
    config_parser.add_argument('--overlay-alpha', type=float, help='Opacity of segmentation over the photo')
    config_parser.add_argument('--softmax', action='store_true', default=None,
                               help='Convert scores to probabilities before decoding')
    config_parser.add_argument('--no-softmax', action='store_false', dest='softmax',
                               help='Decode the raw model scores')
    config_parser.add_argument('--inference-timeout', type=float, help='Maximum time to wait for the model, s')

    # Add in the one-shot segmentation
    segment_parser = subparsers.add_parser('segment', help='Segment photos and write the results')
    segment_parser.add_argument('--output-dir', default='.', help='Directory in which to write results')
    segment_parser.add_argument('--model-path', help='Path to the model, overriding the configuration')
    segment_parser.add_argument('photos', nargs='+', help='Photos to segment')

    # Add in the directory watcher
    watch_parser = subparsers.add_parser('watch', help='Segment photos as they are added to a directory')
    watch_parser.add_argument('--model-path', help='Path to the model, overriding the configuration')
    watch_parser.add_argument('--regex', default=r'.*\.(png|jpe?g|tiff?)$', help='Regex to match files')
    watch_parser.add_argument('--redo-existing', action='store_true', help='Submit any existing files in the directory')
    watch_parser.add_argument('watch_dir', help='Which directory to watch for new files')

    # Parse the input arguments
    args = parser.parse_args(args)

    # Make the logger
    logging.basicConfig(format='%(asctime)s - %(name)s - %(levelname)s - %(message)s', level=logging.INFO)

    # Handle the configuration
    if args.command == 'config':
        return _set_config(model_path=args.model_path, model_url=args.model_url, input_size=args.input_size,
                           labels_path=args.labels_path, overlay_alpha=args.overlay_alpha,
                           softmax=args.softmax, inference_timeout=args.inference_timeout)

    # Build the segmenter
    config = _load_config()
    if args.model_path is not None:
        config['model_path'] = args.model_path
    segmenter = PyTorchSegmenter(config['model_path'], input_size=config['input_size'],
                                 model_url=config['model_url'])
    palette = _make_palette(config)

    if args.command == 'segment':
        out_dir = Path(args.output_dir)
        for photo_path in map(Path, args.photos):
            photo = load_photo(photo_path)
            results = segment_photo(segmenter, photo, timeout=config['inference_timeout'],
                                    use_softmax=config['softmax'], alpha=config['overlay_alpha'],
                                    class_palette=palette)
            written = save_results(results, out_dir, photo_path.stem)
            _write_details(out_dir / 'segmentation-details.json', photo_path, results, palette, written)
            logger.info(f'Wrote results for {photo_path} to {out_dir}')
        return

    assert args.command == 'watch', f'Internal Error: The command "{args.command}" is not yet supported'

    # Prepare the event handler
    handler = PhotoEventHandler(segmenter, file_regex=args.regex, palette=palette,
                                alpha=config['overlay_alpha'], use_softmax=config['softmax'],
                                timeout=config['inference_timeout'])

    # Prepare the output directory
    watch_dir = Path(args.watch_dir)
    out_dir = watch_dir.joinpath('segmentations')
    out_dir.mkdir(exist_ok=True)

    # Launch the watcher
    obs = Observer()
    obs.schedule(handler, path=args.watch_dir, recursive=False)
    obs.start()

    # If desired, submit the existing files
    data_path = out_dir.joinpath('segmentation-details.json')
    if args.redo_existing:
        data_path.unlink(missing_ok=True)  # Delete any existing data
        for file in sorted(watch_dir.iterdir()):
            if file.is_file() and handler.file_regex.match(file.name.lower()) is not None:
                handler.submit_file(file, datetime.now())

    # Wait for results to complete
    try:
        for index, (img_path, results, rtt, detect_time) in enumerate(handler.iterate_results()):
            # Report the completed result
            logger.info(f'Result received for {index + 1}/{handler.index}. RTT: {rtt:.2f}s.'
                        f' Backlog: {handler.queue.qsize()}')

            # Save the images to disk
            written = save_results(results, out_dir, img_path.stem)
            logger.info(f'Wrote output files to: {out_dir}')

            # Write out the tissue information
            _write_details(data_path, img_path, results, palette, written,
                           rtt=rtt, detect_time=detect_time.isoformat())
    except KeyboardInterrupt:
        logger.info('Detected an interrupt. Stopping system')
    except BaseException:
        obs.stop()
        logger.warning('Unexpected failure!')
        raise

    # Shut down the file reader
    obs.stop()
    obs.join()
