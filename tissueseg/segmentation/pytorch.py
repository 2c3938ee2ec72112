"""Implementation using PyTorch"""
from hashlib import md5
from pathlib import Path
from typing import Optional, Tuple, Union
import logging

from skimage import color
import albumentations as albu
import numpy as np
import requests
import torch

from tissueseg.exceptions import ModelInitializationError
from tissueseg.segmentation import BaseSegmenter, ScoreTensor

logger = logging.getLogger(__name__)

# Models are cached by path so that repeated segmenters share one copy
_models: dict = {}
_model_dir = Path(__file__).parent.joinpath('files')


def download_model(url: str, path: Path):
    """Download a model to local storage

    Args:
        url: Address of the serialized model
        path: Where to write the model
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with requests.get(url, stream=True) as r:
        r.raise_for_status()
        with open(path, 'wb') as f:
            for chunk in r.iter_content(chunk_size=8192):
                f.write(chunk)


def _resolve_model_path(model_path: Union[str, Path]) -> Path:
    """Find a model file given by the user

    Paths are relative to the working directory. Bare file names that are not
    found there refer to the models stored with the package.
    """
    path = Path(model_path)
    if path.is_absolute() or path.is_file():
        return path.absolute()
    if path.parent == Path('.'):
        return _model_dir / path
    return path.absolute()


class PyTorchSegmenter(BaseSegmenter):
    """Interface for tissue segmentation models serialized with ``torch.save``

    The model must map a batch of normalized RGB images, shape (N, 3, H, W), to per-class
    scores of shape (N, C, H, W).
    """

    def __init__(
            self,
            model_path: Union[str, Path] = 'tissue_segmentation.pth',
            input_size: Tuple[int, int] = (224, 224),
            model_url: Optional[str] = None,
    ):
        """
        Args:
            model_path: Path to the model. A bare file name which is not in the working directory
                is looked up in the package model directory
            input_size: Height and width of the images expected by the model
            model_url: Address from which to download the model if it is not found locally
        """
        self.model_path = _resolve_model_path(model_path)
        if not self.model_path.is_file() and model_url is not None:
            logger.info(f'Downloading model from {model_url}')
            try:
                download_model(model_url, self.model_path)
            except requests.RequestException as e:
                raise ModelInitializationError(f'Failed to download model from {model_url}') from e
        self.input_size = tuple(input_size)

        # Resize then scale pixels from [0, 255] to [-1, 1]
        height, width = self.input_size
        self.preprocess = albu.Compose([
            albu.Resize(height, width),
            albu.Normalize(mean=(0.5, 0.5, 0.5), std=(0.5, 0.5, 0.5), max_pixel_value=255.0),
        ])

    def transform_standard_image(self, image_data: np.ndarray) -> np.ndarray:
        # Convert to RGB
        image = np.asarray(image_data)
        if image.ndim == 2:
            image = color.gray2rgb(image)
        elif image.shape[-1] == 4:
            image = image[..., :3]
        image = np.ascontiguousarray(image, dtype=np.uint8)

        # Resize, normalize, then move channels first
        image = self.preprocess(image=image)['image']
        return image.transpose(2, 0, 1).astype(np.float32)

    def _load_model(self, device: str) -> torch.nn.Module:
        key = (str(self.model_path), device)
        if key not in _models:
            # Make sure the model exists
            if not self.model_path.is_file():
                raise ModelInitializationError(f'Cannot find the model. No such file: {self.model_path}')

            # Get the model hash to help with reproducibility
            with open(self.model_path, 'rb') as fp:
                hsh = md5()
                while len(line := fp.read(4096 * 1024)) > 0:
                    hsh.update(line)
            logger.info(f'Loading the model from {self.model_path}. MD5 Hash: {hsh.hexdigest()}')

            try:
                model = torch.load(str(self.model_path), map_location=device, weights_only=False)
            except Exception as e:
                raise ModelInitializationError(f'Failed to load model from {self.model_path}: {e}') from e
            if not isinstance(model, torch.nn.Module):
                raise ModelInitializationError(f'{self.model_path} does not contain a torch module')
            model.eval()
            _models[key] = model
            logger.info('Model loaded.')
        return _models[key]

    def perform_segmentation(self, image_data: np.ndarray) -> ScoreTensor:
        # Determine the device at runtime
        device = 'cuda' if torch.cuda.is_available() else 'cpu'
        model = self._load_model(device)

        # Push the image to device
        x_tensor = torch.from_numpy(image_data).to(device).unsqueeze(0)

        # Run prediction and get it back from the CPU
        with torch.no_grad():
            scores = model(x_tensor)
        return ScoreTensor.from_chw(scores.cpu().numpy())
