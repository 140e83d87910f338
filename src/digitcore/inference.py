"""
Boundary with the classifier runtime.

A session takes a flat float32 tensor of a declared shape and returns one raw
score per digit class. The feature pipeline never looks inside the model.
"""

from __future__ import annotations

import logging
from typing import Callable, Sequence, Tuple

import numpy as np

from .constants import IMAGE_INPUT_SHAPE, NUM_CLASSES, SPEECH_INPUT_SHAPE

# TensorFlow is only needed to run saved Keras models; the feature pipeline
# works without it. KerasSession raises a clear error when it is missing.
try:
    import tensorflow as tf  # type: ignore
    from tensorflow import keras  # type: ignore

    _TF_AVAILABLE = True
    _TF_IMPORT_ERROR = None
except Exception as exc:  # pragma: no cover - environment dependent
    tf = None  # type: ignore
    keras = None  # type: ignore
    _TF_AVAILABLE = False
    _TF_IMPORT_ERROR = exc

logger = logging.getLogger(__name__)


def _ensure_tf() -> None:
    if not _TF_AVAILABLE:
        raise ImportError(
            "TensorFlow is required to run Keras digit models but is not available. "
            f"Original import error: {_TF_IMPORT_ERROR}"
        )


class InferenceError(RuntimeError):
    """The classifier runtime failed or returned an unusable result."""


class InferenceSession:
    """Validates tensor shapes around a model-specific ``_forward``."""

    def __init__(self, input_shape: Sequence[int], num_classes: int = NUM_CLASSES) -> None:
        self.input_shape: Tuple[int, ...] = tuple(int(d) for d in input_shape)
        self.num_classes = int(num_classes)

    @property
    def input_size(self) -> int:
        return int(np.prod(self.input_shape))

    def _forward(self, batch: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def run(self, tensor: np.ndarray) -> np.ndarray:
        """Score one flat tensor; returns ``num_classes`` float32 logits."""
        data = np.asarray(tensor, dtype=np.float32)
        if data.size != self.input_size:
            raise ValueError(
                f"Input tensor has {data.size} values, expected {self.input_size} for shape {self.input_shape}"
            )
        try:
            output = self._forward(data.reshape(self.input_shape))
        except InferenceError:
            raise
        except Exception as e:
            raise InferenceError(f"Inference failed: {e}") from e

        logits = np.asarray(output, dtype=np.float32).ravel()
        if logits.size != self.num_classes:
            raise InferenceError(f"Model returned {logits.size} scores, expected {self.num_classes}")
        return logits


class CallableSession(InferenceSession):
    """Session backed by any callable mapping an input batch to scores."""

    def __init__(
        self,
        fn: Callable[[np.ndarray], np.ndarray],
        input_shape: Sequence[int],
        num_classes: int = NUM_CLASSES,
    ) -> None:
        super().__init__(input_shape, num_classes)
        self.fn = fn

    def _forward(self, batch: np.ndarray) -> np.ndarray:
        return self.fn(batch)


class KerasSession(InferenceSession):
    """Saved Keras model (.keras / .h5) served through TensorFlow."""

    def __init__(
        self,
        model_path: str,
        input_shape: Sequence[int],
        channels_last: bool = True,
        num_classes: int = NUM_CLASSES,
    ) -> None:
        _ensure_tf()
        super().__init__(input_shape, num_classes)
        self.model_path = model_path
        self.channels_last = channels_last
        logger.info("Loading Keras model from %s", model_path)
        self.model = keras.models.load_model(model_path, compile=False)

    def _forward(self, batch: np.ndarray) -> np.ndarray:
        if self.channels_last and batch.ndim == 4:
            # NCHW -> NHWC
            batch = np.transpose(batch, (0, 2, 3, 1))
        return self.model.predict(batch, verbose=0)


def load_session(model_path: str, kind: str, channels_last: bool = True) -> KerasSession:
    """Open a Keras session for the ``"image"`` or ``"speech"`` input contract."""
    shapes = {"image": IMAGE_INPUT_SHAPE, "speech": SPEECH_INPUT_SHAPE}
    if kind not in shapes:
        raise ValueError(f"Unknown model kind '{kind}' (expected one of {sorted(shapes)})")
    return KerasSession(model_path, shapes[kind], channels_last=channels_last)
