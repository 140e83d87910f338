"""
Shared constants and defaults for the digit recognition feature pipeline.

The model input shapes below are a contract with the exported classifiers and
must not change between training and inference.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Tuple

# Speech features: 1 second at 16 kHz -> 128 mel bands x 32 frames.
SAMPLE_RATE = 16000
N_FFT = 1024
HOP_LENGTH = 512
N_MELS = 128
N_FRAMES = 32
RECORD_SECONDS = 1.0

# Handwriting features (MNIST convention).
IMAGE_SIZE = 28
TARGET_INK_SIZE = 20
MNIST_MEAN = 0.1307
MNIST_STD = 0.3081

# Empirical values from the drawing canvas; kept configurable on ImageConfig.
INK_THRESHOLD = 0.12
MARGIN_FRACTION = 0.2

NUM_CLASSES = 10
TOP_K = 5
EVAL_PROGRESS_EVERY = 10

IMAGE_INPUT_SHAPE: Tuple[int, int, int, int] = (1, 1, IMAGE_SIZE, IMAGE_SIZE)
SPEECH_INPUT_SHAPE: Tuple[int, int, int, int] = (1, 1, N_MELS, N_FRAMES)

CLASS_NAMES: List[str] = [str(i) for i in range(NUM_CLASSES)]

# Spoken / written forms accepted when reading a digit out of a transcript.
DIGIT_WORDS: Dict[str, int] = {
    "0": 0,
    "1": 1,
    "2": 2,
    "3": 3,
    "4": 4,
    "5": 5,
    "6": 6,
    "7": 7,
    "8": 8,
    "9": 9,
    "零": 0,
    "一": 1,
    "二": 2,
    "三": 3,
    "四": 4,
    "五": 5,
    "六": 6,
    "七": 7,
    "八": 8,
    "九": 9,
    "zero": 0,
    "one": 1,
    "two": 2,
    "three": 3,
    "four": 4,
    "five": 5,
    "six": 6,
    "seven": 7,
    "eight": 8,
    "nine": 9,
}


@dataclass(frozen=True)
class SpeechConfig:
    """Framing and filterbank parameters for the speech model input."""

    sample_rate: int = SAMPLE_RATE
    n_fft: int = N_FFT
    hop_length: int = HOP_LENGTH
    n_mels: int = N_MELS
    n_frames: int = N_FRAMES

    @property
    def n_bins(self) -> int:
        return self.n_fft // 2 + 1

    @property
    def input_shape(self) -> Tuple[int, int, int, int]:
        return (1, 1, self.n_mels, self.n_frames)


@dataclass(frozen=True)
class ImageConfig:
    """Canvas conditioning parameters for the handwriting model input."""

    size: int = IMAGE_SIZE
    target_ink_size: int = TARGET_INK_SIZE
    ink_threshold: float = INK_THRESHOLD
    margin_fraction: float = MARGIN_FRACTION
    mean: float = MNIST_MEAN
    std: float = MNIST_STD

    @property
    def input_shape(self) -> Tuple[int, int, int, int]:
        return (1, 1, self.size, self.size)


DEFAULT_SPEECH_CONFIG = SpeechConfig()
DEFAULT_IMAGE_CONFIG = ImageConfig()
