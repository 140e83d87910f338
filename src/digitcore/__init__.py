"""
Digit recognition feature pipeline.

Converts microphone audio and drawing-canvas pixels into the fixed-shape
tensors used by the pre-trained speech and handwriting digit classifiers, and
turns their raw scores back into ranked digits and accuracy statistics.
"""

from .audio import AudioBuffer
from .image import CanvasTensor, preprocess_canvas
from .pipeline import DigitRecognizer, Recognition
from .scoring import ConfusionMatrix, RankedDigit, softmax, top_k
from .spectral import fft_in_place, mel_spectrogram

__version__ = "1.0.0"

__all__ = [
    "AudioBuffer",
    "CanvasTensor",
    "ConfusionMatrix",
    "DigitRecognizer",
    "RankedDigit",
    "Recognition",
    "fft_in_place",
    "mel_spectrogram",
    "preprocess_canvas",
    "softmax",
    "top_k",
]
