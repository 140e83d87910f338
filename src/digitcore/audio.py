"""
Audio conditioning for the speech digit model.

Brings captured or decoded audio of any rate and length to the canonical
1 second / 16 kHz buffer expected by :func:`digitcore.spectral.mel_spectrogram`.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np
import soundfile as sf

from .constants import DEFAULT_SPEECH_CONFIG, RECORD_SECONDS, SpeechConfig
from .spectral import mel_spectrogram

logger = logging.getLogger(__name__)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class AudioBuffer:
    """Mono float32 samples paired with their sample rate in Hz."""

    samples: np.ndarray
    sample_rate: int

    def __post_init__(self) -> None:
        if int(self.sample_rate) <= 0:
            raise ValueError(f"Sample rate must be positive, got {self.sample_rate}")
        object.__setattr__(self, "samples", np.asarray(self.samples, dtype=np.float32).ravel())
        object.__setattr__(self, "sample_rate", int(self.sample_rate))

    @property
    def duration(self) -> float:
        return self.samples.size / float(self.sample_rate)


def to_mono(data: np.ndarray) -> np.ndarray:
    """Average a (frames, channels) array down to one channel."""
    data = np.asarray(data, dtype=np.float32)
    if data.ndim == 1:
        return data
    if data.ndim != 2:
        raise ValueError(f"Expected (frames, channels) audio, got shape {data.shape}")
    if data.shape[1] == 1:
        return data[:, 0].copy()
    return data.mean(axis=1).astype(np.float32)


def load_audio_file(path: str) -> AudioBuffer:
    """Decode an audio file to a mono buffer at its native rate."""
    data, rate = sf.read(path, dtype="float32", always_2d=False)
    logger.info("Decoded %s: %d frames at %d Hz", path, len(data), rate)
    return AudioBuffer(to_mono(data), int(rate))


def resample_linear(samples: np.ndarray, source_rate: int, target_rate: int) -> np.ndarray:
    """
    Linear-interpolation resampler.

    Returns the input object unchanged when the rates match. Otherwise the
    output holds ``max(1, round(len * target / source))`` samples; the last
    input sample is held rather than extrapolated.
    """
    if source_rate <= 0 or target_rate <= 0:
        raise ValueError(f"Sample rates must be positive, got {source_rate} -> {target_rate}")
    if source_rate == target_rate:
        return samples

    x = np.asarray(samples, dtype=np.float32).ravel()
    ratio = target_rate / source_rate
    out_len = max(1, _round_half_up(x.size * ratio))
    pos = np.arange(out_len, dtype=np.float64) / ratio
    idx = np.floor(pos).astype(np.int64)
    frac = pos - idx

    a = np.zeros(out_len, dtype=np.float64)
    valid = idx < x.size
    a[valid] = x[idx[valid]]
    b = a.copy()
    has_next = idx + 1 < x.size
    b[has_next] = x[idx[has_next] + 1]
    return (a + (b - a) * frac).astype(np.float32)


def take_or_pad(samples: np.ndarray, length: int) -> np.ndarray:
    """Keep the first ``length`` samples, zero-filling the tail when short."""
    if length < 0:
        raise ValueError(f"Target length must be non-negative, got {length}")
    x = np.asarray(samples, dtype=np.float32).ravel()
    if x.size == length:
        return x
    out = np.zeros(length, dtype=np.float32)
    n = min(x.size, length)
    out[:n] = x[:n]
    return out


def take_center_segment(samples: np.ndarray, length: int) -> np.ndarray:
    """Centered slice of ``length`` samples; shorter input is zero-padded at the end."""
    x = np.asarray(samples, dtype=np.float32).ravel()
    if x.size <= length:
        return take_or_pad(x, length)
    start = (x.size - length) // 2
    return x[start:start + length]


def prepare_recording(buffer: AudioBuffer, config: SpeechConfig = DEFAULT_SPEECH_CONFIG) -> np.ndarray:
    """Microphone capture: keep the first second, then resample and fix the length."""
    head = take_or_pad(buffer.samples, _round_half_up(buffer.sample_rate * RECORD_SECONDS))
    resampled = resample_linear(head, buffer.sample_rate, config.sample_rate)
    return take_or_pad(resampled, config.sample_rate)


def prepare_clip(buffer: AudioBuffer, config: SpeechConfig = DEFAULT_SPEECH_CONFIG) -> np.ndarray:
    """Decoded file: resample, then take the centered second."""
    resampled = resample_linear(buffer.samples, buffer.sample_rate, config.sample_rate)
    centered = take_center_segment(resampled, config.sample_rate)
    return take_or_pad(centered, config.sample_rate)


def speech_input_tensor(
    buffer: AudioBuffer,
    source: str = "file",
    config: SpeechConfig = DEFAULT_SPEECH_CONFIG,
) -> np.ndarray:
    """Flat mel tensor for the speech model from a recording or a decoded file."""
    if source == "recording":
        fixed = prepare_recording(buffer, config)
    elif source == "file":
        fixed = prepare_clip(buffer, config)
    else:
        raise ValueError(f"Unknown audio source '{source}' (expected 'recording' or 'file')")
    if not fixed.any():
        logger.debug("Speech input is silent")
    return mel_spectrogram(fixed, config)
