"""
Spectral features for the speech digit model.

Implements an in-place radix-2 FFT, the triangular mel filterbank and the
128x32 mel power spectrogram consumed by the speech classifier.
"""

from __future__ import annotations

import logging
import math
from functools import lru_cache

import numpy as np

from .constants import DEFAULT_SPEECH_CONFIG, SpeechConfig

logger = logging.getLogger(__name__)


def _is_power_of_two(n: int) -> bool:
    return n > 0 and (n & (n - 1)) == 0


def hz_to_mel(hz):
    return 2595.0 * np.log10(1.0 + np.asarray(hz, dtype=np.float64) / 700.0)


def mel_to_hz(mel):
    return 700.0 * (10.0 ** (np.asarray(mel, dtype=np.float64) / 2595.0) - 1.0)


@lru_cache(maxsize=None)
def _bit_reverse_indices(n: int) -> np.ndarray:
    """Index permutation that maps position i to its bit-reversed position."""
    indices = np.arange(n)
    j = 0
    for i in range(1, n):
        bit = n >> 1
        while j & bit:
            j ^= bit
            bit >>= 1
        j ^= bit
        if i < j:
            indices[i], indices[j] = indices[j], indices[i]
    indices.setflags(write=False)
    return indices


def fft_in_place(re: np.ndarray, im: np.ndarray) -> None:
    """
    Forward FFT (iterative radix-2 Cooley-Tukey) overwriting ``re`` and ``im``.

    Both arrays must be one-dimensional, writeable and of the same power-of-two
    length. No normalization is applied.
    """
    if re.ndim != 1 or re.shape != im.shape:
        raise ValueError(f"FFT expects two 1-D arrays of equal length, got {re.shape} and {im.shape}")
    n = re.shape[0]
    if not _is_power_of_two(n):
        raise ValueError(f"FFT length must be a power of two, got {n}")

    perm = _bit_reverse_indices(n)
    re[:] = re[perm]
    im[:] = im[perm]

    length = 2
    while length <= n:
        half = length // 2
        angle = -2.0 * math.pi / length
        w_len_re = math.cos(angle)
        w_len_im = math.sin(angle)
        w_re, w_im = 1.0, 0.0
        # Every block of this stage shares the twiddle for offset j.
        for j in range(half):
            top = slice(j, n, length)
            bottom = slice(j + half, n, length)
            u_re = re[top].copy()
            u_im = im[top].copy()
            b_re = re[bottom]
            b_im = im[bottom]
            v_re = b_re * w_re - b_im * w_im
            v_im = b_re * w_im + b_im * w_re
            re[top] = u_re + v_re
            im[top] = u_im + v_im
            re[bottom] = u_re - v_re
            im[bottom] = u_im - v_im
            w_re, w_im = w_re * w_len_re - w_im * w_len_im, w_re * w_len_im + w_im * w_len_re
        length <<= 1


def power_spectrum(frame: np.ndarray) -> np.ndarray:
    """Power of the non-redundant half (n/2 + 1 bins) of a real frame's spectrum."""
    re = np.array(frame, dtype=np.float32)
    im = np.zeros_like(re)
    fft_in_place(re, im)
    n_bins = re.shape[0] // 2 + 1
    return re[:n_bins] * re[:n_bins] + im[:n_bins] * im[:n_bins]


def hann_window(n: int) -> np.ndarray:
    i = np.arange(n, dtype=np.float64)
    return (0.5 - 0.5 * np.cos(2.0 * np.pi * i / (n - 1))).astype(np.float32)


def mel_filterbank(sample_rate: int, n_fft: int, n_mels: int) -> np.ndarray:
    """
    Triangular mel filters covering 0 Hz to Nyquist.

    Returns an array of shape (n_mels, n_fft // 2 + 1). Bands whose edges
    collapse onto the same FFT bin come out as all-zero rows.
    """
    n_bins = n_fft // 2 + 1
    mel_min = hz_to_mel(0.0)
    mel_max = hz_to_mel(sample_rate / 2.0)
    mel_points = mel_min + np.arange(n_mels + 2) * (mel_max - mel_min) / (n_mels + 1)
    hz_points = mel_to_hz(mel_points)
    bins = np.floor((n_fft + 1) * hz_points / sample_rate).astype(int)

    filters = np.zeros((n_mels, n_bins), dtype=np.float32)
    for m in range(1, n_mels + 1):
        left, center, right = int(bins[m - 1]), int(bins[m]), int(bins[m + 1])
        if right <= left:
            continue
        row = filters[m - 1]
        for k in range(max(left, 0), min(center, n_bins)):
            row[k] = (k - left) / max(1, center - left)
        for k in range(max(center, 0), min(right, n_bins)):
            row[k] = (right - k) / max(1, right - center)
    return filters


@lru_cache(maxsize=None)
def _cached_window(n_fft: int) -> np.ndarray:
    logger.debug("Building Hann window (n=%d)", n_fft)
    window = hann_window(n_fft)
    window.setflags(write=False)
    return window


@lru_cache(maxsize=None)
def _cached_filters(sample_rate: int, n_fft: int, n_mels: int) -> np.ndarray:
    logger.debug("Building mel filterbank (sr=%d, n_fft=%d, n_mels=%d)", sample_rate, n_fft, n_mels)
    filters = mel_filterbank(sample_rate, n_fft, n_mels)
    filters.setflags(write=False)
    return filters


def get_window(n_fft: int = DEFAULT_SPEECH_CONFIG.n_fft) -> np.ndarray:
    """Shared read-only Hann window, built on first use."""
    return _cached_window(int(n_fft))


def get_mel_filters(config: SpeechConfig = DEFAULT_SPEECH_CONFIG) -> np.ndarray:
    """Shared read-only mel filterbank, built on first use."""
    return _cached_filters(config.sample_rate, config.n_fft, config.n_mels)


def mel_spectrogram(samples: np.ndarray, config: SpeechConfig = DEFAULT_SPEECH_CONFIG) -> np.ndarray:
    """
    Mel power spectrogram of a 16 kHz buffer as a flat float32 tensor.

    The signal is zero-padded by n_fft/2 on both sides and framed with the
    configured hop; exactly ``n_frames`` frames are taken whatever the input
    length. The result has ``n_mels * n_frames`` values in mel-major order.
    """
    samples = np.asarray(samples, dtype=np.float32).ravel()
    n_fft = config.n_fft
    pad = n_fft // 2
    needed = (config.n_frames - 1) * config.hop_length + n_fft
    padded = np.zeros(max(needed, samples.size + 2 * pad), dtype=np.float32)
    padded[pad:pad + samples.size] = samples

    window = get_window(n_fft)
    filters = get_mel_filters(config)

    out = np.zeros((config.n_mels, config.n_frames), dtype=np.float32)
    for t in range(config.n_frames):
        start = t * config.hop_length
        frame = padded[start:start + n_fft] * window
        out[:, t] = filters @ power_spectrum(frame)
    return out.ravel()
