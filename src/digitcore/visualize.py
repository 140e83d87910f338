"""
Plots for inspecting features and evaluation results.
"""

from __future__ import annotations

from typing import Optional

import matplotlib.pyplot as plt
import numpy as np
import seaborn as sns
from PIL import Image

from .constants import DEFAULT_SPEECH_CONFIG, SpeechConfig
from .scoring import ConfusionMatrix


def _finish(fig, save_path: Optional[str]):
    fig.tight_layout()
    if save_path:
        fig.savefig(save_path, dpi=120)
    return fig


def plot_confusion_matrix(matrix: ConfusionMatrix, title: str = "Handwriting model", save_path: Optional[str] = None):
    """Heatmap of true (rows) against predicted (columns) counts."""
    fig, ax = plt.subplots(figsize=(6, 5))
    sns.heatmap(matrix.to_array(), annot=True, fmt="d", ax=ax, cmap="Blues", cbar=False)
    ax.set_title(f"{title}\nAccuracy: {matrix.accuracy:.4f} ({matrix.correct}/{matrix.total})")
    ax.set_xlabel("Predicted")
    ax.set_ylabel("Actual")
    return _finish(fig, save_path)


def plot_mel_spectrogram(
    tensor: np.ndarray,
    config: SpeechConfig = DEFAULT_SPEECH_CONFIG,
    save_path: Optional[str] = None,
):
    """Show a flat mel tensor as a log-power image (low bands at the bottom)."""
    mel = np.asarray(tensor, dtype=np.float32).reshape(config.n_mels, config.n_frames)
    fig, ax = plt.subplots(figsize=(5, 6))
    im = ax.imshow(np.log10(mel + 1e-10), origin="lower", aspect="auto", cmap="magma")
    ax.set_xlabel("Frame")
    ax.set_ylabel("Mel band")
    ax.set_title("Mel power (log10)")
    fig.colorbar(im, ax=ax)
    return _finish(fig, save_path)


def plot_preview(preview: Image.Image, save_path: Optional[str] = None):
    fig, ax = plt.subplots(figsize=(3, 3))
    ax.imshow(np.asarray(preview), cmap="gray", vmin=0, vmax=255)
    ax.set_title("Model input (28x28)")
    ax.axis("off")
    return _finish(fig, save_path)
