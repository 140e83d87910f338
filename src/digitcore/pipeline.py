"""
High-level recognition flow: conditioning -> classifier session -> ranking.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
from PIL import Image

from .audio import AudioBuffer, speech_input_tensor
from .constants import DEFAULT_IMAGE_CONFIG, DEFAULT_SPEECH_CONFIG, TOP_K, ImageConfig, SpeechConfig
from .image import preprocess_canvas
from .inference import InferenceSession
from .scoring import RankedDigit, softmax, top_k

logger = logging.getLogger(__name__)


@dataclass
class Recognition:
    """Outcome of one recognition request. ``digit`` is None when there was nothing to score."""

    digit: Optional[int]
    ranked: List[RankedDigit] = field(default_factory=list)
    has_input: bool = True
    preview: Optional[Image.Image] = None
    features: Optional[np.ndarray] = None


class DigitRecognizer:
    """Recognise handwritten canvases and spoken digits with pre-trained sessions."""

    def __init__(
        self,
        image_session: Optional[InferenceSession] = None,
        speech_session: Optional[InferenceSession] = None,
        top_k: int = TOP_K,
        image_config: ImageConfig = DEFAULT_IMAGE_CONFIG,
        speech_config: SpeechConfig = DEFAULT_SPEECH_CONFIG,
    ) -> None:
        self.image_session = image_session
        self.speech_session = speech_session
        self.top_k = int(top_k)
        self.image_config = image_config
        self.speech_config = speech_config

    def rank_logits(self, logits: np.ndarray) -> List[RankedDigit]:
        return top_k(softmax(logits), self.top_k)

    def _score(self, session: InferenceSession, tensor: np.ndarray) -> List[RankedDigit]:
        return self.rank_logits(session.run(tensor))

    def recognize_canvas(self, canvas: np.ndarray) -> Recognition:
        if self.image_session is None:
            raise ValueError("No image model session configured")
        prepared = preprocess_canvas(canvas, self.image_config)
        if not prepared.has_ink:
            logger.info("Blank canvas, skipping recognition")
            return Recognition(digit=None, has_input=False, preview=prepared.preview, features=prepared.tensor)
        ranked = self._score(self.image_session, prepared.tensor)
        return Recognition(
            digit=ranked[0].digit if ranked else None,
            ranked=ranked,
            preview=prepared.preview,
            features=prepared.tensor,
        )

    def recognize_audio(self, buffer: AudioBuffer, source: str = "file") -> Recognition:
        if self.speech_session is None:
            raise ValueError("No speech model session configured")
        mel = speech_input_tensor(buffer, source, self.speech_config)
        ranked = self._score(self.speech_session, mel)
        return Recognition(
            digit=ranked[0].digit if ranked else None,
            ranked=ranked,
            features=mel,
        )
