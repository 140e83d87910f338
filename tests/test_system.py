"""
System tests for the digit recognition feature pipeline
Covers the spectral engine, audio and image conditioning, and scoring utilities
"""

import os
import sys
import tempfile
import unittest
import argparse
import time

import numpy as np
import soundfile as sf
from PIL import Image
from sklearn.metrics import confusion_matrix as sk_confusion_matrix

# Add src directory to path
sys.path.append(os.path.join(os.path.dirname(__file__), '..', 'src'))

from digitcore.audio import (AudioBuffer, load_audio_file, prepare_clip, prepare_recording,
                             resample_linear, speech_input_tensor, take_center_segment,
                             take_or_pad, to_mono)
from digitcore.constants import (MNIST_MEAN, MNIST_STD, N_FRAMES, N_MELS, SAMPLE_RATE,
                                 ImageConfig, SpeechConfig)
from digitcore.image import (BoundingBox, expand_bbox, find_ink_bbox, load_canvas,
                             normalize_mnist_pixels, preprocess_canvas)
from digitcore.scoring import ConfusionMatrix, argmax, softmax, top_k
from digitcore.spectral import (fft_in_place, get_mel_filters, get_window, hz_to_mel,
                                mel_filterbank, mel_spectrogram, mel_to_hz, power_spectrum)
from digitcore.transcript import extract_digit


def make_canvas(size=280):
    return np.full((size, size, 3), 255, dtype=np.uint8)


class TestFFT(unittest.TestCase):
    """Test the in-place radix-2 FFT"""

    def test_matches_reference_dft(self):
        rng = np.random.default_rng(0)
        x = rng.normal(size=256)
        re = x.copy()
        im = np.zeros_like(re)
        fft_in_place(re, im)
        expected = np.fft.fft(x)
        np.testing.assert_allclose(re, expected.real, atol=1e-9)
        np.testing.assert_allclose(im, expected.imag, atol=1e-9)

    def test_complex_input(self):
        rng = np.random.default_rng(1)
        re = rng.normal(size=64)
        im = rng.normal(size=64)
        expected = np.fft.fft(re + 1j * im)
        fft_in_place(re, im)
        np.testing.assert_allclose(re + 1j * im, expected, atol=1e-9)

    def test_pure_tone_peak(self):
        """A sinusoid on bin k has its dominant power at bin k"""
        n, k = 1024, 37
        tone = np.sin(2 * np.pi * k * np.arange(n) / n).astype(np.float32)
        self.assertEqual(int(np.argmax(power_spectrum(tone))), k)
        windowed = power_spectrum(tone * get_window(n))
        self.assertLessEqual(abs(int(np.argmax(windowed)) - k), 1)

    def test_power_spectrum_length(self):
        self.assertEqual(power_spectrum(np.zeros(1024, dtype=np.float32)).shape, (513,))

    def test_non_power_of_two_rejected(self):
        re = np.zeros(1000)
        im = np.zeros(1000)
        with self.assertRaises(ValueError):
            fft_in_place(re, im)

    def test_length_mismatch_rejected(self):
        with self.assertRaises(ValueError):
            fft_in_place(np.zeros(16), np.zeros(8))


class TestMelFilterbank(unittest.TestCase):
    """Test mel scale conversion and triangular filters"""

    def setUp(self):
        self.filters = get_mel_filters()

    @staticmethod
    def _bins(sample_rate, n_fft, n_mels):
        mel_min, mel_max = hz_to_mel(0.0), hz_to_mel(sample_rate / 2.0)
        mels = mel_min + np.arange(n_mels + 2) * (mel_max - mel_min) / (n_mels + 1)
        return np.floor((n_fft + 1) * mel_to_hz(mels) / sample_rate).astype(int)

    def test_mel_round_trip(self):
        hz = np.array([0.0, 440.0, 1000.0, 8000.0])
        np.testing.assert_allclose(mel_to_hz(hz_to_mel(hz)), hz, atol=1e-6)
        self.assertAlmostEqual(float(hz_to_mel(700.0)), 2595 * np.log10(2), places=6)

    def test_shape_and_non_negative(self):
        self.assertEqual(self.filters.shape, (N_MELS, 513))
        self.assertTrue((self.filters >= 0).all())
        self.assertLessEqual(float(self.filters.max()), 1.0)

    def test_zero_outside_band_support(self):
        bins = self._bins(SAMPLE_RATE, 1024, N_MELS)
        for m in range(N_MELS):
            left, right = bins[m], bins[m + 2]
            row = self.filters[m]
            outside = np.ones(row.shape, dtype=bool)
            outside[max(left, 0):right + 1] = False
            self.assertTrue((row[outside] == 0).all(), f"band {m} leaks outside [{left}, {right}]")

    def test_degenerate_bands_are_zero(self):
        filters = mel_filterbank(16000, 32, 40)
        bins = self._bins(16000, 32, 40)
        degenerate = [m for m in range(40) if bins[m + 2] <= bins[m]]
        self.assertGreater(len(degenerate), 0)
        for m in degenerate:
            self.assertFalse(filters[m].any())

    def test_caches_are_shared_and_read_only(self):
        self.assertIs(get_mel_filters(), self.filters)
        self.assertIs(get_window(), get_window())
        self.assertFalse(self.filters.flags.writeable)
        with self.assertRaises(ValueError):
            get_window()[0] = 1.0

    def test_hann_window_endpoints(self):
        window = get_window()
        self.assertEqual(window.shape, (1024,))
        self.assertAlmostEqual(float(window[0]), 0.0, places=6)
        self.assertAlmostEqual(float(window[-1]), 0.0, places=6)


class TestMelSpectrogram(unittest.TestCase):
    """Test the 128x32 mel spectrogram"""

    def test_shape_for_any_length(self):
        for length in (0, 1, 100, SAMPLE_RATE, 3 * SAMPLE_RATE):
            out = mel_spectrogram(np.ones(length, dtype=np.float32) * 0.1)
            self.assertEqual(out.shape, (N_MELS * N_FRAMES,))
            self.assertEqual(out.dtype, np.float32)

    def test_silence_in_silence_out(self):
        for length in (0, 500, SAMPLE_RATE):
            out = mel_spectrogram(np.zeros(length, dtype=np.float32))
            self.assertFalse(out.any())

    def test_deterministic(self):
        rng = np.random.default_rng(3)
        x = rng.uniform(-1, 1, SAMPLE_RATE).astype(np.float32)
        np.testing.assert_array_equal(mel_spectrogram(x), mel_spectrogram(x.copy()))

    def test_mel_major_layout(self):
        """A tone in the first half only leaves the last frame silent"""
        t = np.arange(SAMPLE_RATE) / SAMPLE_RATE
        x = (0.5 * np.sin(2 * np.pi * 1000 * t)).astype(np.float32)
        x[8000:] = 0.0
        mel = mel_spectrogram(x).reshape(N_MELS, N_FRAMES)
        self.assertGreater(float(mel[:, 5].sum()), 0.0)
        self.assertFalse(mel[:, -1].any())

    def test_tone_lands_in_matching_band(self):
        t = np.arange(SAMPLE_RATE) / SAMPLE_RATE
        x = (0.5 * np.sin(2 * np.pi * 1000 * t)).astype(np.float32)
        mel = mel_spectrogram(x).reshape(N_MELS, N_FRAMES)
        expected_band = int(np.argmax(get_mel_filters()[:, 64]))
        self.assertLessEqual(abs(int(np.argmax(mel[:, 16])) - expected_band), 1)
        self.assertTrue((mel >= 0).all())

    def test_custom_config(self):
        config = SpeechConfig(n_mels=40, n_frames=10)
        out = mel_spectrogram(np.zeros(SAMPLE_RATE, dtype=np.float32), config)
        self.assertEqual(out.shape, (400,))


class TestAudioConditioning(unittest.TestCase):
    """Test resampling, framing and audio decode"""

    def test_resample_identity(self):
        x = np.linspace(-1, 1, 50).astype(np.float32)
        for rate in (8000, 16000, 44100):
            self.assertIs(resample_linear(x, rate, rate), x)

    def test_resample_upsample_values(self):
        x = np.array([0, 1, 2, 3], dtype=np.float32)
        out = resample_linear(x, 1, 2)
        np.testing.assert_allclose(out, [0, 0.5, 1, 1.5, 2, 2.5, 3, 3])

    def test_resample_lengths(self):
        self.assertEqual(resample_linear(np.zeros(48000), 48000, 16000).shape, (16000,))
        self.assertEqual(resample_linear(np.zeros(44100), 44100, 16000).shape, (16000,))
        self.assertEqual(resample_linear(np.zeros(0), 44100, 16000).shape, (1,))

    def test_resample_constant_signal(self):
        x = np.full(441, 0.25, dtype=np.float32)
        np.testing.assert_allclose(resample_linear(x, 44100, 16000), 0.25, atol=1e-7)

    def test_resample_bad_rate(self):
        with self.assertRaises(ValueError):
            resample_linear(np.zeros(10), 0, 16000)

    def test_take_or_pad_length(self):
        x = np.arange(10, dtype=np.float32)
        for length in (0, 1, 5, 10, 11, 100):
            self.assertEqual(len(take_or_pad(x, length)), length)
        np.testing.assert_array_equal(take_or_pad(x, 4), [0, 1, 2, 3])
        np.testing.assert_array_equal(take_or_pad(x, 12)[10:], [0, 0])

    def test_center_segment(self):
        x = np.arange(100, dtype=np.float32)
        segment = take_center_segment(x, 40)
        np.testing.assert_array_equal(segment, np.arange(30, 70))
        self.assertAlmostEqual(segment[0] + 40 / 2, len(x) / 2)

    def test_center_segment_short_input_pads(self):
        x = np.ones(10, dtype=np.float32)
        segment = take_center_segment(x, 16)
        self.assertEqual(len(segment), 16)
        self.assertEqual(float(segment.sum()), 10.0)

    def test_prepare_recording(self):
        buffer = AudioBuffer(np.ones(int(44100 * 1.5), dtype=np.float32), 44100)
        fixed = prepare_recording(buffer)
        self.assertEqual(fixed.shape, (SAMPLE_RATE,))
        self.assertTrue(np.allclose(fixed, 1.0))

    def test_prepare_clip_short_file(self):
        buffer = AudioBuffer(np.ones(4000, dtype=np.float32), 8000)
        fixed = prepare_clip(buffer)
        self.assertEqual(fixed.shape, (SAMPLE_RATE,))
        self.assertFalse(fixed[8000:].any())

    def test_speech_input_tensor(self):
        buffer = AudioBuffer(np.zeros(22050, dtype=np.float32), 22050)
        for source in ("file", "recording"):
            mel = speech_input_tensor(buffer, source)
            self.assertEqual(mel.shape, (N_MELS * N_FRAMES,))
            self.assertFalse(mel.any())
        with self.assertRaises(ValueError):
            speech_input_tensor(buffer, "microphone")

    def test_empty_buffer(self):
        mel = speech_input_tensor(AudioBuffer(np.zeros(0, dtype=np.float32), 48000))
        self.assertFalse(mel.any())

    def test_invalid_sample_rate(self):
        with self.assertRaises(ValueError):
            AudioBuffer(np.zeros(10), 0)

    def test_to_mono(self):
        stereo = np.stack([np.ones(5), -np.ones(5) * 0.5], axis=1)
        np.testing.assert_allclose(to_mono(stereo), 0.25)
        self.assertEqual(to_mono(np.zeros(7)).shape, (7,))

    def test_load_audio_file(self):
        t = np.arange(8000) / 8000
        stereo = np.stack([0.5 * np.sin(2 * np.pi * 440 * t)] * 2, axis=1)
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "tone.wav")
            sf.write(path, stereo, 8000)
            buffer = load_audio_file(path)
        self.assertEqual(buffer.sample_rate, 8000)
        self.assertEqual(buffer.samples.shape, (8000,))
        np.testing.assert_allclose(buffer.samples, stereo[:, 0], atol=1e-3)


class TestImageConditioning(unittest.TestCase):
    """Test canvas conditioning to the 28x28 model input"""

    def setUp(self):
        self.canvas = make_canvas()
        self.canvas[100:160, 80:140] = 0

    def test_blank_canvas(self):
        result = preprocess_canvas(make_canvas())
        self.assertFalse(result.has_ink)
        self.assertIsNone(result.bbox)
        self.assertEqual(result.tensor.shape, (784,))
        self.assertFalse(result.tensor.any())
        self.assertEqual(result.preview.size, (28, 28))

    def test_square_bounding_box(self):
        bbox = find_ink_bbox(self.canvas)
        self.assertEqual(bbox, BoundingBox(80, 100, 139, 159))
        self.assertEqual((bbox.width, bbox.height), (60, 60))

    def test_tensor_values(self):
        result = preprocess_canvas(self.canvas)
        self.assertTrue(result.has_ink)
        self.assertEqual(result.tensor.shape, (784,))
        self.assertEqual(result.tensor.dtype, np.float32)
        background = (0.0 - MNIST_MEAN) / MNIST_STD
        full_ink = (1.0 - MNIST_MEAN) / MNIST_STD
        self.assertAlmostEqual(float(result.tensor[0]), background, places=5)
        self.assertAlmostEqual(float(result.tensor.max()), full_ink, places=2)

    def test_ink_is_centered(self):
        result = preprocess_canvas(self.canvas)
        preview = np.asarray(result.preview)
        ys, xs = np.where(preview < 128)
        self.assertAlmostEqual(float(ys.mean()), 13.5, delta=1.0)
        self.assertAlmostEqual(float(xs.mean()), 13.5, delta=1.0)
        # 60px square inside an 84px crop scaled to 20px
        self.assertAlmostEqual(ys.max() - ys.min() + 1, 60 * 20 / 84, delta=1.5)

    def test_preview_matches_tensor(self):
        result = preprocess_canvas(self.canvas)
        preview = np.asarray(result.preview).astype(np.float32)
        expected = ((1 - preview / 255.0) - MNIST_MEAN) / MNIST_STD
        np.testing.assert_allclose(result.tensor, expected.ravel(), atol=1e-5)

    def test_threshold_is_configurable(self):
        faint = make_canvas()
        faint[50:90, 50:90] = 240
        self.assertFalse(preprocess_canvas(faint).has_ink)
        self.assertTrue(preprocess_canvas(faint, ImageConfig(ink_threshold=0.05)).has_ink)

    def test_margin_clipped_at_edges(self):
        bbox = expand_bbox(BoundingBox(0, 0, 19, 9), 0.2, 100, 50)
        self.assertEqual(bbox, BoundingBox(0, 0, 23, 13))
        corner = make_canvas(50)
        corner[40:50, 45:50] = 0
        self.assertTrue(preprocess_canvas(corner).has_ink)

    def test_grayscale_and_rgba_canvas(self):
        gray = np.full((64, 64), 255, dtype=np.uint8)
        gray[10:40, 20:30] = 0
        self.assertTrue(preprocess_canvas(gray).has_ink)
        rgba = np.dstack([make_canvas(64), np.full((64, 64), 255, dtype=np.uint8)])
        self.assertFalse(preprocess_canvas(rgba).has_ink)

    def test_missing_canvas(self):
        with self.assertRaises(ValueError):
            preprocess_canvas(None)
        with self.assertRaises(ValueError):
            preprocess_canvas(np.zeros((0, 10, 3), dtype=np.uint8))

    def test_normalize_mnist_pixels(self):
        pixels = np.zeros(784, dtype=np.uint8)
        pixels[0] = 255
        values = normalize_mnist_pixels(pixels)
        self.assertAlmostEqual(float(values[0]), (1 - MNIST_MEAN) / MNIST_STD, places=5)
        self.assertAlmostEqual(float(values[1]), -MNIST_MEAN / MNIST_STD, places=5)
        with self.assertRaises(ValueError):
            normalize_mnist_pixels(np.zeros(100))

    def test_load_canvas_flattens_transparency(self):
        img = Image.new("RGBA", (40, 40), (0, 0, 0, 0))
        img.paste((0, 0, 0, 255), (10, 10, 20, 30))
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "digit.png")
            img.save(path)
            canvas = load_canvas(path)
        self.assertEqual(canvas.shape, (40, 40, 3))
        self.assertEqual(find_ink_bbox(canvas), BoundingBox(10, 10, 19, 29))


class TestScoring(unittest.TestCase):
    """Test softmax, ranking and confusion statistics"""

    def test_softmax_sums_to_one(self):
        rng = np.random.default_rng(5)
        for logits in (rng.normal(size=10), rng.normal(size=10) * 100, np.full(10, 1000.0)):
            self.assertAlmostEqual(float(softmax(logits).sum()), 1.0, places=9)

    def test_softmax_shift_invariant(self):
        logits = np.array([2.0, -1.0, 0.5, 3.0, 0, 0, 0, 0, 0, 1])
        np.testing.assert_allclose(softmax(logits), softmax(logits + 42.0), atol=1e-12)

    def test_softmax_zero_denominator(self):
        probs = softmax(np.full(10, -np.inf))
        self.assertFalse(np.isnan(probs).any())
        self.assertFalse(probs.any())

    def test_scenario_top1(self):
        ranked = top_k(softmax([5, 1, 0, 0, 0, 0, 0, 0, 0, 0]), 5)
        self.assertEqual(ranked[0].digit, 0)
        self.assertGreater(ranked[0].probability, 0.9)
        self.assertEqual(len(ranked), 5)

    def test_top_k_order_and_ties(self):
        ranked = top_k([0.1, 0.3, 0.3, 0.05, 0.25], 4)
        self.assertEqual([r.digit for r in ranked], [1, 2, 4, 0])
        probs = [r.probability for r in ranked]
        self.assertEqual(probs, sorted(probs, reverse=True))

    def test_argmax_first_max(self):
        self.assertEqual(argmax([1, 3, 3, 0]), 1)

    def test_confusion_scenario(self):
        matrix = ConfusionMatrix()
        matrix.update(3, 3)
        matrix.update(3, 5)
        matrix.update(7, 7)
        self.assertEqual(matrix[3][3], 1)
        self.assertEqual(matrix[3][5], 1)
        self.assertEqual(matrix[7][7], 1)
        self.assertEqual(matrix.total, 3)
        self.assertAlmostEqual(matrix.accuracy, 2 / 3)

    def test_confusion_invariants(self):
        rng = np.random.default_rng(9)
        y_true = rng.integers(0, 10, 500)
        y_pred = np.where(rng.random(500) < 0.7, y_true, rng.integers(0, 10, 500))
        matrix = ConfusionMatrix()
        for t, p in zip(y_true, y_pred):
            matrix.update(t, p)
        self.assertEqual(matrix.total, 500)
        self.assertEqual(matrix.correct, int((y_true == y_pred).sum()))
        np.testing.assert_array_equal(matrix.to_array(), sk_confusion_matrix(y_true, y_pred, labels=list(range(10))))

    def test_confusion_reset_and_bounds(self):
        matrix = ConfusionMatrix()
        self.assertEqual(matrix.accuracy, 0.0)
        matrix.update(1, 2)
        matrix.reset()
        self.assertEqual(matrix.total, 0)
        with self.assertRaises(ValueError):
            matrix.update(10, 0)
        with self.assertRaises(ValueError):
            matrix.update(0, -1)

    def test_per_class_accuracy(self):
        matrix = ConfusionMatrix()
        matrix.update(1, 1)
        matrix.update(1, 2)
        per_class = matrix.per_class_accuracy()
        self.assertAlmostEqual(float(per_class[1]), 0.5)
        self.assertEqual(float(per_class[0]), 0.0)


class TestTranscript(unittest.TestCase):
    """Test digit extraction from speech transcripts"""

    def test_words_and_numerals(self):
        self.assertEqual(extract_digit(" Five "), 5)
        self.assertEqual(extract_digit("七"), 7)
        self.assertEqual(extract_digit("number 3 please"), 3)
        self.assertEqual(extract_digit("我說三"), 3)

    def test_no_digit(self):
        self.assertIsNone(extract_digit("hello"))
        self.assertIsNone(extract_digit(""))


def run_performance_tests():
    """Run performance benchmarks"""
    print("Running Performance Tests...")
    print("="*50)

    audio = np.random.uniform(-1, 1, SAMPLE_RATE).astype(np.float32)
    start_time = time.time()
    for _ in range(20):
        _ = mel_spectrogram(audio)
    print(f"Average mel spectrogram time: {(time.time() - start_time) / 20:.4f} seconds")

    canvas = make_canvas()
    canvas[60:220, 120:150] = 0
    start_time = time.time()
    for _ in range(100):
        _ = preprocess_canvas(canvas)
    print(f"Average canvas preprocessing time: {(time.time() - start_time) / 100:.4f} seconds")

    print("\nPerformance testing complete!")


def main():
    """Main test runner"""
    parser = argparse.ArgumentParser(description="Digit pipeline system tests")
    parser.add_argument('--unit', action='store_true', help='Run unit tests')
    parser.add_argument('--performance', action='store_true', help='Run performance tests')
    args = parser.parse_args()

    if args.performance:
        run_performance_tests()
        print()

    if args.unit or not args.performance:
        loader = unittest.TestLoader()
        suite = loader.loadTestsFromModule(sys.modules[__name__])
        result = unittest.TextTestRunner(verbosity=2).run(suite)
        print(f"\nTests run: {result.testsRun}  Failures: {len(result.failures)}  Errors: {len(result.errors)}")


if __name__ == "__main__":
    main()
