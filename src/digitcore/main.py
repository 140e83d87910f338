"""
Command-line entry point for the digit recognition pipeline.
"""

import argparse
import logging
import os
import sys

from .audio import load_audio_file
from .evaluation import classification_report, evaluate, load_dataset
from .image import load_canvas
from .inference import InferenceError, load_session
from .pipeline import DigitRecognizer


def print_ranking(recognition):
    if recognition.digit is None:
        print("Nothing to recognise (blank input)")
        return
    print(f"Recognized digit: {recognition.digit}")
    print("Top predictions:")
    for rank, item in enumerate(recognition.ranked, 1):
        print(f"  {rank}. {item.digit}  p={item.probability:.3f}")


def recognize_image(path, model_path, top_k, save_plot=None):
    recognizer = DigitRecognizer(image_session=load_session(model_path, "image"), top_k=top_k)
    print(f"Processing image: {path}")
    result = recognizer.recognize_canvas(load_canvas(path))
    print_ranking(result)
    if save_plot and result.preview is not None:
        from .visualize import plot_preview
        plot_preview(result.preview, save_path=save_plot)
        print(f"Preview saved to: {save_plot}")


def recognize_audio(path, model_path, top_k, recording=False, save_plot=None):
    recognizer = DigitRecognizer(speech_session=load_session(model_path, "speech"), top_k=top_k)
    buffer = load_audio_file(path)
    print(f"Processing audio: {path} ({buffer.duration:.2f}s at {buffer.sample_rate} Hz)")
    result = recognizer.recognize_audio(buffer, source="recording" if recording else "file")
    print_ranking(result)
    if save_plot:
        from .visualize import plot_mel_spectrogram
        plot_mel_spectrogram(result.features, save_path=save_plot)
        print(f"Spectrogram saved to: {save_plot}")


def run_evaluation(path, model_path, limit=None, save_plot=None):
    session = load_session(model_path, "image")
    samples = load_dataset(path, limit)
    print(f"Evaluating {len(samples)} samples from {path}")

    def report(done, total, matrix):
        print(f"  {done}/{total}  accuracy={matrix.accuracy * 100:.2f}%")

    matrix = evaluate(session, samples, on_progress=report)
    print(f"\nACCURACY={matrix.accuracy:.4f} ({matrix.correct}/{matrix.total})")
    print(classification_report(matrix))
    print("Confusion matrix (rows: actual, columns: predicted):")
    print(matrix.to_array())
    if save_plot:
        from .visualize import plot_confusion_matrix
        plot_confusion_matrix(matrix, save_path=save_plot)
        print(f"Confusion matrix saved to: {save_plot}")


def build_parser():
    parser = argparse.ArgumentParser(description="Handwritten and spoken digit recognition")
    parser.add_argument('--image', type=str, help='Recognise a handwritten digit image')
    parser.add_argument('--audio', type=str, help='Recognise a spoken digit audio file')
    parser.add_argument('--recording', action='store_true',
                        help='Treat the audio as a raw microphone capture (keep the first second)')
    parser.add_argument('--evaluate', type=str, help='Evaluate the image model on a JSON or CSV dataset')
    parser.add_argument('--limit', type=int, default=None, help='Maximum number of evaluation samples')
    parser.add_argument('--image-model', type=str, default=os.path.join('models', 'image_model.keras'))
    parser.add_argument('--speech-model', type=str, default=os.path.join('models', 'speech_model.keras'))
    parser.add_argument('--top-k', type=int, default=5, help='Number of ranked predictions to show')
    parser.add_argument('--save-plot', type=str, help='Save a preview / spectrogram / confusion plot')
    parser.add_argument('--verbose', action='store_true', help='Enable debug logging')
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
    )

    for path in (args.image, args.audio, args.evaluate):
        if path and not os.path.exists(path):
            print(f"Error: file {path} not found")
            return 2

    try:
        if args.image:
            recognize_image(args.image, args.image_model, args.top_k, args.save_plot)
        elif args.audio:
            recognize_audio(args.audio, args.speech_model, args.top_k, args.recording, args.save_plot)
        elif args.evaluate:
            run_evaluation(args.evaluate, args.image_model, args.limit, args.save_plot)
        else:
            parser.print_help()
    except (InferenceError, ImportError, OSError, ValueError) as e:
        print(f"Error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
