#!/usr/bin/env python3
"""
Download the MediaPipe Face Landmarker model used by the vision backend.

The model is saved to MEDIAPIPE_MODEL_PATH (default
~/.mediapipe_models/face_landmarker.task).
"""
import argparse
import sys
import urllib.request
from pathlib import Path

from .config import Config

MODEL_URL = "https://storage.googleapis.com/mediapipe-models/face_landmarker/face_landmarker/float16/latest/face_landmarker.task"


def download_model(model_path: Path, url: str = MODEL_URL, force: bool = False) -> bool:
    """
    Download the model to model_path.

    Args:
        model_path: Destination file
        url: Model URL
        force: Download again even if the file exists

    Returns:
        bool: True if the model is available at model_path afterwards
    """
    model_path.parent.mkdir(parents=True, exist_ok=True)

    if model_path.exists() and not force:
        print(f"Model already exists at {model_path} "
              f"({model_path.stat().st_size / 1024 / 1024:.2f} MB)")
        return True

    print(f"Downloading MediaPipe Face Landmarker from {url}")
    print(f"Saving to {model_path}")

    def report_progress(block_num, block_size, total_size):
        if total_size > 0:
            percent = min(100, block_num * block_size * 100 / total_size)
            print(f"\rProgress: {percent:.1f}%", end="")

    try:
        urllib.request.urlretrieve(url, model_path, reporthook=report_progress)
    except OSError as e:
        print(f"\nDownload failed: {e}")
        if model_path.exists():
            model_path.unlink()
        return False

    print(f"\nDownload complete ({model_path.stat().st_size / 1024 / 1024:.2f} MB)")
    return True


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Download the MediaPipe Face Landmarker model")
    parser.add_argument("--output", type=Path, default=Path(Config.MEDIAPIPE_MODEL_PATH),
                        help="destination file (default: MEDIAPIPE_MODEL_PATH)")
    parser.add_argument("--force", action="store_true", help="download even if the file exists")
    args = parser.parse_args(argv)

    if not download_model(args.output, force=args.force):
        print("Please check your internet connection and try again.")
        return 1

    print(f"\nSet MEDIAPIPE_MODEL_PATH={args.output} to use this model.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
