"""PAU (Python Audio Upmixer)

Core package for turning stereo audio files into multichannel variants by
driving ffmpeg with generated filter graphs.
"""

__all__ = [
    "__version__",
]

# Keep in sync with pyproject.toml
__version__ = "0.1.0"
