"""PIC (Python Image Converter)

Core package for queueing image files and converting them in bulk to WebP or
AVIF, with progress tracking, partial-failure reconciliation and one-shot undo.
"""

__all__ = [
    "__version__",
]

# Keep in sync with pyproject.toml
__version__ = "0.1.0"
