from __future__ import annotations

_UNITS = ["bytes", "KB", "MB", "GB", "TB"]


def format_bytes(num: int) -> str:
    """Human readable size, 1024 based.

    Values that would print as more than three digits roll over to the next
    unit ("1000 KB" reads worse than "0.98 MB").
    """
    if num <= 0:
        return "0 byte"
    i = 0
    value = float(num)
    while value >= 1024 and i < len(_UNITS) - 1:
        value /= 1024
        i += 1
    if value > 999 and i < len(_UNITS) - 1:
        value /= 1024
        i += 1
    return f"{value:.{min(i, 2)}f} {_UNITS[i]}"


def format_name(mime_type: str) -> str:
    """'image/webp' -> 'WebP', 'image/avif' -> 'AVIF'."""
    fmt = mime_type.replace("image/", "")
    if fmt == "webp":
        return "WebP"
    return fmt.upper()


def error_message(error: BaseException | str | None) -> str:
    if isinstance(error, str):
        return error
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    return "Unknown Error"
