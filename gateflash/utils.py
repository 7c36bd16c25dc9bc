"""
Project Name: Gateflash
Copyright (c) 2025 Gateflash contributors

Permission is hereby granted under MIT license.

Utility Functions Module
"""

import re
import base64

HEX_PATTERN = re.compile(r"0[xX][0-9a-fA-F]+")


def parse_offset(value):
    """
    Converts a flash offset from a catalog into an integer.

    Args:
        value (int | str): An integer, or a decimal/hex string such as "0x8000".

    Returns:
        int: The offset, or None if the value cannot be interpreted.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if HEX_PATTERN.fullmatch(text):
            return int(text, 16)
        if text.isdigit():
            return int(text)
    return None


def role_from_path(path: str) -> str:
    """'bootloader.bin' -> 'bootloader'"""
    name = path.rsplit("/", 1)[-1]
    return name[:-4] if name.lower().endswith(".bin") else name


def data_uri(data: bytes) -> str:
    return "data:application/octet-stream;base64," + base64.b64encode(data).decode(
        "ascii"
    )


def format_size(size_in_bytes):
    """
    Formats a size in bytes into a human-readable string.

    Args:
        size_in_bytes (int): Size in bytes.

    Returns:
        str: Human-readable size.
    """
    for unit in ["B", "KB", "MB", "GB"]:
        if size_in_bytes < 1024:
            return f"{size_in_bytes:.2f} {unit}"
        size_in_bytes /= 1024
    return f"{size_in_bytes:.2f} TB"


def time_formatter(seconds):
    """
    Formats a duration in seconds, e.g. "1m 20s".
    """
    m, s = divmod(int(seconds), 60)
    h, m = divmod(m, 60)
    return f"{h}h {m}m {s}s" if h else f"{m}m {s}s" if m else f"{s}s"
