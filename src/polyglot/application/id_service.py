"""Identifier generation for learning records."""

from ulid import ULID


def generate_phrase_id() -> str:
    """Generate a durable, opaque phrase ID using ULID."""
    return f"phr_{ULID()}"


def legacy_content_id(meaning: str, sentence: str) -> str:
    """
    Content-hash ID used by v1 records (32-bit FNV-1a over UTF-16 code units).

    Only needed to recognise legacy payloads; new records never use it.
    """
    data = f"{meaning.strip()}|{sentence.strip()}".encode("utf-16-le")
    h = 0x811C9DC5
    for i in range(0, len(data), 2):
        h ^= data[i] | (data[i + 1] << 8)
        h = (h * 0x01000193) & 0xFFFFFFFF
    return format(h, "x")
