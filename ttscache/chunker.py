"""
Text chunking shared by the generation worker and the playback client.

Policy: split at sentence boundaries, fall back to whitespace-delimited words
when one sentence exceeds the limit, never emit an empty chunk and never
split inside a word. A word longer than the limit becomes its own chunk.
"""
import re
from typing import List

from ttscache.config import SERVER_CHUNK_LENGTH

# Whitespace following terminal punctuation
SENTENCE_BOUNDARY = re.compile(r'(?<=[.!?])\s+')


def split_sentences(text: str) -> List[str]:
    """Split text into stripped, non-empty sentences."""
    return [s.strip() for s in SENTENCE_BOUNDARY.split(text) if s.strip()]


def split_text(text: str, max_length: int = SERVER_CHUNK_LENGTH) -> List[str]:
    """
    Split text into ordered chunks of at most ``max_length`` characters.

    Args:
        text: Text to split
        max_length: Maximum characters per chunk

    Returns:
        List of chunks; empty when the text is blank.
    """
    if max_length < 1:
        raise ValueError(f'max_length must be positive, got {max_length}')

    text = text.strip()
    if not text:
        return []
    if len(text) <= max_length:
        return [text]

    chunks: List[str] = []
    current = ''

    for sentence in split_sentences(text):
        if len(sentence) > max_length:
            # Oversized sentence starts on a fresh chunk and is packed by words
            if current:
                chunks.append(current)
                current = ''
            pieces = sentence.split()
        else:
            pieces = [sentence]

        for piece in pieces:
            if not current:
                current = piece
            elif len(current) + 1 + len(piece) <= max_length:
                current = f'{current} {piece}'
            else:
                chunks.append(current)
                current = piece

    if current:
        chunks.append(current)

    return chunks
