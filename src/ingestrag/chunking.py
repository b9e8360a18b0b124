"""Character-window chunking of anchored text segments."""

from __future__ import annotations

from ingestrag.core.models import ChunkDraft, ContentSegment


def _overlap_tail(text: str, overlap: int) -> str:
    """Trailing whole words of ``text`` totalling at most ``overlap`` characters."""
    if overlap <= 0:
        return ""
    tail: list[str] = []
    size = 0
    for word in reversed(text.split()):
        added = len(word) + (1 if tail else 0)
        if size + added > overlap:
            break
        tail.append(word)
        size += added
    return " ".join(reversed(tail))


def _split_long(segment: ContentSegment, window: int, overlap: int) -> list[ContentSegment]:
    """Cut an oversized segment into window-sized pieces with interpolated anchors."""
    text = segment.text
    step = window - overlap
    span = segment.end - segment.start
    pieces: list[ContentSegment] = []
    offset = 0
    while True:
        stop = min(offset + window, len(text))
        pieces.append(
            ContentSegment(
                text=text[offset:stop],
                start=segment.start + span * offset / len(text),
                end=segment.start + span * stop / len(text),
            )
        )
        if stop >= len(text):
            return pieces
        offset += step


def chunk_segments(
    segments: list[ContentSegment],
    window: int = 500,
    overlap: int = 100,
) -> list[ChunkDraft]:
    """Group segments into overlapping chunks of roughly ``window`` characters.

    Segments accumulate until adding the next one would exceed the window.
    A chunk starts at the anchor of the segment that opened it and ends at
    the anchor of its last segment. The next chunk is seeded with the
    trailing words (up to ``overlap`` characters) of the previous one, cut
    shorter when needed so that no chunk exceeds ``window`` characters.

    Args:
        segments: Ordered segments with anchors.
        window: Target chunk size in characters.
        overlap: Characters carried over between consecutive chunks.

    Returns:
        Chunk drafts with ordinals 0..n-1.
    """
    if window <= 0:
        raise ValueError("window must be positive")
    if overlap < 0 or overlap >= window:
        raise ValueError("overlap must be in [0, window)")

    pieces: list[ContentSegment] = []
    for segment in segments:
        text = segment.text.strip()
        if not text:
            continue
        cleaned = segment.model_copy(update={"text": text})
        if len(text) > window:
            pieces.extend(_split_long(cleaned, window, overlap))
        else:
            pieces.append(cleaned)

    if not pieces:
        return []

    chunks: list[ChunkDraft] = []
    current = ""
    has_new_text = False
    chunk_start = pieces[0].start
    chunk_end = chunk_start

    for piece in pieces:
        if has_new_text and len(current) + 1 + len(piece.text) > window:
            chunks.append(
                ChunkDraft(
                    ordinal=len(chunks),
                    content=current,
                    anchor_start=chunk_start,
                    anchor_end=chunk_end,
                )
            )
            # The carried tail plus the opening piece must still fit the window
            current = _overlap_tail(current, min(overlap, window - 1 - len(piece.text)))
            has_new_text = False
            chunk_start = piece.start

        current = f"{current} {piece.text}" if current else piece.text
        has_new_text = True
        chunk_end = piece.end

    if has_new_text:
        chunks.append(
            ChunkDraft(
                ordinal=len(chunks),
                content=current,
                anchor_start=chunk_start,
                anchor_end=chunk_end,
            )
        )

    return chunks
