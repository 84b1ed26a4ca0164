# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Recursive character text splitter.

Text is split on the coarsest separator that occurs in it (paragraphs,
then lines, then words, then characters). Pieces that are still too long
are split again with the finer separators, and small pieces are merged
back into chunks of at most ``chunk_size`` characters, each chunk starting
with up to ``chunk_overlap`` characters of the previous one.
"""

DEFAULT_SEPARATORS = ("\n\n", "\n", " ", "")


class RecursiveTextSplitter:
    """Splits text into overlapping chunks of bounded size.

    Example:
        splitter = RecursiveTextSplitter(chunk_size=500, chunk_overlap=50)
        chunks = splitter.split_text(long_text)
    """

    def __init__(
        self,
        chunk_size: int = 500,
        chunk_overlap: int = 50,
        separators: tuple[str, ...] = DEFAULT_SEPARATORS,
    ) -> None:
        """Initialize the splitter.

        Args:
            chunk_size: Maximum characters per chunk.
            chunk_overlap: Characters carried over between chunks.
            separators: Separators from coarsest to finest.

        Raises:
            ValueError: If the overlap is not smaller than the chunk size.
        """
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if chunk_overlap < 0 or chunk_overlap >= chunk_size:
            raise ValueError(
                f"chunk_overlap ({chunk_overlap}) must be in [0, chunk_size={chunk_size})"
            )
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.separators = separators

    def split_text(self, text: str) -> list[str]:
        """Split text into chunks.

        Args:
            text: Text to split.

        Returns:
            Non-empty chunks in document order. Empty input yields no chunks.
        """
        if not text or not text.strip():
            return []
        return self._split(text, list(self.separators))

    def _split(self, text: str, separators: list[str]) -> list[str]:
        separator = separators[-1] if separators else ""
        finer: list[str] = []
        for i, candidate in enumerate(separators):
            if candidate == "":
                separator = candidate
                break
            if candidate in text:
                separator = candidate
                finer = separators[i + 1:]
                break

        pieces = text.split(separator) if separator else list(text)

        chunks: list[str] = []
        pending: list[str] = []
        for piece in pieces:
            if len(piece) < self.chunk_size:
                pending.append(piece)
                continue
            if pending:
                chunks.extend(self._merge(pending, separator))
                pending = []
            if finer:
                chunks.extend(self._split(piece, finer))
            else:
                chunks.append(piece)
        if pending:
            chunks.extend(self._merge(pending, separator))
        return chunks

    def _merge(self, pieces: list[str], separator: str) -> list[str]:
        """Greedily merge small pieces into overlapping chunks."""
        sep_len = len(separator)
        merged: list[str] = []
        window: list[str] = []
        total = 0

        for piece in pieces:
            length = len(piece)
            if total + length + (sep_len if window else 0) > self.chunk_size and window:
                self._emit(window, separator, merged)
                # Drop from the front until only the overlap remains
                while total > self.chunk_overlap or (
                    total + length + (sep_len if window else 0) > self.chunk_size and total > 0
                ):
                    total -= len(window[0]) + (sep_len if len(window) > 1 else 0)
                    window.pop(0)
            window.append(piece)
            total += length + (sep_len if len(window) > 1 else 0)

        self._emit(window, separator, merged)
        return merged

    @staticmethod
    def _emit(window: list[str], separator: str, out: list[str]) -> None:
        chunk = separator.join(window).strip()
        if chunk:
            out.append(chunk)
