"""Lyric line data structures and timing lookups."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

# Documented default for a word whose end boundary is missing in the source data.
DEFAULT_WORD_TAIL = 0.5


class WordState(str, Enum):
    """Karaoke classification of a word at a given timestamp."""

    UPCOMING = "upcoming"
    ACTIVE = "active"
    COMPLETED = "completed"


class Word(BaseModel):
    """A single word with its own timing inside a lyric line."""

    model_config = ConfigDict(frozen=True)

    text: str = Field(description="Word text")
    start_time: float = Field(description="Start time in seconds")
    end_time: float = Field(description="End time in seconds (exclusive)")


class LyricLine(BaseModel):
    """A lyric line with timing information."""

    model_config = ConfigDict(frozen=True)

    start_time: float = Field(description="Start time in seconds")
    end_time: float | None = Field(default=None, description="End time in seconds (exclusive)")
    text: str = Field(description="Line text")
    words: list[Word] | None = Field(default=None, description="Optional word-level timing")

    @property
    def has_words(self) -> bool:
        return bool(self.words)

    def shifted(self, offset: float) -> "LyricLine":
        """Return a copy with every timestamp moved by ``offset`` seconds."""
        return LyricLine(
            start_time=self.start_time + offset,
            end_time=self.end_time + offset if self.end_time is not None else None,
            text=self.text,
            words=(
                [
                    Word(
                        text=w.text,
                        start_time=w.start_time + offset,
                        end_time=w.end_time + offset,
                    )
                    for w in self.words
                ]
                if self.words
                else self.words
            ),
        )


def shift_lines(lines: list[LyricLine], offset: float) -> list[LyricLine]:
    """Produce the offset-adjusted view of ``lines`` without touching the source."""
    if offset == 0:
        return lines
    return [line.shifted(offset) for line in lines]


def effective_end(lines: list[LyricLine], index: int) -> float:
    """End of a line's active range; a missing end inherits the next line's start."""
    line = lines[index]
    if line.end_time is not None:
        return line.end_time
    if index + 1 < len(lines):
        return lines[index + 1].start_time
    return float("inf")


def active_line_index(lines: list[LyricLine], time: float) -> int:
    """Index of the line whose [start, end) contains ``time``, or -1."""
    for i, line in enumerate(lines):
        if line.start_time <= time < effective_end(lines, i):
            return i
    return -1


def upcoming_line_index(lines: list[LyricLine], time: float) -> int:
    """Line the layout centres on when no line is active.

    Before the first line this is the first line; in a gap it is the next
    line to start; after the end it is the last line.
    """
    if not lines:
        return -1
    if time < lines[0].start_time:
        return 0
    for i, line in enumerate(lines):
        if line.start_time > time:
            return i
    return len(lines) - 1


def word_end(words: list[Word], index: int, line_end: float | None = None) -> float:
    """End boundary of a word, falling back to the next word or the default tail."""
    word = words[index]
    if word.end_time > word.start_time:
        return word.end_time
    if index + 1 < len(words):
        return words[index + 1].start_time
    if line_end is not None and line_end != float("inf"):
        return line_end
    return word.start_time + DEFAULT_WORD_TAIL


def word_progress(words: list[Word], index: int, time: float, line_end: float | None = None) -> float:
    """Fraction of a word already sung, clamped to 0..1."""
    start = words[index].start_time
    span = word_end(words, index, line_end) - start
    if span <= 0:
        return 1.0 if time >= start else 0.0
    return min(1.0, max(0.0, (time - start) / span))


def classify_words(
    words: list[Word], time: float, line_end: float | None = None
) -> list[WordState]:
    """Partition words into upcoming / active / completed at ``time``."""
    states = []
    for i, word in enumerate(words):
        end = word_end(words, i, line_end)
        if time < word.start_time:
            states.append(WordState.UPCOMING)
        elif time < end:
            states.append(WordState.ACTIVE)
        else:
            states.append(WordState.COMPLETED)
    return states
