import logging
import threading
from dataclasses import dataclass

from .constants import DEFAULT_INCREMENT, DEFAULT_START_FRAME

logger = logging.getLogger(__name__)


@dataclass
class FramePair:
    index: int
    source: object
    distorted: object


class FramePairCursor:
    """
    Shared decode position over a source and a distorted decoder.

    Decoders are sequential and not thread-safe, so every read happens while
    holding the cursor lock. Frames before each target index are decoded and
    discarded to keep both streams in lock-step.

    Args:
        source, distorted: Decoders exposing read_next_frame().
        increment (int): Distance between compared frames (1 = every frame).
        start_frame (int): Index of the first frame to compare.
        frames_to_compare (int): Number of comparisons, None for the whole stream.
    """

    def __init__(self, source, distorted, increment=DEFAULT_INCREMENT,
                 start_frame=DEFAULT_START_FRAME, frames_to_compare=None):
        self.source = source
        self.distorted = distorted
        self.increment = increment
        self.start_frame = start_frame
        self.current_frame = 0
        self.next_frame = start_frame
        if frames_to_compare is None:
            self.end_frame = None
        else:
            self.end_frame = start_frame + frames_to_compare * increment
        self._finished = False
        self._lock = threading.Lock()

    @property
    def finished(self):
        return self._finished

    def stop(self):
        """Latch the cursor so every later advance() returns None."""
        with self._lock:
            self._finished = True

    def _read_pair(self):
        src_frame = self.source.read_next_frame()
        dst_frame = self.distorted.read_next_frame()
        if src_frame is None or dst_frame is None:
            return None
        return src_frame, dst_frame

    def advance(self):
        """Return the next FramePair to score, or None at end of stream."""
        with self._lock:
            if self._finished:
                return None
            try:
                return self._advance_locked()
            except Exception:
                self._finished = True
                raise

    def _advance_locked(self):
        while self.current_frame < self.next_frame:
            if self._read_pair() is None:
                logger.debug("Stream exhausted while skipping at frame %d", self.current_frame)
                self._finished = True
                return None
            self.current_frame += 1

        self.next_frame = self.current_frame + self.increment
        if self.end_frame is not None and self.next_frame > self.end_frame:
            logger.debug("Reached end of window at frame %d", self.current_frame)
            self._finished = True
            return None

        pair = self._read_pair()
        if pair is None:
            logger.debug("Stream exhausted at frame %d", self.current_frame)
            self._finished = True
            return None

        index = self.current_frame
        self.current_frame += 1
        return FramePair(index, pair[0], pair[1])
