from __future__ import annotations

import logging
import os
import random
from dataclasses import dataclass
from typing import FrozenSet, Iterable, Optional

from warc_tools.errors import ConfigError, SamplingError

logger = logging.getLogger(__name__)

EXHAUSTIVE = "exhaustive"
SAMPLED = "sampled"

# "codepoint": draw indices over characters.
# "byte": draw offsets over the UTF-8 encoding, each distinct character counted once.
SAMPLING_MODES = ("byte", "codepoint")


@dataclass(frozen=True)
class ClassificationResult:
    matched: bool
    ratio: float
    samples: int  # denominator of `ratio`
    regime: str


def load_target_set(path: str | os.PathLike) -> FrozenSet[str]:
    """
    Load the target-script codepoints, one per line.

    Only the first character of each (stripped) line is used, so the seed
    file may carry extra columns such as frequencies.
    """
    if not os.path.exists(path):
        raise ConfigError(f"Target character file not found at: {path}")

    chars = set()
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            chars.add(line[0])

    if not chars:
        raise ConfigError(f"Target character file is empty: {path}")

    logger.info("Loaded %d target characters from %s", len(chars), path)
    return frozenset(chars)


class ScriptClassifier:
    """
    Decides whether a text is predominantly written in the target script.

    Texts of at most `sample_size` characters are counted exhaustively;
    longer texts are estimated from `sample_size` random draws. A text
    matches when the estimated ratio is strictly above `threshold`.

    The classifier holds no mutable state besides its random source, so one
    instance can be shared by every worker.
    """

    def __init__(
            self,
            target_set: Iterable[str],
            *,
            threshold: float = 0.35,
            sample_size: int = 500,
            sampling: str = "byte",
            rng: Optional[random.Random] = None,
    ):
        if sample_size < 1:
            raise ValueError(f"Invalid sample size: {sample_size}")
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"Invalid threshold: {threshold}")
        if sampling not in SAMPLING_MODES:
            raise ValueError(f"Unsupported sampling mode: {sampling}")

        self.target_set = frozenset(target_set)
        self.threshold = threshold
        self.sample_size = sample_size
        self.sampling = sampling
        self.rng = rng if rng is not None else random.Random()

    @classmethod
    def from_file(cls, path: str | os.PathLike, **kwargs) -> "ScriptClassifier":
        return cls(load_target_set(path), **kwargs)

    def classify(self, text: str) -> ClassificationResult:
        if len(text) <= self.sample_size:
            matches, samples = self._count_all(text)
            regime = EXHAUSTIVE
        elif self.sampling == "codepoint":
            matches, samples = self._sample_codepoints(text)
            regime = SAMPLED
        else:
            matches, samples = self._sample_bytes(text)
            regime = SAMPLED

        ratio = matches / samples if samples else 0.0
        return ClassificationResult(
            matched=ratio > self.threshold,
            ratio=ratio,
            samples=samples,
            regime=regime,
        )

    def is_match(self, text: str) -> bool:
        return self.classify(text).matched

    def _count_all(self, text: str):
        matches = sum(1 for ch in text if ch in self.target_set)
        return matches, len(text)

    def _sample_codepoints(self, text: str):
        n = self.sample_size
        indices = sorted(self.rng.randrange(len(text)) for _ in range(n))

        matches = 0
        j = 0
        for i, ch in enumerate(text):
            if j == n:
                break
            hit = ch in self.target_set
            while j < n and indices[j] == i:
                if hit:
                    matches += 1
                j += 1

        # Every draw must land on a character
        if j != n:
            raise SamplingError(f"Only found {j} of {n} samples")
        return matches, n

    def _sample_bytes(self, text: str):
        n = self.sample_size
        size = len(text.encode("utf-8", errors="surrogatepass"))

        # Sorted so that samples falling in the same character sit next to each other
        offsets = sorted(self.rng.randrange(size) for _ in range(n))

        matches = 0
        distinct = 0
        j = 0
        pos = 0
        for ch in text:
            if j == n:
                break
            end = pos + len(ch.encode("utf-8", errors="surrogatepass"))
            if pos <= offsets[j] < end:
                # Consume every offset inside this character, count it once
                while j < n and pos <= offsets[j] < end:
                    j += 1
                if ch in self.target_set:
                    matches += 1
                distinct += 1
            pos = end

        if j != n:
            raise SamplingError(f"Only found {j} of {n} samples")
        return matches, distinct
