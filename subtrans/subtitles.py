"""Reading and writing SRT/ASS files as a flat list of timed cues."""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import timedelta
from pathlib import Path
from typing import List, Sequence

import pysubs2
import srt

from .errors import PersistenceError

logger = logging.getLogger(__name__)

FORMAT_SRT = "srt"
FORMAT_ASS = "ass"
_SUFFIX_FORMATS = {".srt": FORMAT_SRT, ".ass": FORMAT_ASS, ".ssa": FORMAT_ASS}


@dataclass(frozen=True)
class Cue:
    start: timedelta
    end: timedelta
    text: str

    @property
    def lines(self) -> List[str]:
        return self.text.split("\n")


def format_for_path(path: Path) -> str:
    fmt = _SUFFIX_FORMATS.get(Path(path).suffix.lower())
    if fmt is None:
        raise ValueError(f"Unsupported subtitle format: {Path(path).suffix or '<none>'}")
    return fmt


class SubtitleDocument:
    def __init__(self, cues: Sequence[Cue]):
        self.cues: List[Cue] = list(cues)

    def __len__(self) -> int:
        return len(self.cues)

    @property
    def texts(self) -> List[str]:
        return [cue.text for cue in self.cues]

    @classmethod
    def load(cls, path: Path) -> "SubtitleDocument":
        path = Path(path)
        fmt = format_for_path(path)
        if fmt == FORMAT_SRT:
            with open(path, "r", encoding="utf-8-sig") as f:
                entries = list(srt.parse(f.read()))
            cues = [Cue(sub.start, sub.end, sub.content) for sub in entries]
        else:
            ssa = pysubs2.load(str(path), encoding="utf-8")
            cues = [
                Cue(timedelta(milliseconds=ev.start), timedelta(milliseconds=ev.end), ev.plaintext)
                for ev in ssa.events
                if not ev.is_comment
            ]
        logger.info("Loaded %d cues from %s", len(cues), path.name)
        return cls(cues)

    def replace_texts(self, texts: Sequence[str]) -> "SubtitleDocument":
        """New document with the leading cues' text replaced, timings untouched."""
        if len(texts) > len(self.cues):
            raise ValueError(f"Got {len(texts)} lines for {len(self.cues)} cues.")
        cues = [replace(cue, text=text) for cue, text in zip(self.cues, texts)]
        cues.extend(self.cues[len(texts):])
        return SubtitleDocument(cues)

    def save(self, path: Path) -> Path:
        path = Path(path)
        fmt = format_for_path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            if fmt == FORMAT_SRT:
                entries = [
                    srt.Subtitle(index=i, start=cue.start, end=cue.end, content=cue.text)
                    for i, cue in enumerate(self.cues, start=1)
                ]
                with open(path, "w", encoding="utf-8") as f:
                    f.write(srt.compose(entries, reindex=False))
            else:
                ssa = pysubs2.SSAFile()
                for cue in self.cues:
                    ssa.events.append(
                        pysubs2.SSAEvent(
                            start=_to_ms(cue.start),
                            end=_to_ms(cue.end),
                            text="\\N".join(cue.lines),
                        )
                    )
                ssa.save(str(path), encoding="utf-8", format_=FORMAT_ASS)
        except OSError as exc:
            raise PersistenceError(f"Failed to write subtitles to '{path}': {exc}") from exc
        logger.info("Wrote %d cues to %s", len(self.cues), path)
        return path


def _to_ms(value: timedelta) -> int:
    return int(round(value.total_seconds() * 1000))
