import os
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path

DEFAULT_TAGS_FILE = "TAGS"


class SortMode(IntEnum):
    UNSORTED = 0
    SORTED = 1
    FOLDCASE = 2


@dataclass(frozen=True)
class IndexSettings:
    output: Path
    append: bool = False
    recurse: bool = True
    sort_mode: SortMode = SortMode.SORTED
    jobs: int = 1
    verbose: bool = False


def default_output_path() -> Path:
    return Path(os.getenv("VERUS_ETAGS_OUTPUT", DEFAULT_TAGS_FILE))
