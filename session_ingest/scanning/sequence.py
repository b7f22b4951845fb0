import re
from pathlib import Path
from typing import Union

from ..exceptions import NoSequenceFound

_DIGIT_RUN = re.compile(r'[0-9]+')


def parse_sequence_number(name: Union[str, Path]) -> int:
    """
    Returns the last run of digits in a filename stem as the ordering key.

        _MG_1001.CR2      -> 1001
        IMG_2024_1001.CR2 -> 1001
        MVI_0042.MP4      -> 42
    """
    stem = Path(name).stem
    runs = _DIGIT_RUN.findall(stem)
    if not runs:
        raise NoSequenceFound(f"No sequence number in filename: {Path(name).name}", Path(name))
    return int(runs[-1])
