"""
Import path remapping for Solidity sources.

Foundry resolves imports through ``remappings.txt`` (``from=to`` per line);
other toolchains do not, so sources are rewritten before they are handed to
the compiler. Only lines ending with a quoted ``.sol`` import path are
touched, and the first matching remapping wins.
"""

import re
from pathlib import Path
from typing import List, Optional, Tuple

Remapping = Tuple[str, str]

IMPORT_PATH_PATTERN = re.compile(r'".*\.sol";$')


def load_remappings(filepath: Path) -> List[Remapping]:
    with open(filepath, "r") as file:
        lines = file.read().split("\n")

    remappings = list()
    for line in filter(None, (line.strip() for line in lines)):
        source, separator, target = line.partition("=")
        if not separator:
            raise ValueError(f"Malformed remapping '{line}' in {filepath}; expected from=to.")
        remappings.append((source, target))
    return remappings


def remap_line(line: str, remappings: List[Remapping]) -> str:
    if not IMPORT_PATH_PATTERN.search(line):
        return line
    for source, target in remappings:
        if source in line:
            return line.replace(source, target, 1)
    return line


def preprocess_source(text: str, remappings: List[Remapping]) -> str:
    result = list()
    for line in text.splitlines(keepends=True):
        body = line.rstrip("\r\n")
        ending = line[len(body) :]
        result.append(remap_line(body, remappings) + ending)
    return "".join(result)


def remap_sources(
    source_dir: Path, remappings: List[Remapping], output_dir: Optional[Path] = None
) -> List[Path]:
    """
    Rewrites every .sol file under source_dir, in place or into output_dir
    (keeping the relative layout). Returns the files whose content changed.
    """
    source_dir = Path(source_dir)
    changed = list()
    for filepath in sorted(source_dir.rglob("*.sol")):
        original = filepath.read_text()
        remapped = preprocess_source(original, remappings)

        destination = filepath
        if output_dir is not None:
            destination = Path(output_dir) / filepath.relative_to(source_dir)
            destination.parent.mkdir(parents=True, exist_ok=True)
        if remapped != original:
            changed.append(destination)
        if remapped != original or destination != filepath:
            destination.write_text(remapped)
    return changed
