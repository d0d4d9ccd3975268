"""Random, collision-free names for stored images."""
import secrets
from pathlib import Path
from typing import Union

NAME_BYTES = 8


def generate_filename(directory: Union[str, Path], extension: str) -> str:
    """Return ``<16 hex chars>.<extension>`` not yet present in *directory*.

    Regenerates until the name is free.
    """
    directory = Path(directory)
    while True:
        filename = f"{secrets.token_hex(NAME_BYTES)}.{extension}"
        if not (directory / filename).exists():
            return filename
