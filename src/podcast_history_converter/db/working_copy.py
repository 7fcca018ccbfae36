import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Iterator, Optional

from podcast_history_converter.core.errors import StoreError


class WorkingCopy:
    """Temporary copy of a store file; the only file written during a run."""

    def __init__(self, path: Path):
        self.path = path

    @classmethod
    def from_file(cls, source: Path, suffix: str = ".db") -> "WorkingCopy":
        source = Path(source)
        if not source.is_file():
            raise StoreError(f"Store file not found: {source}")
        with open(source, "rb") as reader:
            return cls.from_reader(reader, suffix=suffix)

    @classmethod
    def from_reader(cls, reader: BinaryIO, suffix: str = ".db") -> "WorkingCopy":
        fd, name = tempfile.mkstemp(prefix="phc-", suffix=suffix)
        with os.fdopen(fd, "wb") as writer:
            shutil.copyfileobj(reader, writer)
        return cls(Path(name))

    def remove(self) -> None:
        self.path.unlink(missing_ok=True)


@contextmanager
def atomic_output(output_path: Path, protected: Optional[Path] = None) -> Iterator[Path]:
    """Yield a temporary sibling of output_path and rename it into place on success.

    Args:
        output_path: Final output file
        protected: Input file that must never be overwritten

    Raises:
        StoreError: If output_path is the protected input file
    """
    output_path = Path(output_path)
    if protected is not None and output_path.resolve() == Path(protected).resolve():
        raise StoreError(
            f"Refusing to overwrite the input store {protected}; choose another output path"
        )

    output_path.parent.mkdir(parents=True, exist_ok=True)
    fd, name = tempfile.mkstemp(
        prefix=f".{output_path.name}.", suffix=".tmp", dir=output_path.parent
    )
    os.close(fd)
    temp_path = Path(name)
    try:
        yield temp_path
        os.replace(temp_path, output_path)
    finally:
        temp_path.unlink(missing_ok=True)
