import errno
import os
import shutil
from typing import Iterable


class LocalFileStore:
    """Filesystem operations used by the upload pipeline."""

    def write(self, path: str, chunks: Iterable[bytes]) -> int:
        written = 0
        with open(path, "xb") as handle:
            for chunk in chunks:
                handle.write(chunk)
                written += len(chunk)
        return written

    def move(self, source: str, destination: str) -> None:
        try:
            os.replace(source, destination)
        except OSError as exc:
            if exc.errno != errno.EXDEV:
                raise
            shutil.move(source, destination)

    def delete(self, path: str) -> bool:
        try:
            os.remove(path)
        except FileNotFoundError:
            return False
        return True

    def exists(self, path: str) -> bool:
        return os.path.isfile(path)

    def mkdir_all(self, path: str) -> None:
        os.makedirs(path, exist_ok=True)
