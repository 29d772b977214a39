import os
import tempfile
from pathlib import Path


class LocalStorage:
    """
    Lokalny magazyn klucz-wartosc urzadzenia (odpowiednik localStorage przegladarki).
    Kazdy klucz to osobny plik w katalogu.
    """

    def __init__(self, directory: str | os.PathLike):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get_item(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set_item(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        # zapis przez plik tymczasowy + replace, zeby nie zostawic polowy JSONa
        fd, tmp = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp, self._path(key))
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def remove_item(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)
