import json
import logging
import zipfile
from config import TAKEOUT_EXPORT_FILES
from core.errors import FormatError
from pathlib import Path

logger = logging.getLogger(__name__)


class TakeoutReader:
    """Locate and read a location history export from a file, directory or Takeout zip"""

    def __init__(self, export_files: list[str] = TAKEOUT_EXPORT_FILES):
        self.export_files = export_files

    def find_takeout_zip(self, search_dir: Path = Path(".")) -> Path | None:
        """Find the most recent takeout zip file in a directory"""
        pattern = "takeout-*.zip"
        zip_files = list(search_dir.glob(pattern))

        if not zip_files:
            return None

        if len(zip_files) > 1:
            logger.warning(f"Multiple takeout zip files found: {[f.name for f in zip_files]}")

        latest = max(zip_files, key=lambda f: f.stat().st_mtime)
        logger.info(f"Using takeout archive: {latest.name}")
        return latest

    def _rank(self, name: str) -> int | None:
        basename = name.rsplit('/', 1)[-1]
        if basename in self.export_files:
            return self.export_files.index(basename)
        return None

    def find_export_file(self, directory: Path) -> Path | None:
        """Best known export file anywhere below a directory"""
        candidates = [(self._rank(p.name), p) for p in directory.rglob("*.json")]
        candidates = [(rank, p) for rank, p in candidates if rank is not None]
        if not candidates:
            return None
        return min(candidates, key=lambda c: (c[0], str(c[1])))[1]

    def read_zip(self, zip_path: Path):
        with zipfile.ZipFile(zip_path, 'r') as zip_ref:
            members = [(self._rank(name), name) for name in zip_ref.namelist()]
            members = [(rank, name) for rank, name in members if rank is not None]
            if not members:
                raise FormatError(f"No location history export found in {zip_path}")

            member = min(members)[1]
            logger.info(f"Reading {member} from {zip_path.name}")
            with zip_ref.open(member) as f:
                return self._decode(f.read(), member)

    def read(self, path: Path):
        """
        Load the raw export document

        Args:
            path: A JSON file, a Takeout zip, or a directory containing either

        Returns:
            The decoded JSON document

        Raises:
            FileNotFoundError: Nothing readable exists at path
            FormatError: The file is not valid JSON
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"File not found: {path}")

        if path.is_dir():
            export_file = self.find_export_file(path)
            if export_file is None:
                zip_path = self.find_takeout_zip(path)
                if zip_path is None:
                    raise FileNotFoundError(f"No location history export found in {path}")
                return self.read_zip(zip_path)
            path = export_file

        if zipfile.is_zipfile(path):
            return self.read_zip(path)

        logger.info(f"Reading file: {path}")
        return self._decode(path.read_bytes(), str(path))

    def _decode(self, content: bytes, name: str):
        try:
            return json.loads(content)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise FormatError(f"Invalid JSON in {name}: {e}") from e


def load_export(path: Path):
    return TakeoutReader().read(path)
