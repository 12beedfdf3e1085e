from .file_storage import LocalFileStorage, sha256_file
from .paths import PaperCategory, Paths

__all__ = ["LocalFileStorage", "PaperCategory", "Paths", "sha256_file"]
