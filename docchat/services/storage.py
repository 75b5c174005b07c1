import os
import re
import time
from pathlib import Path
from urllib.parse import quote

import aiofiles
import aiofiles.os
import structlog

from ..errors import StorageError

logger = structlog.get_logger(logger_name=__name__)

MAX_NAME_LENGTH = 256
MAX_SAFE_NAME_LENGTH = 200

_UNSAFE = re.compile(r"[^a-zA-Z0-9.-]")


def shorten_file_name(name: str, limit: int = MAX_NAME_LENGTH) -> str:
    """Trim the stem so ``name`` fits in ``limit`` characters, keeping the extension."""
    if len(name) <= limit:
        return name
    stem, ext = os.path.splitext(name)
    if not stem or len(ext) >= limit:
        return name[:limit]
    return stem[: limit - len(ext)] + ext


def safe_file_name(name: str) -> str:
    # room for the timestamp prefix within a 255 byte file name
    safe = _UNSAFE.sub("_", os.path.basename(name or "")) or "file"
    return shorten_file_name(safe, MAX_SAFE_NAME_LENGTH)


def object_path(owner_id: str, file_name: str, folder: str = "documents") -> str:
    timestamp = int(time.time() * 1000)
    return f"{owner_id}/{folder}/{timestamp}_{safe_file_name(file_name)}"


class LocalStorage:
    """Object storage on a local directory."""

    def __init__(self, root: str, public_base_url: str = "") -> None:
        self.root = Path(root).resolve()
        self.public_base_url = public_base_url.rstrip("/")

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if target != self.root and self.root not in target.parents:
            raise StorageError(f"Path escapes storage root: {path}")
        return target

    async def upload(self, path: str, data: bytes) -> None:
        target = self._resolve(path)
        try:
            await aiofiles.os.makedirs(target.parent, exist_ok=True)
            async with aiofiles.open(target, "wb") as f:
                await f.write(data)
        except OSError as e:
            raise StorageError(f"Upload of {path} failed: {e}", user_message="The file could not be stored.") from e
        logger.info("file_stored", path=path, size=len(data))

    async def download(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            async with aiofiles.open(target, "rb") as f:
                return await f.read()
        except OSError as e:
            raise StorageError(f"File download error for {path}: {e}") from e

    async def delete(self, path: str) -> None:
        target = self._resolve(path)
        try:
            await aiofiles.os.remove(target)
        except FileNotFoundError:
            logger.info("file_already_removed", path=path)
        except OSError as e:
            raise StorageError(f"Delete of {path} failed: {e}", user_message="The file could not be deleted.") from e

    def get_public_url(self, path: str) -> str:
        return f"{self.public_base_url}/{quote(path)}"
