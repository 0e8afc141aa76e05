"""
Request Workspace: scratch paths and file lifecycle for one voice request.

Each request gets its own directory under the configured work dir, so
concurrent requests never share an intermediate waveform. The directory
is removed when the request leaves the workspace, whether it succeeded
or not. Uploaded input is staged separately and only discarded by the
caller after a successful response; reply audio is never removed here.
"""
from __future__ import annotations

import asyncio
import shutil
import time
import uuid
import structlog
from pathlib import Path
from typing import BinaryIO, Optional

logger = structlog.get_logger()

REPLY_PREFIX = "assistant_response_"
WAVEFORM_NAME = "normalized.wav"


def new_request_id() -> str:
    return uuid.uuid4().hex


def reply_audio_name(now: Optional[float] = None, suffix: str = "mp3") -> str:
    """assistant_response_<epoch ms>_<8 hex>.<suffix>"""
    ts = int((time.time() if now is None else now) * 1000)
    return f"{REPLY_PREFIX}{ts}_{uuid.uuid4().hex[:8]}.{suffix}"


class RequestWorkspace:
    """
    Per-request scratch directory.

    Usage:
        async with RequestWorkspace(work_dir) as ws:
            await transcoder.normalize(src, ws.waveform_path)
    """

    def __init__(self, root: str | Path, request_id: str = None):
        self.request_id = request_id or new_request_id()
        self.root = Path(root)
        self.path = self.root / self.request_id
        self._entered = False

    @property
    def waveform_path(self) -> Path:
        return self.path / WAVEFORM_NAME

    async def __aenter__(self) -> RequestWorkspace:
        await asyncio.to_thread(self.path.mkdir, parents=True, exist_ok=False)
        self._entered = True
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if not self._entered:
            return
        await asyncio.to_thread(shutil.rmtree, self.path, True)
        self._entered = False
        logger.debug("workspace_released", request_id=self.request_id,
                     failed=exc_type is not None)


# ──────────────────────────────────────────────────────────────
#  Upload staging
# ──────────────────────────────────────────────────────────────

def _copy_upload(src: BinaryIO, dest: Path) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    with open(dest, "wb") as out:
        shutil.copyfileobj(src, out)


async def stage_upload(src: BinaryIO, upload_dir: str | Path, filename: str = "") -> Path:
    """Persist an uploaded stream under a collision-free name, keeping its extension."""
    suffix = Path(filename).suffix.lower() if filename else ""
    dest = Path(upload_dir) / f"{uuid.uuid4().hex}{suffix}"
    await asyncio.to_thread(_copy_upload, src, dest)
    return dest


def discard_upload(path: str | Path) -> None:
    """Delete a staged upload. Called once the success response is on the wire."""
    try:
        Path(path).unlink()
    except FileNotFoundError:
        return
    except OSError as e:
        logger.warning("upload_cleanup_failed", path=str(path), error=str(e))
        return
    logger.debug("upload_discarded", path=str(path))
