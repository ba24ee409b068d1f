"""
Media staging for the composer.

Holds the images a user attached before sending. Capacity and labels
depend on the active mode: frames-to-video takes a start and an end frame,
references-to-video takes up to the reference limit, every other mode takes
a small number of plain attachments.
"""
from __future__ import annotations

import base64
import binascii
import mimetypes
from pathlib import Path
from typing import Optional

from genstudio.config import Config, default_config
from genstudio.models import GenerationMode, UploadedMedia, VideoSubMode


class MediaRejected(ValueError):
    """Raised when an attachment cannot be staged."""

    def __init__(self, title: str, description: str):
        self.title = title
        self.description = description
        super().__init__(f"{title}: {description}")


class MediaStaging:
    """Ordered list of staged images; attachment order is significant."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or default_config
        self._items: list[UploadedMedia] = []

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(list(self._items))

    @property
    def items(self) -> list[UploadedMedia]:
        return list(self._items)

    def capacity(self, mode: GenerationMode, sub_mode: VideoSubMode) -> int:
        if mode == GenerationMode.VIDEO and sub_mode == VideoSubMode.REFERENCES_TO_VIDEO:
            return self.config.max_reference_images
        return self.config.max_staged_images

    @staticmethod
    def label_for(index: int, mode: GenerationMode, sub_mode: VideoSubMode) -> Optional[str]:
        if mode != GenerationMode.VIDEO:
            return None
        if sub_mode == VideoSubMode.FRAMES_TO_VIDEO:
            return "Start Frame" if index == 0 else "End Frame"
        if sub_mode == VideoSubMode.REFERENCES_TO_VIDEO:
            return f"Reference {index + 1}"
        return None

    def add(
        self,
        mime_type: str,
        data: bytes,
        mode: GenerationMode,
        sub_mode: VideoSubMode,
    ) -> UploadedMedia:
        """Validate and stage raw image bytes."""
        self._check_capacity(1, mode, sub_mode)
        if not (mime_type or "").startswith("image/"):
            raise MediaRejected("Invalid file", "Only image files are allowed.")
        if not data:
            raise MediaRejected("Invalid file", "The file is empty.")
        if len(data) > self.config.max_upload_bytes:
            limit_mb = self.config.max_upload_bytes / (1024 * 1024)
            raise MediaRejected(
                "File too large",
                f"Images must be smaller than {limit_mb:.0f} MB.",
            )

        encoded = base64.b64encode(data).decode("ascii")
        item = UploadedMedia(
            mime_type=mime_type,
            data=encoded,
            preview=f"data:{mime_type};base64,{encoded}",
            label=self.label_for(len(self._items), mode, sub_mode),
        )
        self._items.append(item)
        return item

    def add_base64(
        self,
        mime_type: str,
        data: str,
        mode: GenerationMode,
        sub_mode: VideoSubMode,
    ) -> UploadedMedia:
        try:
            raw = base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise MediaRejected("Invalid file", "Image data is not valid base64.") from exc
        return self.add(mime_type, raw, mode, sub_mode)

    def add_file(
        self,
        path: Path,
        mode: GenerationMode,
        sub_mode: VideoSubMode,
    ) -> UploadedMedia:
        mime_type, _ = mimetypes.guess_type(str(path))
        return self.add(mime_type or "application/octet-stream", Path(path).read_bytes(), mode, sub_mode)

    def add_many(
        self,
        files: list[tuple[str, bytes]],
        mode: GenerationMode,
        sub_mode: VideoSubMode,
    ) -> list[UploadedMedia]:
        """Stage a batch; the whole batch is refused when it would overflow."""
        self._check_capacity(len(files), mode, sub_mode)
        return [self.add(mime_type, data, mode, sub_mode) for mime_type, data in files]

    def remove(self, media_id: str, mode: GenerationMode, sub_mode: VideoSubMode) -> bool:
        before = len(self._items)
        self._items = [item for item in self._items if item.id != media_id]
        for index, item in enumerate(self._items):
            item.label = self.label_for(index, mode, sub_mode)
        return len(self._items) != before

    def clear(self) -> None:
        self._items = []

    def _check_capacity(self, incoming: int, mode: GenerationMode, sub_mode: VideoSubMode) -> None:
        limit = self.capacity(mode, sub_mode)
        if len(self._items) + incoming > limit:
            raise MediaRejected(
                "Too many images",
                f"Maximum {limit} images allowed for this mode.",
            )
