from pathlib import Path
from typing import Optional
import structlog
from helpdesk.core.config import settings
from helpdesk.services.automation import AttachmentBlobStore

logger = structlog.get_logger()


class LocalBlobStore:
    """
    Attachment blobs kept as files under one directory, addressed by storage key.
    """

    def __init__(self, root: str):
        self.root = Path(root).resolve()

    def path_for(self, storage_key: str) -> Path:
        path = (self.root / storage_key).resolve()
        if not path.is_relative_to(self.root) or path == self.root:
            raise ValueError(f"Storage key escapes the attachment directory: {storage_key!r}")
        return path

    def delete(self, storage_key: str) -> None:
        path = self.path_for(storage_key)
        # Already gone counts as deleted.
        path.unlink(missing_ok=True)
        logger.debug("attachment_blob_unlinked", storage_key=storage_key)


def resolve_blob_store() -> Optional[AttachmentBlobStore]:
    """The configured attachment store, or None when retention has nowhere to delete from."""
    if not settings.ATTACHMENT_STORAGE_DIR:
        return None
    return LocalBlobStore(settings.ATTACHMENT_STORAGE_DIR)
