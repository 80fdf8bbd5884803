"""Receipt upload form: sign, PUT bytes to object storage, attach the key to an expense."""
import logging
import mimetypes
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from client.api_client import ApiError, ExpenseApiClient

logger = logging.getLogger(__name__)

NO_FILE_MESSAGE = "Please select a file"
SIGN_FAILED_MESSAGE = "Failed to get upload URL"
PUT_FAILED_MESSAGE = "Failed to upload file"
ATTACH_FAILED_MESSAGE = "Failed to update expense"
FALLBACK_MESSAGE = "Upload failed"


class UploadState(str, Enum):
    IDLE = "idle"
    SELECTED = "selected"
    UPLOADING = "uploading"
    DONE = "done"
    ERROR = "error"


class UploadError(Exception):
    """Terminal failure of one upload attempt. The message is shown to the user as-is."""


@dataclass(frozen=True)
class SelectedFile:
    name: str
    content: bytes
    content_type: str

    @classmethod
    def from_path(cls, path: Path) -> "SelectedFile":
        path = Path(path)
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return cls(name=path.name, content=path.read_bytes(), content_type=content_type)


class ReceiptUploadForm:
    """
    One upload form bound to one expense.

    idle -> selected -> uploading -> done | error. The form is disabled while
    uploading, so a second submit on the same instance is refused. Nothing is
    retried; after an error the user resubmits.
    """

    def __init__(
        self,
        api: ExpenseApiClient,
        expense_id: int,
        on_success: Optional[Callable[[], None]] = None,
    ):
        self.api = api
        self.expense_id = expense_id
        self.on_success = on_success
        self.state = UploadState.IDLE
        self.file: Optional[SelectedFile] = None
        self.error = ""

    @property
    def disabled(self) -> bool:
        return self.state is UploadState.UPLOADING

    def select_file(self, file: SelectedFile) -> None:
        if self.disabled:
            raise RuntimeError("Cannot change the file while an upload is in progress.")
        self.file = file
        self.error = ""
        self.state = UploadState.SELECTED

    def _fail(self, message: str) -> bool:
        self.error = message
        self.state = UploadState.ERROR
        logger.warning(f"Receipt upload for expense {self.expense_id} failed: {message}")
        return False

    async def submit(self) -> bool:
        """Runs the three upload steps in order. Returns True once the key is attached."""
        if self.disabled:
            logger.info(f"Ignoring submit for expense {self.expense_id}: upload already in progress.")
            return False
        self.error = ""
        if self.file is None:
            return self._fail(NO_FILE_MESSAGE)

        file = self.file
        self.state = UploadState.UPLOADING
        try:
            await self._upload(file)
        except UploadError as e:
            return self._fail(str(e) or FALLBACK_MESSAGE)
        except Exception as e:
            # Transport errors and malformed 2xx bodies end the attempt like any other step failure
            logger.exception(f"Unexpected error uploading receipt for expense {self.expense_id}: {e}")
            return self._fail(str(e) or FALLBACK_MESSAGE)

        self.file = None
        self.state = UploadState.DONE
        logger.info(f"Receipt '{file.name}' attached to expense {self.expense_id}.")
        if self.on_success:
            self.on_success()
        return True

    async def _upload(self, file: SelectedFile) -> None:
        try:
            descriptor = await self.api.sign_upload(file.name, file.content_type)
        except ApiError as e:
            raise UploadError(SIGN_FAILED_MESSAGE) from e

        try:
            await self.api.put_object(descriptor.upload_url, file.content, file.content_type)
        except ApiError as e:
            raise UploadError(PUT_FAILED_MESSAGE) from e

        try:
            await self.api.attach_file(self.expense_id, descriptor.key)
        except ApiError as e:
            raise UploadError(ATTACH_FAILED_MESSAGE) from e
