"""Object storage gateway: presigned upload and download URLs for receipt files."""
import logging
import re
import uuid
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Optional, Union

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 3600
KEY_PREFIX = "receipts"
_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class UpstreamSigningError(ConnectionError):
    """Raised when the blob service refuses or fails to sign a URL."""


@dataclass(frozen=True)
class SignedReference:
    url: str
    key: str


@dataclass(frozen=True)
class UnsignedReference:
    """A stored reference returned as-is, with the reason it was not signed."""
    reference: str
    reason: str


FileReference = Union[SignedReference, UnsignedReference]


def is_absolute_url(reference: str) -> bool:
    return reference.startswith("http://") or reference.startswith("https://")


def sanitize_filename(filename: str) -> str:
    """Reduces a client-supplied filename to a safe object key segment."""
    name = PurePosixPath(filename.replace("\\", "/")).name
    name = _UNSAFE_FILENAME_CHARS.sub("_", name)[:100]
    return name or "upload"


def build_object_key(filename: str) -> str:
    return f"{KEY_PREFIX}/{uuid.uuid4().hex}-{sanitize_filename(filename)}"


class ObjectStorageGateway:
    """
    Wraps an S3-compatible bucket. Only mints time-limited URLs; the
    application server never handles file bytes.
    """

    def __init__(self, client, bucket: Optional[str], expires_in: int = DEFAULT_EXPIRES_IN):
        self.client = client
        self.bucket = bucket
        self.expires_in = expires_in

    @classmethod
    def from_settings(
        cls,
        bucket: Optional[str],
        region: str,
        endpoint_url: Optional[str] = None,
        expires_in: int = DEFAULT_EXPIRES_IN,
    ) -> "ObjectStorageGateway":
        """
        Builds the gateway at startup. Credentials are resolved here, so the
        provider chain (env, config files, instance metadata) never runs
        inside a request handler.
        """
        session = boto3.session.Session(region_name=region)
        credentials = session.get_credentials()
        if credentials is None:
            logger.warning("No AWS credentials found. URL signing will fail.")
        else:
            credentials.get_frozen_credentials()
        client = session.client(
            "s3",
            endpoint_url=endpoint_url or None,
            config=Config(signature_version="s3v4"),
        )
        return cls(client, bucket, expires_in=expires_in)

    @property
    def is_configured(self) -> bool:
        return bool(self.bucket)

    def _presign(self, method: str, params: dict) -> str:
        if not self.bucket:
            raise UpstreamSigningError("Storage bucket is not configured.")
        try:
            return self.client.generate_presigned_url(
                ClientMethod=method,
                Params={"Bucket": self.bucket, **params},
                ExpiresIn=self.expires_in,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to sign {method} for key '{params.get('Key')}': {e}")
            raise UpstreamSigningError(f"Could not sign {method}: {e}") from e

    def sign_put(self, key: str, content_type: str) -> str:
        """URL authorizing a single PUT of `key` with the given content type."""
        return self._presign("put_object", {"Key": key, "ContentType": content_type})

    def sign_get(self, key: str) -> str:
        """URL authorizing a GET of `key`."""
        return self._presign("get_object", {"Key": key})

    def sign_upload(self, filename: str, content_type: str) -> SignedReference:
        key = build_object_key(filename)
        upload_url = self.sign_put(key, content_type)
        logger.info(f"Issued upload URL for key '{key}' ({content_type}).")
        return SignedReference(url=upload_url, key=key)

    def resolve_download_url(self, reference: str) -> FileReference:
        """
        Turns a stored file reference into something a client can fetch.

        Absolute URLs pass through. Bare keys are signed; a signing failure
        degrades to the unsigned key instead of failing the caller.
        """
        if is_absolute_url(reference):
            return UnsignedReference(reference=reference, reason="absolute URL")
        try:
            return SignedReference(url=self.sign_get(reference), key=reference)
        except UpstreamSigningError as e:
            logger.warning(f"Returning unsigned reference '{reference}': {e}")
            return UnsignedReference(reference=reference, reason=str(e))
