"""
S3 Provider Implementation

Concrete implementation of ProviderInterface for S3-compatible storage
(AWS S3, MinIO, Wasabi, Cloudflare R2, ...).

Small files go up with a single put_object; larger files use boto3's managed
multipart transfer. Optional companions: the recording's events JSON and its
thumbnails.
"""

import logging
import os
import threading
from typing import Any, Callable, Dict, List, Optional

import boto3
from boto3.exceptions import S3UploadFailedError
from boto3.s3.transfer import TransferConfig
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from upload.constants import (
    MAIN_THUMBNAIL_SUFFIX,
    S3_DEFAULT_REGION,
    S3_DEFAULT_STORAGE_CLASS,
    S3_MULTIPART_CHUNK_SIZE,
    S3_MULTIPART_CONCURRENCY,
    S3_MULTIPART_THRESHOLD,
    THUMBNAILS_DIR_SUFFIX,
    AccountType,
    ErrorCode,
)
from upload.interfaces.provider_interface import (
    CancellationToken,
    ConnectionTestResult,
    CredentialsOnly,
    ProgressCallback,
    ProgressUpdate,
    ProviderInterface,
    UploadCancelledError,
    UploadError,
)
from upload.utils.file_utils import (
    build_object_key,
    events_json_path,
    get_content_type,
    join_url,
    list_event_thumbnails,
    main_thumbnail_path,
    sibling_key,
    upload_timestamp,
)

ClientFactory = Callable[[Dict[str, Any], Dict[str, Any]], Any]

_NOT_FOUND_CODES = {"404", "NoSuchBucket", "NotFound"}
_FORBIDDEN_CODES = {"403", "AccessDenied", "Forbidden"}


class _TransferProgress:
    """
    boto3 transfer callback: accumulates bytes across worker threads and
    aborts the transfer once the job is cancelled.
    """

    def __init__(
        self,
        total_bytes: int,
        on_progress: Optional[ProgressCallback],
        cancel_token: CancellationToken,
    ):
        self.total_bytes = total_bytes
        self.on_progress = on_progress
        self.cancel_token = cancel_token
        self.bytes_uploaded = 0
        self._lock = threading.Lock()

    def __call__(self, bytes_amount: int) -> None:
        self.cancel_token.raise_if_cancelled()

        with self._lock:
            self.bytes_uploaded += bytes_amount
            uploaded = self.bytes_uploaded

        if self.on_progress and self.total_bytes:
            self.on_progress(
                ProgressUpdate(
                    percentage=round(uploaded / self.total_bytes * 100),
                    bytes_uploaded=uploaded,
                    total_bytes=self.total_bytes,
                ),
            )


class S3Provider(ProviderInterface):
    """
    Upload provider for S3-compatible object storage.

    Credentials: access_key_id, secret_access_key
    Config: bucket, region, endpoint, public_url, prefix, force_path_style,
            storage_class
    """

    provider_type = AccountType.S3
    display_name = "S3-Compatible Storage"

    def __init__(self, client_factory: Optional[ClientFactory] = None):
        """
        Initialize S3 provider.

        Args:
            client_factory: Builds an S3 client from (credentials, config);
                injected in tests
        """
        self.logger = logging.getLogger(__name__)
        self.client_factory = client_factory or self.create_client

    def create_client(self, credentials: Dict[str, Any], config: Dict[str, Any]):
        """Create an S3 client, with custom endpoint for non-AWS services"""
        client_kwargs: Dict[str, Any] = {
            "region_name": config.get("region") or S3_DEFAULT_REGION,
            "aws_access_key_id": credentials.get("access_key_id"),
            "aws_secret_access_key": credentials.get("secret_access_key"),
        }

        endpoint = str(config.get("endpoint") or "").strip()
        if endpoint:
            client_kwargs["endpoint_url"] = endpoint
            if config.get("force_path_style"):
                client_kwargs["config"] = BotoConfig(s3={"addressing_style": "path"})

        return boto3.client("s3", **client_kwargs)

    # =========================================================================
    # ACCOUNT CHECKS
    # =========================================================================

    def check_auth(
        self,
        credentials: Dict[str, Any],
        config: Dict[str, Any],
    ) -> CredentialsOnly:
        """
        Validate credentials by checking the bucket exists and is reachable.

        Raises:
            UploadError: CREDENTIALS_INVALID with a message per failure kind
        """
        if not credentials.get("access_key_id") or not credentials.get("secret_access_key"):
            raise UploadError(
                "Access Key ID and Secret Access Key are required",
                code=ErrorCode.CREDENTIALS_INVALID,
            )

        bucket = config.get("bucket")
        if not bucket:
            raise UploadError("Bucket name is required", code=ErrorCode.CREDENTIALS_INVALID)

        client = self.client_factory(credentials, config)
        try:
            client.head_bucket(Bucket=bucket)
        except ClientError as e:
            error_code = str(e.response.get("Error", {}).get("Code", ""))
            if error_code in _NOT_FOUND_CODES:
                message = f'Bucket "{bucket}" not found'
            elif error_code in _FORBIDDEN_CODES:
                message = "Access denied to bucket (check credentials)"
            else:
                message = f"Connection failed: {e}"
            raise UploadError(message, code=ErrorCode.CREDENTIALS_INVALID) from e
        except BotoCoreError as e:
            raise UploadError(
                f"Connection failed: {e}",
                code=ErrorCode.CREDENTIALS_INVALID,
            ) from e

        return CredentialsOnly(valid=True)

    def test_connection(
        self,
        credentials: Dict[str, Any],
        config: Dict[str, Any],
    ) -> ConnectionTestResult:
        try:
            self.check_auth(credentials, config)
        except UploadError as e:
            self.logger.error(f"❌ S3 connection test failed: {e}")
            return ConnectionTestResult(False, str(e))

        self.logger.info("✅ S3 connection test successful")
        return ConnectionTestResult(
            True,
            "Successfully connected to S3",
            details={
                "bucket": config.get("bucket"),
                "endpoint": config.get("endpoint") or "AWS S3",
            },
        )

    # =========================================================================
    # UPLOAD
    # =========================================================================

    def upload(
        self,
        credentials: Dict[str, Any],
        config: Dict[str, Any],
        file_path: str,
        metadata: Dict[str, Any],
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[str, Any]:
        """
        Upload a file to the account's bucket.

        Returns:
            {success, location, key, bucket, size, timestamp, etag,
             metadata_key, thumbnail_keys}
        """
        cancel_token = cancel_token or CancellationToken()
        metadata = metadata or {}

        if not os.path.exists(file_path):
            raise UploadError(f"File not found: {file_path}", code=ErrorCode.FILE_NOT_FOUND)

        bucket = config.get("bucket")
        file_size = os.path.getsize(file_path)
        file_name = os.path.basename(file_path)
        timestamp = upload_timestamp()

        key = build_object_key(
            file_name,
            prefix=config.get("prefix") or "",
            timestamp=None if metadata.get("preserve_filename") else timestamp,
        )

        extra_args = self._build_extra_args(file_name, file_size, timestamp, metadata, config)
        client = self.client_factory(credentials, config)

        cancel_token.raise_if_cancelled()
        self.logger.info(f"Starting S3 upload: {file_path} -> s3://{bucket}/{key}")

        etag = None
        if file_size < S3_MULTIPART_THRESHOLD:
            try:
                with open(file_path, "rb") as body:
                    response = client.put_object(Bucket=bucket, Key=key, Body=body, **extra_args)
                etag = response.get("ETag") if isinstance(response, dict) else None
            except (ClientError, BotoCoreError) as e:
                raise UploadError(
                    f"Upload failed: {e}",
                    code=ErrorCode.REMOTE_TRANSFER_FAILED,
                ) from e

            if on_progress:
                on_progress(ProgressUpdate(100, file_size, file_size))
        else:
            self._upload_multipart(
                client, file_path, bucket, key, file_size, extra_args,
                on_progress, cancel_token,
            )

        public_url = config.get("public_url") or ""
        location = join_url(public_url, key) if public_url else f"s3://{bucket}/{key}"

        metadata_key = None
        if metadata.get("include_metadata"):
            metadata_key = self._upload_events_json(client, bucket, key, file_path)

        thumbnail_keys: List[str] = []
        if metadata.get("include_thumbnails"):
            thumbnail_keys = self._upload_thumbnails(client, bucket, key, file_path, metadata)

        self.logger.info(f"✅ S3 upload successful: {location}")

        return {
            "success": True,
            "location": location,
            "key": key,
            "bucket": bucket,
            "size": file_size,
            "timestamp": timestamp,
            "etag": etag,
            "metadata_key": metadata_key,
            "thumbnail_keys": thumbnail_keys,
        }

    def _build_extra_args(
        self,
        file_name: str,
        file_size: int,
        timestamp: str,
        metadata: Dict[str, Any],
        config: Dict[str, Any],
    ) -> Dict[str, Any]:
        # S3 user metadata values must be strings
        object_metadata = {
            "original-filename": file_name,
            "upload-timestamp": timestamp,
            "file-size": str(file_size),
        }
        for name, value in metadata.items():
            if value is not None:
                object_metadata[name] = str(value)

        extra_args: Dict[str, Any] = {
            "Metadata": object_metadata,
            "ContentType": get_content_type(file_name),
            "StorageClass": config.get("storage_class") or S3_DEFAULT_STORAGE_CLASS,
        }
        if metadata.get("make_public"):
            extra_args["ACL"] = "public-read"
        return extra_args

    def _upload_multipart(
        self,
        client,
        file_path: str,
        bucket: str,
        key: str,
        file_size: int,
        extra_args: Dict[str, Any],
        on_progress: Optional[ProgressCallback],
        cancel_token: CancellationToken,
    ) -> None:
        """Managed multipart transfer: 5 MiB parts, 4 in flight"""
        transfer_config = TransferConfig(
            multipart_threshold=S3_MULTIPART_THRESHOLD,
            multipart_chunksize=S3_MULTIPART_CHUNK_SIZE,
            max_concurrency=S3_MULTIPART_CONCURRENCY,
        )
        progress = _TransferProgress(file_size, on_progress, cancel_token)

        try:
            client.upload_file(
                file_path,
                bucket,
                key,
                ExtraArgs=extra_args,
                Callback=progress,
                Config=transfer_config,
            )
        except UploadCancelledError:
            raise
        except (ClientError, BotoCoreError, S3UploadFailedError) as e:
            cancel_token.raise_if_cancelled()
            raise UploadError(
                f"Multipart upload failed: {e}",
                code=ErrorCode.REMOTE_TRANSFER_FAILED,
            ) from e

        cancel_token.raise_if_cancelled()

    def _upload_events_json(
        self,
        client,
        bucket: str,
        key: str,
        file_path: str,
    ) -> Optional[str]:
        """
        Upload the recording's events JSON next to the video.

        Returns:
            Object key, or None if there is no JSON or the upload failed
        """
        json_path = events_json_path(file_path)
        if not json_path.exists():
            self.logger.info(f"No metadata JSON file found for {file_path}")
            return None

        metadata_key = sibling_key(key, ".json")
        try:
            client.put_object(
                Bucket=bucket,
                Key=metadata_key,
                Body=json_path.read_bytes(),
                ContentType="application/json",
            )
        except (ClientError, BotoCoreError, OSError) as e:
            self.logger.warning(f"Failed to upload metadata JSON: {e}")
            return None

        return metadata_key

    def _upload_thumbnails(
        self,
        client,
        bucket: str,
        key: str,
        file_path: str,
        metadata: Dict[str, Any],
    ) -> List[str]:
        """
        Upload the main thumbnail and every event thumbnail.

        Returns:
            Keys of the thumbnails that were uploaded
        """
        uploads = []

        main_thumb = metadata.get("main_thumbnail_path") or main_thumbnail_path(file_path)
        if os.path.exists(main_thumb):
            uploads.append((str(main_thumb), sibling_key(key, MAIN_THUMBNAIL_SUFFIX)))

        thumbs_prefix = sibling_key(key, THUMBNAILS_DIR_SUFFIX)
        for thumb in list_event_thumbnails(file_path):
            uploads.append((str(thumb), f"{thumbs_prefix}/{thumb.name}"))

        keys = []
        for local_path, thumb_key in uploads:
            try:
                with open(local_path, "rb") as body:
                    client.put_object(
                        Bucket=bucket,
                        Key=thumb_key,
                        Body=body,
                        ContentType=get_content_type(local_path),
                    )
                keys.append(thumb_key)
            except (ClientError, BotoCoreError, OSError) as e:
                self.logger.warning(f"Failed to upload thumbnail {local_path}: {e}")

        self.logger.info(f"Uploaded {len(keys)}/{len(uploads)} thumbnails")
        return keys
