"""
S3 bucket backend.

Works against AWS S3 and any S3-compatible endpoint (MinIO, Ceph RGW).
Copies are server-side; large objects are copied and uploaded in parts by
boto3's transfer manager using the worker-group size from S3Config.
"""

import io
import logging
import tempfile
from typing import BinaryIO, List, Optional

import boto3
from boto3.exceptions import S3UploadFailedError
from boto3.s3.transfer import TransferConfig
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from blobsnap.config import S3Config, S3SessionConfig, StorageType
from blobsnap.context import Context
from blobsnap.errors import (
    BackendError,
    CapabilityError,
    ObjectNotFoundError,
    SessionError,
)
from .bucket import Bucket, Copier, Deleter, ObjectInfo, register_bucket


logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {'404', 'NoSuchKey', 'NotFound'}

# Writers spill to disk above this size
_SPOOL_MAX_SIZE = 8 * 1024 * 1024


def new_session(config: S3SessionConfig):
    """
    Create an S3 client from session parameters.

    Args:
        config: Bound S3 session configuration

    Returns:
        boto3 S3 client

    Raises:
        SessionError: If the client cannot be created
    """
    endpoint = config.endpoint or None
    if endpoint and '://' not in endpoint:
        endpoint = f"{'https' if config.use_ssl else 'http'}://{endpoint}"

    boto_config = BotoConfig(
        connect_timeout=config.connect_timeout,
        read_timeout=config.read_timeout,
        retries={'max_attempts': config.max_retries, 'mode': 'standard'},
        s3={'addressing_style': 'path' if config.force_path_style else 'auto'},
    )

    try:
        session = boto3.session.Session(
            aws_access_key_id=config.access_key or None,
            aws_secret_access_key=config.secret_access_key or None,
            aws_session_token=config.token or None,
            region_name=config.region or None,
        )
        return session.client(
            's3',
            endpoint_url=endpoint,
            use_ssl=config.use_ssl,
            config=boto_config,
        )
    except (BotoCoreError, ValueError) as e:
        raise SessionError(f"Failed to initialize S3 client: {e}") from e


def new_transfer_config(config: S3Config) -> TransferConfig:
    return TransferConfig(
        multipart_threshold=config.multipart_threshold,
        multipart_chunksize=config.max_part_size,
        max_concurrency=config.max_concurrency,
        use_threads=config.use_threads,
    )


class ObjectReader(io.BufferedIOBase):
    """
    Readable stream over an S3 object body.

    Each read checks the context. Closing the reader releases the HTTP
    connection.
    """

    def __init__(self, ctx: Context, body, bucket: str, key: str):
        super().__init__()
        self._ctx = ctx
        self._body = body
        self.bucket = bucket
        self.key = key

    def readable(self) -> bool:
        return True

    def read(self, size: Optional[int] = -1) -> bytes:
        if self.closed:
            raise ValueError("I/O operation on closed file")
        self._ctx.check()
        try:
            return self._body.read(size if size is not None and size >= 0 else None)
        except BotoCoreError as e:
            raise BackendError(f"Failed to read s3://{self.bucket}/{self.key}: {e}") from e

    def read1(self, size: int = -1) -> bytes:
        return self.read(size)

    def close(self):
        if self.closed:
            return
        try:
            self._body.close()
        finally:
            super().close()


class ObjectWriter(io.BufferedIOBase):
    """
    Writable stream that uploads to S3 on close.

    Data is spooled locally and uploaded in one managed transfer, so the
    object is never visible half-written.
    """

    def __init__(self, ctx: Context, bucket: 'S3Bucket', key: str):
        super().__init__()
        self._ctx = ctx
        self._bucket = bucket
        self._buffer = tempfile.SpooledTemporaryFile(max_size=_SPOOL_MAX_SIZE)
        self.key = key

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        if self.closed:
            raise ValueError("I/O operation on closed file")
        return self._buffer.write(data)

    def close(self):
        if self.closed:
            return
        try:
            self._buffer.seek(0)
            self._bucket._upload(self._ctx, self._buffer, self.key)
        finally:
            self._buffer.close()
            super().close()

    def abort(self):
        """Discard the spooled data without uploading."""
        if self.closed:
            return
        self._buffer.close()
        super().close()
        logger.debug(f"Aborted upload to s3://{self._bucket.name}/{self.key}")

    def __exit__(self, exc_type, exc_value, traceback):
        if exc_type is not None:
            self.abort()
        else:
            self.close()
        return False


class S3Deleter(Deleter):
    """
    Deletes objects from one S3 bucket.

    Deleting a key that does not exist succeeds, as it does in S3 itself.
    """

    def __init__(self, ctx: Context, bucket: 'S3Bucket'):
        self._ctx = ctx
        self._bucket = bucket

    def delete(self, key: str):
        self._ctx.check()
        try:
            self._bucket.client.delete_object(Bucket=self._bucket.name, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise self._bucket.translate_error(e, 'delete', key) from e
        logger.debug(f"Deleted s3://{self._bucket.name}/{key}")


class S3Copier(Copier):
    """Server-side copies inside one S3 bucket."""

    def __init__(self, ctx: Context, bucket: 'S3Bucket'):
        self._ctx = ctx
        self._bucket = bucket

    def copy(self, src: str, dst: str):
        self._ctx.check()
        try:
            self._bucket.client.copy(
                {'Bucket': self._bucket.name, 'Key': src},
                self._bucket.name,
                dst,
                Config=self._bucket.transfer_config,
                Callback=self._bucket.progress_callback(self._ctx),
            )
        except (ClientError, BotoCoreError) as e:
            raise self._bucket.translate_error(e, 'copy', src) from e
        logger.debug(f"Copied s3://{self._bucket.name}/{src} to {dst}")


class S3Bucket(Bucket):
    """
    Bucket backed by an S3 client.

    The client is created once and shared by every capability handed out;
    boto3 clients are safe for concurrent use.
    """

    def __init__(
        self,
        bucket_name: str,
        session_config: S3SessionConfig,
        s3_config: S3Config,
        client=None,
    ):
        """
        Initialize S3 bucket.

        Args:
            bucket_name: S3 bucket name
            session_config: Connection parameters, used unless ``client`` is given
            s3_config: Transfer settings
            client: Pre-built boto3 S3 client

        Raises:
            SessionError: If the session cannot be established or, with
                ``verify_bucket``, the bucket is not reachable
        """
        if not bucket_name:
            raise SessionError("S3 bucket name is required")

        self.name = bucket_name
        self.client = client if client is not None else new_session(session_config)
        self.transfer_config = new_transfer_config(s3_config)
        self._closed = False

        if session_config.verify_bucket:
            self.test_connection()

    def translate_error(self, error: Exception, action: str, key: Optional[str] = None):
        """Map a botocore error to ObjectNotFoundError or BackendError."""
        if isinstance(error, ClientError):
            error_code = error.response.get('Error', {}).get('Code', 'Unknown')
            if key is not None and error_code in _NOT_FOUND_CODES:
                return ObjectNotFoundError(self.name, key)
            return BackendError(f"S3 {action} failed ({error_code}): {error}")
        return BackendError(f"S3 {action} failed: {error}")

    @staticmethod
    def progress_callback(ctx: Context):
        """Transfer callback that aborts the transfer once ctx is done."""
        def callback(bytes_transferred):
            ctx.check()
        return callback

    def _ensure_open(self, capability: str):
        if self._closed:
            raise CapabilityError(f"Cannot obtain {capability}: bucket {self.name} is closed")

    def reader(self, ctx: Context, key: str) -> BinaryIO:
        self._ensure_open('reader')
        ctx.check()
        try:
            response = self.client.get_object(Bucket=self.name, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise self.translate_error(e, 'get', key) from e
        return ObjectReader(ctx, response['Body'], self.name, key)

    def writer(self, ctx: Context, key: str) -> ObjectWriter:
        self._ensure_open('writer')
        ctx.check()
        return ObjectWriter(ctx, self, key)

    def _upload(self, ctx: Context, fileobj: BinaryIO, key: str):
        ctx.check()
        try:
            self.client.upload_fileobj(
                fileobj,
                self.name,
                key,
                Config=self.transfer_config,
                Callback=self.progress_callback(ctx),
            )
        except (ClientError, BotoCoreError, S3UploadFailedError) as e:
            raise self.translate_error(e, 'upload') from e
        logger.debug(f"Uploaded s3://{self.name}/{key}")

    def deleter(self, ctx: Context) -> S3Deleter:
        self._ensure_open('deleter')
        ctx.check()
        return S3Deleter(ctx, self)

    def copier(self, ctx: Context) -> S3Copier:
        self._ensure_open('copier')
        ctx.check()
        return S3Copier(ctx, self)

    def list_objects(self, ctx: Context, prefix: str = '') -> List[ObjectInfo]:
        """
        List objects in the bucket with the given prefix.

        Raises:
            BackendError: If listing fails
        """
        self._ensure_open('lister')
        objects = []
        try:
            paginator = self.client.get_paginator('list_objects_v2')
            for page in paginator.paginate(Bucket=self.name, Prefix=prefix):
                ctx.check()
                for obj in page.get('Contents', []):
                    objects.append(ObjectInfo(
                        key=obj['Key'],
                        size=obj['Size'],
                        last_modified=obj.get('LastModified'),
                    ))
        except (ClientError, BotoCoreError) as e:
            raise self.translate_error(e, 'list') from e
        return objects

    def test_connection(self) -> bool:
        """
        Test S3 connection and bucket access.

        Returns:
            True if connection is successful

        Raises:
            SessionError: If the bucket is missing or not accessible
        """
        try:
            self.client.head_bucket(Bucket=self.name)
            return True
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code in ('404', 'NoSuchBucket'):
                raise SessionError(f"Bucket does not exist: {self.name}") from e
            elif error_code == '403':
                raise SessionError(f"Access denied to bucket: {self.name}") from e
            else:
                raise SessionError(f"S3 connection test failed ({error_code}): {e}") from e
        except BotoCoreError as e:
            raise SessionError(f"Failed to connect to S3: {e}") from e

    def close(self):
        if self._closed:
            return
        self._closed = True
        self.client.close()

    def __repr__(self):
        return f'<S3Bucket {self.name}>'


register_bucket(StorageType.S3, S3Bucket)
