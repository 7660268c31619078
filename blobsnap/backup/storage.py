"""
Backup storage service.

Composes one Bucket and an optional Compressor behind the Storage contract.
The current artifact lives under ``filename + suffix``; ``backup`` copies it
server-side to ``filename_<unix-nanoseconds>suffix``.
"""

import copy
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import BinaryIO, Callable, List, Optional

from blobsnap.config import StorageConfig
from blobsnap.context import Context, ensure
from blobsnap.errors import OptionFailedError
from .bucket import Bucket, new_bucket
from .compression import Compressor, new_compressor
from . import s3  # noqa: F401  registers the S3 backend


logger = logging.getLogger(__name__)


Option = Callable[[StorageConfig], None]

DEFAULT_CONFIG = StorageConfig()


def with_storage_type(storage_type: str) -> Option:
    def option(config: StorageConfig):
        config.storage_type = storage_type
    return option


def with_bucket_name(bucket_name: str) -> Option:
    def option(config: StorageConfig):
        config.bucket_name = bucket_name
    return option


def with_filename(filename: str) -> Option:
    def option(config: StorageConfig):
        if not filename:
            raise ValueError("filename must not be empty")
        config.filename = filename
    return option


def with_suffix(suffix: str) -> Option:
    def option(config: StorageConfig):
        config.suffix = suffix
    return option


def with_compress_algorithm(algorithm: str) -> Option:
    def option(config: StorageConfig):
        config.compress_algorithm = algorithm
    return option


def with_compression_level(level: int) -> Option:
    def option(config: StorageConfig):
        config.compression_level = int(level)
    return option


def with_session(**kwargs) -> Option:
    """Override S3 session fields, e.g. ``with_session(endpoint='minio:9000')``."""
    def option(config: StorageConfig):
        for name, value in kwargs.items():
            if not hasattr(config.session, name):
                raise AttributeError(f"unknown session option: {name}")
            setattr(config.session, name, value)
    return option


def with_max_concurrency(workers: int) -> Option:
    def option(config: StorageConfig):
        if workers < 1:
            raise ValueError(f"max concurrency must be positive, got {workers}")
        config.s3.max_concurrency = workers
    return option


@dataclass
class Snapshot:
    """A timestamped backup copy of the canonical object."""
    key: str
    timestamp_ns: int
    size: int
    last_modified: Optional[datetime] = None

    @property
    def created_at(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp_ns / 1e9, tz=timezone.utc)


class Storage(ABC):
    """Backup/restore operations on one named artifact."""

    @abstractmethod
    def backup(self, ctx: Optional[Context] = None) -> str:
        ...

    @abstractmethod
    def delete(self, ctx: Optional[Context] = None):
        ...

    @abstractmethod
    def reader(self, ctx: Optional[Context] = None) -> BinaryIO:
        ...


class BlobStorage(Storage):
    """
    Storage over a remote bucket with optional transparent compression.

    Instances are immutable after construction and safe to share between
    threads; every operation goes straight to the bucket.
    """

    def __init__(self, config: StorageConfig, bucket: Bucket, compressor: Optional[Compressor]):
        self._config = config
        self._bucket = bucket
        self._compressor = compressor
        # Snapshot keys carry a 19-digit time.time_ns() value
        self._snapshot_pattern = re.compile(
            re.escape(config.filename) + r'_(\d{19})' + re.escape(config.suffix) + r'$'
        )

    @property
    def bucket_name(self) -> str:
        return self._bucket.name

    @property
    def key(self) -> str:
        """Key of the canonical object."""
        return self._config.filename + self._config.suffix

    @property
    def compressor(self) -> Optional[Compressor]:
        return self._compressor

    def snapshot_key(self, timestamp_ns: int) -> str:
        return f"{self._config.filename}_{timestamp_ns}{self._config.suffix}"

    def reader(self, ctx: Optional[Context] = None) -> BinaryIO:
        """
        Open the canonical object for reading.

        Returns:
            Stream of decompressed bytes; closing it releases the connection

        Raises:
            ObjectNotFoundError: If the canonical object does not exist
            BackendError: On transport or permission failures
            DecompressionError: If the decompressing stream cannot be opened
        """
        ctx = ensure(ctx)
        stream = self._bucket.reader(ctx, self.key)

        if self._compressor is not None:
            try:
                return self._compressor.reader(stream)
            except Exception:
                stream.close()
                raise

        return stream

    def writer(self, ctx: Optional[Context] = None) -> BinaryIO:
        """
        Open the canonical object for writing.

        The object is replaced when the stream is closed. Leaving a ``with``
        block on an exception uploads nothing.
        """
        ctx = ensure(ctx)
        stream = self._bucket.writer(ctx, self.key)

        if self._compressor is not None:
            return self._compressor.writer(stream)

        return stream

    def delete(self, ctx: Optional[Context] = None):
        """
        Delete the canonical object.

        Raises:
            CapabilityError: If the bucket cannot hand out a deleter
            BackendError: If the delete request fails
        """
        ctx = ensure(ctx)
        deleter = self._bucket.deleter(ctx)
        deleter.delete(self.key)
        logger.info(f"Deleted {self.key} from {self.bucket_name}")

    def backup(self, ctx: Optional[Context] = None) -> str:
        """
        Snapshot the canonical object with a server-side copy.

        Stored bytes are duplicated as-is, so a compressed object stays
        compressed in its snapshot.

        Returns:
            Key of the new snapshot

        Raises:
            CapabilityError: If the bucket cannot hand out a copier
            ObjectNotFoundError: If the canonical object does not exist
            BackendError: If the copy request fails
        """
        ctx = ensure(ctx)
        copier = self._bucket.copier(ctx)

        to = self.snapshot_key(time.time_ns())
        copier.copy(self.key, to)
        logger.info(f"Backed up {self.key} to {to} in {self.bucket_name}")
        return to

    def snapshots(self, ctx: Optional[Context] = None) -> List[Snapshot]:
        """
        List snapshots of the canonical object, oldest first.

        Raises:
            BackendError: If listing fails
        """
        ctx = ensure(ctx)
        snapshots = []

        for obj in self._bucket.list_objects(ctx, prefix=self._config.filename + '_'):
            match = self._snapshot_pattern.match(obj.key)
            if match:
                snapshots.append(Snapshot(
                    key=obj.key,
                    timestamp_ns=int(match.group(1)),
                    size=obj.size,
                    last_modified=obj.last_modified,
                ))

        snapshots.sort(key=lambda s: s.timestamp_ns)
        return snapshots

    def _check_snapshot_key(self, key: str):
        if not self._snapshot_pattern.match(key):
            raise ValueError(f"Not a snapshot of {self.key}: {key}")

    def restore(self, ctx: Optional[Context], key: str):
        """
        Replace the canonical object with a snapshot (server-side copy).

        Raises:
            ValueError: If ``key`` is not a snapshot of this storage
            ObjectNotFoundError: If the snapshot does not exist
        """
        self._check_snapshot_key(key)
        ctx = ensure(ctx)
        copier = self._bucket.copier(ctx)
        copier.copy(key, self.key)
        logger.info(f"Restored {self.key} from {key} in {self.bucket_name}")

    def delete_snapshot(self, ctx: Optional[Context], key: str):
        """
        Delete one snapshot.

        Raises:
            ValueError: If ``key`` is not a snapshot of this storage
        """
        self._check_snapshot_key(key)
        ctx = ensure(ctx)
        deleter = self._bucket.deleter(ctx)
        deleter.delete(key)
        logger.info(f"Deleted snapshot {key} from {self.bucket_name}")

    def close(self):
        """Release the bucket session."""
        self._bucket.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
        return False

    def __repr__(self):
        return f'<BlobStorage {self.bucket_name}/{self.key} compressor={self._compressor!r}>'


def new_storage(config: Optional[StorageConfig] = None, *options: Option) -> BlobStorage:
    """
    Build a storage service.

    Options are applied in order to a copy of ``config`` (DEFAULT_CONFIG
    when omitted). The compressor is then created, followed by the bucket;
    the first failure aborts construction.

    Args:
        config: Base configuration; never modified
        *options: Callables that adjust the configuration

    Returns:
        BlobStorage instance

    Raises:
        OptionFailedError: If an option raises
        CompressorNotFoundError: If the compression algorithm is unknown
        InvalidCompressionLevelError: If the codec rejects the level
        InvalidStorageTypeError: If the storage type is unknown
        SessionError: If the backend session cannot be established
    """
    cfg = copy.deepcopy(config if config is not None else DEFAULT_CONFIG)

    for option in options:
        try:
            option(cfg)
        except Exception as e:
            raise OptionFailedError(option, e) from e

    compressor = new_compressor(cfg.compress_algorithm, cfg.compression_level)
    bucket = new_bucket(
        cfg.storage_type,
        cfg.bucket_name,
        session_config=cfg.session,
        s3_config=cfg.s3,
    )

    storage = BlobStorage(cfg, bucket, compressor)
    logger.info(f"Storage initialized: {storage!r}")
    return storage
