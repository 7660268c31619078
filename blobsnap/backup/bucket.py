"""
Bucket abstraction over remote object storage.

A Bucket is bound to one bucket name and hands out scoped capabilities:
readers for single objects, a Deleter and a Copier. Backends register a
constructor under their StorageType; ``new_bucket`` picks one at
construction time.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import BinaryIO, Callable, Dict, List, Optional

from blobsnap.config import S3Config, S3SessionConfig, StorageType, atobst
from blobsnap.context import Context
from blobsnap.errors import InvalidStorageTypeError


logger = logging.getLogger(__name__)


@dataclass
class ObjectInfo:
    """Listing entry for one stored object."""
    key: str
    size: int
    last_modified: Optional[datetime] = None


class Deleter(ABC):
    """Removes objects from the bucket it was obtained from."""

    @abstractmethod
    def delete(self, key: str):
        ...


class Copier(ABC):
    """Duplicates objects inside the bucket without moving bytes through the caller."""

    @abstractmethod
    def copy(self, src: str, dst: str):
        ...


class Bucket(ABC):
    """Remote object-storage bucket."""

    name: str

    @abstractmethod
    def reader(self, ctx: Context, key: str) -> BinaryIO:
        """
        Open an object for reading.

        Raises:
            ObjectNotFoundError: If the key does not exist
            BackendError: On transport or permission failures
        """

    @abstractmethod
    def writer(self, ctx: Context, key: str) -> BinaryIO:
        """
        Open an object for writing.

        The object becomes visible under ``key`` only once the returned
        stream is closed; ``abort()`` discards it.
        """

    @abstractmethod
    def deleter(self, ctx: Context) -> Deleter:
        ...

    @abstractmethod
    def copier(self, ctx: Context) -> Copier:
        ...

    @abstractmethod
    def list_objects(self, ctx: Context, prefix: str = '') -> List[ObjectInfo]:
        ...

    def close(self):
        """Release the backend session."""


BucketFactory = Callable[..., Bucket]

_BUCKETS: Dict[StorageType, BucketFactory] = {}


def register_bucket(storage_type: StorageType, factory: BucketFactory):
    """Register the constructor used for a storage type."""
    _BUCKETS[storage_type] = factory


def new_bucket(
    storage_type: str,
    bucket_name: str,
    session_config: Optional[S3SessionConfig] = None,
    s3_config: Optional[S3Config] = None,
) -> Bucket:
    """
    Create the bucket for a configured storage type.

    Args:
        storage_type: Backend name (currently only 's3')
        bucket_name: Bucket the returned object is bound to
        session_config: Connection parameters for the backend
        s3_config: Transfer settings, including the worker-group size used
            for multipart copies and uploads

    Returns:
        Bucket with an established session

    Raises:
        InvalidStorageTypeError: If the storage type is unknown
        SessionError: If the backend session cannot be established
    """
    resolved = atobst(storage_type)
    if resolved is None or resolved not in _BUCKETS:
        raise InvalidStorageTypeError(storage_type)

    logger.debug(f"Creating {resolved.value} bucket: {bucket_name}")
    return _BUCKETS[resolved](
        bucket_name=bucket_name,
        session_config=session_config or S3SessionConfig(),
        s3_config=s3_config or S3Config(),
    )
