"""Error definitions for blobsnap.

Construction errors abort building a storage service. Storage errors are
raised by running operations and always reach the caller unchanged.
"""


class BlobSnapError(Exception):
    """Base blobsnap error."""

    pass


# Construction errors
class ConstructionError(BlobSnapError):
    """Raised when a storage service, bucket or compressor cannot be built."""

    pass


class CompressorNotFoundError(ConstructionError):
    """Raised for an unknown compression algorithm."""

    def __init__(self, name):
        self.name = name
        super().__init__(f"compressor not found: {name!r}")


class InvalidCompressionLevelError(ConstructionError):
    """Raised when the codec rejects the configured compression level."""

    def __init__(self, algorithm, level, message=None):
        self.algorithm = algorithm
        self.level = level
        super().__init__(
            message or f"invalid compression level {level} for {algorithm}"
        )


class InvalidStorageTypeError(ConstructionError):
    """Raised for an unknown storage backend type."""

    def __init__(self, storage_type):
        self.storage_type = storage_type
        super().__init__(f"invalid storage type: {storage_type!r}")


class SessionError(ConstructionError):
    """Raised when the backend session cannot be established."""

    pass


class OptionFailedError(ConstructionError):
    """Raised when a configuration option fails to apply."""

    def __init__(self, option, cause):
        self.option = option
        name = getattr(option, '__qualname__', None) or repr(option)
        super().__init__(f"failed to apply option {name}: {cause}")


# Operational errors
class StorageError(BlobSnapError):
    """Raised when a storage operation fails."""

    pass


class ObjectNotFoundError(StorageError):
    """Raised when the requested object does not exist in the bucket."""

    def __init__(self, bucket, key):
        self.bucket = bucket
        self.key = key
        super().__init__(f"object not found: s3://{bucket}/{key}")


class BackendError(StorageError):
    """Transport, permission or other backend failure."""

    pass


class DecompressionError(StorageError):
    """Raised when a decompressing stream cannot be opened or read."""

    pass


class CapabilityError(StorageError):
    """Raised when a deleter or copier cannot be obtained from a bucket."""

    pass


# Context errors
class ContextError(BlobSnapError):
    """Raised when an operation's context is no longer live."""

    pass


class OperationCancelled(ContextError):
    pass


class DeadlineExceeded(ContextError):
    pass
