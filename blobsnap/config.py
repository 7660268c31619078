import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class StorageType(str, Enum):
    """Supported remote storage backends."""
    S3 = 's3'


class CompressAlgorithm(str, Enum):
    """Supported compression algorithms. An empty algorithm means no compression."""
    GOB = 'gob'
    GZIP = 'gzip'
    LZ4 = 'lz4'
    ZSTD = 'zstd'


def atobst(value: str) -> Optional[StorageType]:
    """Resolve a storage type name, returning None when it is unknown."""
    try:
        return StorageType(value.strip().lower())
    except (AttributeError, ValueError):
        return None


def atoca(value: str) -> Optional[CompressAlgorithm]:
    """Resolve a compression algorithm name, returning None when it is unknown."""
    try:
        return CompressAlgorithm(value.strip().lower())
    except (AttributeError, ValueError):
        return None


def get_actual_value(value):
    """
    Expand an environment reference.

    A string written as ``_NAME_`` is replaced by the value of the
    environment variable ``NAME`` (empty string if unset). Any other value
    is returned unchanged.
    """
    if isinstance(value, str) and len(value) > 2 and value.startswith('_') and value.endswith('_'):
        return os.environ.get(value[1:-1], '')
    return value


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() == 'true'


@dataclass
class S3SessionConfig:
    """Connection parameters for an S3-compatible endpoint."""

    endpoint: str = ''
    region: str = ''
    access_key: str = ''
    secret_access_key: str = ''
    token: str = ''
    max_retries: int = 3
    force_path_style: bool = False
    use_ssl: bool = True
    connect_timeout: float = 10.0
    read_timeout: float = 60.0
    verify_bucket: bool = False

    def bind(self) -> 'S3SessionConfig':
        self.endpoint = get_actual_value(self.endpoint)
        self.region = get_actual_value(self.region)
        self.access_key = get_actual_value(self.access_key)
        self.secret_access_key = get_actual_value(self.secret_access_key)
        self.token = get_actual_value(self.token)
        return self


@dataclass
class S3Config:
    """Transfer settings handed to the S3 bucket."""

    max_part_size: int = 64 * 1024 * 1024
    multipart_threshold: int = 64 * 1024 * 1024
    max_concurrency: int = 4
    use_threads: bool = True

    def bind(self) -> 'S3Config':
        return self


@dataclass
class StorageConfig:
    """
    Configuration consumed once when a storage service is built.

    The canonical object key is ``filename + suffix``; snapshots are written
    next to it as ``filename_<unix-nanoseconds>suffix``.
    """

    storage_type: str = StorageType.S3.value
    bucket_name: str = ''
    filename: str = ''
    suffix: str = ''
    compress_algorithm: str = ''
    compression_level: int = 0
    s3: S3Config = field(default_factory=S3Config)
    session: S3SessionConfig = field(default_factory=S3SessionConfig)

    def bind(self) -> 'StorageConfig':
        self.storage_type = get_actual_value(self.storage_type)
        self.bucket_name = get_actual_value(self.bucket_name)
        self.filename = get_actual_value(self.filename)
        self.suffix = get_actual_value(self.suffix)
        self.compress_algorithm = get_actual_value(self.compress_algorithm)
        self.s3 = self.s3.bind()
        self.session = self.session.bind()
        return self

    @property
    def canonical_key(self) -> str:
        return self.filename + self.suffix

    @classmethod
    def from_object(cls, obj) -> 'StorageConfig':
        """
        Build a storage config from a Config class.

        Args:
            obj: Config class (or instance) carrying BLOBSNAP_* attributes

        Returns:
            Bound StorageConfig
        """
        return cls(
            storage_type=obj.STORAGE_TYPE,
            bucket_name=obj.BUCKET_NAME,
            filename=obj.FILENAME,
            suffix=obj.SUFFIX,
            compress_algorithm=obj.COMPRESS_ALGORITHM,
            compression_level=obj.COMPRESSION_LEVEL,
            s3=S3Config(max_concurrency=obj.S3_MAX_CONCURRENCY),
            session=S3SessionConfig(
                endpoint=obj.S3_ENDPOINT,
                region=obj.S3_REGION,
                access_key=obj.S3_ACCESS_KEY,
                secret_access_key=obj.S3_SECRET_ACCESS_KEY,
                force_path_style=obj.S3_FORCE_PATH_STYLE,
                use_ssl=obj.S3_USE_SSL,
                verify_bucket=obj.S3_VERIFY_BUCKET,
            ),
        ).bind()


class Config:
    """Base configuration"""

    # Storage
    STORAGE_TYPE = os.environ.get('BLOBSNAP_STORAGE_TYPE', 's3')
    BUCKET_NAME = os.environ.get('BLOBSNAP_BUCKET_NAME', '')
    FILENAME = os.environ.get('BLOBSNAP_FILENAME', 'index')
    SUFFIX = os.environ.get('BLOBSNAP_SUFFIX', '.snap')

    # Compression (empty algorithm disables compression)
    COMPRESS_ALGORITHM = os.environ.get('BLOBSNAP_COMPRESS_ALGORITHM', '')
    COMPRESSION_LEVEL = int(os.environ.get('BLOBSNAP_COMPRESSION_LEVEL', '0'))

    # S3 session
    S3_ENDPOINT = os.environ.get('BLOBSNAP_S3_ENDPOINT', '')
    S3_REGION = os.environ.get('BLOBSNAP_S3_REGION', 'us-east-1')
    S3_ACCESS_KEY = os.environ.get('BLOBSNAP_S3_ACCESS_KEY', '')
    S3_SECRET_ACCESS_KEY = os.environ.get('BLOBSNAP_S3_SECRET_ACCESS_KEY', '')
    S3_FORCE_PATH_STYLE = _env_bool('BLOBSNAP_S3_FORCE_PATH_STYLE', 'false')
    S3_USE_SSL = _env_bool('BLOBSNAP_S3_USE_SSL', 'true')
    S3_VERIFY_BUCKET = _env_bool('BLOBSNAP_S3_VERIFY_BUCKET', 'true')
    S3_MAX_CONCURRENCY = int(os.environ.get('BLOBSNAP_S3_MAX_CONCURRENCY', '4'))

    # Scheduler
    SCHEDULE_CRON = os.environ.get('BLOBSNAP_SCHEDULE_CRON', '0 2 * * *')
    SCHEDULER_TIMEZONE = 'UTC'
    BACKUP_MAX_RETRIES = int(os.environ.get('BLOBSNAP_BACKUP_MAX_RETRIES', '3'))
    BACKUP_RETRY_DELAY = float(os.environ.get('BLOBSNAP_BACKUP_RETRY_DELAY', '5'))

    # Retention (unset keeps every snapshot)
    RETENTION_KEEP_LAST = os.environ.get('BLOBSNAP_RETENTION_KEEP_LAST')
    RETENTION_DAYS = os.environ.get('BLOBSNAP_RETENTION_DAYS')

    # Logging
    DEBUG = False
    LOG_DIR = os.environ.get('BLOBSNAP_LOG_DIR') or '/data/logs'


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Local MinIO for development
    BUCKET_NAME = os.environ.get('BLOBSNAP_BUCKET_NAME', 'blobsnap-dev')
    S3_ENDPOINT = os.environ.get('BLOBSNAP_S3_ENDPOINT', 'http://localhost:9000')
    S3_FORCE_PATH_STYLE = True
    S3_USE_SSL = False

    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    LOG_DIR = os.path.join(BASE_DIR, 'data', 'logs')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}
