import os
import logging
from logging.handlers import RotatingFileHandler

from blobsnap.backup import (
    BlobStorage,
    RetentionManager,
    Snapshot,
    Storage,
    new_storage,
)
from blobsnap.config import CompressAlgorithm, StorageConfig, StorageType
from blobsnap.context import Context, background


__version__ = '0.1.0'


def configure_logging(app_config, log_to_file=True):
    """Configure blobsnap logging from a Config class"""

    # Set log level based on environment
    log_level = logging.DEBUG if getattr(app_config, 'DEBUG', False) else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)
    handlers = [console_handler]

    # File handler
    if log_to_file:
        log_dir = app_config.LOG_DIR
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, 'blobsnap.log'),
            maxBytes=10485760,  # 10MB
            backupCount=10
        )
        file_handler.setLevel(log_level)
        file_formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    package_logger = logging.getLogger('blobsnap')
    package_logger.setLevel(log_level)

    # Replace handlers from an earlier call instead of stacking them
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    for handler in handlers:
        package_logger.addHandler(handler)

    # boto's own debug output is too noisy outside development
    logging.getLogger('botocore').setLevel(logging.WARNING)

    package_logger.info(f"Logging configured (level: {logging.getLevelName(log_level)})")
    return package_logger


__all__ = [
    'BlobStorage',
    'CompressAlgorithm',
    'Context',
    'RetentionManager',
    'Snapshot',
    'Storage',
    'StorageConfig',
    'StorageType',
    'background',
    'configure_logging',
    'new_storage',
]
