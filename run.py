#!/usr/bin/env python3
"""Scheduled backup runner"""
import atexit
import os
import time

from blobsnap import configure_logging, new_storage
from blobsnap.config import StorageConfig, config
from blobsnap.scheduler import init_scheduler, start_scheduler, stop_scheduler

if __name__ == '__main__':
    app_config = config[os.environ.get('BLOBSNAP_ENV', 'default')]
    configure_logging(app_config)

    storage = new_storage(StorageConfig.from_object(app_config))

    init_scheduler(storage, app_config)
    start_scheduler()
    atexit.register(stop_scheduler)
    atexit.register(storage.close)

    try:
        while True:
            time.sleep(60)
    except KeyboardInterrupt:
        pass
