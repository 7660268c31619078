"""
Shared pytest fixtures for blobsnap tests.

This module provides fixtures for:
- Fake AWS credentials and a moto-backed S3 bucket
- Storage configuration and storage service construction
- Mock fixtures for APScheduler
"""

from unittest.mock import MagicMock, patch

import pytest
import boto3
from moto import mock_aws

from blobsnap.config import S3SessionConfig, StorageConfig
from blobsnap.backup.storage import new_storage


BUCKET = 'test-bucket'


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Fake credentials so nothing can reach a real AWS account."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region and yields a
    boto3 client for seeding and inspecting objects.
    """
    with mock_aws():
        client = boto3.client('s3', region_name='us-east-1')
        client.create_bucket(Bucket=BUCKET)
        yield client


@pytest.fixture
def storage_config():
    """
    Storage configuration for the canonical object 'index.snap'.

    No compression; connects to the moto bucket.
    """
    return StorageConfig(
        storage_type='s3',
        bucket_name=BUCKET,
        filename='index',
        suffix='.snap',
        session=S3SessionConfig(
            region='us-east-1',
            access_key='test_access_key',
            secret_access_key='test_secret_key',
        ),
    )


@pytest.fixture
def make_storage(mock_s3, storage_config):
    """Factory building a storage service on the moto bucket."""
    created = []

    def factory(*options):
        storage = new_storage(storage_config, *options)
        created.append(storage)
        return storage

    yield factory

    for storage in created:
        storage.close()


def get_object(client, key):
    return client.get_object(Bucket=BUCKET, Key=key)['Body'].read()


def list_keys(client):
    response = client.list_objects_v2(Bucket=BUCKET)
    return sorted(obj['Key'] for obj in response.get('Contents', []))


@pytest.fixture(scope='function')
def mock_scheduler():
    """
    Mock APScheduler for testing scheduler functionality.
    """
    with patch('blobsnap.scheduler.BackgroundScheduler') as mock_sched:
        scheduler_instance = MagicMock()
        mock_sched.return_value = scheduler_instance

        # Mock scheduler methods
        scheduler_instance.running = False
        scheduler_instance.state = 0
        scheduler_instance.get_jobs.return_value = []

        yield scheduler_instance
