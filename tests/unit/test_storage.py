"""
Unit tests for the backup storage service (blobsnap/backup/storage.py).

Tests construction ordering, reader/delete/backup semantics, snapshot
listing and restore against a moto S3 bucket.
"""

import gzip
import os
import re
from unittest.mock import MagicMock, patch

import pytest

from blobsnap.backup.compression import GzipCompressor
from blobsnap.backup.storage import (
    DEFAULT_CONFIG,
    BlobStorage,
    new_storage,
    with_bucket_name,
    with_compress_algorithm,
    with_compression_level,
    with_filename,
    with_max_concurrency,
    with_session,
    with_storage_type,
    with_suffix,
)
from blobsnap.config import StorageConfig
from blobsnap.context import background
from blobsnap.errors import (
    CapabilityError,
    CompressorNotFoundError,
    InvalidCompressionLevelError,
    InvalidStorageTypeError,
    ObjectNotFoundError,
    OperationCancelled,
    OptionFailedError,
)

from conftest import BUCKET, get_object, list_keys


SNAPSHOT_KEY = re.compile(r'^index_(\d{19})\.snap$')

TS1, TS2, TS3 = 1700000000000000100, 1700000000000000200, 1700000000000000300


class TestConstruction:
    """Test option application and initialization order."""

    def test_defaults_are_not_mutated(self, make_storage):
        storage = make_storage(with_filename('other'), with_suffix('.bin'))

        assert storage.key == 'other.bin'
        assert DEFAULT_CONFIG.filename == ''
        assert DEFAULT_CONFIG.suffix == ''

    def test_caller_config_is_copied(self, mock_s3, storage_config):
        storage = new_storage(storage_config, with_suffix('.idx'))
        storage_config.filename = 'changed'

        assert storage.key == 'index.idx'
        assert storage_config.suffix == '.snap'
        storage.close()

    def test_options_applied_in_order(self, make_storage):
        storage = make_storage(with_suffix('.a'), with_suffix('.b'))
        assert storage.key == 'index.b'

    def test_option_failure(self, make_storage):
        with pytest.raises(OptionFailedError, match="filename must not be empty"):
            make_storage(with_filename(''))

    def test_unknown_session_option(self, make_storage):
        with pytest.raises(OptionFailedError, match="unknown session option"):
            make_storage(with_session(colour='blue'))

    def test_invalid_concurrency(self, make_storage):
        with pytest.raises(OptionFailedError):
            make_storage(with_max_concurrency(0))

    def test_no_compression(self, make_storage):
        assert make_storage().compressor is None

    def test_compressor_selected(self, make_storage):
        storage = make_storage(with_compress_algorithm('gzip'), with_compression_level(6))

        assert isinstance(storage.compressor, GzipCompressor)
        assert storage.compressor.level == 6

    def test_unknown_compressor(self, make_storage):
        with pytest.raises(CompressorNotFoundError, match="snappy"):
            make_storage(with_compress_algorithm('snappy'))

    def test_invalid_level(self, make_storage):
        with pytest.raises(InvalidCompressionLevelError):
            make_storage(with_compress_algorithm('gzip'), with_compression_level(42))

    @pytest.mark.parametrize("algorithm", ["", "gzip", "zstd"])
    def test_invalid_storage_type(self, make_storage, algorithm):
        """Test an unknown backend fails regardless of other valid options."""
        with pytest.raises(InvalidStorageTypeError):
            make_storage(with_storage_type('ftp'), with_compress_algorithm(algorithm))

    def test_compressor_checked_before_bucket(self, make_storage):
        """Test the compressor error wins when both selections are invalid."""
        with pytest.raises(CompressorNotFoundError):
            make_storage(with_storage_type('ftp'), with_compress_algorithm('snappy'))

    def test_bucket_not_created_when_compressor_fails(self, storage_config):
        with patch('blobsnap.backup.storage.new_bucket') as mock_new_bucket:
            with pytest.raises(CompressorNotFoundError):
                new_storage(storage_config, with_compress_algorithm('snappy'))

        mock_new_bucket.assert_not_called()

    def test_session_options_reach_bucket(self, storage_config):
        with patch('blobsnap.backup.storage.new_bucket') as mock_new_bucket:
            new_storage(storage_config, with_bucket_name('other'), with_session(region='eu-west-1'))

        args, kwargs = mock_new_bucket.call_args
        assert args == ('s3', 'other')
        assert kwargs['session_config'].region == 'eu-west-1'


class TestReader:
    """Test reading the canonical object."""

    def test_reader_plain(self, make_storage, mock_s3):
        mock_s3.put_object(Bucket=BUCKET, Key='index.snap', Body=b'X' * 100)
        storage = make_storage()

        with storage.reader(background()) as reader:
            assert reader.read() == b'X' * 100

    def test_reader_missing_object(self, make_storage):
        storage = make_storage()

        with pytest.raises(ObjectNotFoundError):
            storage.reader(background())

    def test_reader_default_context(self, make_storage, mock_s3):
        mock_s3.put_object(Bucket=BUCKET, Key='index.snap', Body=b'data')

        with make_storage().reader() as reader:
            assert reader.read() == b'data'

    def test_reader_gzip(self, make_storage, mock_s3):
        """Test a gzip canonical object is transparently decompressed."""
        plaintext = b'Y' * 4096
        mock_s3.put_object(Bucket=BUCKET, Key='index.snap', Body=gzip.compress(plaintext))
        storage = make_storage(with_compress_algorithm('gzip'), with_compression_level(6))

        with storage.reader(background()) as reader:
            assert reader.read() == plaintext

    @pytest.mark.parametrize("algorithm", ["gob", "lz4", "zstd"])
    def test_reader_other_codecs(self, make_storage, mock_s3, algorithm):
        storage = make_storage(with_compress_algorithm(algorithm), with_compression_level(1))
        mock_s3.put_object(Bucket=BUCKET, Key='index.snap', Body=storage.compressor.compress(b'payload'))

        with storage.reader(background()) as reader:
            assert reader.read() == b'payload'

    def test_concurrent_zstd_readers(self, make_storage, mock_s3):
        """Test two open readers of one storage each return the full object."""
        payload = os.urandom(300 * 1024)
        storage = make_storage(with_compress_algorithm('zstd'), with_compression_level(3))
        mock_s3.put_object(Bucket=BUCKET, Key='index.snap', Body=storage.compressor.compress(payload))

        reader1 = storage.reader(background())
        reader2 = storage.reader(background())
        out1, out2 = reader1.read(1000), reader2.read(1000)
        out1 += reader1.read()
        out2 += reader2.read()
        reader1.close()
        reader2.close()

        assert out1 == payload
        assert out2 == payload

    def test_reader_wraps_bucket_stream(self):
        inner = MagicMock()
        bucket = MagicMock()
        bucket.reader.return_value = inner
        compressor = MagicMock()
        outer = MagicMock()
        compressor.reader.return_value = outer

        storage = BlobStorage(StorageConfig(filename='index', suffix='.snap'), bucket, compressor)

        assert storage.reader(background()) is outer
        compressor.reader.assert_called_once_with(inner)
        bucket.reader.assert_called_once()
        assert bucket.reader.call_args[0][1] == 'index.snap'

    def test_inner_stream_closed_when_decompressor_fails(self):
        inner = MagicMock()
        bucket = MagicMock()
        bucket.reader.return_value = inner
        compressor = MagicMock()
        compressor.reader.side_effect = RuntimeError('bad header')

        storage = BlobStorage(StorageConfig(filename='index', suffix='.snap'), bucket, compressor)

        with pytest.raises(RuntimeError, match='bad header'):
            storage.reader(background())
        inner.close.assert_called_once()


class TestWriter:
    """Test writing the canonical object."""

    def test_writer_compresses(self, make_storage, mock_s3):
        storage = make_storage(with_compress_algorithm('zstd'), with_compression_level(3))

        with storage.writer(background()) as writer:
            writer.write(b'artifact ' * 100)

        stored = get_object(mock_s3, 'index.snap')
        assert stored != b'artifact ' * 100
        with storage.reader(background()) as reader:
            assert reader.read() == b'artifact ' * 100

    def test_writer_error_uploads_nothing(self, make_storage, mock_s3):
        storage = make_storage(with_compress_algorithm('gzip'))

        with pytest.raises(RuntimeError):
            with storage.writer(background()) as writer:
                writer.write(b'partial')
                raise RuntimeError('boom')

        assert list_keys(mock_s3) == []


class TestDelete:
    """Test deleting the canonical object."""

    def test_delete_then_reader(self, make_storage, mock_s3):
        mock_s3.put_object(Bucket=BUCKET, Key='index.snap', Body=b'data')
        storage = make_storage()

        storage.delete(background())

        with pytest.raises(ObjectNotFoundError):
            storage.reader(background())

    def test_delete_leaves_snapshots(self, make_storage, mock_s3):
        mock_s3.put_object(Bucket=BUCKET, Key='index.snap', Body=b'data')
        storage = make_storage()
        snapshot = storage.backup(background())

        storage.delete(background())

        assert list_keys(mock_s3) == [snapshot]

    def test_deleter_acquisition_failure(self):
        bucket = MagicMock()
        bucket.deleter.side_effect = CapabilityError('no deleter')
        storage = BlobStorage(StorageConfig(filename='index', suffix='.snap'), bucket, None)

        with pytest.raises(CapabilityError, match='no deleter'):
            storage.delete(background())

    def test_delete_failure_after_acquisition(self):
        bucket = MagicMock()
        bucket.deleter.return_value.delete.side_effect = ObjectNotFoundError(BUCKET, 'index.snap')
        storage = BlobStorage(StorageConfig(filename='index', suffix='.snap'), bucket, None)

        with pytest.raises(ObjectNotFoundError):
            storage.delete(background())
        bucket.deleter.return_value.delete.assert_called_once_with('index.snap')


class TestBackup:
    """Test snapshot creation."""

    def test_backup_copies_canonical(self, make_storage, mock_s3):
        mock_s3.put_object(Bucket=BUCKET, Key='index.snap', Body=b'X')
        storage = make_storage()

        key = storage.backup(background())

        assert SNAPSHOT_KEY.match(key)
        assert get_object(mock_s3, key) == b'X'
        assert get_object(mock_s3, 'index.snap') == b'X'

    def test_two_backups_distinct_keys(self, make_storage, mock_s3):
        mock_s3.put_object(Bucket=BUCKET, Key='index.snap', Body=b'X')
        storage = make_storage()

        first = storage.backup(background())
        second = storage.backup(background())

        assert first != second
        assert int(SNAPSHOT_KEY.match(first).group(1)) < int(SNAPSHOT_KEY.match(second).group(1))
        assert list_keys(mock_s3) == sorted(['index.snap', first, second])

    def test_backup_key_uses_nanosecond_clock(self):
        bucket = MagicMock()
        storage = BlobStorage(StorageConfig(filename='index', suffix='.snap'), bucket, None)

        with patch('blobsnap.backup.storage.time.time_ns', return_value=1700000000123456789):
            key = storage.backup(background())

        assert key == 'index_1700000000123456789.snap'
        bucket.copier.return_value.copy.assert_called_once_with('index.snap', key)

    def test_backup_preserves_compressed_bytes(self, make_storage, mock_s3):
        """Test snapshots keep the stored (compressed) bytes untouched."""
        encoded = gzip.compress(b'Y' * 1000)
        mock_s3.put_object(Bucket=BUCKET, Key='index.snap', Body=encoded)
        storage = make_storage(with_compress_algorithm('gzip'))

        key = storage.backup(background())

        assert get_object(mock_s3, key) == encoded

    def test_backup_missing_canonical(self, make_storage, mock_s3):
        storage = make_storage()

        with pytest.raises(ObjectNotFoundError):
            storage.backup(background())

        assert list_keys(mock_s3) == []

    def test_backup_cancelled(self, make_storage, mock_s3):
        mock_s3.put_object(Bucket=BUCKET, Key='index.snap', Body=b'X')
        storage = make_storage()
        ctx = background()
        ctx.cancel()

        with pytest.raises(OperationCancelled):
            storage.backup(ctx)

        assert list_keys(mock_s3) == ['index.snap']


class TestEndToEnd:
    """Backup, read, delete scenario on 'index.snap' without compression."""

    def test_scenario(self, make_storage, mock_s3):
        mock_s3.put_object(Bucket=BUCKET, Key='index.snap', Body=b'X')
        storage = make_storage()
        ctx = background()

        snapshot = storage.backup(ctx)
        assert SNAPSHOT_KEY.match(snapshot)
        assert get_object(mock_s3, snapshot) == b'X'

        with storage.reader(ctx) as reader:
            assert reader.read() == b'X'

        storage.delete(ctx)
        assert 'index.snap' not in list_keys(mock_s3)

        with pytest.raises(ObjectNotFoundError):
            storage.reader(ctx)


class TestSnapshots:
    """Test listing, restoring and deleting snapshots."""

    def test_snapshots_sorted(self, make_storage, mock_s3):
        for key in [f'index_{TS3}.snap', f'index_{TS1}.snap', f'index_{TS2}.snap',
                    'index.snap', 'index_abc.snap', f'index_{TS1}.other', f'indexes_{TS1}.snap']:
            mock_s3.put_object(Bucket=BUCKET, Key=key, Body=b'data')
        storage = make_storage()

        snapshots = storage.snapshots(background())

        assert [s.key for s in snapshots] == [f'index_{TS1}.snap', f'index_{TS2}.snap', f'index_{TS3}.snap']
        assert [s.timestamp_ns for s in snapshots] == [TS1, TS2, TS3]
        assert snapshots[0].size == 4

    def test_snapshots_skip_sibling_artifacts(self, make_storage, mock_s3):
        """Test artifacts named like 'index_2' are not taken for snapshots of 'index'."""
        for key in ['index_2.snap', 'index_20240101.snap', f'index_{TS1}0.snap', f'index_{TS1}.snap']:
            mock_s3.put_object(Bucket=BUCKET, Key=key, Body=b'data')
        storage = make_storage()

        assert [s.key for s in storage.snapshots(background())] == [f'index_{TS1}.snap']

    def test_restore(self, make_storage, mock_s3):
        mock_s3.put_object(Bucket=BUCKET, Key='index.snap', Body=b'old')
        storage = make_storage()
        snapshot = storage.backup(background())
        mock_s3.put_object(Bucket=BUCKET, Key='index.snap', Body=b'new')

        storage.restore(background(), snapshot)

        assert get_object(mock_s3, 'index.snap') == b'old'

    def test_restore_rejects_foreign_key(self, make_storage):
        storage = make_storage()

        with pytest.raises(ValueError, match="Not a snapshot"):
            storage.restore(background(), f'other_{TS1}.snap')

    def test_restore_rejects_sibling_artifact(self, make_storage):
        storage = make_storage()

        with pytest.raises(ValueError, match="Not a snapshot"):
            storage.restore(background(), 'index_2.snap')

    def test_restore_missing_snapshot(self, make_storage):
        storage = make_storage()

        with pytest.raises(ObjectNotFoundError):
            storage.restore(background(), f'index_{TS1}.snap')

    def test_delete_snapshot(self, make_storage, mock_s3):
        mock_s3.put_object(Bucket=BUCKET, Key='index.snap', Body=b'X')
        storage = make_storage()
        snapshot = storage.backup(background())

        storage.delete_snapshot(background(), snapshot)

        assert list_keys(mock_s3) == ['index.snap']

    def test_delete_snapshot_rejects_canonical(self, make_storage):
        storage = make_storage()

        with pytest.raises(ValueError):
            storage.delete_snapshot(background(), 'index.snap')
