"""
Compression codecs for stored objects.

Supports:
- gob: Python object serialization (the payload is one pickled bytes value)
- gzip: Gzip stream
- lz4: LZ4 frame
- zstd: Zstandard frame
- no compression (empty algorithm): objects are stored and read as-is
"""

import gzip
import io
import logging
import pickle
import zlib
from abc import ABC, abstractmethod
from typing import BinaryIO, Optional

import lz4.frame
import zstandard

from blobsnap.config import CompressAlgorithm, atoca
from blobsnap.errors import (
    CompressorNotFoundError,
    DecompressionError,
    InvalidCompressionLevelError,
)


logger = logging.getLogger(__name__)


class DecompressingReader(io.BufferedIOBase):
    """
    Read side of a codec stacked on a source stream.

    Codec failures while reading are raised as DecompressionError. Closing
    the reader closes the source stream as well.
    """

    def __init__(self, inner, source: BinaryIO, algorithm: str, errors: tuple):
        super().__init__()
        self._inner = inner
        self._source = source
        self._algorithm = algorithm
        self._errors = errors

    def readable(self) -> bool:
        return True

    def read(self, size: Optional[int] = -1) -> bytes:
        if self.closed:
            raise ValueError("I/O operation on closed file")
        if size is None:
            size = -1
        try:
            return self._inner.read(size)
        except self._errors as e:
            raise DecompressionError(f"{self._algorithm} stream is corrupt: {e}") from e

    def read1(self, size: int = -1) -> bytes:
        return self.read(size)

    def close(self):
        if self.closed:
            return
        try:
            self._inner.close()
        finally:
            try:
                self._source.close()
            finally:
                super().close()


class CompressingWriter(io.BufferedIOBase):
    """
    Write side of a codec stacked on a destination stream.

    close() writes the codec trailer and closes the destination. Leaving a
    ``with`` block on an exception aborts the destination instead, when it
    supports ``abort()``.
    """

    def __init__(self, inner, destination: BinaryIO):
        super().__init__()
        self._inner = inner
        self._destination = destination

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        if self.closed:
            raise ValueError("I/O operation on closed file")
        self._inner.write(data)
        return len(data)

    def close(self):
        if self.closed:
            return
        try:
            self._inner.close()
        except Exception:
            # A truncated frame must not replace the stored object
            self.abort()
            raise
        try:
            self._destination.close()
        finally:
            super().close()

    def abort(self):
        """Discard everything written so far."""
        if self.closed:
            return
        try:
            abort = getattr(self._destination, 'abort', None)
            if abort is not None:
                abort()
            else:
                self._destination.close()
        finally:
            super().close()

    def __exit__(self, exc_type, exc_value, traceback):
        if exc_type is not None:
            self.abort()
        else:
            self.close()
        return False


class Compressor(ABC):
    """
    A compression algorithm bound to one compression level.

    Subclasses implement the byte-level codec; ``reader`` and ``writer``
    stack it on top of an existing stream.
    """

    algorithm: CompressAlgorithm
    errors: tuple = ()

    def __init__(self, level: int = 0):
        self.level = level

    @abstractmethod
    def compress(self, data: bytes) -> bytes:
        ...

    @abstractmethod
    def decompress(self, data: bytes) -> bytes:
        ...

    @abstractmethod
    def _open_reader(self, stream: BinaryIO):
        ...

    @abstractmethod
    def _open_writer(self, stream: BinaryIO):
        ...

    def reader(self, stream: BinaryIO) -> DecompressingReader:
        """
        Wrap a readable stream so that reads return decompressed bytes.

        Args:
            stream: Raw (compressed) source stream

        Returns:
            Decompressing stream; closing it closes ``stream``

        Raises:
            DecompressionError: If the decompressing stream cannot be opened
        """
        try:
            inner = self._open_reader(stream)
        except DecompressionError:
            raise
        except self.errors as e:
            raise DecompressionError(f"Failed to open {self.algorithm.value} reader: {e}") from e
        return DecompressingReader(inner, stream, self.algorithm.value, self.errors)

    def writer(self, stream: BinaryIO) -> CompressingWriter:
        """
        Wrap a writable stream so that written bytes are compressed.

        Args:
            stream: Destination stream

        Returns:
            Compressing stream; closing it finishes the frame and closes ``stream``
        """
        return CompressingWriter(self._open_writer(stream), stream)

    def __repr__(self):
        return f'<{type(self).__name__} level={self.level}>'


class _BytesUnpickler(pickle.Unpickler):
    """Unpickler that refuses to import anything."""

    def find_class(self, module, name):
        raise pickle.UnpicklingError(f"global '{module}.{name}' is forbidden")


class _GobWriter(io.BytesIO):
    """Buffer that is pickled into the destination on close."""

    def __init__(self, destination: BinaryIO):
        super().__init__()
        self._destination = destination

    def close(self):
        if not self.closed:
            pickle.dump(self.getvalue(), self._destination, protocol=pickle.HIGHEST_PROTOCOL)
        super().close()


class GobCompressor(Compressor):
    """Serialization codec: the payload is stored as a single pickled bytes value."""

    algorithm = CompressAlgorithm.GOB
    errors = (pickle.UnpicklingError, EOFError, ValueError)

    def compress(self, data: bytes) -> bytes:
        return pickle.dumps(bytes(data), protocol=pickle.HIGHEST_PROTOCOL)

    def decompress(self, data: bytes) -> bytes:
        return self._load(io.BytesIO(data))

    def _load(self, stream: BinaryIO) -> bytes:
        try:
            value = _BytesUnpickler(stream).load()
        except Exception as e:
            raise DecompressionError(f"Failed to decode gob payload: {e}") from e
        if not isinstance(value, (bytes, bytearray)):
            raise DecompressionError(f"gob payload is {type(value).__name__}, expected bytes")
        return bytes(value)

    def _open_reader(self, stream):
        # The payload is a single value, so it is decoded up front.
        return io.BytesIO(self._load(stream))

    def _open_writer(self, stream):
        return _GobWriter(stream)


class GzipCompressor(Compressor):
    """Gzip codec (levels -1 to 9)."""

    algorithm = CompressAlgorithm.GZIP
    errors = (OSError, EOFError, zlib.error)

    def __init__(self, level: int = zlib.Z_DEFAULT_COMPRESSION):
        if not zlib.Z_DEFAULT_COMPRESSION <= level <= zlib.Z_BEST_COMPRESSION:
            raise InvalidCompressionLevelError(self.algorithm.value, level)
        super().__init__(level)

    def compress(self, data: bytes) -> bytes:
        return gzip.compress(data, compresslevel=self.level)

    def decompress(self, data: bytes) -> bytes:
        try:
            return gzip.decompress(data)
        except self.errors as e:
            raise DecompressionError(f"Failed to decompress gzip data: {e}") from e

    def _open_reader(self, stream):
        return gzip.GzipFile(fileobj=stream, mode='rb')

    def _open_writer(self, stream):
        return gzip.GzipFile(fileobj=stream, mode='wb', compresslevel=self.level)


class LZ4Compressor(Compressor):
    """LZ4 frame codec."""

    algorithm = CompressAlgorithm.LZ4
    errors = (RuntimeError, EOFError, OSError)

    def __init__(self, level: int = lz4.frame.COMPRESSIONLEVEL_MIN):
        if not 0 <= level <= lz4.frame.COMPRESSIONLEVEL_MAX:
            raise InvalidCompressionLevelError(self.algorithm.value, level)
        super().__init__(level)

    def compress(self, data: bytes) -> bytes:
        return lz4.frame.compress(data, compression_level=self.level)

    def decompress(self, data: bytes) -> bytes:
        try:
            return lz4.frame.decompress(data)
        except self.errors as e:
            raise DecompressionError(f"Failed to decompress lz4 data: {e}") from e

    def _open_reader(self, stream):
        return lz4.frame.LZ4FrameFile(stream, mode='rb')

    def _open_writer(self, stream):
        return lz4.frame.LZ4FrameFile(stream, mode='wb', compression_level=self.level)


class ZstdCompressor(Compressor):
    """
    Zstandard codec.

    zstandard contexts cannot be shared between open streams, so every call
    builds its own compressor or decompressor.
    """

    algorithm = CompressAlgorithm.ZSTD
    errors = (zstandard.ZstdError, EOFError)

    def __init__(self, level: int = 3):
        if level > zstandard.MAX_COMPRESSION_LEVEL:
            raise InvalidCompressionLevelError(self.algorithm.value, level)
        try:
            zstandard.ZstdCompressor(level=level)
        except (zstandard.ZstdError, ValueError) as e:
            raise InvalidCompressionLevelError(self.algorithm.value, level, str(e)) from e
        super().__init__(level)

    def compress(self, data: bytes) -> bytes:
        return zstandard.ZstdCompressor(level=self.level).compress(data)

    def decompress(self, data: bytes) -> bytes:
        # decompressobj handles frames written without a content size
        try:
            return zstandard.ZstdDecompressor().decompressobj().decompress(data)
        except self.errors as e:
            raise DecompressionError(f"Failed to decompress zstd data: {e}") from e

    def _open_reader(self, stream):
        return zstandard.ZstdDecompressor().stream_reader(stream, closefd=False)

    def _open_writer(self, stream):
        return zstandard.ZstdCompressor(level=self.level).stream_writer(stream, closefd=False)


_COMPRESSORS = {
    CompressAlgorithm.GOB: GobCompressor,
    CompressAlgorithm.GZIP: GzipCompressor,
    CompressAlgorithm.LZ4: LZ4Compressor,
    CompressAlgorithm.ZSTD: ZstdCompressor,
}


def new_compressor(algorithm: str, level: int = 0) -> Optional[Compressor]:
    """
    Create the compressor for a configured algorithm.

    Args:
        algorithm: Algorithm name ('gob', 'gzip', 'lz4', 'zstd'); empty for no compression
        level: Compression level, validated by the codec

    Returns:
        Compressor instance, or None when compression is disabled

    Raises:
        CompressorNotFoundError: If the algorithm is not supported
        InvalidCompressionLevelError: If the codec rejects the level
    """
    if not algorithm:
        logger.debug("Compression disabled")
        return None

    resolved = atoca(algorithm)
    if resolved is None:
        raise CompressorNotFoundError(algorithm)

    compressor = _COMPRESSORS[resolved](level=level)
    logger.debug(f"Using compressor: {compressor!r}")
    return compressor
