"""
아카이브 코덱

평문 아카이브는 gzip 으로 압축된 프레임 스트림입니다.

    frame = kind(1) | length(4, big-endian) | payload(JSON)

    M  메타데이터 (항상 첫 프레임)
    T  테이블 시작 {"name": ...}
    R  행 배치 [ {...}, ... ]
    E  테이블 끝 {"row_count": n}
    Z  아카이브 끝

메타데이터 프레임 뒤에서 압축 스트림을 flush 하므로
메타데이터는 나머지 데이터를 해제하지 않고도 읽을 수 있습니다.
"""

import gzip
import io
import json
import logging
import struct
import zlib
from typing import BinaryIO, Iterable, Iterator, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from app.backup.types import ArchiveMetadata, Row, TableSnapshot
from app.core.error_handling import ErrorCodes, FormatError
from app.models import ArchiveMetadataSchema
from config.constants import SUPPORTED_BACKUP_VERSIONS

logger = logging.getLogger(__name__)

FRAME_HEADER = struct.Struct(">cI")

FRAME_METADATA = b"M"
FRAME_TABLE = b"T"
FRAME_ROWS = b"R"
FRAME_TABLE_END = b"E"
FRAME_END = b"Z"

_KNOWN_FRAMES = {FRAME_METADATA, FRAME_TABLE, FRAME_ROWS, FRAME_TABLE_END, FRAME_END}


def _encode_json(payload) -> bytes:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


class ArchiveWriter:
    """프레임 단위 증분 기록기"""

    def __init__(self, fileobj: Optional[BinaryIO] = None, compresslevel: int = 6):
        self._buffer = fileobj if fileobj is not None else io.BytesIO()
        self._gzip = gzip.GzipFile(fileobj=self._buffer, mode="wb", compresslevel=compresslevel)
        self._metadata_written = False
        self._current_table: Optional[str] = None
        self._current_rows = 0
        self._closed = False

    def _write_frame(self, kind: bytes, payload: bytes) -> None:
        self._gzip.write(FRAME_HEADER.pack(kind, len(payload)))
        self._gzip.write(payload)

    def write_metadata(self, metadata: ArchiveMetadata) -> None:
        if self._metadata_written:
            raise FormatError("메타데이터는 한 번만 기록할 수 있습니다")
        schema = ArchiveMetadataSchema(
            version=metadata.version,
            created_at=metadata.created_at,
            app_version=metadata.app_version,
            table_count=metadata.table_count,
            tables=list(metadata.table_names),
        )
        self._write_frame(FRAME_METADATA, _encode_json(schema.model_dump(by_alias=True)))
        self._gzip.flush(zlib.Z_SYNC_FLUSH)
        self._metadata_written = True

    def begin_table(self, name: str) -> None:
        if not self._metadata_written or self._current_table is not None:
            raise FormatError(f"테이블을 시작할 수 없는 상태입니다: {name}")
        self._write_frame(FRAME_TABLE, _encode_json({"name": name}))
        self._current_table = name
        self._current_rows = 0

    def write_rows(self, rows: List[Row]) -> None:
        if self._current_table is None:
            raise FormatError("테이블 시작 전에 행을 기록할 수 없습니다")
        if not rows:
            return
        self._write_frame(FRAME_ROWS, _encode_json(rows))
        self._current_rows += len(rows)

    def end_table(self) -> int:
        if self._current_table is None:
            raise FormatError("종료할 테이블이 없습니다")
        row_count = self._current_rows
        self._write_frame(FRAME_TABLE_END, _encode_json({"row_count": row_count}))
        self._current_table = None
        return row_count

    def write_table(self, snapshot: TableSnapshot, batch_size: int = 1000) -> int:
        self.begin_table(snapshot.name)
        for batch in snapshot.iter_batches(batch_size):
            self.write_rows(batch)
        return self.end_table()

    def close(self) -> None:
        if self._closed:
            return
        self._write_frame(FRAME_END, b"")
        self._gzip.close()
        self._closed = True

    def getvalue(self) -> bytes:
        """BytesIO 에 기록한 경우 완성된 아카이브 반환"""
        self.close()
        return self._buffer.getvalue()


class ArchiveReader:
    """프레임 단위 지연 해석기"""

    def __init__(self, data: bytes):
        self.data = data

    def _open(self) -> gzip.GzipFile:
        return gzip.GzipFile(fileobj=io.BytesIO(self.data), mode="rb")

    @staticmethod
    def _read_exact(stream: BinaryIO, size: int) -> bytes:
        chunks = []
        remaining = size
        while remaining > 0:
            try:
                chunk = stream.read(remaining)
            except (OSError, EOFError, zlib.error) as e:
                raise FormatError(
                    f"아카이브 압축 해제 실패: {e}",
                    error_code=ErrorCodes.FORMAT_TRUNCATED,
                    cause=e,
                ) from e
            if not chunk:
                break
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    def _frames(self, stream: BinaryIO) -> Iterator[Tuple[bytes, bytes]]:
        while True:
            header = self._read_exact(stream, FRAME_HEADER.size)
            if not header:
                return
            if len(header) < FRAME_HEADER.size:
                raise FormatError("프레임 헤더가 잘렸습니다", error_code=ErrorCodes.FORMAT_TRUNCATED)
            kind, length = FRAME_HEADER.unpack(header)
            if kind not in _KNOWN_FRAMES:
                raise FormatError(f"알 수 없는 프레임 종류: {kind!r}")
            payload = self._read_exact(stream, length)
            if len(payload) < length:
                raise FormatError("프레임 데이터가 잘렸습니다", error_code=ErrorCodes.FORMAT_TRUNCATED)
            yield kind, payload

    @staticmethod
    def _decode_json(payload: bytes):
        try:
            return json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise FormatError(f"프레임 JSON 해석 실패: {e}", cause=e) from e

    def _next_frame(self, frames: Iterator[Tuple[bytes, bytes]], expected: bytes) -> bytes:
        try:
            kind, payload = next(frames)
        except StopIteration:
            raise FormatError(
                f"아카이브가 예상보다 일찍 끝났습니다 (기대 프레임: {expected!r})",
                error_code=ErrorCodes.FORMAT_TRUNCATED,
            ) from None
        if kind != expected:
            raise FormatError(f"잘못된 프레임 순서: {kind!r} (기대: {expected!r})")
        return payload

    def _parse_metadata(self, payload: bytes) -> ArchiveMetadata:
        raw = self._decode_json(payload)
        if not isinstance(raw, dict):
            raise FormatError("메타데이터 형식이 올바르지 않습니다")

        version = raw.get("version")
        if version not in SUPPORTED_BACKUP_VERSIONS:
            raise FormatError(
                f"지원하지 않는 아카이브 버전: {version}",
                error_code=ErrorCodes.FORMAT_UNSUPPORTED_VERSION,
            )

        try:
            schema = ArchiveMetadataSchema.model_validate(raw)
        except PydanticValidationError as e:
            raise FormatError(f"메타데이터 검증 실패: {e}", cause=e) from e

        if schema.table_count != len(schema.tables):
            raise FormatError(
                f"테이블 수 불일치: tableCount={schema.table_count}, tables={len(schema.tables)}"
            )
        if len(set(schema.tables)) != len(schema.tables):
            raise FormatError("메타데이터에 중복된 테이블명이 있습니다")

        return ArchiveMetadata(
            version=schema.version,
            created_at=schema.created_at,
            app_version=schema.app_version,
            table_count=schema.table_count,
            table_names=list(schema.tables),
        )

    def read_metadata(self) -> ArchiveMetadata:
        """첫 프레임만 해제하여 메타데이터 반환"""
        with self._open() as stream:
            frames = self._frames(stream)
            return self._parse_metadata(self._next_frame(frames, FRAME_METADATA))

    def _iter_table_rows(
        self, frames: Iterator[Tuple[bytes, bytes]], table_name: str
    ) -> Iterator[Row]:
        row_count = 0
        for kind, payload in frames:
            if kind == FRAME_ROWS:
                rows = self._decode_json(payload)
                if not isinstance(rows, list) or not all(isinstance(row, dict) for row in rows):
                    raise FormatError(f"행 배치 형식이 올바르지 않습니다: {table_name}")
                row_count += len(rows)
                yield from rows
            elif kind == FRAME_TABLE_END:
                end = self._decode_json(payload)
                if not isinstance(end, dict) or end.get("row_count") != row_count:
                    raise FormatError(f"행 수 불일치: {table_name}")
                return
            else:
                raise FormatError(f"테이블 데이터 중 잘못된 프레임: {kind!r} ({table_name})")
        raise FormatError(
            f"테이블 데이터가 잘렸습니다: {table_name}", error_code=ErrorCodes.FORMAT_TRUNCATED
        )

    def iter_tables(self) -> Iterator[TableSnapshot]:
        """
        테이블을 하나씩 지연 해석

        각 스냅샷의 rows 는 다음 테이블로 넘어가기 전에 소비해야 하며,
        소비하지 않은 행은 자동으로 건너뜁니다.
        """
        with self._open() as stream:
            frames = self._frames(stream)
            metadata = self._parse_metadata(self._next_frame(frames, FRAME_METADATA))

            for expected_name in metadata.table_names:
                header = self._decode_json(self._next_frame(frames, FRAME_TABLE))
                name = header.get("name") if isinstance(header, dict) else None
                if name != expected_name:
                    raise FormatError(f"테이블 순서 불일치: {name} (기대: {expected_name})")

                rows = self._iter_table_rows(frames, name)
                yield TableSnapshot(name=name, rows=rows)
                for _ in rows:
                    pass

            self._next_frame(frames, FRAME_END)
            for _ in frames:
                raise FormatError("아카이브 끝 표시 뒤에 데이터가 있습니다")


def serialize(metadata: ArchiveMetadata, snapshots: Iterable[TableSnapshot], batch_size: int = 1000) -> bytes:
    """메타데이터와 테이블 스냅샷을 평문 아카이브로 직렬화"""
    writer = ArchiveWriter()
    writer.write_metadata(metadata)
    written = []
    for snapshot in snapshots:
        written.append(snapshot.name)
        writer.write_table(snapshot, batch_size)
    if written != list(metadata.table_names):
        raise FormatError("스냅샷 테이블 목록이 메타데이터와 일치하지 않습니다")
    return writer.getvalue()


def deserialize(data: bytes) -> Tuple[ArchiveMetadata, List[TableSnapshot]]:
    """평문 아카이브 전체 해석 (모든 행을 메모리에 적재)"""
    reader = ArchiveReader(data)
    snapshots = [snapshot.materialize() for snapshot in reader.iter_tables()]
    return reader.read_metadata(), snapshots


def read_metadata(data: bytes) -> ArchiveMetadata:
    return ArchiveReader(data).read_metadata()
