"""
테이블 내보내기

테이블당 한 번의 SELECT 로 행을 배치 단위로 스트리밍하며,
보호 필드는 평문으로 변환해 이식 가능한 값으로 기록합니다.
"""

import logging
import threading
from typing import Iterator, List, Optional

from sqlalchemy import select
from sqlalchemy.engine import Connection

from app.backup.column_values import to_portable
from app.backup.field_protection import FieldProtectionBridge
from app.backup.types import Row, TableDescriptor, TableSnapshot
from app.core.error_handling import ExportFailure, OperationCancelledError

logger = logging.getLogger(__name__)


class TableExporter:
    """단일 테이블 행 스트리머"""

    def __init__(self, protection: FieldProtectionBridge, batch_size: int = 1000):
        self.protection = protection
        self.batch_size = batch_size

    @staticmethod
    def order_columns(descriptor: TableDescriptor) -> List[str]:
        """정렬 기준: 기본 키, 없으면 created_at, 없으면 첫 컬럼"""
        if descriptor.primary_key:
            return list(descriptor.primary_key)
        if "created_at" in descriptor.column_names:
            return ["created_at"]
        return descriptor.column_names[:1]

    def export(
        self,
        descriptor: TableDescriptor,
        connection: Connection,
        cancel_event: Optional[threading.Event] = None,
    ) -> TableSnapshot:
        """테이블 스냅샷 (rows 는 connection 이 열려 있는 동안 소비해야 하는 지연 이터레이터)"""
        return TableSnapshot(
            name=descriptor.table_name,
            rows=self._iter_rows(descriptor, connection, cancel_event),
        )

    def _iter_rows(
        self,
        descriptor: TableDescriptor,
        connection: Connection,
        cancel_event: Optional[threading.Event],
    ) -> Iterator[Row]:
        table = descriptor.table
        column_names = descriptor.column_names
        statement = select(*[table.c[name] for name in column_names]).order_by(
            *[table.c[name] for name in self.order_columns(descriptor)]
        )
        protected = {
            mapping.column_name: mapping.protection_purpose
            for mapping in descriptor.protected_columns
        }

        try:
            result = connection.execution_options(yield_per=self.batch_size).execute(statement)
        except Exception as e:
            raise ExportFailure(
                f"테이블 조회 실패: {descriptor.table_name}: {e}",
                table_name=descriptor.table_name,
                cause=e,
            ) from e

        row_count = 0
        try:
            for partition in result.partitions():
                if cancel_event is not None and cancel_event.is_set():
                    raise OperationCancelledError(
                        f"내보내기 취소됨 (테이블: {descriptor.table_name})", operation="export"
                    )
                for record in partition:
                    mapping = record._mapping
                    row = {}
                    for name in column_names:
                        value = mapping[name]
                        if name in protected:
                            value = self.protection.decrypt_for_export(value, protected[name])
                        row[name] = to_portable(value)
                    row_count += 1
                    yield row
        finally:
            result.close()

        logger.debug(f"테이블 내보내기 완료: {descriptor.table_name} ({row_count}건)")
