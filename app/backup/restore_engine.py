"""
복원 엔진

단일 트랜잭션 안에서 관리 대상 테이블을 모두 비우고 아카이브 데이터를
의존성 순서대로 적재한 뒤 시퀀스를 재설정합니다. 어느 단계에서든 실패하면
전체가 롤백되어 데이터베이스는 복원 전 상태로 남습니다.
"""

import logging
import threading
from collections import defaultdict
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

from sqlalchemy import bindparam, inspect, select, text
from sqlalchemy.engine import Connection

from app.backup.column_values import from_portable
from app.backup.dependency_resolver import DependencyResolver
from app.backup.field_protection import FieldProtectionBridge
from app.backup.schema_catalog import SchemaCatalog
from app.backup.types import (
    ArchiveMetadata,
    RestoreState,
    RestoreSummary,
    TableDescriptor,
    TableOperationResult,
    TableSnapshot,
)
from app.core.database_manager import DatabaseManager
from app.core.error_handling import (
    BackupEngineError,
    CryptoError,
    ErrorCodes,
    FormatError,
    OperationCancelledError,
    RestoreFailure,
)
from config.constants import EXCLUDED_TABLES

logger = logging.getLogger(__name__)


class RestoreEngine:
    """파괴적 전체 복원 실행기"""

    def __init__(
        self,
        catalog: SchemaCatalog,
        resolver: DependencyResolver,
        protection: FieldProtectionBridge,
        batch_size: int = 1000,
    ):
        self.catalog = catalog
        self.resolver = resolver
        self.protection = protection
        self.batch_size = batch_size
        self.state = RestoreState.IDLE

    def _set_state(self, state: RestoreState) -> None:
        self.state = state
        logger.info(f"복원 상태 전환: {state.value}")

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event], step: str) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelledError(f"복원 취소됨 ({step})", operation="restore")

    def _plan_tables(
        self, metadata: ArchiveMetadata, existing_tables: Set[str]
    ) -> Tuple[List[str], List[str]]:
        """(대상 DB 에 있는 관리 테이블, 건너뛸 아카이브 테이블) 반환. 매핑 없는 테이블은 거부"""
        managed = set(self.catalog.descriptors)
        unknown = [
            name
            for name in metadata.table_names
            if name not in managed and name not in EXCLUDED_TABLES
        ]
        if unknown:
            raise FormatError(
                f"매핑되지 않은 테이블이 아카이브에 있습니다: {', '.join(unknown)}",
                error_code=ErrorCodes.FORMAT_UNKNOWN_TABLE,
            )

        present = sorted(managed & existing_tables)
        skipped = [
            name
            for name in metadata.table_names
            if name in EXCLUDED_TABLES or name not in existing_tables
        ]
        for name in skipped:
            logger.warning(f"대상 스키마에 없거나 제외된 테이블 건너뜀: {name}")
        return present, skipped

    def apply(
        self,
        database: DatabaseManager,
        metadata: ArchiveMetadata,
        snapshots: Iterable[TableSnapshot],
        cancel_event: Optional[threading.Event] = None,
    ) -> RestoreSummary:
        """
        아카이브 데이터를 대상 데이터베이스에 복원

        Args:
            database: 대상 데이터베이스
            metadata: 아카이브 메타데이터
            snapshots: 메타데이터 순서의 테이블 스트림
            cancel_event: 취소 신호

        Returns:
            RestoreSummary: 복원 결과
        """
        summary = RestoreSummary(archive_version=metadata.version)
        self._set_state(RestoreState.IDLE)
        current_table = ""

        try:
            with database.begin() as connection:
                inspector = inspect(connection)
                existing_tables = set(inspector.get_table_names())
                tables, skipped = self._plan_tables(metadata, existing_tables)
                summary.skipped_tables = skipped

                edges = self.resolver.edges_from_database(connection, tables)
                order = self.resolver.order(tables, edges)
                self_referencing = self.resolver.self_referencing(edges)
                summary.load_order = [name for name in order if name in metadata.table_names]
                self._check_cancelled(cancel_event, "준비")

                self._lock_tables(connection, order)

                self._set_state(RestoreState.WIPING)
                for name in reversed(order):
                    current_table = name
                    connection.execute(self.catalog.get(name).table.delete())
                    logger.debug(f"테이블 비움: {name}")
                self._check_cancelled(cancel_event, "비우기")

                self._set_state(RestoreState.LOADING)
                stream = _SnapshotStream(snapshots)
                for name in summary.load_order:
                    current_table = name
                    self._check_cancelled(cancel_event, name)
                    snapshot = stream.take(name)
                    target_columns = {column["name"] for column in inspector.get_columns(name)}
                    row_count = self._load_table(
                        connection,
                        self.catalog.get(name),
                        snapshot,
                        target_columns,
                        name in self_referencing,
                        cancel_event,
                    )
                    summary.tables.append(TableOperationResult(table_name=name, row_count=row_count))
                    logger.info(f"테이블 복원 완료: {name} ({row_count}건)")
                current_table = ""
                stream.drain()
                self._check_cancelled(cancel_event, "적재 후")

                self._set_state(RestoreState.SEQUENCE_RESET)
                summary.sequences_reset = self._reset_sequences(connection, order)

                self._set_state(RestoreState.RE_ENCRYPTING)
                self._verify_protected_fields(connection, summary.load_order)
                self._check_cancelled(cancel_event, "커밋 전")

            self._set_state(RestoreState.COMMITTED)
            summary.state = self.state
            logger.info(
                f"복원 커밋 완료: {summary.tables_restored}개 테이블, {summary.rows_restored}건"
            )
            return summary

        except BackupEngineError as e:
            self._set_state(RestoreState.FAILED)
            summary.state = self.state
            logger.error(f"복원 실패, 롤백됨: {e.message}")
            raise
        except Exception as e:
            self._set_state(RestoreState.FAILED)
            summary.state = self.state
            logger.error(f"복원 실패, 롤백됨 (테이블: {current_table or '-'}): {e}")
            raise RestoreFailure(
                f"복원 실패 (테이블: {current_table or '-'}): {e}",
                table_name=current_table,
                cause=e,
            ) from e

    def _lock_tables(self, connection: Connection, tables: List[str]) -> None:
        if connection.dialect.name != "postgresql" or not tables:
            return
        preparer = connection.dialect.identifier_preparer
        names = ", ".join(preparer.quote(name) for name in tables)
        connection.execute(text(f"LOCK TABLE {names} IN ACCESS EXCLUSIVE MODE"))
        logger.debug(f"테이블 잠금 획득: {len(tables)}개")

    def _load_table(
        self,
        connection: Connection,
        descriptor: TableDescriptor,
        snapshot: TableSnapshot,
        target_columns: Set[str],
        self_referencing: bool,
        cancel_event: Optional[threading.Event],
    ) -> int:
        table = descriptor.table
        insertable = [name for name in descriptor.column_names if name in target_columns]
        protected = {
            mapping.column_name: mapping.protection_purpose
            for mapping in descriptor.protected_columns
        }

        deferred_columns: List[str] = []
        if self_referencing:
            deferred_columns = sorted(
                fk.parent.name
                for fk in table.foreign_keys
                if fk.column.table is table and fk.parent.nullable and fk.parent.name in insertable
            )
        deferred: Dict[str, List[Dict]] = defaultdict(list)

        dropped: Set[str] = set()
        row_count = 0
        for batch in snapshot.iter_batches(self.batch_size):
            self._check_cancelled(cancel_event, descriptor.table_name)
            params = []
            for row in batch:
                dropped.update(key for key in row if key not in insertable)
                values = {}
                for name in insertable:
                    if name not in row:
                        continue
                    value = from_portable(row[name], table.c[name])
                    if name in protected:
                        value = self.protection.encrypt_for_import(value, protected[name])
                    values[name] = value
                for name in deferred_columns:
                    if values.get(name) is not None:
                        deferred[name].append(
                            {
                                **{f"pk_{pk}": values[pk] for pk in descriptor.primary_key},
                                "deferred_value": values[name],
                            }
                        )
                        values[name] = None
                params.append(values)

            self._insert_batch(connection, descriptor, params)
            row_count += len(params)

        if dropped:
            logger.warning(
                f"대상 스키마에 없는 컬럼 제외: {descriptor.table_name} ({', '.join(sorted(dropped))})"
            )

        for name, updates in deferred.items():
            statement = (
                table.update()
                .where(*[table.c[pk] == bindparam(f"pk_{pk}") for pk in descriptor.primary_key])
                .values({name: bindparam("deferred_value")})
            )
            for start in range(0, len(updates), self.batch_size):
                connection.execute(statement, updates[start : start + self.batch_size])
            logger.debug(f"자기 참조 컬럼 갱신: {descriptor.table_name}.{name} ({len(updates)}건)")

        return row_count

    def _insert_batch(
        self, connection: Connection, descriptor: TableDescriptor, params: List[Dict]
    ) -> None:
        if not params:
            return
        # 행마다 키 구성이 다를 수 있으므로 같은 키 집합끼리 묶어서 실행
        groups: Dict[Tuple[str, ...], List[Dict]] = defaultdict(list)
        for values in params:
            groups[tuple(sorted(values))].append(values)
        try:
            for group in groups.values():
                connection.execute(descriptor.table.insert(), group)
        except Exception as e:
            raise RestoreFailure(
                f"행 적재 실패 (테이블: {descriptor.table_name}): {e}",
                table_name=descriptor.table_name,
                cause=e,
            ) from e

    def _reset_sequences(self, connection: Connection, tables: List[str]) -> List[str]:
        dialect = connection.dialect.name
        if dialect not in ("postgresql", "sqlite"):
            logger.debug(f"시퀀스 재설정 미지원 dialect: {dialect}")
            return []

        preparer = connection.dialect.identifier_preparer
        reset: List[str] = []

        if dialect == "sqlite":
            has_sequence_table = connection.execute(
                text("SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'sqlite_sequence'")
            ).first()
            if not has_sequence_table:
                return []

        for name in tables:
            column = self.catalog.get(name).table.autoincrement_column
            if column is None:
                continue
            quoted_table = preparer.quote(name)
            quoted_column = preparer.quote(column.name)
            max_value = connection.execute(
                text(f"SELECT MAX({quoted_column}) FROM {quoted_table} WHERE {quoted_column} > 0")
            ).scalar()

            if dialect == "postgresql":
                sequence = connection.execute(
                    text("SELECT pg_get_serial_sequence(:table_name, :column_name)"),
                    {"table_name": quoted_table, "column_name": column.name},
                ).scalar()
                if not sequence:
                    continue
                connection.execute(
                    text("SELECT setval(CAST(:sequence AS regclass), :value, :is_called)"),
                    {
                        "sequence": sequence,
                        "value": max_value or 1,
                        "is_called": max_value is not None,
                    },
                )
            else:
                # AUTOINCREMENT 로 생성된 테이블만 sqlite_sequence 를 사용
                if not self.catalog.get(name).table.dialect_options["sqlite"]["autoincrement"]:
                    continue
                updated = connection.execute(
                    text("UPDATE sqlite_sequence SET seq = :value WHERE name = :table_name"),
                    {"value": max_value or 0, "table_name": name},
                ).rowcount
                if not updated and max_value:
                    updated = connection.execute(
                        text("INSERT INTO sqlite_sequence (name, seq) VALUES (:table_name, :value)"),
                        {"value": max_value, "table_name": name},
                    ).rowcount
                if not updated:
                    continue
            reset.append(name)
            logger.debug(f"시퀀스 재설정: {name}.{column.name} -> {max_value or 0}")

        return reset

    def _verify_protected_fields(self, connection: Connection, tables: List[str]) -> None:
        """복원된 보호 필드가 대상 호스트 키로 복호화되는지 확인"""
        for name in tables:
            descriptor = self.catalog.get(name)
            mappings = descriptor.protected_columns
            if not mappings:
                continue
            table = descriptor.table
            columns = [table.c[mapping.column_name] for mapping in mappings]
            for record in connection.execute(select(*columns)):
                for mapping, value in zip(mappings, record):
                    if not value:
                        continue
                    try:
                        self.protection.verify_protected(value, mapping.protection_purpose)
                    except CryptoError as e:
                        raise RestoreFailure(
                            f"보호 필드 재암호화 검증 실패: {name}.{mapping.column_name}",
                            table_name=name,
                            cause=e,
                        ) from e
            logger.debug(f"보호 필드 검증 완료: {name}")


class _SnapshotStream:
    """메타데이터 순서의 스냅샷 스트림을 적재 순서로 꺼내기 위한 버퍼"""

    def __init__(self, snapshots: Iterable[TableSnapshot]):
        self._iterator: Iterator[TableSnapshot] = iter(snapshots)
        self._buffered: Dict[str, TableSnapshot] = {}

    def take(self, name: str) -> TableSnapshot:
        if name in self._buffered:
            return self._buffered.pop(name)
        for snapshot in self._iterator:
            if snapshot.name == name:
                return snapshot
            # 순서가 다른 테이블은 스트림이 다음으로 넘어가기 전에 메모리에 보관
            self._buffered[snapshot.name] = snapshot.materialize()
        raise FormatError(f"아카이브에 테이블 데이터가 없습니다: {name}")

    def drain(self) -> None:
        for snapshot in self._iterator:
            for _ in snapshot.rows:
                pass
