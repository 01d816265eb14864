"""
백업 서비스

내보내기, 복원, 메타데이터 조회, 암호화 설정, 예약 백업과 보존 정책,
패스프레이즈 교체를 하나의 진입점으로 제공합니다.
"""

import logging
import os
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from app.backup.archive_codec import ArchiveReader, ArchiveWriter
from app.backup.archive_migrations import migrate_tables, needs_migration
from app.backup.dependency_resolver import DependencyResolver
from app.backup.encryption import BackupEncryptionService
from app.backup.field_protection import (
    DataProtectionService,
    FieldProtectionBridge,
    KeyFileDataProtectionService,
)
from app.backup.passphrase import BackupConfigurationService
from app.backup.restore_engine import RestoreEngine
from app.backup.retention import BackupRetentionService
from app.backup.schema_catalog import SchemaCatalog
from app.backup.table_exporter import TableExporter
from app.backup.types import (
    ArchiveMetadata,
    BackupFileInfo,
    BackupResult,
    PassphraseRotationResult,
    RestoreSummary,
    RetentionConfig,
    TableDescriptor,
    TableOperationResult,
)
from app.core.database_manager import DatabaseManager
from app.core.error_handling import (
    BackupEngineError,
    ExportFailure,
    FormatError,
    OperationCancelledError,
)
from app.models import BackupEncryptionConfigSchema
from config.constants import (
    BACKUP_FILE_PATTERN,
    BACKUP_FORMAT_VERSION,
    DATE_FORMATS,
    ENCRYPTED_MAGIC,
)
from config.settings import AppSettings, BackupSettings, get_app_settings

logger = logging.getLogger(__name__)

# 내보내기/복원/패스프레이즈 변경은 프로세스 전체에서 직렬화
_operation_lock = threading.RLock()


def _require_passphrase(passphrase: Optional[str]) -> None:
    if passphrase is not None and not passphrase.strip():
        raise ValueError("패스프레이즈가 비어 있습니다")


class BackupService:
    """전체 시스템 백업/복원 서비스"""

    def __init__(
        self,
        database: DatabaseManager,
        catalog: SchemaCatalog,
        resolver: DependencyResolver,
        exporter: TableExporter,
        restore_engine: RestoreEngine,
        encryption: BackupEncryptionService,
        configuration: BackupConfigurationService,
        retention: BackupRetentionService,
        settings: BackupSettings,
    ):
        self.database = database
        self.catalog = catalog
        self.resolver = resolver
        self.exporter = exporter
        self.restore_engine = restore_engine
        self.encryption = encryption
        self.configuration = configuration
        self.retention = retention
        self.settings = settings

    # ========== 내보내기 ==========

    def export(
        self,
        passphrase: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> bytes:
        """
        전체 데이터베이스를 아카이브로 내보내기

        Args:
            passphrase: 명시적 패스프레이즈 (없으면 저장된 설정 사용)
            cancel_event: 취소 신호

        Returns:
            bytes: 암호화 아카이브 (설정/패스프레이즈가 없으면 평문 아카이브)
        """
        _require_passphrase(passphrase)

        with _operation_lock:
            if passphrase is None:
                settings_snapshot = self.configuration.load_snapshot()
                if settings_snapshot.enabled:
                    passphrase = settings_snapshot.passphrase
                else:
                    logger.warning("백업 암호화가 설정되지 않아 평문 아카이브를 생성합니다")

            plain = self._export_plain(cancel_event)
            if passphrase is None:
                return plain

            archive = self.encryption.encrypt(plain, passphrase)
            self._validate_archive(archive, passphrase)
            logger.info(f"암호화 아카이브 생성 완료: {len(plain)} -> {len(archive)} bytes")
            return archive

    def _archive_order(self, descriptors: List[TableDescriptor]) -> List[str]:
        edges = self.resolver.edges_from_metadata(descriptors)
        return self.resolver.order([descriptor.table_name for descriptor in descriptors], edges)

    def _export_table(
        self,
        writer: ArchiveWriter,
        descriptor: TableDescriptor,
        connection,
        cancel_event: Optional[threading.Event],
    ) -> TableOperationResult:
        try:
            snapshot = self.exporter.export(descriptor, connection, cancel_event)
            row_count = writer.write_table(snapshot, self.settings.batch_size)
            return TableOperationResult(table_name=descriptor.table_name, row_count=row_count)
        except OperationCancelledError:
            raise
        except Exception as e:
            logger.error(f"테이블 내보내기 실패: {descriptor.table_name}: {e}")
            raise ExportFailure(
                f"테이블 내보내기 실패: {descriptor.table_name}: {e}",
                table_name=descriptor.table_name,
                cause=e,
            ) from e

    def _export_plain(self, cancel_event: Optional[threading.Event]) -> bytes:
        descriptors = self.catalog.list_exportable_tables()
        by_name = {descriptor.table_name: descriptor for descriptor in descriptors}
        order = self._archive_order(descriptors)

        metadata = ArchiveMetadata(
            version=BACKUP_FORMAT_VERSION,
            created_at=int(time.time()),
            app_version=self.settings.app_version,
            table_count=len(order),
            table_names=order,
        )
        logger.info(f"백업 내보내기 시작: {len(order)}개 테이블")

        writer = ArchiveWriter()
        writer.write_metadata(metadata)
        results: List[TableOperationResult] = []

        with self.database.connect() as connection:
            for name in order:
                if cancel_event is not None and cancel_event.is_set():
                    raise OperationCancelledError(f"내보내기 취소됨 (테이블: {name})", operation="export")
                result = self._export_table(writer, by_name[name], connection, cancel_event)
                results.append(result)
                logger.debug(f"테이블 내보내기: {name} ({result.row_count}건)")

        plain = writer.getvalue()
        logger.info(
            f"백업 내보내기 완료: {len(results)}개 테이블, "
            f"{sum(result.row_count for result in results)}건, {len(plain)} bytes"
        )
        return plain

    def _validate_archive(self, archive: bytes, passphrase: Optional[str]) -> ArchiveMetadata:
        """생성 직후 메타데이터를 다시 읽어 검증"""
        metadata = self.get_metadata(archive, passphrase)
        if not metadata.version or metadata.table_count <= 0:
            raise FormatError("생성된 아카이브 검증 실패: 버전 또는 테이블 정보가 없습니다")
        return metadata

    # ========== 복원 ==========

    def _decrypt_if_needed(self, archive: bytes, passphrase: Optional[str]) -> bytes:
        if not self.encryption.is_encrypted(archive):
            return archive
        if passphrase is None:
            passphrase = self.configuration.get_decrypted_passphrase()
        return self.encryption.decrypt(archive, passphrase)

    def restore(
        self,
        archive: bytes,
        passphrase: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> RestoreSummary:
        """
        아카이브로 데이터베이스 전체 복원 (기존 데이터 삭제)

        복호화는 데이터 삭제 전에 끝나므로 잘못된 패스프레이즈는
        데이터베이스를 변경하지 않고 CryptoError 로 실패합니다.
        """
        _require_passphrase(passphrase)

        with _operation_lock:
            plain = self._decrypt_if_needed(archive, passphrase)
            reader = ArchiveReader(plain)
            metadata = reader.read_metadata()
            logger.info(
                f"복원 시작: 버전 {metadata.version}, {metadata.table_count}개 테이블, "
                f"생성 {metadata.created_at_datetime.isoformat()}"
            )

            snapshots = reader.iter_tables()
            if needs_migration(metadata):
                snapshots = migrate_tables(metadata, snapshots)

            return self.restore_engine.apply(self.database, metadata, snapshots, cancel_event)

    # ========== 조회 ==========

    def get_metadata(self, archive: bytes, passphrase: Optional[str] = None) -> ArchiveMetadata:
        """아카이브 메타데이터 조회 (테이블 데이터는 해제하지 않음)"""
        _require_passphrase(passphrase)
        return ArchiveReader(self._decrypt_if_needed(archive, passphrase)).read_metadata()

    def is_encrypted(self, archive: bytes) -> bool:
        return self.encryption.is_encrypted(archive)

    # ========== 암호화 설정 ==========

    def save_encryption_config(self, passphrase: str) -> BackupEncryptionConfigSchema:
        with _operation_lock:
            return self.configuration.save_encryption_config(passphrase)

    def get_decrypted_passphrase(self) -> str:
        return self.configuration.get_decrypted_passphrase()

    # ========== 백업 파일 관리 ==========

    @staticmethod
    def _parse_file_timestamp(path: Path) -> Optional[datetime]:
        stamp = path.name[len("backup_") : -len(".tar.gz")]
        try:
            return datetime.strptime(stamp, DATE_FORMATS["backup_file"]).replace(tzinfo=timezone.utc)
        except ValueError:
            return None

    def list_backups(self, backup_dir: Optional[str] = None) -> List[BackupFileInfo]:
        """백업 파일 목록 (최신순). 암호화 여부는 파일 앞 7바이트로만 판단"""
        directory = Path(backup_dir or self.settings.backup_dir)
        if not directory.exists():
            return []

        files = []
        for path in directory.glob(BACKUP_FILE_PATTERN):
            if not path.is_file():
                continue
            stat = path.stat()
            created_at = self._parse_file_timestamp(path) or datetime.fromtimestamp(
                stat.st_mtime, tz=timezone.utc
            )
            with open(path, "rb") as f:
                header = f.read(len(ENCRYPTED_MAGIC))
            files.append(
                BackupFileInfo(
                    path=path,
                    created_at=created_at,
                    size_bytes=stat.st_size,
                    is_encrypted=self.encryption.is_encrypted(header),
                )
            )

        files.sort(key=lambda info: info.created_at, reverse=True)
        return files

    def create_backup_with_retention(
        self,
        backup_dir: Optional[str] = None,
        retention_config: Optional[RetentionConfig] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> BackupResult:
        """
        백업 파일 생성 후 보존 정책 적용

        파일 기록과 보존 정책 적용이 끝날 때까지 작업 잠금을 유지하므로
        패스프레이즈 교체가 기록 전 아카이브를 건너뛰지 않습니다.
        """
        directory = Path(backup_dir or self.settings.backup_dir)
        directory.mkdir(parents=True, exist_ok=True)

        with _operation_lock:
            archive = self.export(cancel_event=cancel_event)
            file_name = f"backup_{datetime.now(timezone.utc).strftime(DATE_FORMATS['backup_file'])}.tar.gz"
            file_path = directory / file_name

            temp_path = file_path.with_name(file_path.name + ".tmp")
            temp_path.write_bytes(archive)
            os.replace(temp_path, file_path)
            logger.info(f"백업 파일 생성: {file_path} ({len(archive)} bytes)")

            deleted_count = 0
            to_delete = self.retention.select_for_deletion(
                self.list_backups(str(directory)), retention_config or RetentionConfig()
            )
            for info in to_delete:
                if Path(info.path) == file_path:
                    continue
                try:
                    Path(info.path).unlink()
                    deleted_count += 1
                    logger.info(f"보존 정책에 따라 백업 삭제: {info.file_name}")
                except OSError as e:
                    logger.warning(f"백업 파일 삭제 실패: {info.file_name}: {e}")

        return BackupResult(
            file_name=file_name,
            file_path=file_path,
            size_bytes=len(archive),
            deleted_count=deleted_count,
            is_encrypted=self.encryption.is_encrypted(archive),
        )

    def rotate_passphrase(
        self, new_passphrase: str, backup_dir: Optional[str] = None
    ) -> PassphraseRotationResult:
        """
        기존 백업 파일을 새 패스프레이즈로 재암호화한 뒤 설정을 교체

        파일마다 '.new' 임시 파일에 기록하고 복호화 검증 후 원본과 교체합니다.
        실패한 파일은 원본을 그대로 두고 결과에 기록합니다.
        """
        if not new_passphrase or not new_passphrase.strip():
            raise ValueError("새 패스프레이즈가 필요합니다")

        with _operation_lock:
            directory = Path(backup_dir or self.settings.backup_dir)
            directory.mkdir(parents=True, exist_ok=True)

            config = self.configuration.get_encryption_config()
            old_passphrase = (
                self.configuration.get_decrypted_passphrase() if config and config.enabled else None
            )

            result = PassphraseRotationResult()
            for info in self.list_backups(str(directory)):
                result.total_files += 1
                temp_path = Path(info.path).with_name(info.file_name + ".new")
                try:
                    data = Path(info.path).read_bytes()
                    if self.encryption.is_encrypted(data):
                        if old_passphrase is None:
                            raise BackupEngineError("기존 패스프레이즈가 없어 복호화할 수 없습니다")
                        plain = self.encryption.decrypt(data, old_passphrase)
                    else:
                        plain = data

                    temp_path.write_bytes(self.encryption.encrypt(plain, new_passphrase))
                    if self.encryption.decrypt(temp_path.read_bytes(), new_passphrase) != plain:
                        raise BackupEngineError("재암호화 검증 실패")
                    os.replace(temp_path, info.path)
                    result.rotated_files += 1
                    logger.info(f"백업 재암호화 완료: {info.file_name}")
                except Exception as e:
                    result.failed_files.append(info.file_name)
                    logger.error(f"백업 재암호화 실패: {info.file_name}: {e}")
                    if temp_path.exists():
                        temp_path.unlink()

            self.configuration.update_passphrase(new_passphrase)
            logger.info(
                f"패스프레이즈 교체 완료: 전체 {result.total_files}개, "
                f"성공 {result.rotated_files}개, 실패 {result.failed_count}개"
            )
            return result


def create_backup_service(
    settings: Optional[AppSettings] = None,
    database: Optional[DatabaseManager] = None,
    protection: Optional[DataProtectionService] = None,
) -> BackupService:
    """설정으로부터 협력 객체를 명시적으로 조립"""
    settings = settings or get_app_settings()
    database = database or DatabaseManager(db_config=settings.database, pool_config=settings.pool)
    protection = protection or KeyFileDataProtectionService(
        settings.backup.key_dir, settings.backup.application_name
    )

    bridge = FieldProtectionBridge(protection)
    catalog = SchemaCatalog()
    resolver = DependencyResolver()
    return BackupService(
        database=database,
        catalog=catalog,
        resolver=resolver,
        exporter=TableExporter(bridge, settings.backup.batch_size),
        restore_engine=RestoreEngine(catalog, resolver, bridge, settings.backup.batch_size),
        encryption=BackupEncryptionService(),
        configuration=BackupConfigurationService(database, protection),
        retention=BackupRetentionService(),
        settings=settings.backup,
    )
