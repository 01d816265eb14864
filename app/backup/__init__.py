"""
전체 시스템 백업/복원 엔진

관리 대상 테이블 전체를 이식 가능한 (선택적으로 암호화된) 아카이브로 내보내고,
새 데이터베이스에 참조 무결성과 시퀀스 상태를 유지하며 복원합니다.
"""

from app.backup.types import (
    ArchiveMetadata,
    BackupFileInfo,
    BackupResult,
    BackupTier,
    ColumnMapping,
    DependencyEdge,
    PassphraseRotationResult,
    RestoreState,
    RestoreSummary,
    RetentionConfig,
    TableDescriptor,
    TableOperationResult,
    TableSnapshot,
)

from app.backup.encryption import BackupEncryptionService

from app.backup.field_protection import (
    DataProtectionService,
    KeyFileDataProtectionService,
    FieldProtectionBridge,
)

from app.backup.schema_catalog import SchemaCatalog
from app.backup.table_exporter import TableExporter
from app.backup.dependency_resolver import DependencyResolver
from app.backup.restore_engine import RestoreEngine
from app.backup.retention import BackupRetentionService
from app.backup.passphrase import BackupConfigurationService

from app.backup.backup_service import (
    BackupService,
    create_backup_service,
)

__all__ = [
    # 데이터 타입
    'ArchiveMetadata',
    'BackupFileInfo',
    'BackupResult',
    'BackupTier',
    'ColumnMapping',
    'DependencyEdge',
    'PassphraseRotationResult',
    'RestoreState',
    'RestoreSummary',
    'RetentionConfig',
    'TableDescriptor',
    'TableOperationResult',
    'TableSnapshot',

    # 암호화 / 필드 보호
    'BackupEncryptionService',
    'DataProtectionService',
    'KeyFileDataProtectionService',
    'FieldProtectionBridge',

    # 스키마 / 내보내기 / 복원
    'SchemaCatalog',
    'TableExporter',
    'DependencyResolver',
    'RestoreEngine',

    # 보존 정책 / 설정
    'BackupRetentionService',
    'BackupConfigurationService',

    # 서비스
    'BackupService',
    'create_backup_service',
]
