"""
백업 엔진 공용 데이터 타입
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from sqlalchemy import Table

Row = Dict[str, Any]


@dataclass
class ArchiveMetadata:
    """아카이브 메타데이터 (생성 후 변경되지 않음)"""

    version: str
    created_at: int
    app_version: str
    table_count: int
    table_names: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """외부 노출용 딕셔너리 (camelCase)"""
        return {
            "version": self.version,
            "createdAt": self.created_at,
            "appVersion": self.app_version,
            "tableCount": self.table_count,
            "tables": list(self.table_names),
        }

    @property
    def created_at_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.created_at, tz=timezone.utc)


@dataclass
class TableSnapshot:
    """한 테이블의 행 스트림

    rows 는 내보내기/스트리밍 중에는 지연 이터러블, materialize() 이후에는 리스트입니다.
    """

    name: str
    rows: Iterable[Row] = field(default_factory=list)
    row_count: Optional[int] = None

    def iter_batches(self, batch_size: int) -> Iterator[List[Row]]:
        batch: List[Row] = []
        for row in self.rows:
            batch.append(row)
            if len(batch) >= batch_size:
                yield batch
                batch = []
        if batch:
            yield batch

    def materialize(self) -> "TableSnapshot":
        if not isinstance(self.rows, list):
            self.rows = list(self.rows)
        self.row_count = len(self.rows)
        return self


@dataclass(frozen=True)
class ColumnMapping:
    """영속 컬럼과 매핑 속성 정보"""

    column_name: str
    field_name: str
    is_protected: bool = False
    protection_purpose: Optional[str] = None


@dataclass(frozen=True)
class TableDescriptor:
    """내보내기 대상 테이블 정보"""

    table_name: str
    record_type: type
    table: Table
    columns: Tuple[ColumnMapping, ...]
    primary_key: Tuple[str, ...]

    @property
    def column_names(self) -> List[str]:
        return [column.column_name for column in self.columns]

    @property
    def protected_columns(self) -> List[ColumnMapping]:
        return [column for column in self.columns if column.is_protected]


@dataclass(frozen=True)
class DependencyEdge:
    """from_table 이 to_table 을 참조 (to_table 이 먼저 적재되어야 함)"""

    from_table: str
    to_table: str

    @property
    def is_self_reference(self) -> bool:
        return self.from_table == self.to_table


@dataclass
class BackupFileInfo:
    """디스크에 저장된 백업 파일 정보"""

    path: Path
    created_at: datetime
    size_bytes: int
    is_encrypted: bool = False

    @property
    def file_name(self) -> str:
        return Path(self.path).name


@dataclass
class RetentionConfig:
    """계층별 보관 개수"""

    hourly: int = 24
    daily: int = 7
    weekly: int = 4
    monthly: int = 12
    yearly: int = 3

    def limit_for(self, tier: "BackupTier") -> int:
        return getattr(self, tier.value)


class BackupTier(Enum):
    """보존 계층"""

    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class RestoreState(Enum):
    """복원 진행 상태"""

    IDLE = "idle"
    WIPING = "wiping"
    LOADING = "loading"
    SEQUENCE_RESET = "sequence_reset"
    RE_ENCRYPTING = "re_encrypting"
    COMMITTED = "committed"
    FAILED = "failed"


@dataclass
class TableOperationResult:
    """테이블 단위 처리 결과"""

    table_name: str
    row_count: int = 0


@dataclass
class RestoreSummary:
    """복원 결과 요약"""

    state: RestoreState = RestoreState.IDLE
    load_order: List[str] = field(default_factory=list)
    tables: List[TableOperationResult] = field(default_factory=list)
    sequences_reset: List[str] = field(default_factory=list)
    skipped_tables: List[str] = field(default_factory=list)
    archive_version: str = ""

    @property
    def tables_restored(self) -> int:
        return len(self.tables)

    @property
    def rows_restored(self) -> int:
        return sum(result.row_count for result in self.tables)


@dataclass
class BackupResult:
    """예약 백업 결과"""

    file_name: str
    file_path: Path
    size_bytes: int
    deleted_count: int = 0
    is_encrypted: bool = False


@dataclass
class PassphraseRotationResult:
    """패스프레이즈 교체 결과"""

    total_files: int = 0
    rotated_files: int = 0
    failed_files: List[str] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return len(self.failed_files)
