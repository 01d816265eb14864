"""
구버전 아카이브 데이터 변환

복원 직전에 이전 포맷 버전의 테이블 데이터를 현재 스키마에 맞게 변환합니다.
"""

import logging
from typing import Callable, Dict, Iterable, Iterator, List, Tuple

from app.backup.types import ArchiveMetadata, Row, TableSnapshot
from config.constants import BACKUP_FORMAT_VERSION, GLOBAL_CONFIG_CHAT_ID

logger = logging.getLogger(__name__)


def parse_version(version: str) -> Tuple[int, ...]:
    return tuple(int(part) for part in version.split("."))


def _merge_global_config_rows(rows: List[Row]) -> List[Row]:
    """configs.chat_id NULL -> 0 (v2.1 미만)

    NULL 행과 0 행이 모두 있으면 NULL 행 값을 우선하고 비어 있는 값만 0 행에서 채웁니다.
    """
    null_rows = [row for row in rows if row.get("chat_id") is None]
    if not null_rows:
        return rows

    zero_rows = [row for row in rows if row.get("chat_id") == GLOBAL_CONFIG_CHAT_ID]
    merged = dict(null_rows[0])
    merged["chat_id"] = GLOBAL_CONFIG_CHAT_ID
    for fallback in zero_rows:
        for key, value in fallback.items():
            if merged.get(key) is None and value is not None:
                merged[key] = value

    if zero_rows or len(null_rows) > 1:
        logger.info(f"전역 설정 행 병합: NULL {len(null_rows)}건 + 0 {len(zero_rows)}건")

    result = []
    inserted = False
    for row in rows:
        chat_id = row.get("chat_id")
        if chat_id is None or chat_id == GLOBAL_CONFIG_CHAT_ID:
            if not inserted:
                result.append(merged)
                inserted = True
            continue
        result.append(row)
    return result


# (적용 대상 최대 버전 미만, 테이블, 변환 함수)
_MIGRATIONS: List[Tuple[str, str, Callable[[List[Row]], List[Row]]]] = [
    ("2.1", "configs", _merge_global_config_rows),
]


def needs_migration(metadata: ArchiveMetadata) -> bool:
    return parse_version(metadata.version) < parse_version(BACKUP_FORMAT_VERSION)


def migrate_tables(
    metadata: ArchiveMetadata, snapshots: Iterable[TableSnapshot]
) -> Iterator[TableSnapshot]:
    """아카이브 버전에 해당하는 변환을 적용하며 스냅샷을 전달"""
    version = parse_version(metadata.version)
    pending: Dict[str, List[Callable[[List[Row]], List[Row]]]] = {}
    for before, table_name, migration in _MIGRATIONS:
        if version < parse_version(before):
            pending.setdefault(table_name, []).append(migration)

    if pending:
        logger.info(f"아카이브 버전 {metadata.version} -> {BACKUP_FORMAT_VERSION} 변환 적용")

    for snapshot in snapshots:
        migrations = pending.get(snapshot.name)
        if not migrations:
            yield snapshot
            continue
        rows = list(snapshot.rows)
        for migration in migrations:
            rows = migration(rows)
        yield TableSnapshot(name=snapshot.name, rows=rows, row_count=len(rows))
