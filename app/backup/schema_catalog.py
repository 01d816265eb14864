"""
스키마 카탈로그

선언형 모델 레지스트리에서 백업 대상 테이블과 컬럼 매핑을 구성합니다.
런타임 리플렉션 대신 명시적으로 등록된 매핑만 사용합니다.
"""

import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import Column
from sqlalchemy.orm import ColumnProperty, registry as orm_registry

from app.backup.types import ColumnMapping, TableDescriptor
from app.models import PROTECTED_PURPOSE_KEY, Base
from config.constants import EXCLUDED_TABLES

logger = logging.getLogger(__name__)


def is_persisted_column(column: Column) -> bool:
    """DB 가 계산하는 생성 컬럼이 아닌 실제 저장 컬럼 여부"""
    return column.computed is None


class SchemaCatalog:
    """백업 대상 테이블 카탈로그"""

    def __init__(
        self,
        registry: Optional[orm_registry] = None,
        excluded_tables: Iterable[str] = EXCLUDED_TABLES,
    ):
        self.registry = registry or Base.registry
        self.excluded_tables = frozenset(excluded_tables)
        self._descriptors: Optional[Dict[str, TableDescriptor]] = None

    def _build(self) -> Dict[str, TableDescriptor]:
        descriptors: Dict[str, TableDescriptor] = {}

        for mapper in self.registry.mappers:
            table = mapper.local_table
            if table is None or table.name in self.excluded_tables:
                continue

            columns = []
            for prop in mapper.iterate_properties:
                if not isinstance(prop, ColumnProperty):
                    continue
                for column in prop.columns:
                    if not isinstance(column, Column) or column.table is not table:
                        continue
                    if not is_persisted_column(column):
                        continue
                    purpose = column.info.get(PROTECTED_PURPOSE_KEY)
                    columns.append(
                        ColumnMapping(
                            column_name=column.name,
                            field_name=prop.key,
                            is_protected=purpose is not None,
                            protection_purpose=purpose,
                        )
                    )

            # 테이블 정의 순서 유지
            position = {column.name: index for index, column in enumerate(table.columns)}
            columns.sort(key=lambda mapping: position[mapping.column_name])

            descriptors[table.name] = TableDescriptor(
                table_name=table.name,
                record_type=mapper.class_,
                table=table,
                columns=tuple(columns),
                primary_key=tuple(column.name for column in table.primary_key.columns),
            )

        logger.debug(f"스키마 카탈로그 구성 완료: {len(descriptors)}개 테이블")
        return descriptors

    @property
    def descriptors(self) -> Dict[str, TableDescriptor]:
        if self._descriptors is None:
            self._descriptors = self._build()
        return self._descriptors

    def list_exportable_tables(self) -> List[TableDescriptor]:
        """백업 대상 테이블 목록 (테이블명 순)"""
        return [self.descriptors[name] for name in sorted(self.descriptors)]

    def get(self, table_name: str) -> Optional[TableDescriptor]:
        return self.descriptors.get(table_name)

    def table_names(self) -> List[str]:
        return sorted(self.descriptors)
