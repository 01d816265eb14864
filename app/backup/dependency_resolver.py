"""
외래 키 의존성 기반 테이블 적재 순서 계산
"""

import heapq
import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Set

from sqlalchemy import inspect
from sqlalchemy.engine import Connection

from app.backup.types import DependencyEdge, TableDescriptor
from app.core.error_handling import CyclicDependencyError

logger = logging.getLogger(__name__)


class DependencyResolver:
    """위상 정렬 (Kahn 알고리즘, 동률은 테이블명 순)"""

    def order(self, tables: Iterable[str], edges: Iterable[DependencyEdge]) -> List[str]:
        """
        참조되는 테이블이 참조하는 테이블보다 먼저 오도록 정렬

        Raises:
            CyclicDependencyError: 서로 다른 둘 이상의 테이블 사이에 순환이 있는 경우
        """
        nodes = set(tables)
        dependents: Dict[str, Set[str]] = defaultdict(set)
        in_degree: Dict[str, int] = {name: 0 for name in nodes}

        for edge in edges:
            if edge.is_self_reference:
                continue
            if edge.from_table not in nodes or edge.to_table not in nodes:
                continue
            if edge.from_table in dependents[edge.to_table]:
                continue
            dependents[edge.to_table].add(edge.from_table)
            in_degree[edge.from_table] += 1

        ready = [name for name, degree in in_degree.items() if degree == 0]
        heapq.heapify(ready)
        ordered: List[str] = []

        while ready:
            name = heapq.heappop(ready)
            ordered.append(name)
            for dependent in dependents[name]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(ready, dependent)

        if len(ordered) != len(nodes):
            remaining = sorted(name for name, degree in in_degree.items() if degree > 0)
            raise CyclicDependencyError(
                f"테이블 간 외래 키 순환 감지: {', '.join(remaining)}", tables=remaining
            )

        return ordered

    @staticmethod
    def self_referencing(edges: Iterable[DependencyEdge]) -> Set[str]:
        """자기 자신을 참조하는 테이블"""
        return {edge.from_table for edge in edges if edge.is_self_reference}

    @staticmethod
    def edges_from_metadata(descriptors: Iterable[TableDescriptor]) -> List[DependencyEdge]:
        """모델에 선언된 외래 키로 의존성 간선 구성"""
        edges = set()
        for descriptor in descriptors:
            for fk in descriptor.table.foreign_keys:
                edges.add(DependencyEdge(descriptor.table_name, fk.column.table.name))
        return sorted(edges, key=lambda edge: (edge.from_table, edge.to_table))

    @staticmethod
    def edges_from_database(connection: Connection, tables: Iterable[str]) -> List[DependencyEdge]:
        """대상 DB 스키마의 외래 키로 의존성 간선 구성"""
        inspector = inspect(connection)
        names = set(tables)
        edges = set()
        for table_name in names:
            for fk in inspector.get_foreign_keys(table_name):
                referred = fk.get("referred_table")
                if referred in names:
                    edges.add(DependencyEdge(table_name, referred))
        logger.debug(f"대상 DB 외래 키 간선 {len(edges)}개 조회")
        return sorted(edges, key=lambda edge: (edge.from_table, edge.to_table))
