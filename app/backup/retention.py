"""
백업 보존 정책 (grandfather-father-son)

모든 파일은 hourly 계층에 속하고, UTC 기준 일/ISO 주/월/년의 가장 이른 파일이
각각 daily/weekly/monthly/yearly 계층에 속합니다. 계층마다 최신 N개를 보관하며
어느 계층에서도 보관되지 않는 파일만 삭제 대상이 됩니다.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Hashable, List, Sequence, Set

from app.backup.types import BackupFileInfo, BackupTier, RetentionConfig

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _period_keys() -> Dict[BackupTier, Callable[[datetime], Hashable]]:
    return {
        BackupTier.DAILY: lambda moment: moment.date(),
        BackupTier.WEEKLY: lambda moment: tuple(moment.isocalendar())[:2],
        BackupTier.MONTHLY: lambda moment: (moment.year, moment.month),
        BackupTier.YEARLY: lambda moment: moment.year,
    }


class BackupRetentionService:
    """보존 정책 기반 삭제 대상 선정"""

    def classify(self, files: Sequence[BackupFileInfo]) -> Dict[BackupTier, List[BackupFileInfo]]:
        """계층별 해당 파일 목록 (오래된 순)"""
        ordered = sorted(files, key=lambda info: _as_utc(info.created_at))
        tiers: Dict[BackupTier, List[BackupFileInfo]] = {BackupTier.HOURLY: list(ordered)}

        for tier, key_of in _period_keys().items():
            seen: Set[Hashable] = set()
            members = []
            for info in ordered:
                key = key_of(_as_utc(info.created_at))
                if key in seen:
                    continue
                seen.add(key)
                members.append(info)
            tiers[tier] = members

        return tiers

    def select_for_deletion(
        self, files: Sequence[BackupFileInfo], config: RetentionConfig
    ) -> List[BackupFileInfo]:
        """
        삭제 대상 파일 선정

        Args:
            files: 백업 파일 목록
            config: 계층별 보관 개수

        Returns:
            삭제할 파일 목록 (오래된 순)
        """
        if not files:
            return []

        tiers = self.classify(files)
        kept_ids: Set[int] = set()
        for tier, members in tiers.items():
            limit = max(config.limit_for(tier), 0)
            retained = members[-limit:] if limit else []
            kept_ids.update(id(info) for info in retained)
            logger.debug(f"보존 계층 {tier.value}: 대상 {len(members)}개, 보관 {len(retained)}개")

        to_delete = [info for info in tiers[BackupTier.HOURLY] if id(info) not in kept_ids]
        logger.info(f"보존 정책 적용: 전체 {len(files)}개, 보관 {len(files) - len(to_delete)}개, 삭제 {len(to_delete)}개")
        return to_delete
