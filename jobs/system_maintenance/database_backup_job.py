"""
데이터베이스 백업 자동화 작업

전체 시스템 백업 아카이브를 생성하고 보존 정책에 따라 오래된 백업을 정리하는 배치 작업입니다.
"""

import shutil
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from app.backup.backup_service import BackupService, create_backup_service
from app.backup.types import RetentionConfig
from app.core.base_job import BaseJob, JobResult, JobConfig
from config.constants import JobStatus
from config.settings import get_app_settings


class DatabaseBackupJob(BaseJob):
    """데이터베이스 백업 자동화 배치 작업"""

    def __init__(self, config: JobConfig, backup_service: Optional[BackupService] = None):
        super().__init__(config)
        self.app_settings = get_app_settings()
        self.backup_service = backup_service
        self.backup_dir = Path(
            config.metadata.get("backup_directory") or self.app_settings.backup.backup_dir
        )

    def _get_service(self) -> BackupService:
        if self.backup_service is None:
            self.backup_service = create_backup_service(self.app_settings)
        return self.backup_service

    def _retention_config(self) -> RetentionConfig:
        retention = self.app_settings.retention
        overrides = self.config.metadata.get("retention", {})
        return RetentionConfig(
            hourly=overrides.get("hourly", retention.hourly),
            daily=overrides.get("daily", retention.daily),
            weekly=overrides.get("weekly", retention.weekly),
            monthly=overrides.get("monthly", retention.monthly),
            yearly=overrides.get("yearly", retention.yearly),
        )

    def execute(self) -> JobResult:
        """데이터베이스 백업 실행"""
        result = JobResult(
            job_name=self.config.job_name,
            job_type=self.config.job_type,
            status=JobStatus.RUNNING,
            start_time=datetime.now(),
        )

        try:
            backup = self._get_service().create_backup_with_retention(
                backup_dir=str(self.backup_dir),
                retention_config=self._retention_config(),
            )

            # 생성 직후 메타데이터 확인
            metadata = self._get_service().get_metadata(Path(backup.file_path).read_bytes())

            result.processed_records = metadata.table_count
            result.metadata = {
                "backup_file": backup.file_name,
                "backup_size_mb": round(backup.size_bytes / (1024 * 1024), 2),
                "encrypted": backup.is_encrypted,
                "table_count": metadata.table_count,
                "deleted_old_files": backup.deleted_count,
                "backup_directory": str(self.backup_dir),
            }

            self.logger.info(
                f"데이터베이스 백업 완료: {backup.file_name}, "
                f"{backup.size_bytes / 1024:.1f}KB, 정리 {backup.deleted_count}개"
            )

        except Exception as e:
            self.logger.error(f"데이터베이스 백업 실패: {str(e)}")
            raise

        return result

    def _get_backup_statistics(self) -> Dict:
        """백업 통계 정보 조회"""
        try:
            backups = self._get_service().list_backups(str(self.backup_dir))
            total_size = sum(info.size_bytes for info in backups)
            return {
                "total_files": len(backups),
                "total_size_mb": round(total_size / (1024 * 1024), 2),
                "encrypted_files": sum(1 for info in backups if info.is_encrypted),
                "newest_backup": backups[0].file_name if backups else None,
                "oldest_backup": backups[-1].file_name if backups else None,
            }
        except Exception as e:
            self.logger.warning(f"백업 통계 조회 실패: {str(e)}")
            return {}

    def pre_execute(self) -> bool:
        """실행 전 검증"""
        if not self._get_service().database.test_connection():
            self.logger.error("데이터베이스에 연결할 수 없어 백업을 건너뜁니다")
            return False

        # 백업 디렉토리 쓰기 권한 확인
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            test_file = self.backup_dir / "test_write.tmp"
            test_file.write_text("test")
            test_file.unlink()
        except Exception as e:
            self.logger.error(f"백업 디렉토리 쓰기 권한 없음: {str(e)}")
            return False

        # 디스크 공간 확인
        try:
            disk_usage = shutil.disk_usage(self.backup_dir)
            free_space_gb = disk_usage.free / (1024**3)
            if free_space_gb < self.app_settings.backup.min_free_space_gb:
                self.logger.warning(f"디스크 여유 공간 부족: {free_space_gb:.1f}GB")
                # 경고만 하고 계속 진행
        except OSError as e:
            self.logger.warning(f"디스크 공간 확인 실패: {str(e)}")

        return True

    def post_execute(self, result: JobResult) -> None:
        """실행 후 처리"""
        super().post_execute(result)

        # 백업 통계 로깅
        stats = self._get_backup_statistics()
        if stats:
            self.logger.info(
                f"백업 디렉토리 통계: 총 {stats['total_files']}개 파일 "
                f"(암호화 {stats['encrypted_files']}개), {stats['total_size_mb']:.1f}MB"
            )
