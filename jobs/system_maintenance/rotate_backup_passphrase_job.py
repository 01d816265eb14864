"""
백업 패스프레이즈 교체 작업

기존 백업 파일을 모두 새 패스프레이즈로 재암호화한 뒤 저장된 설정을 교체합니다.

JobConfig.metadata:
    new_passphrase: 새 패스프레이즈 (필수)
    backup_directory: 백업 디렉토리 (없으면 BACKUP_DIR)
"""

from datetime import datetime
from typing import Optional

from app.backup.backup_service import BackupService, create_backup_service
from app.core.base_job import BaseJob, JobResult, JobConfig
from config.constants import JobStatus
from config.settings import get_app_settings


class RotateBackupPassphraseJob(BaseJob):
    """백업 패스프레이즈 교체 배치 작업"""

    def __init__(self, config: JobConfig, backup_service: Optional[BackupService] = None):
        super().__init__(config)
        self.app_settings = get_app_settings()
        self.backup_service = backup_service

    def pre_execute(self) -> bool:
        if not self.config.metadata.get("new_passphrase"):
            self.logger.error("새 패스프레이즈가 지정되지 않았습니다 (metadata.new_passphrase)")
            return False
        return super().pre_execute()

    def execute(self) -> JobResult:
        result = JobResult(
            job_name=self.config.job_name,
            job_type=self.config.job_type,
            status=JobStatus.RUNNING,
            start_time=datetime.now(),
        )

        service = self.backup_service or create_backup_service(self.app_settings)
        backup_dir = self.config.metadata.get("backup_directory") or self.app_settings.backup.backup_dir

        rotation = service.rotate_passphrase(self.config.metadata["new_passphrase"], backup_dir)

        result.processed_records = rotation.rotated_files
        result.metadata = {
            "total_files": rotation.total_files,
            "rotated_files": rotation.rotated_files,
            "failed_files": rotation.failed_files,
            "backup_directory": str(backup_dir),
        }
        if rotation.failed_count:
            result.status = JobStatus.FAILED
            result.error_message = f"{rotation.failed_count}개 백업 파일 재암호화 실패"
            self.logger.warning(result.error_message)

        return result
