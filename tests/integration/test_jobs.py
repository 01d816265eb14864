"""
백업 배치 작업 통합 테스트
"""

import unittest
from unittest.mock import Mock

import pytest

from app.core.base_job import JobConfig
from config.constants import ENCRYPTED_MAGIC, JobStatus, JobType
from jobs.system_maintenance.database_backup_job import DatabaseBackupJob
from jobs.system_maintenance.rotate_backup_passphrase_job import RotateBackupPassphraseJob


def make_config(job_type: JobType, **metadata) -> JobConfig:
    return JobConfig(
        job_name=f"test_{job_type.value}",
        job_type=job_type,
        schedule_expression="test",
        metadata=metadata,
    )


class TestDatabaseBackupJob:
    """예약 백업 작업 테스트"""

    def test_run_creates_backup(self, backup_env, tmp_path):
        """백업 파일 생성과 결과 메타데이터"""
        service, _, _ = backup_env
        backup_dir = tmp_path / "job_backups"
        job = DatabaseBackupJob(
            make_config(JobType.DATABASE_BACKUP, backup_directory=str(backup_dir)),
            backup_service=service,
        )

        result = job.run()

        # 검증
        assert result.status == JobStatus.SUCCESS
        assert result.processed_records == 10
        assert result.metadata["table_count"] == 10
        assert result.metadata["encrypted"] is False
        assert (backup_dir / result.metadata["backup_file"]).exists()
        assert result.end_time is not None

    def test_retention_override(self, backup_env, tmp_path):
        """작업 설정의 보존 개수 우선"""
        service, _, _ = backup_env
        backup_dir = tmp_path / "job_retention"
        backup_dir.mkdir()
        (backup_dir / "backup_2020-01-01_00-00-00.tar.gz").write_bytes(b"old")
        service.save_encryption_config("job-pw")
        job = DatabaseBackupJob(
            make_config(
                JobType.DATABASE_BACKUP,
                backup_directory=str(backup_dir),
                retention={"hourly": 1, "daily": 0, "weekly": 0, "monthly": 0, "yearly": 0},
            ),
            backup_service=service,
        )

        result = job.run()

        # 검증
        assert result.metadata["deleted_old_files"] == 1
        assert result.metadata["encrypted"] is True
        files = list(backup_dir.glob("backup_*.tar.gz"))
        assert len(files) == 1
        assert files[0].read_bytes().startswith(ENCRYPTED_MAGIC)


class TestDatabaseBackupJobFailures(unittest.TestCase):
    """예약 백업 작업 실패 처리 테스트"""

    def setUp(self):
        """테스트 설정"""
        self.service = Mock()

    @pytest.fixture(autouse=True)
    def _tmp(self, tmp_path):
        self.tmp_path = tmp_path

    def test_service_error_marks_failed(self):
        """서비스 오류 시 FAILED"""
        self.service.create_backup_with_retention.side_effect = RuntimeError("disk error")
        job = DatabaseBackupJob(
            make_config(JobType.DATABASE_BACKUP, backup_directory=str(self.tmp_path)),
            backup_service=self.service,
        )

        result = job.run()

        # 검증
        self.assertEqual(result.status, JobStatus.FAILED)
        self.assertIn("disk error", result.error_message)

    def test_database_unreachable_skipped(self):
        """데이터베이스 연결 실패 시 건너뜀"""
        self.service.database.test_connection.return_value = False
        job = DatabaseBackupJob(
            make_config(JobType.DATABASE_BACKUP, backup_directory=str(self.tmp_path)),
            backup_service=self.service,
        )

        result = job.run()

        # 검증
        self.assertEqual(result.status, JobStatus.SKIPPED)
        self.service.create_backup_with_retention.assert_not_called()

    def test_disabled_job_skipped(self):
        """비활성화된 작업은 실행하지 않음"""
        config = make_config(JobType.DATABASE_BACKUP, backup_directory=str(self.tmp_path))
        config.enabled = False
        job = DatabaseBackupJob(config, backup_service=self.service)

        result = job.run()

        # 검증
        self.assertEqual(result.status, JobStatus.SKIPPED)
        self.service.create_backup_with_retention.assert_not_called()


class TestRotateBackupPassphraseJob:
    """패스프레이즈 교체 작업 테스트"""

    def test_missing_passphrase_skipped(self, backup_env, tmp_path):
        """새 패스프레이즈가 없으면 건너뜀"""
        service, _, _ = backup_env
        job = RotateBackupPassphraseJob(
            make_config(JobType.BACKUP_PASSPHRASE_ROTATION, backup_directory=str(tmp_path)),
            backup_service=service,
        )

        result = job.run()

        assert result.status == JobStatus.SKIPPED

    def test_rotation(self, backup_env, tmp_path):
        """재암호화 후 설정 교체"""
        service, _, _ = backup_env
        backup_dir = tmp_path / "rotate_job"
        service.save_encryption_config("before")
        created = service.create_backup_with_retention(str(backup_dir))
        job = RotateBackupPassphraseJob(
            make_config(
                JobType.BACKUP_PASSPHRASE_ROTATION,
                new_passphrase="after",
                backup_directory=str(backup_dir),
            ),
            backup_service=service,
        )

        result = job.run()

        # 검증
        assert result.status == JobStatus.SUCCESS
        assert result.metadata["rotated_files"] == 1
        assert service.get_decrypted_passphrase() == "after"
        assert service.get_metadata(created.file_path.read_bytes(), "after").table_count == 10

    def test_partial_failure_marks_failed(self, backup_env, tmp_path):
        """재암호화 실패 파일이 있으면 FAILED"""
        service, _, _ = backup_env
        backup_dir = tmp_path / "rotate_broken"
        backup_dir.mkdir()
        (backup_dir / "backup_2020-01-01_00-00-00.tar.gz").write_bytes(ENCRYPTED_MAGIC + b"\x01" * 80)
        job = RotateBackupPassphraseJob(
            make_config(
                JobType.BACKUP_PASSPHRASE_ROTATION,
                new_passphrase="after",
                backup_directory=str(backup_dir),
            ),
            backup_service=service,
        )

        result = job.run()

        # 검증
        assert result.status == JobStatus.FAILED
        assert result.metadata["failed_files"] == ["backup_2020-01-01_00-00-00.tar.gz"]
        assert "1개" in result.error_message


class TestJobStatus(unittest.TestCase):
    """작업 상태 값"""

    def test_status_members(self):
        """별칭 없이 실행 흐름에서 쓰는 상태만 정의"""
        self.assertEqual(
            list(JobStatus.__members__),
            ["PENDING", "RUNNING", "SUCCESS", "FAILED", "SKIPPED"],
        )
