#!/usr/bin/env python3
"""
백업 배치 작업 수동 실행 스크립트

전체 시스템 백업 내보내기/복원, 메타데이터 조회, 패스프레이즈 설정과
예약 백업/패스프레이즈 교체 작업을 명령줄에서 실행합니다.
"""

import argparse
import getpass
import sys
from datetime import datetime, timezone
from pathlib import Path

# 프로젝트 루트를 Python 경로에 추가
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from app.backup.backup_service import create_backup_service
from app.core.base_job import JobConfig
from app.core.error_handling import BackupEngineError
from app.core.logger import get_logger, get_logger_instance
from config.constants import DATE_FORMATS, JobStatus, JobType
from config.settings import get_app_settings
from jobs.system_maintenance.database_backup_job import DatabaseBackupJob
from jobs.system_maintenance.rotate_backup_passphrase_job import (
    RotateBackupPassphraseJob,
)


class BackupCommandRunner:
    """백업 명령 실행기"""

    def __init__(self):
        self.logger = get_logger(__name__)
        self.job_logger = get_logger_instance()
        self.settings = get_app_settings()
        self._service = None

        self.available_jobs = {
            "backup": {
                "name": "데이터베이스 백업",
                "description": "백업 파일 생성 및 보존 정책 적용",
                "function": self._create_backup_job,
            },
            "rotate": {
                "name": "패스프레이즈 교체",
                "description": "기존 백업 재암호화 및 패스프레이즈 교체",
                "function": self._create_rotation_job,
            },
        }

    @property
    def service(self):
        if self._service is None:
            self._service = create_backup_service(self.settings)
        return self._service

    # ========== 아카이브 명령 ==========

    def export(self, output: str = None, passphrase: str = None) -> bool:
        archive = self.service.export(passphrase=passphrase)
        if output is None:
            stamp = datetime.now(timezone.utc).strftime(DATE_FORMATS["backup_file"])
            output = str(Path(self.settings.backup.backup_dir) / f"backup_{stamp}.tar.gz")

        path = Path(output)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(archive)

        metadata = self.service.get_metadata(archive, passphrase)
        self.job_logger.log_archive_summary(
            "내보내기", metadata.table_count, len(archive), self.service.is_encrypted(archive)
        )
        print(f"✅ 백업 저장: {path} ({len(archive) / 1024:.1f}KB)")
        return True

    def restore(self, file_path: str, passphrase: str = None, confirmed: bool = False) -> bool:
        if not confirmed:
            self.logger.warning(f"복원 확인 누락: {file_path}")
            print("❌ 복원은 기존 데이터를 모두 삭제합니다. --yes 옵션으로 확인해주세요.")
            return False

        archive = Path(file_path).read_bytes()
        summary = self.service.restore(archive, passphrase=passphrase)

        for table in summary.tables:
            self.job_logger.log_table_progress("복원", table.table_name, table.row_count)
        for name in summary.skipped_tables:
            print(f"⚠️  대상 데이터베이스에 없는 테이블 건너뜀: {name}")

        print(
            f"✅ 복원 완료: {summary.tables_restored}개 테이블, {summary.rows_restored}건 "
            f"(아카이브 버전 {summary.archive_version})"
        )
        return True

    def show_metadata(self, file_path: str, passphrase: str = None) -> bool:
        archive = Path(file_path).read_bytes()
        metadata = self.service.get_metadata(archive, passphrase)

        print(f"\n=== 백업 메타데이터: {Path(file_path).name} ===")
        print(f"포맷 버전   : {metadata.version}")
        print(f"생성 시각   : {metadata.created_at_datetime.strftime('%Y-%m-%d %H:%M:%S')} UTC")
        print(f"앱 버전     : {metadata.app_version}")
        print(f"테이블 수   : {metadata.table_count}")
        print(f"암호화      : {'예' if self.service.is_encrypted(archive) else '아니오'}")
        for name in metadata.table_names:
            print(f"  - {name}")
        return True

    def check_encrypted(self, file_path: str) -> bool:
        with open(file_path, "rb") as f:
            header = f.read(64)
        encrypted = self.service.is_encrypted(header)
        print(f"{Path(file_path).name}: {'암호화됨' if encrypted else '평문'}")
        return True

    def set_passphrase(self, passphrase: str = None) -> bool:
        if passphrase is None:
            passphrase = getpass.getpass("새 백업 패스프레이즈: ")
            if passphrase != getpass.getpass("패스프레이즈 확인: "):
                print("❌ 패스프레이즈가 일치하지 않습니다.")
                return False

        config = self.service.save_encryption_config(passphrase)
        print(f"✅ 백업 암호화 활성화 ({config.algorithm}, 반복 {config.iterations}회)")
        return True

    def list_backups(self, backup_dir: str = None) -> bool:
        backups = self.service.list_backups(backup_dir)

        print("\n=== 백업 파일 목록 ===")
        if not backups:
            print("📝 백업 파일이 없습니다.")
            return True

        print(f"{'파일명':<40} {'생성 시각(UTC)':<20} {'크기':>10} {'암호화'}")
        print("-" * 85)
        for info in backups:
            print(
                f"{info.file_name:<40} {info.created_at.strftime('%Y-%m-%d %H:%M'):<20} "
                f"{info.size_bytes / 1024:>8.1f}KB {'예' if info.is_encrypted else '아니오'}"
            )
        return True

    # ========== 배치 작업 ==========

    def _create_backup_job(self, options: dict):
        config = JobConfig(
            job_name="database_backup",
            job_type=JobType.DATABASE_BACKUP,
            schedule_expression="0 * * * *",
            metadata={"backup_directory": options.get("backup_dir")},
        )
        return DatabaseBackupJob(config, backup_service=self.service).run()

    def _create_rotation_job(self, options: dict):
        new_passphrase = options.get("passphrase") or getpass.getpass("새 백업 패스프레이즈: ")
        config = JobConfig(
            job_name="backup_passphrase_rotation",
            job_type=JobType.BACKUP_PASSPHRASE_ROTATION,
            schedule_expression="manual",
            metadata={
                "new_passphrase": new_passphrase,
                "backup_directory": options.get("backup_dir"),
            },
        )
        return RotateBackupPassphraseJob(config, backup_service=self.service).run()

    def run_job(self, job_code: str, **options) -> bool:
        """지정된 배치 작업 실행"""
        job_info = self.available_jobs[job_code]

        print(f"\n🚀 배치 작업 시작: {job_info['name']}")
        print(f"📋 설명: {job_info['description']}")
        print(f"⏰ 시작 시간: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        print("-" * 60)

        self.job_logger.log_job_start(job_code, job_info["name"])
        result = job_info["function"](options)
        duration = result.duration_seconds
        if result.status == JobStatus.FAILED:
            self.job_logger.log_job_failure(job_code, result.error_message or "", duration)
        else:
            self.job_logger.log_job_complete(job_code, result.processed_records, duration)

        if result.status == JobStatus.SUCCESS:
            print(f"\n✅ 작업 완료: {job_info['name']}")
            print(f"⏱️  소요 시간: {duration:.2f}초")
            for key, value in result.metadata.items():
                print(f"   {key}: {value}")
            return True

        if result.status == JobStatus.SKIPPED:
            print(f"\n⚠️  작업 건너뜀: {job_info['name']}")
            return False

        print(f"\n❌ 작업 실패: {job_info['name']}")
        print(f"⏱️  소요 시간: {duration:.2f}초")
        print(f"🔥 오류: {result.error_message}")
        return False


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="전체 시스템 백업/복원 도구",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
사용 예시:
  python run_batch.py export --output backup.tar.gz     # 백업 내보내기
  python run_batch.py restore backup.tar.gz --yes       # 백업 복원 (기존 데이터 삭제)
  python run_batch.py metadata backup.tar.gz            # 메타데이터 조회
  python run_batch.py is-encrypted backup.tar.gz        # 암호화 여부 확인
  python run_batch.py set-passphrase                    # 백업 패스프레이즈 설정
  python run_batch.py backup                            # 예약 백업 작업 실행
  python run_batch.py rotate                            # 패스프레이즈 교체 작업 실행
  python run_batch.py list                              # 백업 파일 목록
        """,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    export_parser = subparsers.add_parser("export", help="백업 내보내기")
    export_parser.add_argument("--output", "-o", help="저장할 파일 경로")
    export_parser.add_argument("--passphrase", help="명시적 패스프레이즈")

    restore_parser = subparsers.add_parser("restore", help="백업 복원")
    restore_parser.add_argument("file", help="백업 파일 경로")
    restore_parser.add_argument("--passphrase", help="명시적 패스프레이즈")
    restore_parser.add_argument("--yes", action="store_true", help="기존 데이터 삭제 확인")

    metadata_parser = subparsers.add_parser("metadata", help="메타데이터 조회")
    metadata_parser.add_argument("file", help="백업 파일 경로")
    metadata_parser.add_argument("--passphrase", help="명시적 패스프레이즈")

    encrypted_parser = subparsers.add_parser("is-encrypted", help="암호화 여부 확인")
    encrypted_parser.add_argument("file", help="백업 파일 경로")

    passphrase_parser = subparsers.add_parser("set-passphrase", help="백업 패스프레이즈 설정")
    passphrase_parser.add_argument("--passphrase", help="패스프레이즈 (없으면 입력 요청)")

    backup_parser = subparsers.add_parser("backup", help="예약 백업 작업 실행")
    backup_parser.add_argument("--backup-dir", help="백업 디렉토리")

    rotate_parser = subparsers.add_parser("rotate", help="패스프레이즈 교체 작업 실행")
    rotate_parser.add_argument("--passphrase", help="새 패스프레이즈 (없으면 입력 요청)")
    rotate_parser.add_argument("--backup-dir", help="백업 디렉토리")

    list_parser = subparsers.add_parser("list", help="백업 파일 목록")
    list_parser.add_argument("--backup-dir", help="백업 디렉토리")

    return parser


def main(argv=None):
    """메인 함수"""
    args = build_parser().parse_args(argv)

    logger = get_logger(__name__)
    logger.info(f"백업 도구 시작: {args.command}")

    try:
        runner = BackupCommandRunner()

        if args.command == "export":
            success = runner.export(args.output, args.passphrase)
        elif args.command == "restore":
            success = runner.restore(args.file, args.passphrase, confirmed=args.yes)
        elif args.command == "metadata":
            success = runner.show_metadata(args.file, args.passphrase)
        elif args.command == "is-encrypted":
            success = runner.check_encrypted(args.file)
        elif args.command == "set-passphrase":
            success = runner.set_passphrase(args.passphrase)
        elif args.command == "list":
            success = runner.list_backups(args.backup_dir)
        elif args.command == "backup":
            success = runner.run_job("backup", backup_dir=args.backup_dir)
        else:
            success = runner.run_job(
                "rotate", passphrase=args.passphrase, backup_dir=args.backup_dir
            )

        sys.exit(0 if success else 1)

    except KeyboardInterrupt:
        print("\n⚠️  사용자 중단으로 종료합니다.")
        sys.exit(1)
    except BackupEngineError as e:
        print(f"❌ [{e.error_code}] {e.message}")
        logger.error(f"백업 도구 오류: {e.to_dict()}")
        sys.exit(1)
    except (OSError, ValueError) as e:
        print(f"❌ 실행 오류: {e}")
        logger.error(f"백업 도구 오류: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
