"""
백업 서비스 통합 테스트

임시 SQLite 데이터베이스 두 개(원본/대상)를 사용해 내보내기와 복원을 검증합니다.
"""

import threading
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

import pytest
from sqlalchemy import func, insert, select

from app.backup.archive_codec import serialize
from app.backup.restore_engine import RestoreEngine
from app.backup.schema_catalog import SchemaCatalog
from app.backup.table_exporter import TableExporter
from app.backup.types import ArchiveMetadata, RestoreState, RetentionConfig, TableSnapshot
from app.core.error_handling import (
    ConfigurationError,
    CryptoError,
    ErrorCodes,
    ExportFailure,
    FormatError,
    OperationCancelledError,
    RestoreFailure,
)
from app.models import Config, Invite, Message, User, VerificationToken
from config.constants import ENCRYPTED_MAGIC, DataProtectionPurposes

from conftest import seed_database

MANAGED_TABLES = [
    "audit_log",
    "configs",
    "detection_results",
    "invites",
    "managed_chats",
    "messages",
    "telegram_users",
    "user_actions",
    "users",
    "verification_tokens",
]


def table_counts(database):
    catalog = SchemaCatalog()
    with database.connect() as connection:
        return {
            name: connection.execute(select(func.count()).select_from(catalog.get(name).table)).scalar()
            for name in MANAGED_TABLES
        }


def add_user(database, user_id, invited_by=None):
    with database.begin() as connection:
        connection.execute(
            insert(User.__table__).values(
                id=user_id,
                email=f"{user_id}@example.com",
                normalized_email=f"{user_id.upper()}@EXAMPLE.COM",
                password_hash="hash",
                security_stamp="stamp",
                invited_by=invited_by,
                created_at=datetime(2024, 3, 1, tzinfo=timezone.utc),
            )
        )


class TestExportRestore:
    """내보내기/복원 왕복"""

    def test_round_trip_to_other_host(self, backup_env, empty_target):
        """다른 호스트 키를 쓰는 대상에 복원하면 보호 필드가 재암호화된다"""
        service, database, _ = backup_env
        target_service, target_database, target_protection = empty_target

        archive = service.export(passphrase="pw")
        summary = target_service.restore(archive, passphrase="pw")

        # 검증
        assert summary.state == RestoreState.COMMITTED
        assert table_counts(target_database) == table_counts(database)
        assert sorted(summary.load_order) == MANAGED_TABLES
        assert summary.load_order.index("users") < summary.load_order.index("invites")

        with target_database.connect() as connection:
            admin = connection.execute(
                select(User.__table__.c.totp_secret).where(User.__table__.c.id == "u-admin")
            ).scalar()
            api_keys = connection.execute(
                select(Config.__table__.c.api_keys).where(Config.__table__.c.chat_id == 0)
            ).scalar()
            lengths = dict(
                connection.execute(
                    select(Message.__table__.c.message_id, Message.__table__.c.message_length)
                ).all()
            )

        assert target_protection.unprotect(DataProtectionPurposes.TOTP_SECRETS, admin) == "JBSWY3DPEHPK3PXP"
        assert target_protection.unprotect(DataProtectionPurposes.API_KEYS, api_keys) == "sk-test-key"
        assert lengths == {1: len("안녕하세요"), 2: len("buy now")}

    def test_archive_metadata(self, backup_env):
        """메타데이터 조회"""
        service, _, _ = backup_env

        archive = service.export(passphrase="pw")
        metadata = service.get_metadata(archive, "pw")

        # 검증
        assert archive.startswith(ENCRYPTED_MAGIC)
        assert service.is_encrypted(archive)
        assert metadata.version == "2.1"
        assert metadata.app_version == "test"
        assert metadata.table_count == len(MANAGED_TABLES)
        assert sorted(metadata.table_names) == MANAGED_TABLES
        assert "cached_blocked_domains" not in metadata.table_names

    def test_self_referencing_users(self, backup_env, empty_target):
        """초대 체인이 정렬 순서와 반대여도 복원된다"""
        service, database, _ = backup_env
        target_service, target_database, _ = empty_target

        # u-8 이 u-7 을, ... u-2 가 u-1 을 초대 (기본 키 순서와 반대)
        add_user(database, "u-8")
        for index in range(7, 0, -1):
            add_user(database, f"u-{index}", invited_by=f"u-{index + 1}")
        with database.begin() as connection:
            connection.execute(
                insert(Invite.__table__).values(
                    token="invite-1",
                    created_by="u-1",
                    used_by="u-2",
                    expires_at=datetime(2024, 4, 1, tzinfo=timezone.utc),
                )
            )

        target_service.restore(service.export(passphrase="pw"), passphrase="pw")

        with target_database.connect() as connection:
            invited_by = dict(
                connection.execute(select(User.__table__.c.id, User.__table__.c.invited_by)).all()
            )

        # 검증
        for index in range(1, 8):
            assert invited_by[f"u-{index}"] == f"u-{index + 1}"
        assert invited_by["u-8"] is None
        assert invited_by["u-member"] == "u-admin"
        assert table_counts(target_database)["invites"] == 1

    def test_restore_is_idempotent(self, backup_env, empty_target):
        """같은 아카이브를 두 번 복원해도 결과가 같다"""
        service, _, _ = backup_env
        target_service, target_database, _ = empty_target
        archive = service.export(passphrase="pw")

        target_service.restore(archive, passphrase="pw")
        first = table_counts(target_database)
        target_service.restore(archive, passphrase="pw")

        # 검증
        assert table_counts(target_database) == first

    def test_sequences_after_restore(self, backup_env, empty_target):
        """복원 후 새 행은 기존 ID 와 충돌하지 않는다"""
        service, _, _ = backup_env
        target_service, target_database, _ = empty_target

        summary = target_service.restore(service.export(passphrase="pw"), passphrase="pw")
        with target_database.begin() as connection:
            new_id = connection.execute(
                insert(VerificationToken.__table__).values(
                    user_id="u-member",
                    token_type="email",
                    token="t3",
                    created_at=datetime.now(timezone.utc),
                    expires_at=datetime.now(timezone.utc),
                )
            ).inserted_primary_key[0]

        # 검증
        assert "verification_tokens" in summary.sequences_reset
        assert new_id == 3

    def test_plain_archive_without_configuration(self, backup_env, empty_target):
        """암호화 설정이 없으면 평문 아카이브"""
        service, _, _ = backup_env
        target_service, target_database, _ = empty_target

        archive = service.export()
        target_service.restore(archive)

        # 검증
        assert not service.is_encrypted(archive)
        assert table_counts(target_database)["users"] == 2


class TestRestoreFailures:
    """복원 실패 시 데이터베이스 보존"""

    def test_wrong_passphrase_leaves_database(self, backup_env):
        """잘못된 패스프레이즈는 아무것도 지우지 않는다"""
        service, database, _ = backup_env
        archive = service.export(passphrase="pw")
        before = table_counts(database)

        with pytest.raises(CryptoError):
            service.restore(archive, passphrase="wrong")

        # 검증
        assert table_counts(database) == before

    def test_failure_rolls_back(self, backup_env, empty_target):
        """중간 테이블 적재 실패 시 전체 롤백 후 테이블명 보고"""
        service, _, _ = backup_env
        target_service, target_database, target_protection = empty_target
        seed_database(target_database, target_protection)
        add_user(target_database, "target-only")
        before = table_counts(target_database)
        archive = service.export(passphrase="pw")

        original = RestoreEngine._insert_batch

        def failing_insert(engine, connection, descriptor, params):
            if descriptor.table_name == "messages":
                raise RuntimeError("disk full")
            return original(engine, connection, descriptor, params)

        with patch.object(RestoreEngine, "_insert_batch", failing_insert):
            with pytest.raises(RestoreFailure) as error:
                target_service.restore(archive, passphrase="pw")

        # 검증
        assert error.value.table_name == "messages"
        assert target_service.restore_engine.state == RestoreState.FAILED
        assert table_counts(target_database) == before

    def test_cancellation_rolls_back(self, backup_env):
        """취소 신호는 변경 없이 중단"""
        service, database, _ = backup_env
        archive = service.export(passphrase="pw")
        before = table_counts(database)
        cancel_event = threading.Event()
        cancel_event.set()

        with pytest.raises(OperationCancelledError):
            service.restore(archive, passphrase="pw", cancel_event=cancel_event)

        # 검증
        assert table_counts(database) == before

    def test_export_cancellation(self, backup_env):
        """내보내기 취소"""
        service, _, _ = backup_env
        cancel_event = threading.Event()
        cancel_event.set()

        with pytest.raises(OperationCancelledError):
            service.export(passphrase="pw", cancel_event=cancel_event)

    def test_export_failure_keeps_cause(self, backup_env):
        """테이블 조회 실패 시 원인 예외 유지"""
        service, _, _ = backup_env
        original_export = TableExporter.export
        disk_error = OSError("read failed")

        def failing_export(exporter, descriptor, connection, cancel_event=None):
            if descriptor.table_name == "messages":
                raise disk_error
            return original_export(exporter, descriptor, connection, cancel_event)

        with patch.object(TableExporter, "export", failing_export):
            with pytest.raises(ExportFailure) as error:
                service.export(passphrase="pw")

        # 검증
        assert error.value.table_name == "messages"
        assert error.value.error_code == ErrorCodes.EXPORT_TABLE_FAILED
        assert error.value.cause is disk_error
        assert error.value.__cause__ is disk_error

    def test_unknown_table_rejected(self, backup_env):
        """매핑되지 않은 테이블이 있으면 복원 거부"""
        service, database, _ = backup_env
        before = table_counts(database)
        metadata = ArchiveMetadata(
            version="2.1", created_at=0, app_version="x", table_count=1, table_names=["mystery"]
        )
        archive = serialize(metadata, [TableSnapshot("mystery", [{"id": 1}])])

        with pytest.raises(FormatError) as error:
            service.restore(archive)

        # 검증
        assert error.value.error_code == ErrorCodes.FORMAT_UNKNOWN_TABLE
        assert table_counts(database) == before

    def test_blank_passphrase(self, backup_env):
        """공백 패스프레이즈 거부"""
        service, _, _ = backup_env

        with pytest.raises(ValueError):
            service.export(passphrase="   ")

    def test_legacy_archive_migrated(self, empty_target):
        """v2.0 아카이브의 chat_id NULL 전역 설정 변환"""
        target_service, target_database, _ = empty_target
        metadata = ArchiveMetadata(
            version="2.0", created_at=0, app_version="old", table_count=1, table_names=["configs"]
        )
        rows = [
            {"id": 1, "chat_id": None, "spam_detection_config": {"threshold": 70}},
            {"id": 2, "chat_id": -100, "welcome_config": {"enabled": True}},
        ]

        target_service.restore(serialize(metadata, [TableSnapshot("configs", rows)]))

        with target_database.connect() as connection:
            chat_ids = sorted(connection.execute(select(Config.__table__.c.chat_id)).scalars())

        # 검증
        assert chat_ids == [-100, 0]


class TestEncryptionConfiguration:
    """저장된 패스프레이즈 사용"""

    def test_missing_passphrase(self, backup_env):
        """설정 전에는 ConfigurationError"""
        service, _, _ = backup_env

        with pytest.raises(ConfigurationError):
            service.get_decrypted_passphrase()

    def test_stored_passphrase_used(self, backup_env, empty_target):
        """저장된 패스프레이즈로 암호화하고 대상 호스트 키로 다시 보호"""
        service, _, _ = backup_env
        target_service, _, _ = empty_target

        config = service.save_encryption_config("stored-pw")
        archive = service.export()

        # 검증
        assert config.enabled
        assert service.get_decrypted_passphrase() == "stored-pw"
        assert service.is_encrypted(archive)
        assert service.get_metadata(archive).table_count == len(MANAGED_TABLES)

        with pytest.raises(ConfigurationError):
            target_service.restore(archive)

        target_service.restore(archive, passphrase="stored-pw")
        assert target_service.get_decrypted_passphrase() == "stored-pw"
        assert target_service.configuration.get_encryption_config().enabled


class TestBackupFiles:
    """백업 파일 생성 / 보존 / 재암호화"""

    @staticmethod
    def _write_old_backup(directory: Path, stamp: str, data: bytes) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"backup_{stamp}.tar.gz"
        path.write_bytes(data)
        return path

    def test_create_backup_with_retention(self, backup_env, tmp_path):
        """새 백업 생성 후 보존 정책에 따라 오래된 파일 삭제"""
        service, _, _ = backup_env
        backup_dir = tmp_path / "scheduled"
        old_files = [
            self._write_old_backup(backup_dir, f"2020-01-0{day}_00-00-00", b"old")
            for day in range(1, 4)
        ]

        result = service.create_backup_with_retention(
            str(backup_dir), RetentionConfig(hourly=1, daily=0, weekly=0, monthly=0, yearly=0)
        )
        backups = service.list_backups(str(backup_dir))

        # 검증
        assert result.deleted_count == 3
        assert not any(path.exists() for path in old_files)
        assert [info.file_name for info in backups] == [result.file_name]
        assert not list(backup_dir.glob("*.tmp"))

    def test_list_backups_newest_first(self, backup_env, tmp_path):
        """목록은 최신순, 암호화 여부 표시"""
        service, _, _ = backup_env
        backup_dir = tmp_path / "listing"
        self._write_old_backup(backup_dir, "2021-05-01_00-00-00", ENCRYPTED_MAGIC + b"x" * 60)
        self._write_old_backup(backup_dir, "2022-05-01_00-00-00", b"plain")

        backups = service.list_backups(str(backup_dir))

        # 검증
        assert [info.created_at.year for info in backups] == [2022, 2021]
        assert [info.is_encrypted for info in backups] == [False, True]

    def test_rotate_passphrase(self, backup_env, tmp_path):
        """기존 백업을 새 패스프레이즈로 재암호화"""
        service, _, _ = backup_env
        backup_dir = tmp_path / "rotation"
        plain_archive = service.export()
        service.save_encryption_config("old-pw")

        encrypted = service.create_backup_with_retention(str(backup_dir), RetentionConfig())
        plain_path = self._write_old_backup(backup_dir, "2020-01-01_00-00-00", plain_archive)
        broken_path = self._write_old_backup(
            backup_dir, "2019-01-01_00-00-00", ENCRYPTED_MAGIC + b"\x00" * 80
        )

        result = service.rotate_passphrase("new-pw", str(backup_dir))

        # 검증
        assert result.total_files == 3
        assert result.rotated_files == 2
        assert result.failed_files == [broken_path.name]
        assert broken_path.read_bytes() == ENCRYPTED_MAGIC + b"\x00" * 80
        for path in (encrypted.file_path, plain_path):
            assert service.get_metadata(Path(path).read_bytes(), "new-pw").table_count == len(MANAGED_TABLES)
        assert service.get_decrypted_passphrase() == "new-pw"
        assert service.configuration.get_encryption_config().last_rotated_at is not None
        assert not list(backup_dir.glob("*.new"))

    def test_rotation_waits_for_backup_file(self, backup_env, tmp_path):
        """백업 파일 기록이 끝난 뒤에 패스프레이즈 교체 실행"""
        service, _, _ = backup_env
        backup_dir = tmp_path / "concurrent"
        service.save_encryption_config("old-pw")
        original_export = service.export
        rotation = threading.Thread(target=service.rotate_passphrase, args=("new-pw", str(backup_dir)))

        def export_then_rotate(*args, **kwargs):
            archive = original_export(*args, **kwargs)
            rotation.start()
            rotation.join(timeout=0.5)
            return archive

        with patch.object(service, "export", side_effect=export_then_rotate):
            created = service.create_backup_with_retention(str(backup_dir), RetentionConfig())
        rotation.join(timeout=30)

        # 검증: 저장된 패스프레이즈로 새 백업을 열 수 있어야 함
        assert not rotation.is_alive()
        assert service.get_decrypted_passphrase() == "new-pw"
        metadata = service.get_metadata(created.file_path.read_bytes())
        assert metadata.table_count == len(MANAGED_TABLES)
