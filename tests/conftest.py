"""
공용 테스트 픽스처

임시 SQLite 데이터베이스와 임시 키 디렉토리로 백업 서비스를 구성합니다.
"""

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from app.backup.backup_service import create_backup_service
from app.backup.field_protection import KeyFileDataProtectionService
from app.core.database_manager import DatabaseManager
from app.models import Base
from config.settings import (
    AppSettings,
    BackupSettings,
    DatabaseConfig,
    LoggingConfig,
    PoolConfig,
    RetentionSettings,
)


def make_settings(tmp_path: Path, database_url: str) -> AppSettings:
    return AppSettings(
        debug=False,
        environment="test",
        database=DatabaseConfig(
            host="", user="", password="", database="", url_override=database_url
        ),
        backup=BackupSettings(
            backup_dir=str(tmp_path / "backups"),
            batch_size=3,
            app_version="test",
            key_dir=str(tmp_path / "keys"),
            min_free_space_gb=0.0,
        ),
        retention=RetentionSettings(),
        logging=LoggingConfig(log_dir=str(tmp_path / "logs")),
        pool=PoolConfig(),
    )


def make_database(path: Path) -> DatabaseManager:
    database = DatabaseManager(database_url=f"sqlite:///{path}", pool_config=PoolConfig())
    Base.metadata.create_all(database.engine)
    return database


def make_service(tmp_path: Path, name: str = "primary", key_dir: Path = None):
    """(서비스, 데이터베이스, 보호 서비스) 구성"""
    database = make_database(tmp_path / f"{name}.db")
    settings = make_settings(tmp_path, database.database_url)
    protection = KeyFileDataProtectionService(
        str(key_dir or tmp_path / f"keys_{name}"), settings.backup.application_name
    )
    service = create_backup_service(settings, database=database, protection=protection)
    return service, database, protection


def seed_database(database: DatabaseManager, protection: KeyFileDataProtectionService) -> None:
    """테이블마다 몇 건씩 기본 데이터 적재"""
    from app.models import (
        AuditLog,
        Config,
        DetectionResult,
        ManagedChat,
        Message,
        TelegramUser,
        User,
        UserAction,
        VerificationToken,
    )
    from config.constants import DataProtectionPurposes

    now = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
    with database.begin() as connection:
        # 행마다 컬럼 구성이 달라 한 건씩 적재
        for row in [
            {
                "id": "u-admin",
                "email": "admin@example.com",
                "normalized_email": "ADMIN@EXAMPLE.COM",
                "password_hash": "hash",
                "security_stamp": "stamp",
                "permission_level": 2,
                "invited_by": None,
                "totp_secret": protection.protect(DataProtectionPurposes.TOTP_SECRETS, "JBSWY3DPEHPK3PXP"),
                "created_at": now,
            },
            {
                "id": "u-member",
                "email": "member@example.com",
                "normalized_email": "MEMBER@EXAMPLE.COM",
                "password_hash": "hash",
                "security_stamp": "stamp",
                "invited_by": "u-admin",
                "created_at": now,
            },
        ]:
            connection.execute(User.__table__.insert(), row)
        connection.execute(
            VerificationToken.__table__.insert(),
            [
                {"user_id": "u-member", "token_type": "email", "token": "t1", "created_at": now, "expires_at": now},
                {"user_id": "u-member", "token_type": "reset", "token": "t2", "created_at": now, "expires_at": now},
            ],
        )
        connection.execute(
            AuditLog.__table__.insert(),
            [{"event_type": 1, "timestamp": now, "actor_web_user_id": "u-admin", "value": "login"}],
        )
        connection.execute(
            ManagedChat.__table__.insert(),
            [{"chat_id": -100123, "chat_name": "테스트 그룹", "settings_json": {"strict": True}, "added_at": now}],
        )
        connection.execute(
            TelegramUser.__table__.insert(),
            [{"telegram_user_id": 42, "username": "spammer", "first_seen_at": now, "last_seen_at": now}],
        )
        connection.execute(
            Message.__table__.insert(),
            [
                {"message_id": 1, "chat_id": -100123, "user_id": 42, "timestamp": now, "message_text": "안녕하세요"},
                {"message_id": 2, "chat_id": -100123, "user_id": 42, "timestamp": now, "message_text": "buy now"},
            ],
        )
        connection.execute(
            DetectionResult.__table__.insert(),
            [
                {
                    "message_id": 2,
                    "detected_at": now,
                    "detection_source": "auto",
                    "is_spam": True,
                    "confidence": 95,
                    "net_confidence": 0.95,
                    "check_results_json": {"checks": ["bayes"]},
                }
            ],
        )
        connection.execute(
            UserAction.__table__.insert(),
            [{"user_id": 42, "action_type": 1, "issued_by": "u-admin", "issued_at": now}],
        )
        for row in [
            {
                "chat_id": 0,
                "spam_detection_config": {"threshold": 80},
                "api_keys": protection.protect(DataProtectionPurposes.API_KEYS, "sk-test-key"),
                "created_at": now,
            },
            {"chat_id": -100123, "welcome_config": {"enabled": True}, "created_at": now},
        ]:
            connection.execute(Config.__table__.insert(), row)


@pytest.fixture
def backup_env(tmp_path):
    """기본 데이터가 적재된 백업 서비스"""
    service, database, protection = make_service(tmp_path)
    seed_database(database, protection)
    yield service, database, protection
    database.dispose()


@pytest.fixture
def empty_target(tmp_path):
    """다른 호스트 키를 사용하는 빈 대상 데이터베이스"""
    service, database, protection = make_service(tmp_path, name="target")
    yield service, database, protection
    database.dispose()
