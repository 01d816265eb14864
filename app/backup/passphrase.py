"""
백업 암호화 설정 저장소

전역 설정 행(configs.chat_id = 0)의 backup_encryption_config(JSON)와
보호 컬럼 passphrase_encrypted 를 관리합니다.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import insert, select, update
from sqlalchemy.engine import Connection

from app.backup.field_protection import DataProtectionService
from app.core.database_manager import DatabaseManager
from app.core.error_handling import ConfigurationError, CryptoError
from app.models import BackupEncryptionConfigSchema, Config
from config.constants import GLOBAL_CONFIG_CHAT_ID, DataProtectionPurposes

logger = logging.getLogger(__name__)

configs_table = Config.__table__


@dataclass(frozen=True)
class EncryptionSettingsSnapshot:
    """작업 시작 시점에 한 번 읽은 암호화 설정"""

    config: Optional[BackupEncryptionConfigSchema]
    passphrase: Optional[str]

    @property
    def enabled(self) -> bool:
        return bool(self.config and self.config.enabled and self.passphrase)


class BackupConfigurationService:
    """백업 암호화 설정 및 패스프레이즈 관리"""

    def __init__(self, database: DatabaseManager, protection: DataProtectionService):
        self.database = database
        self.protection = protection

    @staticmethod
    def _parse_config(raw: Any) -> Optional[BackupEncryptionConfigSchema]:
        if raw is None:
            return None
        try:
            if isinstance(raw, (str, bytes)):
                return BackupEncryptionConfigSchema.model_validate_json(raw)
            return BackupEncryptionConfigSchema.model_validate(raw)
        except PydanticValidationError as e:
            raise ConfigurationError(
                f"백업 암호화 설정 형식이 올바르지 않습니다: {e}",
                config_key="backup_encryption_config",
                cause=e,
            ) from e

    @staticmethod
    def _global_row(connection: Connection):
        return (
            connection.execute(
                select(
                    configs_table.c.id,
                    configs_table.c.backup_encryption_config,
                    configs_table.c.passphrase_encrypted,
                ).where(configs_table.c.chat_id == GLOBAL_CONFIG_CHAT_ID)
            )
            .mappings()
            .first()
        )

    def get_encryption_config(self) -> Optional[BackupEncryptionConfigSchema]:
        with self.database.connect() as connection:
            row = self._global_row(connection)
        return self._parse_config(row["backup_encryption_config"]) if row else None

    def get_decrypted_passphrase(self) -> str:
        """
        저장된 패스프레이즈 복호화

        Raises:
            ConfigurationError: 패스프레이즈가 설정되어 있지 않은 경우
        """
        with self.database.connect() as connection:
            row = self._global_row(connection)

        if not row or not row["passphrase_encrypted"]:
            raise ConfigurationError(
                "백업 패스프레이즈가 설정되어 있지 않습니다", config_key="passphrase_encrypted"
            )
        try:
            return self.protection.unprotect(
                DataProtectionPurposes.BACKUP_PASSPHRASE, row["passphrase_encrypted"]
            )
        except CryptoError as e:
            raise ConfigurationError(
                "저장된 백업 패스프레이즈를 복호화할 수 없습니다 (다른 호스트 키로 암호화됨)",
                config_key="passphrase_encrypted",
                cause=e,
            ) from e

    def load_snapshot(self) -> EncryptionSettingsSnapshot:
        """설정과 패스프레이즈를 한 번에 읽기 (작업당 1회)"""
        config = self.get_encryption_config()
        passphrase = None
        if config and config.enabled:
            passphrase = self.get_decrypted_passphrase()
        return EncryptionSettingsSnapshot(config=config, passphrase=passphrase)

    def save_encryption_config(self, passphrase: str, rotated: bool = False) -> BackupEncryptionConfigSchema:
        """패스프레이즈 저장 및 암호화 활성화"""
        if not passphrase or not passphrase.strip():
            raise ValueError("패스프레이즈가 비어 있습니다")

        now = datetime.now(timezone.utc)
        encrypted = self.protection.protect(DataProtectionPurposes.BACKUP_PASSPHRASE, passphrase)

        with self.database.begin() as connection:
            row = self._global_row(connection)
            existing = self._parse_config(row["backup_encryption_config"]) if row else None

            config = BackupEncryptionConfigSchema(
                enabled=True,
                created_at=existing.created_at if existing and existing.created_at else now,
                last_rotated_at=now if rotated else (existing.last_rotated_at if existing else None),
            )
            values = {
                "backup_encryption_config": config.model_dump(mode="json", by_alias=True),
                "passphrase_encrypted": encrypted,
                "updated_at": now,
            }
            if row:
                connection.execute(
                    update(configs_table).where(configs_table.c.id == row["id"]).values(**values)
                )
            else:
                connection.execute(
                    insert(configs_table).values(chat_id=GLOBAL_CONFIG_CHAT_ID, created_at=now, **values)
                )

        logger.info("백업 암호화 설정 저장 완료" + (" (패스프레이즈 교체)" if rotated else ""))
        return config

    def update_passphrase(self, new_passphrase: str) -> BackupEncryptionConfigSchema:
        """패스프레이즈 교체 (교체 시각 기록)"""
        return self.save_encryption_config(new_passphrase, rotated=True)
