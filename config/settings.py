"""
애플리케이션 설정 관리 모듈

환경 변수와 설정 값들을 중앙에서 관리합니다.
"""

import os
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import quote_plus

from dotenv import load_dotenv

# 환경 변수 로드
load_dotenv()


@dataclass
class DatabaseConfig:
    """데이터베이스 설정"""

    host: str
    user: str
    password: str
    database: str
    port: int = 5432
    url_override: Optional[str] = None

    @property
    def url(self) -> str:
        """SQLAlchemy 접속 URL"""
        if self.url_override:
            return self.url_override
        return (
            f"postgresql+psycopg2://{quote_plus(self.user)}:{quote_plus(self.password)}"
            f"@{self.host}:{self.port}/{self.database}"
        )


@dataclass
class PoolConfig:
    """커넥션 풀 설정"""

    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 3600


@dataclass
class BackupSettings:
    """백업 엔진 설정"""

    backup_dir: str = "data/backups"
    batch_size: int = 1000
    app_version: str = "1.0.0"
    key_dir: str = "data/keys"
    application_name: str = "tga-backup-batch"
    min_free_space_gb: float = 1.0


@dataclass
class RetentionSettings:
    """백업 보존 정책 설정 (계층별 보관 개수)"""

    hourly: int = 24
    daily: int = 7
    weekly: int = 4
    monthly: int = 12
    yearly: int = 3


@dataclass
class LoggingConfig:
    """로깅 설정"""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file_prefix: str = "tga_backup_batch"
    max_bytes: int = 10485760  # 10MB
    backup_count: int = 5
    log_dir: str = "logs"


@dataclass
class AppSettings:
    """전체 애플리케이션 설정"""

    debug: bool
    environment: str
    database: DatabaseConfig
    backup: BackupSettings
    retention: RetentionSettings
    logging: LoggingConfig
    pool: PoolConfig = field(default_factory=PoolConfig)


def get_database_config() -> DatabaseConfig:
    """데이터베이스 설정 조회"""
    return DatabaseConfig(
        host=os.getenv("DB_HOST", "localhost"),
        user=os.getenv("DB_USER", "postgres"),
        password=os.getenv("DB_PASSWORD", ""),
        database=os.getenv("DB_NAME", "telegram_groups_admin"),
        port=int(os.getenv("DB_PORT", "5432")),
        url_override=os.getenv("DATABASE_URL") or None,
    )


def get_pool_config() -> PoolConfig:
    """커넥션 풀 설정 조회"""
    return PoolConfig(
        pool_size=int(os.getenv("DB_POOL_SIZE", "5")),
        max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
        pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "30")),
        pool_recycle=int(os.getenv("DB_POOL_RECYCLE", "3600")),
    )


def get_backup_settings() -> BackupSettings:
    """백업 엔진 설정 조회"""
    return BackupSettings(
        backup_dir=os.getenv("BACKUP_DIR", "data/backups"),
        batch_size=int(os.getenv("BACKUP_BATCH_SIZE", "1000")),
        app_version=os.getenv("BACKUP_APP_VERSION", "1.0.0"),
        key_dir=os.getenv("DATA_PROTECTION_KEY_DIR", "data/keys"),
        application_name=os.getenv("DATA_PROTECTION_APP_NAME", "tga-backup-batch"),
        min_free_space_gb=float(os.getenv("BACKUP_MIN_FREE_SPACE_GB", "1.0")),
    )


def get_retention_settings() -> RetentionSettings:
    """보존 정책 설정 조회"""
    return RetentionSettings(
        hourly=int(os.getenv("BACKUP_RETAIN_HOURLY", "24")),
        daily=int(os.getenv("BACKUP_RETAIN_DAILY", "7")),
        weekly=int(os.getenv("BACKUP_RETAIN_WEEKLY", "4")),
        monthly=int(os.getenv("BACKUP_RETAIN_MONTHLY", "12")),
        yearly=int(os.getenv("BACKUP_RETAIN_YEARLY", "3")),
    )


def get_logging_config() -> LoggingConfig:
    """로깅 설정 조회"""
    return LoggingConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format=os.getenv(
            "LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        ),
        file_prefix=os.getenv("LOG_FILE_PREFIX", "tga_backup_batch"),
        max_bytes=int(os.getenv("LOG_MAX_BYTES", "10485760")),
        backup_count=int(os.getenv("LOG_BACKUP_COUNT", "5")),
        log_dir=os.getenv("LOG_DIR", "logs"),
    )


def get_app_settings() -> AppSettings:
    """전체 애플리케이션 설정 조회"""
    return AppSettings(
        debug=os.getenv("DEBUG", "False").lower() == "true",
        environment=os.getenv("ENVIRONMENT", "development"),
        database=get_database_config(),
        backup=get_backup_settings(),
        retention=get_retention_settings(),
        logging=get_logging_config(),
        pool=get_pool_config(),
    )

