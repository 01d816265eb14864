"""
상수 정의 모듈

백업 엔진에서 사용하는 상수들을 정의합니다.
"""

from enum import Enum


class JobType(Enum):
    """배치 작업 타입"""

    DATABASE_BACKUP = "database_backup"
    BACKUP_PASSPHRASE_ROTATION = "backup_passphrase_rotation"


class JobStatus(Enum):
    """작업 상태"""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failure"
    SKIPPED = "skipped"


class DataProtectionPurposes:
    """필드 보호(암호화) 용도 문자열

    용도마다 별도의 키가 파생되므로 값이 바뀌면 기존 데이터를 복호화할 수 없습니다.
    """

    TOTP_SECRETS = "TgSpamPreFilter.TotpSecrets"
    API_KEYS = "TgSpamPreFilter.ApiKeys"
    BACKUP_PASSPHRASE = "TgSpamPreFilter.BackupPassphrase"
    BOT_TOKENS = "TgSpamPreFilter.BotTokens"


# 아카이브 포맷 버전
BACKUP_FORMAT_VERSION = "2.1"
SUPPORTED_BACKUP_VERSIONS = ("2.0", "2.1")

# 백업/복원 대상에서 제외하는 테이블
SYSTEM_TABLES = frozenset({"VersionInfo", "alembic_version"})
CACHE_TABLES = frozenset({"cached_blocked_domains"})
EXCLUDED_TABLES = SYSTEM_TABLES | CACHE_TABLES

# 전역 설정 행 (chat_id = 0)
GLOBAL_CONFIG_CHAT_ID = 0

# 암호화 아카이브 매직 헤더
ENCRYPTED_MAGIC = b"TGAENC\x00"
ENCRYPTION_ALGORITHM = "AES-256-GCM"
PBKDF2_ITERATIONS = 100_000

# 백업 파일
BACKUP_FILE_PATTERN = "backup_*.tar.gz"
DATE_FORMATS = {
    "log_datetime": "%Y-%m-%d %H:%M:%S",
    "backup_file": "%Y-%m-%d_%H-%M-%S",
}
