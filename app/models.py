"""
관리 대상 데이터베이스 모델 정의
백업/복원 엔진이 내보내고 복원하는 SQLAlchemy ORM 모델들

각 모델의 주석에는 다음과 같은 정보가 포함됩니다:
- 설명: 테이블의 용도와 주요 기능
- 보호 필드: 호스트 키로 암호화되어 저장되는 컬럼
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    Computed,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

from config.constants import (
    ENCRYPTION_ALGORITHM,
    GLOBAL_CONFIG_CHAT_ID,
    PBKDF2_ITERATIONS,
    DataProtectionPurposes,
)

Base = declarative_base()

# PostgreSQL 에서는 JSONB, 그 외에는 일반 JSON
JSONType = JSON().with_variant(JSONB(), "postgresql")

PROTECTED_PURPOSE_KEY = "protected_purpose"


def protected_column(purpose: str, *args, **kwargs) -> Column:
    """호스트 키로 암호화되어 저장되는 컬럼 선언"""
    info = dict(kwargs.pop("info", None) or {})
    info[PROTECTED_PURPOSE_KEY] = purpose
    return Column(*args, info=info, **kwargs)


# ===========================================
# 웹 사용자 / 초대
# ===========================================

class User(Base):
    """
    웹 사용자 테이블
    설명: 관리 웹 UI 계정. invited_by 로 자기 자신을 참조합니다.
    보호 필드: totp_secret
    """
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)
    email = Column(String(256), nullable=False, unique=True)
    normalized_email = Column(String(256), nullable=False)
    password_hash = Column(Text, nullable=False)
    security_stamp = Column(String(64), nullable=False)
    permission_level = Column(Integer, nullable=False, default=0)
    invited_by = Column(String(36), ForeignKey("users.id"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    totp_secret = protected_column(DataProtectionPurposes.TOTP_SECRETS, Text, nullable=True)
    totp_enabled = Column(Boolean, nullable=False, default=False)
    status = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_login_at = Column(DateTime(timezone=True), nullable=True)


class Invite(Base):
    """
    초대 토큰 테이블
    설명: 신규 웹 사용자 초대
    """
    __tablename__ = "invites"

    token = Column(String(64), primary_key=True)
    created_by = Column(String(36), ForeignKey("users.id"), nullable=False)
    used_by = Column(String(36), ForeignKey("users.id"), nullable=True)
    permission_level = Column(Integer, nullable=False, default=0)
    status = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at = Column(DateTime(timezone=True), nullable=False)


class VerificationToken(Base):
    """
    이메일 인증/비밀번호 재설정 토큰 테이블
    """
    __tablename__ = "verification_tokens"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    token_type = Column(String(32), nullable=False)
    token = Column(String(128), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)


class AuditLog(Base):
    """
    감사 로그 테이블
    설명: 웹 사용자 관련 보안 이벤트 기록
    """
    __tablename__ = "audit_log"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_type = Column(Integer, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    actor_web_user_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    target_web_user_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    value = Column(Text, nullable=True)


# ===========================================
# 텔레그램 채팅 / 사용자 / 메시지
# ===========================================

class ManagedChat(Base):
    """
    관리 대상 채팅 테이블
    설명: 봇이 관리하는 텔레그램 그룹
    """
    __tablename__ = "managed_chats"

    chat_id = Column(BigInteger, primary_key=True, autoincrement=False)
    chat_name = Column(String(256), nullable=True)
    chat_type = Column(Integer, nullable=False, default=0)
    bot_status = Column(Integer, nullable=False, default=0)
    is_admin = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    added_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    settings_json = Column(JSONType, nullable=True)


class TelegramUser(Base):
    """
    텔레그램 사용자 테이블
    """
    __tablename__ = "telegram_users"

    telegram_user_id = Column(BigInteger, primary_key=True, autoincrement=False)
    username = Column(String(64), nullable=True)
    first_name = Column(String(128), nullable=True)
    last_name = Column(String(128), nullable=True)
    is_trusted = Column(Boolean, nullable=False, default=False)
    first_seen_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_seen_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Message(Base):
    """
    메시지 테이블
    설명: 수집된 채팅 메시지. message_length 는 DB 가 계산하는 생성 컬럼입니다.
    """
    __tablename__ = "messages"

    message_id = Column(BigInteger, primary_key=True, autoincrement=False)
    chat_id = Column(BigInteger, ForeignKey("managed_chats.chat_id"), nullable=False)
    user_id = Column(BigInteger, ForeignKey("telegram_users.telegram_user_id"), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    message_text = Column(Text, nullable=True)
    message_length = Column(Integer, Computed("length(message_text)", persisted=True))
    photo_file_id = Column(String(256), nullable=True)
    edited_at = Column(DateTime(timezone=True), nullable=True)


class DetectionResult(Base):
    """
    스팸 탐지 결과 테이블
    """
    __tablename__ = "detection_results"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(BigInteger, ForeignKey("messages.message_id"), nullable=False)
    detected_at = Column(DateTime(timezone=True), nullable=False)
    detection_source = Column(String(32), nullable=False)
    is_spam = Column(Boolean, nullable=False)
    confidence = Column(Integer, nullable=False, default=0)
    net_confidence = Column(Float, nullable=True)
    reason = Column(Text, nullable=True)
    check_results_json = Column(JSONType, nullable=True)
    used_for_training = Column(Boolean, nullable=False, default=True)


class UserAction(Base):
    """
    사용자 조치 테이블
    설명: 밴/경고/신뢰 등 텔레그램 사용자에 대한 조치 이력
    """
    __tablename__ = "user_actions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, ForeignKey("telegram_users.telegram_user_id"), nullable=False)
    action_type = Column(Integer, nullable=False)
    issued_by = Column(String(128), nullable=True)
    issued_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    reason = Column(Text, nullable=True)


# ===========================================
# 설정
# ===========================================

class Config(Base):
    """
    설정 테이블
    설명: chat_id = 0 행이 전역 설정입니다.
    보호 필드: passphrase_encrypted, api_keys, bot_token_encrypted
    """
    __tablename__ = "configs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    chat_id = Column(BigInteger, nullable=False, unique=True, default=GLOBAL_CONFIG_CHAT_ID)
    spam_detection_config = Column(JSONType, nullable=True)
    welcome_config = Column(JSONType, nullable=True)
    backup_encryption_config = Column(JSONType, nullable=True)
    passphrase_encrypted = protected_column(
        DataProtectionPurposes.BACKUP_PASSPHRASE, Text, nullable=True
    )
    api_keys = protected_column(DataProtectionPurposes.API_KEYS, Text, nullable=True)
    bot_token_encrypted = protected_column(
        DataProtectionPurposes.BOT_TOKENS, Text, nullable=True
    )
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True)


# ===========================================
# 캐시 (백업 제외)
# ===========================================

class CachedBlockedDomain(Base):
    """
    차단 도메인 캐시 테이블
    설명: 외부 목록에서 다시 받아올 수 있으므로 백업하지 않습니다.
    """
    __tablename__ = "cached_blocked_domains"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    domain = Column(String(253), nullable=False)
    block_mode = Column(Integer, nullable=False, default=0)
    cached_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


# ===========================================
# Pydantic 스키마
# ===========================================

class BackupEncryptionConfigSchema(BaseModel):
    """
    백업 암호화 설정 스키마
    사용처: configs.backup_encryption_config (JSON)
    """
    model_config = ConfigDict(populate_by_name=True)

    enabled: bool = False
    algorithm: str = ENCRYPTION_ALGORITHM
    iterations: int = PBKDF2_ITERATIONS
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    last_rotated_at: Optional[datetime] = Field(default=None, alias="lastRotatedAt")


class ArchiveMetadataSchema(BaseModel):
    """
    아카이브 메타데이터 스키마
    사용처: 아카이브 메타데이터 프레임, 메타데이터 조회 응답
    """
    model_config = ConfigDict(populate_by_name=True)

    version: str
    created_at: int = Field(alias="createdAt")
    app_version: str = Field(default="", alias="appVersion")
    table_count: int = Field(alias="tableCount")
    tables: list[str] = Field(default_factory=list)
