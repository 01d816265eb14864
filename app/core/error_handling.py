"""
통합 오류 처리 프레임워크

백업/복원 엔진 전체에서 일관된 오류 분류와 로깅 정보를 제공합니다.
"""

import sys
import traceback
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional, Sequence
from dataclasses import dataclass, field


class ErrorSeverity(Enum):
    """오류 심각도 수준"""

    CRITICAL = "critical"  # 데이터 손실 가능
    HIGH = "high"  # 작업 전체 실패
    MEDIUM = "medium"  # 일부 기능 영향
    LOW = "low"  # 경미한 문제
    INFO = "info"  # 정보성 메시지


class ErrorCategory(Enum):
    """오류 카테고리"""

    CRYPTO_ERROR = "crypto"  # 암호화/복호화 관련
    FORMAT_ERROR = "format"  # 아카이브 포맷 관련
    SCHEMA_ERROR = "schema"  # 스키마/의존성 관련
    DATABASE_ERROR = "database"  # 데이터베이스 관련
    CONFIGURATION_ERROR = "config"  # 설정 관련
    CANCELLATION = "cancelled"  # 사용자 취소
    SYSTEM_ERROR = "system"  # 시스템 관련


@dataclass
class ErrorContext:
    """오류 컨텍스트 정보"""

    error_id: str = ""
    operation: str = ""
    module: str = ""
    function: str = ""
    parameters: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)
    user_message: str = ""
    technical_message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """딕셔너리로 변환 (JSON 직렬화용)"""
        return {
            "error_id": self.error_id,
            "operation": self.operation,
            "module": self.module,
            "function": self.function,
            "parameters": self._sanitize_parameters(self.parameters),
            "metadata": self.metadata,
            "timestamp": self.timestamp.isoformat(),
            "user_message": self.user_message,
            "technical_message": self.technical_message,
        }

    def _sanitize_parameters(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """민감 정보 제거"""
        sanitized = {}
        sensitive_keys = {"passphrase", "password", "token", "secret", "key"}

        for key, value in params.items():
            if any(sensitive_key in key.lower() for sensitive_key in sensitive_keys):
                sanitized[key] = "***"
            else:
                sanitized[key] = value

        return sanitized


class BackupEngineError(Exception):
    """백업 엔진 기본 예외 클래스"""

    def __init__(
        self,
        message: str,
        error_code: str = "BK_UNKNOWN",
        category: ErrorCategory = ErrorCategory.SYSTEM_ERROR,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.cause = cause

        # 고유 오류 ID 생성
        if not self.context.error_id:
            self.context.error_id = self._generate_error_id()

    def _generate_error_id(self) -> str:
        """고유 오류 ID 생성"""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        return f"{self.error_code}_{timestamp}_{id(self) % 10000:04d}"

    def to_dict(self) -> Dict[str, Any]:
        """딕셔너리로 변환"""
        return {
            "error_id": self.context.error_id,
            "error_code": self.error_code,
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "context": self.context.to_dict(),
            "cause": str(self.cause) if self.cause else None,
            "traceback": traceback.format_exc() if sys.exc_info()[0] else None,
        }


# ========== 특화된 예외 클래스들 ==========


class CryptoError(BackupEngineError):
    """잘못된 패스프레이즈, 손상된 암호문, 필드 보호 실패"""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", ErrorCodes.CRYPTO_DECRYPT_FAILED)
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        super().__init__(message, category=ErrorCategory.CRYPTO_ERROR, **kwargs)


class FormatError(BackupEngineError):
    """손상되었거나 지원하지 않는 아카이브"""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", ErrorCodes.FORMAT_INVALID)
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        super().__init__(message, category=ErrorCategory.FORMAT_ERROR, **kwargs)


class CyclicDependencyError(BackupEngineError):
    """둘 이상의 테이블 사이에 외래 키 순환이 있는 경우 (재시도 불가)"""

    def __init__(self, message: str, tables: Sequence[str] = (), **kwargs):
        super().__init__(
            message,
            error_code=ErrorCodes.SCHEMA_CYCLE,
            category=ErrorCategory.SCHEMA_ERROR,
            severity=ErrorSeverity.CRITICAL,
            **kwargs,
        )
        self.tables = sorted(tables)
        if self.context:
            self.context.metadata.update({"tables": self.tables})


class ConfigurationError(BackupEngineError):
    """설정 관련 오류"""

    def __init__(self, message: str, config_key: str = "", **kwargs):
        super().__init__(
            message,
            error_code=ErrorCodes.CONFIG_REQUIRED_MISSING,
            category=ErrorCategory.CONFIGURATION_ERROR,
            severity=ErrorSeverity.HIGH,
            **kwargs,
        )
        self.config_key = config_key
        if self.context:
            self.context.metadata.update({"config_key": config_key})


class RestoreFailure(BackupEngineError):
    """복원 중 테이블 적재 실패 (트랜잭션 롤백됨)"""

    def __init__(self, message: str, table_name: str = "", **kwargs):
        super().__init__(
            message,
            error_code=ErrorCodes.RESTORE_TABLE_FAILED,
            category=ErrorCategory.DATABASE_ERROR,
            severity=ErrorSeverity.CRITICAL,
            **kwargs,
        )
        self.table_name = table_name
        if self.context:
            self.context.metadata.update({"table_name": table_name})


class ExportFailure(BackupEngineError):
    """내보내기 중 테이블 조회 실패"""

    def __init__(self, message: str, table_name: str = "", **kwargs):
        super().__init__(
            message,
            error_code=ErrorCodes.EXPORT_TABLE_FAILED,
            category=ErrorCategory.DATABASE_ERROR,
            severity=ErrorSeverity.HIGH,
            **kwargs,
        )
        self.table_name = table_name
        if self.context:
            self.context.metadata.update({"table_name": table_name})


class OperationCancelledError(BackupEngineError):
    """취소 신호로 중단된 작업"""

    def __init__(self, message: str, operation: str = "", **kwargs):
        super().__init__(
            message,
            error_code=ErrorCodes.OPERATION_CANCELLED,
            category=ErrorCategory.CANCELLATION,
            severity=ErrorSeverity.INFO,
            **kwargs,
        )
        self.operation = operation
        if self.context:
            self.context.operation = operation


# ========== 오류 코드 상수 ==========


class ErrorCodes:
    """표준 오류 코드"""

    # 암호화 관련
    CRYPTO_DECRYPT_FAILED = "BK_CRY_001"
    CRYPTO_NOT_ENCRYPTED = "BK_CRY_002"
    CRYPTO_PROTECT_FAILED = "BK_CRY_003"

    # 아카이브 포맷 관련
    FORMAT_INVALID = "BK_FMT_001"
    FORMAT_UNSUPPORTED_VERSION = "BK_FMT_002"
    FORMAT_TRUNCATED = "BK_FMT_003"
    FORMAT_UNKNOWN_TABLE = "BK_FMT_004"

    # 스키마 관련
    SCHEMA_CYCLE = "BK_SCH_001"

    # 복원/내보내기 관련
    RESTORE_TABLE_FAILED = "BK_DB_001"
    EXPORT_TABLE_FAILED = "BK_DB_002"

    # 설정 관련
    CONFIG_REQUIRED_MISSING = "BK_CFG_001"

    OPERATION_CANCELLED = "BK_OP_001"


# ========== 편의 함수들 ==========


def handle_exception(
    e: Exception,
    context: Optional[ErrorContext] = None,
    severity: ErrorSeverity = ErrorSeverity.MEDIUM,
) -> BackupEngineError:
    """일반 예외를 백업 엔진 오류로 변환"""
    if isinstance(e, BackupEngineError):
        return e

    error_context = context or ErrorContext()
    error_context.technical_message = str(e)

    if isinstance(e, PermissionError):
        return ConfigurationError(str(e), context=error_context, cause=e)
    return BackupEngineError(str(e), context=error_context, severity=severity, cause=e)
