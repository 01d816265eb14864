"""
로깅 설정 및 관리 모듈

콘솔과 일자별 회전 파일(전체 로그, 오류 로그)로 백업 도구의 로그를 남깁니다.
"""

import logging
import logging.handlers
from datetime import datetime
from pathlib import Path
from typing import Optional

from config.settings import LoggingConfig, get_logging_config


class JobLogger:
    """백업 배치 작업용 로거"""

    def __init__(self, log_dir: Optional[str] = None, config: Optional[LoggingConfig] = None):
        self.config = config or get_logging_config()
        self.log_dir = Path(log_dir or self.config.log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._setup_logging()

    def _rotating_handler(self, suffix: str, level: int, formatter: logging.Formatter):
        log_file = self.log_dir / f"{self.config.file_prefix}{suffix}_{datetime.now():%Y%m%d}.log"
        handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=self.config.max_bytes,
            backupCount=self.config.backup_count,
            encoding="utf-8",
        )
        handler.setLevel(level)
        handler.setFormatter(formatter)
        return handler

    def _setup_logging(self) -> None:
        level = getattr(logging, self.config.level.upper(), logging.INFO)
        formatter = logging.Formatter(self.config.format)

        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers.clear()

        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

        root_logger.addHandler(self._rotating_handler("", level, formatter))
        root_logger.addHandler(self._rotating_handler("_error", logging.ERROR, formatter))

    def get_logger(self, name: str) -> logging.Logger:
        return logging.getLogger(name)

    def log_job_start(self, job_name: str, job_type: str) -> None:
        self.get_logger(f"job.{job_name}").info(f"배치 작업 시작 - 작업명: {job_name}, 타입: {job_type}")

    def log_job_complete(self, job_name: str, processed_records: int, duration: float) -> None:
        self.get_logger(f"job.{job_name}").info(
            f"배치 작업 완료 - 작업명: {job_name}, "
            f"처리 레코드: {processed_records}, 소요시간: {duration:.2f}초"
        )

    def log_job_failure(self, job_name: str, error_message: str, duration: float) -> None:
        self.get_logger(f"job.{job_name}").error(
            f"배치 작업 실패 - 작업명: {job_name}, "
            f"오류: {error_message}, 소요시간: {duration:.2f}초"
        )

    def log_table_progress(self, operation: str, table_name: str, row_count: int) -> None:
        """테이블 단위 진행 로그"""
        self.get_logger("backup.progress").info(
            f"{operation} - 테이블: {table_name}, 레코드: {row_count}"
        )

    def log_archive_summary(
        self, operation: str, table_count: int, size_bytes: int, encrypted: bool
    ) -> None:
        """아카이브 요약 로그"""
        self.get_logger("backup.archive").info(
            f"{operation} - 테이블 수: {table_count}, "
            f"크기: {size_bytes / 1024:.1f}KB, 암호화: {'예' if encrypted else '아니오'}"
        )


# 전역 로거 인스턴스
_logger_instance = None


def get_logger_instance() -> JobLogger:
    """전역 로거 인스턴스 반환"""
    global _logger_instance
    if _logger_instance is None:
        _logger_instance = JobLogger()
    return _logger_instance


def get_logger(name: str) -> logging.Logger:
    """특정 이름의 로거 반환 (편의 함수)"""
    return get_logger_instance().get_logger(name)
