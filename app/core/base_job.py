"""
배치 작업 기본 클래스

예약 백업, 패스프레이즈 교체 등 유지보수 작업이 공유하는 실행 흐름
(사전 점검 -> 실행 -> 사후 처리, 실패 시 오류 분류)을 정의합니다.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any, Optional

from app.core.error_handling import ErrorContext, handle_exception
from config.constants import JobStatus, JobType


@dataclass
class JobConfig:
    """배치 작업 설정 (작업별 옵션은 metadata 에 둔다)"""

    job_name: str
    job_type: JobType
    schedule_expression: str
    enabled: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class JobResult:
    """작업 실행 결과"""

    job_name: str
    job_type: JobType
    status: JobStatus
    start_time: datetime
    end_time: Optional[datetime] = None
    processed_records: int = 0
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def duration_seconds(self) -> float:
        """실행 시간 (초)"""
        if self.end_time and self.start_time:
            return (self.end_time - self.start_time).total_seconds()
        return 0.0


class BaseJob(ABC):
    """배치 작업 기본 클래스"""

    def __init__(self, config: JobConfig):
        self.config = config
        self.logger = logging.getLogger(f"{__name__}.{config.job_name}")

    @abstractmethod
    def execute(self) -> JobResult:
        """
        작업 실행 로직

        하위 클래스는 처리 건수와 결과 메타데이터를 채운 JobResult 를 반환합니다.
        일부 실패를 보고하려면 status 를 FAILED 로 두고 error_message 를 채웁니다.
        """

    def pre_execute(self) -> bool:
        """사전 점검. False 를 반환하면 작업을 건너뜀"""
        return True

    def post_execute(self, result: JobResult) -> None:
        self.logger.info(f"작업 사후 처리: {self.config.job_name}, 상태: {result.status.value}")

    def on_failure(self, error: Exception) -> None:
        """예외를 백업 엔진 오류로 분류해 기록"""
        engine_error = handle_exception(error, ErrorContext(operation=self.config.job_name))
        self.logger.error(
            f"작업 실패 처리: {self.config.job_name}, "
            f"코드: {engine_error.error_code}, 오류: {engine_error.message}"
        )

    def _skip(self, result: JobResult, reason: str) -> JobResult:
        result.status = JobStatus.SKIPPED
        result.end_time = datetime.now()
        self.logger.info(f"{reason}: {self.config.job_name}")
        return result

    def run(self) -> JobResult:
        """
        작업 실행 메인 메서드

        비활성화되었거나 사전 점검에 실패하면 SKIPPED, execute 가 예외를 던지면
        FAILED 로 기록합니다. execute 가 직접 FAILED 를 반환한 경우 그대로 유지합니다.
        """
        result = JobResult(
            job_name=self.config.job_name,
            job_type=self.config.job_type,
            status=JobStatus.PENDING,
            start_time=datetime.now(),
        )

        if not self.config.enabled:
            return self._skip(result, "비활성화된 작업")

        try:
            if not self.pre_execute():
                return self._skip(result, "사전 점검 실패로 작업 건너뜀")

            result.status = JobStatus.RUNNING
            self.logger.info(
                f"작업 실행 시작: {self.config.job_name} (일정: {self.config.schedule_expression})"
            )

            executed = self.execute()
            executed.start_time = result.start_time
            result = executed
            if result.status != JobStatus.FAILED:
                result.status = JobStatus.SUCCESS
            result.end_time = datetime.now()

            self.logger.info(
                f"작업 실행 완료: {self.config.job_name}, "
                f"처리 레코드: {result.processed_records}, "
                f"소요 시간: {result.duration_seconds:.2f}초"
            )
            self.post_execute(result)

        except Exception as e:
            result.status = JobStatus.FAILED
            result.end_time = datetime.now()
            result.error_message = str(e)
            self.logger.error(
                f"작업 실행 실패: {self.config.job_name}, 오류: {e}, "
                f"소요 시간: {result.duration_seconds:.2f}초"
            )
            self.on_failure(e)

        return result
