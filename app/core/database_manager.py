"""
데이터베이스 접근 레이어

SQLAlchemy 엔진을 생성하고 연결/트랜잭션을 일관된 인터페이스로 제공합니다.
PostgreSQL 은 psycopg2 드라이버를 사용합니다.
"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import QueuePool

from config.settings import DatabaseConfig, PoolConfig, get_database_config, get_pool_config


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class DatabaseManager:
    """SQLAlchemy 엔진 기반 데이터베이스 매니저"""

    def __init__(
        self,
        database_url: Optional[str] = None,
        pool_config: Optional[PoolConfig] = None,
        db_config: Optional[DatabaseConfig] = None,
        echo: bool = False,
    ):
        """
        데이터베이스 매니저 초기화

        Args:
            database_url: 데이터베이스 연결 URL (없으면 환경 설정 사용)
            pool_config: 커넥션 풀 설정
            db_config: 데이터베이스 설정
            echo: SQL 로깅 여부
        """
        self.logger = logging.getLogger(__name__)
        self.database_url = database_url or (db_config or get_database_config()).url
        self.pool_config = pool_config or get_pool_config()
        self.engine = self._create_engine(echo)
        self.logger.info(f"데이터베이스 매니저 초기화 완료 (dialect: {self.dialect_name})")

    def _create_engine(self, echo: bool) -> Engine:
        if self.database_url.startswith("sqlite"):
            engine = create_engine(self.database_url, echo=echo)
            event.listen(engine, "connect", _enable_sqlite_foreign_keys)
            return engine

        return create_engine(
            self.database_url,
            poolclass=QueuePool,
            pool_size=self.pool_config.pool_size,
            max_overflow=self.pool_config.max_overflow,
            pool_timeout=self.pool_config.pool_timeout,
            pool_recycle=self.pool_config.pool_recycle,
            pool_pre_ping=True,
            echo=echo,
        )

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    @contextmanager
    def connect(self) -> Generator[Connection, None, None]:
        """읽기 전용 작업용 연결 컨텍스트"""
        with self.engine.connect() as connection:
            yield connection

    @contextmanager
    def begin(self) -> Generator[Connection, None, None]:
        """단일 트랜잭션 컨텍스트 (예외 시 롤백, 정상 종료 시 커밋)"""
        with self.engine.begin() as connection:
            yield connection

    def test_connection(self) -> bool:
        """연결 확인"""
        try:
            with self.connect() as connection:
                connection.execute(text("SELECT 1"))
            return True
        except Exception as e:
            self.logger.error(f"데이터베이스 연결 확인 실패: {e}")
            return False

    def dispose(self) -> None:
        """커넥션 풀 정리"""
        self.engine.dispose()
        self.logger.debug("데이터베이스 엔진 정리 완료")

