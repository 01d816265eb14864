"""
복원 엔진 시퀀스 재설정 단위 테스트
"""

import unittest
from unittest.mock import Mock

from sqlalchemy import Column, Integer, String, create_engine, text
from sqlalchemy.orm import declarative_base

from app.backup.restore_engine import RestoreEngine
from app.backup.schema_catalog import SchemaCatalog

SequenceBase = declarative_base()


class CounterRecord(SequenceBase):
    __tablename__ = "counters"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    label = Column(String(20))


class PlainRecord(SequenceBase):
    __tablename__ = "plain_rows"

    id = Column(Integer, primary_key=True, autoincrement=True)
    label = Column(String(20))


class TestSequenceReset(unittest.TestCase):
    """SQLite sqlite_sequence 재설정 테스트"""

    def setUp(self):
        """테스트 설정"""
        self.engine = create_engine("sqlite://")
        SequenceBase.metadata.create_all(self.engine)
        self.restore_engine = RestoreEngine(
            SchemaCatalog(registry=SequenceBase.registry, excluded_tables=()),
            resolver=Mock(),
            protection=Mock(),
        )

    def tearDown(self):
        self.engine.dispose()

    def test_only_autoincrement_tables_reported(self):
        """sqlite_sequence 를 쓰지 않는 테이블은 재설정 목록에서 제외"""
        with self.engine.begin() as connection:
            connection.execute(text("INSERT INTO counters (id, label) VALUES (7, 'a')"))
            connection.execute(text("INSERT INTO plain_rows (id, label) VALUES (5, 'b')"))
            connection.execute(text("DELETE FROM sqlite_sequence"))

            reset = self.restore_engine._reset_sequences(connection, ["counters", "plain_rows"])
            sequences = dict(connection.execute(text("SELECT name, seq FROM sqlite_sequence")).all())

        # 검증
        self.assertEqual(reset, ["counters"])
        self.assertEqual(sequences, {"counters": 7})

    def test_empty_autoincrement_table_without_sequence_row(self):
        """행도 시퀀스 행도 없으면 재설정하지 않음"""
        with self.engine.begin() as connection:
            reset = self.restore_engine._reset_sequences(connection, ["counters"])

        self.assertEqual(reset, [])


if __name__ == "__main__":
    unittest.main()
