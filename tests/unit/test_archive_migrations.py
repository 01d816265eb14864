"""
구버전 아카이브 변환 단위 테스트
"""

import unittest

from app.backup.archive_migrations import migrate_tables, needs_migration, parse_version
from app.backup.types import ArchiveMetadata, TableSnapshot


def make_metadata(version: str) -> ArchiveMetadata:
    return ArchiveMetadata(
        version=version,
        created_at=0,
        app_version="old",
        table_count=2,
        table_names=["configs", "users"],
    )


class TestArchiveMigrations(unittest.TestCase):
    """v2.0 -> v2.1 변환 테스트"""

    def test_version_parsing(self):
        """버전 비교"""
        self.assertLess(parse_version("2.0"), parse_version("2.1"))
        self.assertLess(parse_version("2.1"), parse_version("2.10"))
        self.assertTrue(needs_migration(make_metadata("2.0")))
        self.assertFalse(needs_migration(make_metadata("2.1")))

    def test_null_chat_id_becomes_global(self):
        """chat_id NULL 행은 전역 설정(0)으로 변환"""
        rows = [
            {"id": 1, "chat_id": None, "spam_detection_config": {"threshold": 70}},
            {"id": 2, "chat_id": -100, "welcome_config": {"enabled": True}},
        ]

        migrated = list(
            migrate_tables(make_metadata("2.0"), [TableSnapshot("configs", rows), TableSnapshot("users", [])])
        )
        configs = migrated[0].rows

        # 검증
        self.assertEqual([row["chat_id"] for row in configs], [0, -100])
        self.assertEqual(migrated[0].row_count, 2)
        self.assertEqual(migrated[1].name, "users")

    def test_null_and_zero_rows_merged(self):
        """NULL 행과 0 행이 모두 있으면 하나로 병합"""
        rows = [
            {"id": 1, "chat_id": 0, "spam_detection_config": {"threshold": 50}, "api_keys": "zero-key"},
            {"id": 2, "chat_id": None, "spam_detection_config": {"threshold": 90}, "api_keys": None},
        ]

        configs = list(migrate_tables(make_metadata("2.0"), [TableSnapshot("configs", rows)]))[0].rows

        # 검증: NULL 행 값 우선, 빈 값은 0 행에서 보충
        self.assertEqual(len(configs), 1)
        self.assertEqual(configs[0]["chat_id"], 0)
        self.assertEqual(configs[0]["id"], 2)
        self.assertEqual(configs[0]["spam_detection_config"], {"threshold": 90})
        self.assertEqual(configs[0]["api_keys"], "zero-key")

    def test_current_version_untouched(self):
        """현재 버전은 변환하지 않음"""
        snapshot = TableSnapshot("configs", [{"id": 1, "chat_id": None}])

        migrated = list(migrate_tables(make_metadata("2.1"), [snapshot]))

        self.assertIs(migrated[0], snapshot)


if __name__ == "__main__":
    unittest.main()
