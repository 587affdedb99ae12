"""
ゲスト用ローカルキャッシュ
ブラウザのlocalStorageに相当するキー・バリューストア（SQLite）
"""
import json
import sqlite3
from typing import Any, Optional

GUEST_TASKS_KEY = "pomoflow_guest_tasks"
GUEST_CYCLES_KEY = "pomoflow_guest_cycles"


class LocalCache:
    """SQLiteを使ったキー・バリューキャッシュ"""

    def __init__(self, db_path: str = "pomoflow_cache.db"):
        self.db_path = db_path
        self.init_database()

    def get_connection(self):
        """データベース接続を取得"""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_database(self):
        """テーブルの初期化"""
        conn = self.get_connection()
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS local_storage (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)
        conn.commit()
        conn.close()

    def get_item(self, key: str, default: Any = None) -> Any:
        """値を取得（JSONとして復元、壊れていればdefault）"""
        conn = self.get_connection()
        cursor = conn.cursor()
        cursor.execute("SELECT value FROM local_storage WHERE key = ?", (key,))
        row = cursor.fetchone()
        conn.close()
        if not row:
            return default
        try:
            return json.loads(row['value'])
        except json.JSONDecodeError:
            return default

    def set_item(self, key: str, value: Any):
        """値を保存"""
        conn = self.get_connection()
        cursor = conn.cursor()
        cursor.execute("""
            INSERT INTO local_storage (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
        """, (key, json.dumps(value, ensure_ascii=False)))
        conn.commit()
        conn.close()

    def remove_item(self, key: str):
        """値を削除"""
        conn = self.get_connection()
        cursor = conn.cursor()
        cursor.execute("DELETE FROM local_storage WHERE key = ?", (key,))
        conn.commit()
        conn.close()

    def has_item(self, key: str) -> bool:
        return self.get_item(key) is not None

    def clear(self, key: Optional[str] = None):
        """全削除（キー指定時はそのキーのみ）"""
        if key is not None:
            self.remove_item(key)
            return
        conn = self.get_connection()
        cursor = conn.cursor()
        cursor.execute("DELETE FROM local_storage")
        conn.commit()
        conn.close()
