import sqlite3
import threading
import logging

logger = logging.getLogger("Ledger")


class Ledger:
    """Optional sqlite record of submission attempts and per-block scan metrics.

    Writes are observability only: a failing write is logged and dropped,
    never raised into the decision loop.
    """

    def __init__(self, db_file):
        self.db_file = db_file
        # Thread-safe lock, writes happen from the executor
        self.lock = threading.Lock()

    def get_connection(self):
        """Returns a connection with WAL mode for high-frequency writes."""
        conn = sqlite3.connect(self.db_file, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        if self.db_file != ":memory:":
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
        return conn

    def init_db(self):
        """Creates tables. IF NOT EXISTS keeps it safe to call repeatedly."""
        with self.lock:
            conn = self.get_connection()
            try:
                conn.execute('''
                    CREATE TABLE IF NOT EXISTS executions (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        block_number INTEGER,
                        kind TEXT,
                        account TEXT,
                        asset TEXT,
                        tx_hash TEXT,
                        status TEXT,
                        detail TEXT,
                        timestamp DATETIME DEFAULT CURRENT_TIMESTAMP
                    )
                ''')
                conn.execute('''
                    CREATE TABLE IF NOT EXISTS system_metrics (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        block_number INTEGER,
                        accounts_scanned INTEGER,
                        liquidatable_count INTEGER,
                        purchasable_count INTEGER,
                        scan_time_ms REAL,
                        timestamp DATETIME DEFAULT CURRENT_TIMESTAMP
                    )
                ''')
                conn.execute('CREATE INDEX IF NOT EXISTS idx_metrics_block ON system_metrics(block_number)')
                conn.commit()
            finally:
                conn.close()

    def record_execution(self, block_number, kind, account, asset, tx_hash, status, detail=""):
        """Records one submission attempt and how it ended."""
        try:
            with self.lock:
                conn = self.get_connection()
                try:
                    conn.execute('''
                        INSERT INTO executions (block_number, kind, account, asset, tx_hash, status, detail)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                    ''', (block_number, kind, account, asset, tx_hash, status, detail))
                    conn.commit()
                finally:
                    conn.close()
        except sqlite3.Error as e:
            logger.error(f"❌ record_execution Error: {e}")

    def log_system_metric(self, block_number, accounts_scanned, liquidatable_count, purchasable_count, scan_time_ms):
        try:
            with self.lock:
                conn = self.get_connection()
                try:
                    conn.execute('''
                        INSERT INTO system_metrics
                            (block_number, accounts_scanned, liquidatable_count, purchasable_count, scan_time_ms)
                        VALUES (?, ?, ?, ?, ?)
                    ''', (block_number, accounts_scanned, liquidatable_count, purchasable_count, scan_time_ms))
                    conn.commit()
                finally:
                    conn.close()
        except sqlite3.Error as e:
            logger.error(f"❌ log_system_metric Error: {e}")

    def get_executions(self, limit=50):
        with self.lock:
            conn = self.get_connection()
            try:
                rows = conn.execute(
                    "SELECT * FROM executions ORDER BY id DESC LIMIT ?", (limit,)
                ).fetchall()
                return [dict(row) for row in rows]
            finally:
                conn.close()

    def get_recent_metrics(self, limit=100):
        with self.lock:
            conn = self.get_connection()
            try:
                rows = conn.execute(
                    "SELECT * FROM system_metrics ORDER BY id DESC LIMIT ?", (limit,)
                ).fetchall()
                return [dict(row) for row in rows]
            finally:
                conn.close()
