"""
Database repository for the settlement engine.
Persists a full engine snapshot to SQLite and restores it.
"""
import json
import sqlite3
import logging
from typing import Optional, List, Dict

from ..constants import NATIVE_ASSET
from .models import Game, GameState, CoinSide, RngSnapshot, Event

logger = logging.getLogger(__name__)


class Database:
    """Database repository."""

    def __init__(self, db_path: str = "coinflip_escrow.db"):
        self.db_path = db_path
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self):
        """Initialize database schema."""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        # Engine-wide scalars (owner, epoch, pause flag, counters, settings)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS engine_state (
                key TEXT PRIMARY KEY,
                value TEXT
            )
        """)

        # Games table
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS games (
                game_id INTEGER PRIMARY KEY,
                creator TEXT NOT NULL,
                asset TEXT NOT NULL,
                stake INTEGER NOT NULL,
                creator_side INTEGER NOT NULL,
                joiner TEXT,
                state INTEGER NOT NULL,
                pool INTEGER NOT NULL DEFAULT 0,
                created_at INTEGER NOT NULL DEFAULT 0,
                resolve_deadline INTEGER NOT NULL DEFAULT 0
            )
        """)

        # RNG snapshots, written once at join
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS rng_snapshots (
                game_id INTEGER PRIMARY KEY,
                seed TEXT NOT NULL,
                target_block INTEGER NOT NULL,
                epoch INTEGER NOT NULL,
                FOREIGN KEY (game_id) REFERENCES games(game_id)
            )
        """)

        # Pull-payment balances
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS claimable (
                owner TEXT NOT NULL,
                asset TEXT NOT NULL,
                amount INTEGER NOT NULL,
                PRIMARY KEY (owner, asset)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS accrued_fees (
                asset TEXT PRIMARY KEY,
                amount INTEGER NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS epoch_commitments (
                epoch INTEGER PRIMARY KEY,
                commitment TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS whitelist (
                asset TEXT PRIMARY KEY,
                allowed INTEGER NOT NULL
            )
        """)

        # Pending timelocked actions (SECURITY: survive restarts so the delay cannot be reset)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS timelock_queue (
                fingerprint TEXT PRIMARY KEY,
                execute_after INTEGER NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS daily_plays (
                identity TEXT NOT NULL,
                day INTEGER NOT NULL,
                played INTEGER NOT NULL,
                PRIMARY KEY (identity, day)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS events (
                seq INTEGER PRIMARY KEY,
                event_type TEXT NOT NULL,
                args TEXT NOT NULL,
                block INTEGER NOT NULL,
                timestamp INTEGER NOT NULL
            )
        """)

        # Ledger host: balances, tokens, allowances and the recent block hashes
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS balances (
                asset TEXT NOT NULL,
                owner TEXT NOT NULL,
                amount INTEGER NOT NULL,
                PRIMARY KEY (asset, owner)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS tokens (
                token TEXT PRIMARY KEY,
                symbol TEXT NOT NULL,
                transfer_fee_bps INTEGER NOT NULL DEFAULT 0
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS allowances (
                token TEXT NOT NULL,
                owner TEXT NOT NULL,
                spender TEXT NOT NULL,
                amount INTEGER NOT NULL,
                PRIMARY KEY (token, owner, spender)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS block_hashes (
                number INTEGER PRIMARY KEY,
                hash TEXT NOT NULL
            )
        """)

        # Signer vault ciphertexts (SECURITY: encrypted, the key is never stored)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS sealed_secrets (
                epoch INTEGER PRIMARY KEY,
                ciphertext TEXT NOT NULL
            )
        """)

        # === MIGRATIONS: Safely add missing columns to existing tables ===
        # Additive only: columns are never dropped or reordered
        migrations = {
            "games": [
                ("winner", "TEXT"),
            ],
            "events": [
                ("severity", "TEXT DEFAULT 'info'"),
            ],
        }

        for table, columns in migrations.items():
            cursor.execute(f"PRAGMA table_info({table})")
            existing_columns = {row[1] for row in cursor.fetchall()}

            for col_name, col_type in columns:
                if col_name not in existing_columns:
                    try:
                        cursor.execute(f"ALTER TABLE {table} ADD COLUMN {col_name} {col_type}")
                        logger.info(f"Migration: Added column '{col_name}' to {table} table")
                    except sqlite3.OperationalError as e:
                        if "duplicate column" not in str(e).lower():
                            logger.warning(f"Migration warning for {col_name}: {e}")

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_games_state ON games(state)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_games_creator ON games(creator)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_events_type ON events(event_type)")

        conn.commit()
        conn.close()
        logger.info(f"Database initialized at {self.db_path}")

    # === Game Operations ===

    @staticmethod
    def _write_game(cursor: sqlite3.Cursor, game: Game):
        cursor.execute("""
            INSERT OR REPLACE INTO games (
                game_id, creator, asset, stake, creator_side, joiner, state,
                pool, created_at, resolve_deadline, winner
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            game.game_id, game.creator, game.asset, game.stake, game.creator_side.value,
            game.joiner, game.state.value, game.pool, game.created_at,
            game.resolve_deadline, game.winner,
        ))

    def get_game(self, game_id: int) -> Optional[Game]:
        """Get game by ID."""
        conn = self._connect()
        cursor = conn.cursor()

        cursor.execute("SELECT * FROM games WHERE game_id = ?", (game_id,))
        row = cursor.fetchone()
        conn.close()

        if not row:
            return None

        return self._row_to_game(row)

    def get_games(self, state: Optional[GameState] = None, limit: int = 100) -> List[Game]:
        """Get games ordered by id, optionally filtered by state."""
        conn = self._connect()
        cursor = conn.cursor()

        if state is None:
            cursor.execute("SELECT * FROM games ORDER BY game_id LIMIT ?", (limit,))
        else:
            cursor.execute(
                "SELECT * FROM games WHERE state = ? ORDER BY game_id LIMIT ?",
                (state.value, limit),
            )
        rows = cursor.fetchall()
        conn.close()

        return [self._row_to_game(row) for row in rows]

    def _row_to_game(self, row: sqlite3.Row) -> Game:
        """Convert database row to Game."""
        return Game(
            game_id=row["game_id"],
            creator=row["creator"],
            asset=row["asset"],
            stake=row["stake"],
            creator_side=CoinSide(row["creator_side"]),
            joiner=row["joiner"],
            state=GameState(row["state"]),
            winner=row["winner"],
            pool=row["pool"],
            created_at=row["created_at"],
            resolve_deadline=row["resolve_deadline"],
        )

    def get_rng_snapshot(self, game_id: int) -> Optional[RngSnapshot]:
        conn = self._connect()
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM rng_snapshots WHERE game_id = ?", (game_id,))
        row = cursor.fetchone()
        conn.close()

        if not row:
            return None
        return RngSnapshot(seed=row["seed"], target_block=row["target_block"], epoch=row["epoch"])

    # === Event Operations ===

    def get_events(self, event_type: Optional[str] = None, limit: int = 100) -> List[Event]:
        """Get persisted events, oldest first."""
        conn = self._connect()
        cursor = conn.cursor()

        if event_type:
            cursor.execute(
                "SELECT * FROM events WHERE event_type = ? ORDER BY seq DESC LIMIT ?",
                (event_type, limit),
            )
        else:
            cursor.execute("SELECT * FROM events ORDER BY seq DESC LIMIT ?", (limit,))
        rows = cursor.fetchall()
        conn.close()

        return [self._row_to_event(row) for row in reversed(rows)]

    def _row_to_event(self, row: sqlite3.Row) -> Event:
        return Event(
            event_type=row["event_type"],
            args=json.loads(row["args"]),
            block=row["block"],
            timestamp=row["timestamp"],
            severity=row["severity"] or "info",
        )

    # === Engine Snapshot ===

    def save_engine(self, engine):
        """Persist the full engine state and its ledger host in a single transaction.

        Args:
            engine: CoinFlipGame instance
        """
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()
        chain = engine.chain

        try:
            state = {
                "address": engine.address,
                "owner": engine.owner,
                "trusted_signer": engine.epochs.trusted_signer,
                "current_epoch": engine.epochs.current_epoch,
                "next_id": engine.registry.next_id,
                "counters": engine.registry.counters,
                "paused": engine.controls.paused,
                "implementation": engine.controls.implementation,
                "max_games_per_day": engine.controls.max_games_per_day,
                "fee_bps": engine.fees.fee_bps,
                "timelock_delay": engine.timelock.delay,
                "block_number": chain.block_number,
                "timestamp": chain.timestamp,
            }
            cursor.executemany(
                "INSERT OR REPLACE INTO engine_state (key, value) VALUES (?, ?)",
                [(key, json.dumps(value)) for key, value in state.items()],
            )

            for game in engine.registry.games.values():
                self._write_game(cursor, game)

            cursor.executemany(
                "INSERT OR REPLACE INTO rng_snapshots (game_id, seed, target_block, epoch) VALUES (?, ?, ?, ?)",
                [(gid, s.seed, s.target_block, s.epoch) for gid, s in engine.registry.rng.items()],
            )

            # Mutable tables are rewritten whole
            cursor.execute("DELETE FROM claimable")
            cursor.executemany(
                "INSERT INTO claimable (owner, asset, amount) VALUES (?, ?, ?)",
                [(owner, asset, amount) for (owner, asset), amount in engine.ledger.claimable.items()],
            )

            cursor.execute("DELETE FROM accrued_fees")
            cursor.executemany(
                "INSERT INTO accrued_fees (asset, amount) VALUES (?, ?)",
                list(engine.fees.accrued.items()),
            )

            cursor.executemany(
                "INSERT OR REPLACE INTO epoch_commitments (epoch, commitment) VALUES (?, ?)",
                list(engine.epochs.commitments.items()),
            )

            cursor.execute("DELETE FROM whitelist")
            cursor.executemany(
                "INSERT INTO whitelist (asset, allowed) VALUES (?, ?)",
                [(asset, 1 if allowed else 0) for asset, allowed in engine.whitelist.allowed.items()],
            )

            cursor.execute("DELETE FROM timelock_queue")
            cursor.executemany(
                "INSERT INTO timelock_queue (fingerprint, execute_after) VALUES (?, ?)",
                list(engine.timelock.queue.items()),
            )

            cursor.execute("DELETE FROM daily_plays")
            cursor.executemany(
                "INSERT INTO daily_plays (identity, day, played) VALUES (?, ?, ?)",
                [(identity, day, played) for (identity, day), played in engine.registry.daily_plays.items()],
            )

            # The event log is append-only, so only new entries are written
            cursor.execute("SELECT COALESCE(MAX(seq), -1) FROM events")
            last_seq = cursor.fetchone()[0]
            cursor.executemany(
                "INSERT INTO events (seq, event_type, args, block, timestamp, severity) VALUES (?, ?, ?, ?, ?, ?)",
                [
                    (seq, e.event_type, json.dumps(e.args), e.block, e.timestamp, e.severity)
                    for seq, e in enumerate(engine.events.events())
                    if seq > last_seq
                ],
            )

            self._write_chain(cursor, chain)
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise
        finally:
            conn.close()

        logger.info(f"[DB] Saved engine {engine.address} ({engine.registry.next_id} games, block {chain.block_number})")

    @staticmethod
    def _write_chain(cursor: sqlite3.Cursor, chain):
        cursor.execute("DELETE FROM balances")
        rows = [(NATIVE_ASSET, owner, amount) for owner, amount in chain.native.items()]
        for token, balances in chain.token_balances.items():
            rows.extend((token, owner, amount) for owner, amount in balances.items())
        cursor.executemany("INSERT INTO balances (asset, owner, amount) VALUES (?, ?, ?)", rows)

        cursor.execute("DELETE FROM tokens")
        cursor.executemany(
            "INSERT INTO tokens (token, symbol, transfer_fee_bps) VALUES (?, ?, ?)",
            [(token, info["symbol"], info["transfer_fee_bps"]) for token, info in chain.tokens.items()],
        )

        cursor.execute("DELETE FROM allowances")
        cursor.executemany(
            "INSERT INTO allowances (token, owner, spender, amount) VALUES (?, ?, ?, ?)",
            [
                (token, owner, spender, amount)
                for token, allowances in chain.allowances.items()
                for (owner, spender), amount in allowances.items()
            ],
        )

        cursor.execute("DELETE FROM block_hashes")
        cursor.executemany(
            "INSERT INTO block_hashes (number, hash) VALUES (?, ?)",
            list(chain.recent_hashes().items()),
        )

    def load_state(self) -> Dict[str, object]:
        """Engine-wide scalars as saved by save_engine."""
        conn = self._connect()
        cursor = conn.cursor()
        cursor.execute("SELECT key, value FROM engine_state")
        rows = cursor.fetchall()
        conn.close()
        return {row["key"]: json.loads(row["value"]) for row in rows}

    def load_engine(self, engine) -> bool:
        """Restore a saved snapshot into a freshly constructed engine.

        The engine's chain is restored too (height, clock, recent hashes,
        balances, tokens and allowances), so escrowed and claimable value is
        still backed by the engine account after a restart.

        Args:
            engine: CoinFlipGame instance

        Returns:
            False if the database holds no saved engine
        """
        state = self.load_state()
        if not state:
            return False

        conn = self._connect()
        cursor = conn.cursor()

        cursor.execute("SELECT * FROM games ORDER BY game_id")
        games = {row["game_id"]: self._row_to_game(row) for row in cursor.fetchall()}

        cursor.execute("SELECT * FROM rng_snapshots")
        rng = {
            row["game_id"]: RngSnapshot(seed=row["seed"], target_block=row["target_block"], epoch=row["epoch"])
            for row in cursor.fetchall()
        }

        cursor.execute("SELECT * FROM claimable")
        claimable = {(row["owner"], row["asset"]): row["amount"] for row in cursor.fetchall()}

        cursor.execute("SELECT * FROM accrued_fees")
        accrued = {row["asset"]: row["amount"] for row in cursor.fetchall()}

        cursor.execute("SELECT * FROM epoch_commitments")
        commitments = {row["epoch"]: row["commitment"] for row in cursor.fetchall()}

        cursor.execute("SELECT * FROM whitelist")
        allowed = {row["asset"]: bool(row["allowed"]) for row in cursor.fetchall()}

        cursor.execute("SELECT * FROM timelock_queue")
        queue = {row["fingerprint"]: row["execute_after"] for row in cursor.fetchall()}

        cursor.execute("SELECT * FROM daily_plays")
        daily_plays = {(row["identity"], row["day"]): row["played"] for row in cursor.fetchall()}

        cursor.execute("SELECT * FROM events ORDER BY seq")
        events = [self._row_to_event(row) for row in cursor.fetchall()]

        self._read_chain(cursor, engine.chain, state)
        conn.close()

        engine.address = state["address"]
        engine.ledger.address = state["address"]
        engine.owner = state["owner"]
        engine.epochs.trusted_signer = state["trusted_signer"]
        engine.epochs.current_epoch = state["current_epoch"]
        engine.epochs.commitments = commitments
        engine.registry.games = games
        engine.registry.rng = rng
        engine.registry.next_id = state["next_id"]
        engine.registry.counters = state["counters"]
        engine.registry.daily_plays = daily_plays
        engine.controls.paused = state["paused"]
        engine.controls.implementation = state["implementation"]
        engine.controls.max_games_per_day = state["max_games_per_day"]
        engine.ledger.claimable = claimable
        engine.fees.accrued = accrued
        engine.whitelist.allowed = allowed
        engine.timelock.queue = queue
        engine.events.load(events)

        logger.info(
            f"[DB] Loaded engine {engine.address} ({len(games)} games, epoch {engine.epochs.current_epoch}, "
            f"block {engine.chain.block_number})"
        )
        return True

    @staticmethod
    def _read_chain(cursor: sqlite3.Cursor, chain, state: Dict[str, object]):
        cursor.execute("SELECT * FROM block_hashes")
        hashes = {row["number"]: row["hash"] for row in cursor.fetchall()}
        if "block_number" not in state:
            # Saved before the ledger host was persisted
            logger.warning("[DB] Snapshot has no chain state, keeping the current chain")
            return
        chain.restore_blocks(state["block_number"], state["timestamp"], hashes)

        cursor.execute("SELECT * FROM tokens")
        chain.tokens = {
            row["token"]: {"symbol": row["symbol"], "transfer_fee_bps": row["transfer_fee_bps"]}
            for row in cursor.fetchall()
        }
        chain.token_balances = {token: {} for token in chain.tokens}
        chain.allowances = {token: {} for token in chain.tokens}
        chain.native = {}

        cursor.execute("SELECT * FROM balances")
        for row in cursor.fetchall():
            if row["asset"] == NATIVE_ASSET:
                chain.native[row["owner"]] = row["amount"]
            else:
                chain.token_balances.setdefault(row["asset"], {})[row["owner"]] = row["amount"]

        cursor.execute("SELECT * FROM allowances")
        for row in cursor.fetchall():
            chain.allowances.setdefault(row["token"], {})[(row["owner"], row["spender"])] = row["amount"]

    # === Signer Vault ===

    def save_vault(self, vault):
        """Persist the vault's ciphertexts. The encryption key is not stored."""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()
        cursor.executemany(
            "INSERT OR REPLACE INTO sealed_secrets (epoch, ciphertext) VALUES (?, ?)",
            [(epoch, token.decode("utf-8")) for epoch, token in vault.sealed().items()],
        )
        conn.commit()
        conn.close()

    def load_vault(self, vault) -> int:
        """Load saved ciphertexts into a vault. Returns how many were loaded."""
        conn = self._connect()
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM sealed_secrets")
        sealed = {row["epoch"]: row["ciphertext"].encode("utf-8") for row in cursor.fetchall()}
        conn.close()

        vault.load(sealed)
        return len(sealed)
