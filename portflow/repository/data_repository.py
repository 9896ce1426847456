"""Repository layer responsible for all database access."""

from __future__ import annotations

import sqlite3
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Sequence

from portflow.domain.models import (
    AuditLog,
    Booking,
    BookingStatus,
    Carrier,
    Driver,
    Port,
    QRCode,
    ResourceStatus,
    Terminal,
    Truck,
)
from portflow.utils.config import Settings, get_settings
from portflow.utils.logger import get_logger
from portflow.utils.timeutils import Clock, to_utc_iso, utc_now


logger = get_logger(__name__)


def new_id() -> str:
    return str(uuid.uuid4())


def _row_to_port(row: sqlite3.Row) -> Port:
    return Port(
        port_id=str(row["id"]),
        name=str(row["name"]),
        country_code=row["country_code"],
        slot_duration_minutes=int(row["slot_duration"]),
        timezone=str(row["timezone"]),
        created_at=str(row["created_at"]),
    )


def _row_to_terminal(row: sqlite3.Row) -> Terminal:
    return Terminal(
        terminal_id=str(row["id"]),
        port_id=str(row["port_id"]),
        name=str(row["name"]),
        max_capacity=int(row["max_capacity"]),
        created_at=str(row["created_at"]),
    )


def _row_to_carrier(row: sqlite3.Row) -> Carrier:
    return Carrier(
        carrier_id=str(row["id"]),
        user_id=str(row["user_id"]),
        name=str(row["name"]),
        created_at=str(row["created_at"]),
    )


def _row_to_truck(row: sqlite3.Row) -> Truck:
    return Truck(
        truck_id=str(row["id"]),
        carrier_id=str(row["carrier_id"]),
        plate_number=str(row["plate_number"]),
        status=str(row["status"]),
        created_at=str(row["created_at"]),
    )


def _row_to_driver(row: sqlite3.Row) -> Driver:
    return Driver(
        driver_id=str(row["id"]),
        carrier_id=str(row["carrier_id"]),
        user_id=str(row["user_id"]),
        full_name=str(row["full_name"]),
        status=str(row["status"]),
        created_at=str(row["created_at"]),
    )


def _row_to_booking(row: sqlite3.Row) -> Booking:
    return Booking(
        booking_id=str(row["id"]),
        booking_reference=str(row["booking_reference"]),
        terminal_id=str(row["terminal_id"]),
        truck_id=str(row["truck_id"]),
        carrier_id=str(row["carrier_id"]),
        driver_id=str(row["driver_id"]),
        slot_start=str(row["slot_start"]),
        slot_end=str(row["slot_end"]),
        slots_count=int(row["slots_count"]),
        status=str(row["status"]),
        container_matricule=row["container_matricule"],
        override_reason=row["override_reason"],
        created_at=str(row["created_at"]),
        updated_at=str(row["updated_at"]),
    )


def _row_to_qr(row: sqlite3.Row) -> QRCode:
    return QRCode(
        qr_id=str(row["id"]),
        booking_id=str(row["booking_id"]),
        jwt_token=str(row["jwt_token"]),
        qr_code_data=str(row["qr_code_data"]),
        expires_at=str(row["expires_at"]),
        used_at=row["used_at"],
        superseded_at=row["superseded_at"],
        created_at=str(row["created_at"]),
    )


def _row_to_audit(row: sqlite3.Row) -> AuditLog:
    return AuditLog(
        log_id=str(row["id"]),
        actor_type=str(row["actor_type"]),
        actor_id=row["actor_id"],
        entity_type=str(row["entity_type"]),
        entity_id=str(row["entity_id"]),
        action=str(row["action"]),
        description=str(row["description"]),
        created_at=str(row["created_at"]),
    )


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic.

    Reads open a short-lived connection per call. Mutations that must check
    and write atomically run inside :meth:`transaction`, which takes SQLite's
    write lock up front (``BEGIN IMMEDIATE``) so concurrent writers are
    serialized for the whole check-then-write sequence.
    """

    def __init__(self, settings: Optional[Settings] = None, clock: Clock = utc_now) -> None:
        self._settings = settings or get_settings()
        self._clock = clock
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(
            self._db_path,
            timeout=self._settings.sqlite_busy_timeout_seconds,
        )
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        connection = self._connect()
        try:
            with connection:
                yield connection
        finally:
            connection.close()

    @contextmanager
    def _use(self, conn: sqlite3.Connection | None) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
            return
        with self._session() as own:
            yield own

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Serialized read-modify-write unit; commits on success only."""
        connection = self._connect()
        connection.isolation_level = None
        try:
            connection.execute("BEGIN IMMEDIATE;")
            try:
                yield connection
            except BaseException:
                connection.execute("ROLLBACK;")
                raise
            connection.execute("COMMIT;")
        finally:
            connection.close()

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._session() as conn:
                cursor = conn.cursor()
                cursor.execute("PRAGMA journal_mode = WAL;")

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Ports (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        country_code TEXT,
                        slot_duration INTEGER NOT NULL DEFAULT 60
                            CHECK (slot_duration > 0 AND slot_duration <= 1440),
                        timezone TEXT NOT NULL,
                        created_at TEXT NOT NULL
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Terminals (
                        id TEXT PRIMARY KEY,
                        port_id TEXT NOT NULL,
                        name TEXT NOT NULL,
                        max_capacity INTEGER NOT NULL CHECK (max_capacity > 0),
                        created_at TEXT NOT NULL,
                        FOREIGN KEY (port_id) REFERENCES Ports(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Carriers (
                        id TEXT PRIMARY KEY,
                        user_id TEXT NOT NULL UNIQUE,
                        name TEXT NOT NULL,
                        created_at TEXT NOT NULL
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Trucks (
                        id TEXT PRIMARY KEY,
                        carrier_id TEXT NOT NULL,
                        plate_number TEXT NOT NULL,
                        status TEXT NOT NULL DEFAULT 'ACTIVE',
                        created_at TEXT NOT NULL,
                        UNIQUE (carrier_id, plate_number),
                        FOREIGN KEY (carrier_id) REFERENCES Carriers(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Drivers (
                        id TEXT PRIMARY KEY,
                        carrier_id TEXT NOT NULL,
                        user_id TEXT NOT NULL UNIQUE,
                        full_name TEXT NOT NULL,
                        status TEXT NOT NULL DEFAULT 'ACTIVE',
                        created_at TEXT NOT NULL,
                        FOREIGN KEY (carrier_id) REFERENCES Carriers(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Bookings (
                        id TEXT PRIMARY KEY,
                        booking_reference TEXT NOT NULL UNIQUE,
                        terminal_id TEXT NOT NULL,
                        truck_id TEXT NOT NULL,
                        carrier_id TEXT NOT NULL,
                        driver_id TEXT NOT NULL,
                        slot_start TEXT NOT NULL,
                        slot_end TEXT NOT NULL,
                        slots_count INTEGER NOT NULL DEFAULT 1 CHECK (slots_count > 0),
                        status TEXT NOT NULL DEFAULT 'PENDING',
                        container_matricule TEXT,
                        override_reason TEXT,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        FOREIGN KEY (terminal_id) REFERENCES Terminals(id),
                        FOREIGN KEY (truck_id) REFERENCES Trucks(id),
                        FOREIGN KEY (carrier_id) REFERENCES Carriers(id),
                        FOREIGN KEY (driver_id) REFERENCES Drivers(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS QRCodes (
                        id TEXT PRIMARY KEY,
                        booking_id TEXT NOT NULL,
                        jwt_token TEXT NOT NULL,
                        qr_code_data TEXT NOT NULL,
                        expires_at TEXT NOT NULL,
                        used_at TEXT,
                        superseded_at TEXT,
                        created_at TEXT NOT NULL,
                        FOREIGN KEY (booking_id) REFERENCES Bookings(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS AuditLogs (
                        id TEXT PRIMARY KEY,
                        actor_type TEXT NOT NULL,
                        actor_id TEXT,
                        entity_type TEXT NOT NULL,
                        entity_id TEXT NOT NULL,
                        action TEXT NOT NULL,
                        description TEXT NOT NULL,
                        created_at TEXT NOT NULL
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Sequences (
                        name TEXT PRIMARY KEY,
                        value INTEGER NOT NULL
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_bookings_terminal_slot_status
                    ON Bookings(terminal_id, slot_start, status);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_qrcodes_booking
                    ON QRCodes(booking_id);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_audit_entity_action
                    ON AuditLogs(entity_type, action, created_at);
                    """
                )
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_demo_data(self) -> None:
        """Seed one port with a terminal, carrier, truck and driver when empty."""
        try:
            with self._session() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT COUNT(*) AS count FROM Ports;")
                if int(cursor.fetchone()["count"]) > 0:
                    logger.info("Demo data already present; skipping seed")
                    return

                port = self.create_port("Port of Casablanca", "MA", 60, "Africa/Casablanca", conn=conn)
                self.create_terminal(port.port_id, "Terminal 1", 20, conn=conn)
                self.create_terminal(port.port_id, "Terminal 2", 12, conn=conn)
                carrier = self.create_carrier("demo-carrier-user", "Atlas Transport", conn=conn)
                self.create_truck(carrier.carrier_id, "12345-A-6", conn=conn)
                self.create_driver(carrier.carrier_id, "demo-driver-user", "Youssef Amrani", conn=conn)
            logger.info("Demo registry seeded")
        except sqlite3.Error as exc:
            raise RuntimeError(f"Demo data seeding failed: {exc}") from exc

    # --- Sequences ---

    def next_sequence(self, name: str, conn: sqlite3.Connection) -> int:
        """Monotonic counter; must run inside :meth:`transaction`."""
        conn.execute(
            "INSERT OR IGNORE INTO Sequences (name, value) VALUES (?, 0);",
            (name,),
        )
        conn.execute("UPDATE Sequences SET value = value + 1 WHERE name = ?;", (name,))
        row = conn.execute("SELECT value FROM Sequences WHERE name = ?;", (name,)).fetchone()
        return int(row["value"])

    # --- Ports & terminals ---

    def create_port(
        self,
        name: str,
        country_code: str | None,
        slot_duration_minutes: int,
        timezone_name: str,
        conn: sqlite3.Connection | None = None,
    ) -> Port:
        port_id = new_id()
        with self._use(conn) as c:
            c.execute(
                """
                INSERT INTO Ports (id, name, country_code, slot_duration, timezone, created_at)
                VALUES (?, ?, ?, ?, ?, ?);
                """,
                (port_id, name, country_code, slot_duration_minutes, timezone_name, to_utc_iso(self._clock())),
            )
            return self.get_port(port_id, conn=c)

    def get_port(self, port_id: str, conn: sqlite3.Connection | None = None) -> Optional[Port]:
        with self._use(conn) as c:
            row = c.execute("SELECT * FROM Ports WHERE id = ?;", (port_id,)).fetchone()
            return _row_to_port(row) if row is not None else None

    def list_ports(self) -> list[Port]:
        with self._session() as conn:
            rows = conn.execute("SELECT * FROM Ports ORDER BY name ASC;").fetchall()
            return [_row_to_port(row) for row in rows]

    def create_terminal(
        self,
        port_id: str,
        name: str,
        max_capacity: int,
        conn: sqlite3.Connection | None = None,
    ) -> Terminal:
        terminal_id = new_id()
        with self._use(conn) as c:
            c.execute(
                """
                INSERT INTO Terminals (id, port_id, name, max_capacity, created_at)
                VALUES (?, ?, ?, ?, ?);
                """,
                (terminal_id, port_id, name, max_capacity, to_utc_iso(self._clock())),
            )
            return self.get_terminal(terminal_id, conn=c)

    def get_terminal(
        self,
        terminal_id: str,
        conn: sqlite3.Connection | None = None,
    ) -> Optional[Terminal]:
        with self._use(conn) as c:
            row = c.execute("SELECT * FROM Terminals WHERE id = ?;", (terminal_id,)).fetchone()
            return _row_to_terminal(row) if row is not None else None

    def list_terminals(self, port_id: str | None = None) -> list[Terminal]:
        with self._session() as conn:
            if port_id:
                rows = conn.execute(
                    "SELECT * FROM Terminals WHERE port_id = ? ORDER BY name ASC;",
                    (port_id,),
                ).fetchall()
            else:
                rows = conn.execute("SELECT * FROM Terminals ORDER BY name ASC;").fetchall()
            return [_row_to_terminal(row) for row in rows]

    def update_terminal_capacity(
        self,
        terminal_id: str,
        max_capacity: int,
        conn: sqlite3.Connection | None = None,
    ) -> bool:
        with self._use(conn) as c:
            cursor = c.execute(
                "UPDATE Terminals SET max_capacity = ? WHERE id = ?;",
                (max_capacity, terminal_id),
            )
            return cursor.rowcount == 1

    # --- Carriers, trucks, drivers ---

    def create_carrier(
        self,
        user_id: str,
        name: str,
        conn: sqlite3.Connection | None = None,
    ) -> Carrier:
        carrier_id = new_id()
        with self._use(conn) as c:
            c.execute(
                "INSERT INTO Carriers (id, user_id, name, created_at) VALUES (?, ?, ?, ?);",
                (carrier_id, user_id, name, to_utc_iso(self._clock())),
            )
            return self.get_carrier(carrier_id, conn=c)

    def get_carrier(
        self,
        carrier_id: str,
        conn: sqlite3.Connection | None = None,
    ) -> Optional[Carrier]:
        with self._use(conn) as c:
            row = c.execute("SELECT * FROM Carriers WHERE id = ?;", (carrier_id,)).fetchone()
            return _row_to_carrier(row) if row is not None else None

    def get_carrier_by_user(
        self,
        user_id: str,
        conn: sqlite3.Connection | None = None,
    ) -> Optional[Carrier]:
        with self._use(conn) as c:
            row = c.execute("SELECT * FROM Carriers WHERE user_id = ?;", (user_id,)).fetchone()
            return _row_to_carrier(row) if row is not None else None

    def list_carriers(self) -> list[Carrier]:
        with self._session() as conn:
            rows = conn.execute("SELECT * FROM Carriers ORDER BY name ASC;").fetchall()
            return [_row_to_carrier(row) for row in rows]

    def create_truck(
        self,
        carrier_id: str,
        plate_number: str,
        conn: sqlite3.Connection | None = None,
    ) -> Truck:
        truck_id = new_id()
        with self._use(conn) as c:
            c.execute(
                """
                INSERT INTO Trucks (id, carrier_id, plate_number, status, created_at)
                VALUES (?, ?, ?, ?, ?);
                """,
                (truck_id, carrier_id, plate_number, ResourceStatus.ACTIVE, to_utc_iso(self._clock())),
            )
            return self.get_truck(truck_id, conn=c)

    def get_truck(self, truck_id: str, conn: sqlite3.Connection | None = None) -> Optional[Truck]:
        with self._use(conn) as c:
            row = c.execute("SELECT * FROM Trucks WHERE id = ?;", (truck_id,)).fetchone()
            return _row_to_truck(row) if row is not None else None

    def list_trucks(self, carrier_id: str | None = None) -> list[Truck]:
        with self._session() as conn:
            if carrier_id:
                rows = conn.execute(
                    "SELECT * FROM Trucks WHERE carrier_id = ? ORDER BY plate_number ASC;",
                    (carrier_id,),
                ).fetchall()
            else:
                rows = conn.execute("SELECT * FROM Trucks ORDER BY plate_number ASC;").fetchall()
            return [_row_to_truck(row) for row in rows]

    def set_truck_status(
        self,
        truck_id: str,
        status: str,
        conn: sqlite3.Connection | None = None,
    ) -> bool:
        with self._use(conn) as c:
            cursor = c.execute("UPDATE Trucks SET status = ? WHERE id = ?;", (status, truck_id))
            return cursor.rowcount == 1

    def create_driver(
        self,
        carrier_id: str,
        user_id: str,
        full_name: str,
        conn: sqlite3.Connection | None = None,
    ) -> Driver:
        driver_id = new_id()
        with self._use(conn) as c:
            c.execute(
                """
                INSERT INTO Drivers (id, carrier_id, user_id, full_name, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?);
                """,
                (driver_id, carrier_id, user_id, full_name, ResourceStatus.ACTIVE, to_utc_iso(self._clock())),
            )
            return self.get_driver(driver_id, conn=c)

    def get_driver(self, driver_id: str, conn: sqlite3.Connection | None = None) -> Optional[Driver]:
        with self._use(conn) as c:
            row = c.execute("SELECT * FROM Drivers WHERE id = ?;", (driver_id,)).fetchone()
            return _row_to_driver(row) if row is not None else None

    def get_driver_by_user(
        self,
        user_id: str,
        conn: sqlite3.Connection | None = None,
    ) -> Optional[Driver]:
        with self._use(conn) as c:
            row = c.execute("SELECT * FROM Drivers WHERE user_id = ?;", (user_id,)).fetchone()
            return _row_to_driver(row) if row is not None else None

    def list_drivers(self, carrier_id: str | None = None) -> list[Driver]:
        with self._session() as conn:
            if carrier_id:
                rows = conn.execute(
                    "SELECT * FROM Drivers WHERE carrier_id = ? ORDER BY full_name ASC;",
                    (carrier_id,),
                ).fetchall()
            else:
                rows = conn.execute("SELECT * FROM Drivers ORDER BY full_name ASC;").fetchall()
            return [_row_to_driver(row) for row in rows]

    def set_driver_status(
        self,
        driver_id: str,
        status: str,
        conn: sqlite3.Connection | None = None,
    ) -> bool:
        with self._use(conn) as c:
            cursor = c.execute("UPDATE Drivers SET status = ? WHERE id = ?;", (status, driver_id))
            return cursor.rowcount == 1

    # --- Bookings ---

    def insert_booking(self, booking: Booking, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            INSERT INTO Bookings (
                id, booking_reference, terminal_id, truck_id, carrier_id, driver_id,
                slot_start, slot_end, slots_count, status, container_matricule,
                override_reason, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                booking.booking_id,
                booking.booking_reference,
                booking.terminal_id,
                booking.truck_id,
                booking.carrier_id,
                booking.driver_id,
                booking.slot_start,
                booking.slot_end,
                booking.slots_count,
                booking.status,
                booking.container_matricule,
                booking.override_reason,
                booking.created_at,
                booking.updated_at,
            ),
        )

    def get_booking(
        self,
        booking_id: str,
        conn: sqlite3.Connection | None = None,
    ) -> Optional[Booking]:
        with self._use(conn) as c:
            row = c.execute("SELECT * FROM Bookings WHERE id = ?;", (booking_id,)).fetchone()
            return _row_to_booking(row) if row is not None else None

    def list_bookings(
        self,
        *,
        status: str | None = None,
        carrier_id: str | None = None,
        terminal_id: str | None = None,
        driver_id: str | None = None,
    ) -> list[Booking]:
        clauses: list[str] = []
        params: list[str] = []
        for column, value in (
            ("status", status),
            ("carrier_id", carrier_id),
            ("terminal_id", terminal_id),
            ("driver_id", driver_id),
        ):
            if value:
                clauses.append(f"{column} = ?")
                params.append(value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._session() as conn:
            rows = conn.execute(
                f"SELECT * FROM Bookings {where} ORDER BY slot_start ASC, created_at ASC, rowid ASC;",
                tuple(params),
            ).fetchall()
            return [_row_to_booking(row) for row in rows]

    def list_terminal_bookings(
        self,
        terminal_id: str,
        *,
        window_start: str | None = None,
        window_end: str | None = None,
        statuses: Sequence[str] = BookingStatus.ALL,
        conn: sqlite3.Connection | None = None,
    ) -> list[Booking]:
        """Bookings of a terminal with ``window_start <= slot_start < window_end``."""
        placeholders = ",".join("?" for _ in statuses)
        query = f"""
            SELECT * FROM Bookings
            WHERE terminal_id = ?
              AND status IN ({placeholders})
        """
        params: list[str] = [terminal_id, *statuses]
        if window_start is not None:
            query += " AND slot_start >= ?"
            params.append(window_start)
        if window_end is not None:
            query += " AND slot_start < ?"
            params.append(window_end)
        query += " ORDER BY slot_start ASC, created_at ASC, rowid ASC;"
        with self._use(conn) as c:
            rows = c.execute(query, tuple(params)).fetchall()
            return [_row_to_booking(row) for row in rows]

    def sum_slot_load(
        self,
        terminal_id: str,
        window_start: str,
        window_end: str,
        statuses: Sequence[str],
        *,
        exclude_booking_id: str | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        """Sum of slots_count over bookings starting inside ``[start, end)``."""
        placeholders = ",".join("?" for _ in statuses)
        query = f"""
            SELECT COALESCE(SUM(slots_count), 0) AS load
            FROM Bookings
            WHERE terminal_id = ?
              AND slot_start >= ?
              AND slot_start < ?
              AND status IN ({placeholders})
        """
        params: list[str] = [terminal_id, window_start, window_end, *statuses]
        if exclude_booking_id is not None:
            query += " AND id != ?"
            params.append(exclude_booking_id)
        with self._use(conn) as c:
            row = c.execute(query, tuple(params)).fetchone()
            return int(row["load"])

    def peak_slot_load(
        self,
        terminal_id: str,
        ending_after: str,
        statuses: Sequence[str],
        conn: sqlite3.Connection | None = None,
    ) -> tuple[str, int] | None:
        """Busiest slot start among bookings that end after ``ending_after``."""
        placeholders = ",".join("?" for _ in statuses)
        query = f"""
            SELECT slot_start, SUM(slots_count) AS load
            FROM Bookings
            WHERE terminal_id = ?
              AND slot_end > ?
              AND status IN ({placeholders})
            GROUP BY slot_start
            ORDER BY load DESC, slot_start ASC
            LIMIT 1;
        """
        with self._use(conn) as c:
            row = c.execute(query, (terminal_id, ending_after, *statuses)).fetchone()
        if row is None:
            return None
        return row["slot_start"], int(row["load"])

    def transition_booking_status(
        self,
        booking_id: str,
        expected_statuses: Sequence[str],
        new_status: str,
        conn: sqlite3.Connection,
        *,
        override_reason: str | None = None,
    ) -> bool:
        """Compare-and-set the status; False when the row moved on meanwhile."""
        placeholders = ",".join("?" for _ in expected_statuses)
        cursor = conn.execute(
            f"""
            UPDATE Bookings
            SET status = ?,
                override_reason = COALESCE(?, override_reason),
                updated_at = ?
            WHERE id = ? AND status IN ({placeholders});
            """,
            (new_status, override_reason, to_utc_iso(self._clock()), booking_id, *expected_statuses),
        )
        return cursor.rowcount == 1

    def update_booking_assignment(
        self,
        booking_id: str,
        *,
        terminal_id: str,
        truck_id: str,
        driver_id: str,
        slot_start: str,
        slot_end: str,
        conn: sqlite3.Connection,
    ) -> None:
        conn.execute(
            """
            UPDATE Bookings
            SET terminal_id = ?, truck_id = ?, driver_id = ?,
                slot_start = ?, slot_end = ?, updated_at = ?
            WHERE id = ?;
            """,
            (terminal_id, truck_id, driver_id, slot_start, slot_end, to_utc_iso(self._clock()), booking_id),
        )

    def get_gate_snapshot(self, booking_id: str, conn: sqlite3.Connection | None = None) -> dict[str, str]:
        """Denormalized booking view for the gate display."""
        with self._use(conn) as c:
            row = c.execute(
                """
                SELECT
                    b.id,
                    b.booking_reference,
                    b.slot_start,
                    b.slot_end,
                    t.plate_number,
                    d.full_name,
                    tm.name AS terminal_name
                FROM Bookings AS b
                INNER JOIN Trucks AS t ON t.id = b.truck_id
                INNER JOIN Drivers AS d ON d.id = b.driver_id
                INNER JOIN Terminals AS tm ON tm.id = b.terminal_id
                WHERE b.id = ?;
                """,
                (booking_id,),
            ).fetchone()
            if row is None:
                return {}
            return {
                "id": str(row["id"]),
                "booking_reference": str(row["booking_reference"]),
                "truck_plate": str(row["plate_number"]),
                "driver_name": str(row["full_name"]),
                "slot_start": str(row["slot_start"]),
                "slot_end": str(row["slot_end"]),
                "terminal_name": str(row["terminal_name"]),
            }

    # --- QR codes ---

    def insert_qr(self, qr: QRCode, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            INSERT INTO QRCodes (
                id, booking_id, jwt_token, qr_code_data, expires_at,
                used_at, superseded_at, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                qr.qr_id,
                qr.booking_id,
                qr.jwt_token,
                qr.qr_code_data,
                qr.expires_at,
                qr.used_at,
                qr.superseded_at,
                qr.created_at,
            ),
        )

    def get_qr(self, qr_id: str, conn: sqlite3.Connection | None = None) -> Optional[QRCode]:
        with self._use(conn) as c:
            row = c.execute("SELECT * FROM QRCodes WHERE id = ?;", (qr_id,)).fetchone()
            return _row_to_qr(row) if row is not None else None

    def list_live_qr_ids(self, booking_id: str, conn: sqlite3.Connection) -> list[str]:
        rows = conn.execute(
            """
            SELECT id FROM QRCodes
            WHERE booking_id = ? AND used_at IS NULL AND superseded_at IS NULL
            ORDER BY created_at ASC, rowid ASC;
            """,
            (booking_id,),
        ).fetchall()
        return [str(row["id"]) for row in rows]

    def supersede_qr(self, qr_ids: Sequence[str], superseded_at: str, conn: sqlite3.Connection) -> None:
        if not qr_ids:
            return
        placeholders = ",".join("?" for _ in qr_ids)
        conn.execute(
            f"""
            UPDATE QRCodes
            SET superseded_at = ?
            WHERE id IN ({placeholders}) AND superseded_at IS NULL;
            """,
            (superseded_at, *qr_ids),
        )

    def mark_qr_used(self, qr_id: str, used_at: str, conn: sqlite3.Connection) -> bool:
        """Compare-and-set on ``used_at``; only the first caller wins."""
        cursor = conn.execute(
            """
            UPDATE QRCodes
            SET used_at = ?
            WHERE id = ? AND used_at IS NULL AND superseded_at IS NULL;
            """,
            (used_at, qr_id),
        )
        return cursor.rowcount == 1

    # --- Audit logs ---

    def insert_audit_log(self, entry: AuditLog) -> None:
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO AuditLogs (
                    id, actor_type, actor_id, entity_type, entity_id,
                    action, description, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    entry.log_id,
                    entry.actor_type,
                    entry.actor_id,
                    entry.entity_type,
                    entry.entity_id,
                    entry.action,
                    entry.description,
                    entry.created_at,
                ),
            )

    def list_audit_logs(
        self,
        *,
        entity_type: str | None = None,
        action: str | None = None,
        actor_id: str | None = None,
        entity_id: str | None = None,
        limit: int = 500,
    ) -> list[AuditLog]:
        clauses: list[str] = []
        params: list[str | int] = []
        for column, value in (
            ("entity_type", entity_type),
            ("action", action),
            ("actor_id", actor_id),
            ("entity_id", entity_id),
        ):
            if value:
                clauses.append(f"{column} = ?")
                params.append(value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        with self._session() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM AuditLogs
                {where}
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?;
                """,
                tuple(params),
            ).fetchall()
            return [_row_to_audit(row) for row in rows]

    def count_audit_logs(self) -> int:
        with self._session() as conn:
            row = conn.execute("SELECT COUNT(*) AS count FROM AuditLogs;").fetchone()
            return int(row["count"])
