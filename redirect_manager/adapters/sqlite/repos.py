import sqlite3
from dataclasses import replace
from datetime import datetime
from typing import Any

from redirect_manager.components.analytics import NotFoundHit, NotFoundRecord
from redirect_manager.components.redirects import (
    CreationType,
    DuplicateRuleError,
    MatchStrategy,
    RedirectRule,
    SourceScope,
    StoreError,
)


# Helper to convert sqlite rows to dicts
def dict_factory(cursor: sqlite3.Cursor, row: Any) -> dict[str, Any]:
    d = {}
    for idx, col in enumerate(cursor.description):
        d[col[0]] = row[idx]
    return d


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class _SQLiteRepo:
    def __init__(self, db_path: str):
        self.db_path = db_path

    def _get_conn(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open database {self.db_path}: {e}") from e
        conn.row_factory = dict_factory
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def _fetch_all(self, query: str, params: tuple[Any, ...] = ()) -> list[dict[str, Any]]:
        conn = self._get_conn()
        try:
            return conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    def _execute(self, query: str, params: tuple[Any, ...]) -> int:
        conn = self._get_conn()
        try:
            cursor = conn.execute(query, params)
            conn.commit()
            return cursor.rowcount
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        finally:
            conn.close()


class SQLiteRuleStore(_SQLiteRepo):
    _COLUMNS = (
        "source_pattern",
        "source_normalized",
        "destination",
        "site_id",
        "source_scope",
        "match_strategy",
        "status_code",
        "enabled",
        "priority",
        "creation_type",
        "origin_content_id",
        "source_plugin",
        "hit_count",
        "last_hit_at",
        "created_at",
        "updated_at",
        "notes",
    )

    def _params(self, rule: RedirectRule) -> tuple[Any, ...]:
        return (
            rule.source_pattern,
            rule.source_normalized,
            rule.destination,
            rule.site_id,
            rule.source_scope.value,
            rule.match_strategy.value,
            rule.status_code,
            1 if rule.enabled else 0,
            rule.priority,
            rule.creation_type.value,
            rule.origin_content_id,
            rule.source_plugin,
            rule.hit_count,
            _iso(rule.last_hit_at),
            _iso(rule.created_at),
            _iso(rule.updated_at),
            rule.notes,
        )

    def save(self, rule: RedirectRule) -> RedirectRule:
        conn = self._get_conn()
        try:
            if rule.id is None:
                placeholders = ", ".join("?" for _ in self._COLUMNS)
                cursor = conn.execute(
                    f"INSERT INTO redirect_rules ({', '.join(self._COLUMNS)}) "
                    f"VALUES ({placeholders})",
                    self._params(rule),
                )
                rule = replace(rule, id=cursor.lastrowid)
            else:
                # hit_count and last_hit_at are only written by increment_hit_count
                columns = [c for c in self._COLUMNS if c not in ("hit_count", "last_hit_at")]
                values = dict(zip(self._COLUMNS, self._params(rule), strict=True))
                assignments = ", ".join(f"{c} = ?" for c in columns)
                conn.execute(
                    f"UPDATE redirect_rules SET {assignments} WHERE id = ?",
                    (*(values[c] for c in columns), rule.id),
                )
            conn.commit()
            return rule
        except sqlite3.IntegrityError as e:
            conn.rollback()
            raise DuplicateRuleError(
                f"Redirect already exists for {rule.source_normalized}: {e}"
            ) from e
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    def get_by_id(self, rule_id: int) -> RedirectRule | None:
        rows = self._fetch_all("SELECT * FROM redirect_rules WHERE id = ?", (rule_id,))
        return self._map_row(rows[0]) if rows else None

    def list_all(self) -> list[RedirectRule]:
        rows = self._fetch_all("SELECT * FROM redirect_rules ORDER BY priority, id")
        return [self._map_row(r) for r in rows]

    def delete(self, rule_id: int) -> None:
        self._execute("DELETE FROM redirect_rules WHERE id = ?", (rule_id,))

    def find_by_source(
        self,
        source_normalized: str,
        *,
        site_id: int | None = None,
        enabled_only: bool = True,
        exclude_id: int | None = None,
    ) -> list[RedirectRule]:
        query = "SELECT * FROM redirect_rules WHERE source_normalized = ? COLLATE NOCASE"
        params: list[Any] = [source_normalized]
        if site_id is not None:
            query += " AND (site_id = ? OR site_id IS NULL)"
            params.append(site_id)
        if enabled_only:
            query += " AND enabled = 1"
        if exclude_id is not None:
            query += " AND id != ?"
            params.append(exclude_id)
        query += " ORDER BY priority, id"
        return [self._map_row(r) for r in self._fetch_all(query, tuple(params))]

    def find_conflicting(
        self,
        source_normalized: str,
        site_id: int | None,
        match_strategy: MatchStrategy,
        source_scope: SourceScope,
        exclude_id: int | None = None,
    ) -> RedirectRule | None:
        rows = self._fetch_all(
            """
            SELECT * FROM redirect_rules
            WHERE source_normalized = ? COLLATE NOCASE
              AND site_id IS ?
              AND match_strategy = ?
              AND source_scope = ?
              AND id IS NOT ?
            ORDER BY priority, id
            LIMIT 1
            """,
            (source_normalized, site_id, match_strategy.value, source_scope.value, exclude_id),
        )
        return self._map_row(rows[0]) if rows else None

    def list_enabled(self, site_id: int | None) -> list[RedirectRule]:
        if site_id is None:
            rows = self._fetch_all(
                "SELECT * FROM redirect_rules WHERE enabled = 1 ORDER BY priority, id"
            )
        else:
            rows = self._fetch_all(
                "SELECT * FROM redirect_rules WHERE enabled = 1 "
                "AND (site_id = ? OR site_id IS NULL) ORDER BY priority, id",
                (site_id,),
            )
        return [self._map_row(r) for r in rows]

    def list_by_content(
        self,
        content_id: int,
        site_id: int | None,
        creation_type: CreationType,
    ) -> list[RedirectRule]:
        rows = self._fetch_all(
            """
            SELECT * FROM redirect_rules
            WHERE origin_content_id = ? AND site_id IS ? AND creation_type = ?
            ORDER BY created_at DESC, id DESC
            """,
            (content_id, site_id, creation_type.value),
        )
        return [self._map_row(r) for r in rows]

    def find_reverse(
        self,
        source: str,
        destination: str,
        site_id: int | None,
        creation_type: CreationType,
        source_plugin: str,
    ) -> RedirectRule | None:
        rows = self._fetch_all(
            """
            SELECT * FROM redirect_rules
            WHERE source_normalized = ? COLLATE NOCASE AND destination = ? COLLATE NOCASE
              AND site_id IS ?
              AND creation_type = ? AND source_plugin = ?
            ORDER BY created_at DESC, id DESC
            LIMIT 1
            """,
            (source, destination, site_id, creation_type.value, source_plugin),
        )
        return self._map_row(rows[0]) if rows else None

    def increment_hit_count(self, rule_id: int, at: datetime) -> None:
        self._execute(
            "UPDATE redirect_rules SET hit_count = hit_count + 1, last_hit_at = ? WHERE id = ?",
            (at.isoformat(), rule_id),
        )

    def _map_row(self, row: dict[str, Any]) -> RedirectRule:
        return RedirectRule(
            id=row["id"],
            source_pattern=row["source_pattern"],
            source_normalized=row["source_normalized"],
            destination=row["destination"],
            site_id=row["site_id"],
            source_scope=SourceScope(row["source_scope"]),
            match_strategy=MatchStrategy(row["match_strategy"]),
            status_code=row["status_code"],
            enabled=bool(row["enabled"]),
            priority=row["priority"],
            creation_type=CreationType(row["creation_type"]),
            origin_content_id=row["origin_content_id"],
            source_plugin=row["source_plugin"],
            hit_count=row["hit_count"],
            last_hit_at=_dt(row["last_hit_at"]),
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
            notes=row["notes"],
        )


class SQLiteNotFoundStore(_SQLiteRepo):
    def record_hit(self, hit: NotFoundHit) -> bool:
        conn = self._get_conn()
        try:
            cursor = conn.execute(
                """
                UPDATE not_found_urls SET
                    count = count + 1,
                    url = ?,
                    handled = ?,
                    source_plugin = ?,
                    redirect_id = ?,
                    referrer = ?,
                    ip_hash = ?,
                    user_agent = ?,
                    last_seen_at = ?
                WHERE url_normalized = ? AND site_id IS ?
                """,
                (
                    hit.url,
                    1 if hit.handled else 0,
                    hit.source_plugin,
                    hit.redirect_id,
                    hit.referrer,
                    hit.ip_hash,
                    hit.user_agent,
                    hit.at.isoformat(),
                    hit.url_normalized,
                    hit.site_id,
                ),
            )
            created = cursor.rowcount == 0
            if created:
                conn.execute(
                    """
                    INSERT INTO not_found_urls (
                        url_normalized, site_id, url, count, handled, source_plugin,
                        redirect_id, referrer, ip_hash, user_agent, last_seen_at
                    ) VALUES (?, ?, ?, 1, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        hit.url_normalized,
                        hit.site_id,
                        hit.url,
                        1 if hit.handled else 0,
                        hit.source_plugin,
                        hit.redirect_id,
                        hit.referrer,
                        hit.ip_hash,
                        hit.user_agent,
                        hit.at.isoformat(),
                    ),
                )
            conn.commit()
            return created
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    def list_recent(
        self,
        limit: int = 100,
        handled: bool | None = None,
        site_id: int | None = None,
    ) -> list[NotFoundRecord]:
        query = "SELECT * FROM not_found_urls WHERE 1 = 1"
        params: list[Any] = []
        if handled is not None:
            query += " AND handled = ?"
            params.append(1 if handled else 0)
        if site_id is not None:
            query += " AND site_id = ?"
            params.append(site_id)
        query += " ORDER BY last_seen_at DESC, id DESC LIMIT ?"
        params.append(limit)
        return [self._map_row(r) for r in self._fetch_all(query, tuple(params))]

    def delete(self, url_normalized: str, site_id: int | None) -> bool:
        deleted = self._execute(
            "DELETE FROM not_found_urls WHERE url_normalized = ? AND site_id IS ?",
            (url_normalized, site_id),
        )
        return deleted > 0

    def clear(self, site_id: int | None = None) -> int:
        if site_id is None:
            return self._execute("DELETE FROM not_found_urls", ())
        return self._execute("DELETE FROM not_found_urls WHERE site_id = ?", (site_id,))

    def delete_older_than(self, cutoff: datetime) -> int:
        return self._execute(
            "DELETE FROM not_found_urls WHERE last_seen_at < ?", (cutoff.isoformat(),)
        )

    def trim(self, max_records: int) -> int:
        # Keep the most recently seen rows; higher counts win ties.
        return self._execute(
            """
            DELETE FROM not_found_urls WHERE id NOT IN (
                SELECT id FROM not_found_urls
                ORDER BY last_seen_at DESC, count DESC, id DESC
                LIMIT ?
            )
            """,
            (max_records,),
        )

    def _map_row(self, row: dict[str, Any]) -> NotFoundRecord:
        return NotFoundRecord(
            url_normalized=row["url_normalized"],
            site_id=row["site_id"],
            url=row["url"],
            count=row["count"],
            handled=bool(row["handled"]),
            source_plugin=row["source_plugin"],
            last_seen_at=datetime.fromisoformat(row["last_seen_at"]),
            redirect_id=row["redirect_id"],
            referrer=row["referrer"],
            ip_hash=row["ip_hash"],
            user_agent=row["user_agent"],
        )
