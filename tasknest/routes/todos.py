from __future__ import annotations

import datetime as dt
import sqlite3
from typing import List, Tuple

from fastapi import APIRouter, Depends, HTTPException, status

from ..db import connect
from ..deps import current_user_id
from ..schemas import Counts, MessageResponse, Todo, TodoStats, TodoWrite, parse_day
from ..timeutil import now_iso, today

router = APIRouter(prefix="/api/todos", tags=["todos"])

TODO_COLUMNS = "id, title, completed, due_date, created_at"
UPCOMING_DAYS = 7


def _todo_from_row(row: sqlite3.Row) -> Todo:
    return Todo(
        id=row["id"],
        title=row["title"],
        completed=bool(row["completed"]),
        due_date=row["due_date"],
        created_at=row["created_at"],
    )


def _select(sql: str, params: Tuple) -> List[Todo]:
    with connect() as conn:
        rows = conn.execute(sql, params).fetchall()
    return [_todo_from_row(r) for r in rows]


def _day_param(value: str) -> str:
    try:
        return parse_day(value).isoformat()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid date.") from None


def _require_title(body: TodoWrite) -> str:
    title = (body.title or "").strip()
    if not title:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Title field is required")
    return title


def _week_start(day: dt.date) -> dt.date:
    """Sunday of the week containing ``day``."""
    return day - dt.timedelta(days=(day.weekday() + 1) % 7)


@router.get("", response_model=List[Todo])
@router.get("/", response_model=List[Todo], include_in_schema=False)
def list_todos(user_id: int = Depends(current_user_id)):
    return _select(
        f"SELECT {TODO_COLUMNS} FROM todos WHERE user_id=? ORDER BY created_at DESC, id DESC",
        (user_id,),
    )


@router.get("/date/{date}", response_model=List[Todo])
def todos_due_on(date: str, user_id: int = Depends(current_user_id)):
    return _select(
        f"""
        SELECT {TODO_COLUMNS} FROM todos
        WHERE user_id=? AND DATE(due_date)=?
        ORDER BY created_at DESC, id DESC
        """,
        (user_id, _day_param(date)),
    )


@router.get("/created/{date}", response_model=List[Todo])
def todos_created_on(date: str, user_id: int = Depends(current_user_id)):
    return _select(
        f"""
        SELECT {TODO_COLUMNS} FROM todos
        WHERE user_id=? AND DATE(created_at)=?
        ORDER BY created_at DESC, id DESC
        """,
        (user_id, _day_param(date)),
    )


@router.get("/upcoming", response_model=List[Todo])
def upcoming_todos(user_id: int = Depends(current_user_id)):
    start = today()
    end = start + dt.timedelta(days=UPCOMING_DAYS)
    return _select(
        f"""
        SELECT {TODO_COLUMNS} FROM todos
        WHERE user_id=? AND due_date IS NOT NULL
          AND DATE(due_date) BETWEEN ? AND ?
        ORDER BY due_date ASC, created_at DESC
        """,
        (user_id, start.isoformat(), end.isoformat()),
    )


@router.get("/overdue", response_model=List[Todo])
def overdue_todos(user_id: int = Depends(current_user_id)):
    return _select(
        f"""
        SELECT {TODO_COLUMNS} FROM todos
        WHERE user_id=? AND due_date IS NOT NULL
          AND DATE(due_date) < ? AND completed=0
        ORDER BY due_date ASC
        """,
        (user_id, today().isoformat()),
    )


@router.get("/stats", response_model=TodoStats)
def todo_stats(user_id: int = Depends(current_user_id)):
    day = today()
    day_str = day.isoformat()
    next_week = (day + dt.timedelta(days=UPCOMING_DAYS)).isoformat()

    def counts(conn: sqlite3.Connection, where: str = "", *params) -> Counts:
        row = conn.execute(
            f"SELECT COUNT(*) AS total, COALESCE(SUM(completed), 0) AS completed "
            f"FROM todos WHERE user_id=? {where}",
            (user_id, *params),
        ).fetchone()
        total = int(row["total"])
        completed = int(row["completed"])
        return Counts(total=total, completed=completed, pending=total - completed)

    with connect() as conn:
        total = counts(conn)
        today_counts = counts(conn, "AND DATE(created_at)=?", day_str)
        week = counts(conn, "AND DATE(created_at)>=?", _week_start(day).isoformat())
        month = counts(conn, "AND DATE(created_at)>=?", day.replace(day=1).isoformat())

        overdue = int(
            conn.execute(
                """
                SELECT COUNT(*) AS c FROM todos
                WHERE user_id=? AND due_date IS NOT NULL
                  AND DATE(due_date) < ? AND completed=0
                """,
                (user_id, day_str),
            ).fetchone()["c"]
        )
        upcoming = int(
            conn.execute(
                """
                SELECT COUNT(*) AS c FROM todos
                WHERE user_id=? AND due_date IS NOT NULL
                  AND DATE(due_date) BETWEEN ? AND ?
                """,
                (user_id, day_str, next_week),
            ).fetchone()["c"]
        )

    return TodoStats(
        total=total,
        today=today_counts,
        week=week,
        month=month,
        overdue=overdue,
        upcoming=upcoming,
    )


@router.post("", response_model=Todo, status_code=status.HTTP_201_CREATED)
@router.post("/", response_model=Todo, status_code=status.HTTP_201_CREATED, include_in_schema=False)
def create_todo(body: TodoWrite, user_id: int = Depends(current_user_id)):
    title = _require_title(body)

    with connect() as conn:
        cur = conn.execute(
            "INSERT INTO todos (user_id, title, due_date, created_at) VALUES (?, ?, ?, ?)",
            (user_id, title, body.due_date, now_iso()),
        )
        row = conn.execute(
            f"SELECT {TODO_COLUMNS} FROM todos WHERE id=?", (cur.lastrowid,)
        ).fetchone()

    return _todo_from_row(row)


@router.put("/{todo_id}/toggle", response_model=Todo)
def toggle_todo(todo_id: int, user_id: int = Depends(current_user_id)):
    with connect() as conn:
        conn.execute(
            "UPDATE todos SET completed = NOT completed WHERE id=? AND user_id=?",
            (todo_id, user_id),
        )
        row = conn.execute(
            f"SELECT {TODO_COLUMNS} FROM todos WHERE id=? AND user_id=?", (todo_id, user_id)
        ).fetchone()

    if not row:
        raise HTTPException(status_code=404, detail="Todo not found")
    return _todo_from_row(row)


@router.put("/{todo_id}", response_model=Todo)
def update_todo(todo_id: int, body: TodoWrite, user_id: int = Depends(current_user_id)):
    title = _require_title(body)

    with connect() as conn:
        conn.execute(
            "UPDATE todos SET title=?, due_date=? WHERE id=? AND user_id=?",
            (title, body.due_date, todo_id, user_id),
        )
        row = conn.execute(
            f"SELECT {TODO_COLUMNS} FROM todos WHERE id=? AND user_id=?", (todo_id, user_id)
        ).fetchone()

    if not row:
        raise HTTPException(status_code=404, detail="Todo not found")
    return _todo_from_row(row)


@router.delete("/{todo_id}", response_model=MessageResponse)
def delete_todo(todo_id: int, user_id: int = Depends(current_user_id)):
    with connect() as conn:
        conn.execute("DELETE FROM todos WHERE id=? AND user_id=?", (todo_id, user_id))
    return MessageResponse(message="Todo deleted")
