"""
Movement log analytics (pandas).

Replay rules, per movement:

* ``reserve``                      reserved += qty at from_bin
* ``release``                      reserved -= qty at from_bin
* ``pick``, sale ``invoice_sale``  on_hand -= qty, reserved -= qty at from_bin
* direct ``invoice_sale``          on_hand -= qty at from_bin (nothing was reserved)
* anything else                    on_hand -= qty at from_bin, on_hand += qty at to_bin

``replay_levels`` rebuilds every (product, bin) level from zero;
``level_history`` gives a running total per movement for one product;
``owner_reserved`` rebuilds what each workflow line currently holds.
"""

from __future__ import annotations

from typing import Optional

import pandas as pd
from sqlmodel import Session, select

from stockroom.models import StockMove

RESERVATION_ONLY = {"reserve", "release"}
CONSUMING = {"pick", "invoice_sale"}

MOVE_COLUMNS = [
    "id",
    "product_id",
    "qty",
    "from_bin_id",
    "to_bin_id",
    "reason",
    "work_order_id",
    "work_order_part_id",
    "sale_id",
    "sale_item_id",
    "invoice_id",
    "purchase_order_id",
    "serial_number_id",
    "performed_by",
    "created_at",
]


def _frame(moves: list[StockMove]) -> pd.DataFrame:
    rows = [{col: getattr(m, col) for col in MOVE_COLUMNS} | {"reason": m.reason.value} for m in moves]
    return pd.DataFrame(rows, columns=MOVE_COLUMNS)


def _load(session: Session, product_id: Optional[int] = None) -> list[StockMove]:
    stmt = select(StockMove).order_by(StockMove.id)
    if product_id is not None:
        stmt = stmt.where(StockMove.product_id == product_id)
    return list(session.exec(stmt))


def moves_frame(session: Session, product_id: Optional[int] = None) -> pd.DataFrame:
    return _frame(_load(session, product_id))


def _deltas(df: pd.DataFrame) -> pd.DataFrame:
    """One row per (movement, bin) touched, with on_hand/reserved deltas."""
    reason = df["reason"]
    qty = df["qty"].astype(int)

    src = df[df["from_bin_id"].notna()]
    src_reason = reason.loc[src.index]
    src_qty = qty.loc[src.index]
    unreserves = src_reason.isin({"release", "pick"}) | (
        (src_reason == "invoice_sale") & src["sale_item_id"].notna()
    )
    from_part = pd.DataFrame(
        {
            "move_id": src["id"],
            "product_id": src["product_id"],
            "bin_id": src["from_bin_id"].astype(int),
            "on_hand": (-src_qty).where(~src_reason.isin(RESERVATION_ONLY), 0),
            "reserved": src_qty.where(src_reason == "reserve", 0) - src_qty.where(unreserves, 0),
        }
    )

    dst_mask = df["to_bin_id"].notna() & ~reason.isin(RESERVATION_ONLY | CONSUMING)
    dst = df[dst_mask]
    to_part = pd.DataFrame(
        {
            "move_id": dst["id"],
            "product_id": dst["product_id"],
            "bin_id": dst["to_bin_id"].astype(int),
            "on_hand": qty.loc[dst.index],
            "reserved": 0,
        }
    )
    parts = [p for p in (from_part, to_part) if not p.empty]
    if not parts:
        return pd.DataFrame(columns=["move_id", "product_id", "bin_id", "on_hand", "reserved"])
    return pd.concat(parts, ignore_index=True)


def replay_levels(moves: pd.DataFrame) -> pd.DataFrame:
    """Counters per (product_id, bin_id) rebuilt from zero."""
    if moves.empty:
        return pd.DataFrame(columns=["product_id", "bin_id", "on_hand", "reserved"])
    deltas = _deltas(moves)
    out = deltas.groupby(["product_id", "bin_id"], as_index=False)[["on_hand", "reserved"]].sum()
    return out.astype(int).sort_values(["product_id", "bin_id"]).reset_index(drop=True)


def owner_reserved(moves: pd.DataFrame, owner_column: str) -> dict[int, int]:
    """Signed reservation held per owner (``work_order_part_id`` / ``sale_item_id``)."""
    if moves.empty:
        return {}
    held = moves[moves[owner_column].notna()].copy()
    sign = held["reason"].map({"reserve": 1, "release": -1, "pick": -1, "invoice_sale": -1}).fillna(0)
    held["signed"] = held["qty"].astype(int) * sign.astype(int)
    totals = held.groupby(held[owner_column].astype(int))["signed"].sum()
    return {int(k): int(v) for k, v in totals.items()}


def level_history(session: Session, product_id: int, limit: Optional[int] = None) -> list[dict]:
    """Movements of one product with the running product-wide on_hand / reserved."""
    moves = _load(session, product_id)
    if not moves:
        return []
    deltas = _deltas(_frame(moves)).groupby("move_id")[["on_hand", "reserved"]].sum()
    on_hand = reserved = 0
    out = []
    for m in moves:
        d_on = int(deltas["on_hand"].get(m.id, 0))
        d_res = int(deltas["reserved"].get(m.id, 0))
        on_hand += d_on
        reserved += d_res
        out.append(
            {
                "id": m.id,
                "created_at": m.created_at.isoformat() if m.created_at else None,
                "reason": m.reason.value,
                "qty": m.qty,
                "from_bin_id": m.from_bin_id,
                "to_bin_id": m.to_bin_id,
                "work_order_id": m.work_order_id,
                "sale_id": m.sale_id,
                "purchase_order_id": m.purchase_order_id,
                "serial_number_id": m.serial_number_id,
                "performed_by": m.performed_by,
                "delta": d_on,
                "reserved_delta": d_res,
                "on_hand": on_hand,
                "reserved": reserved,
            }
        )
    out.reverse()
    return out[:limit] if limit else out
