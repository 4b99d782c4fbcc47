"""Affordability of wishes against the save pot; recomputed on every read."""

from __future__ import annotations


def affordable(wish_price: int, save_balance: int) -> bool:
    return save_balance >= wish_price


def progress(wish_price: int, save_balance: int) -> float:
    """Return the saved share of ``wish_price`` as a ratio between 0 and 1."""

    if wish_price <= 0:
        return 0.0
    if save_balance <= 0:
        return 0.0
    return min(save_balance / wish_price, 1.0)


def remaining(wish_price: int, save_balance: int) -> int:
    return max(wish_price - save_balance, 0)


__all__ = ["affordable", "progress", "remaining"]
