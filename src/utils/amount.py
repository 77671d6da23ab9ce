"""
金額の単位変換

2014-2023年度のCSVは百万円単位、2024年度以降は1円単位で記録されているため、
集計前に必ずここを通して1円単位に揃える
"""
from typing import Optional

from config import MILLION_YEN, MILLION_YEN_LAST_YEAR


def normalize_amount(amount: Optional[float], year: int) -> float:
    """
    金額を1円単位に正規化

    Args:
        amount: CSVに記載された金額（空欄はNone）
        year: CSVファイルの年度

    Returns:
        1円単位の金額
    """
    if not amount:
        return 0
    if year <= MILLION_YEN_LAST_YEAR:
        return amount * MILLION_YEN
    return amount


def merge_amount(existing: float, incoming: Optional[float]) -> float:
    """
    同一事業の複数行を集約する際の金額マージ

    空欄行（None）は既存値を変更しない。既存値がちょうど0の場合は新しい値で置き換え、
    それ以外は加算する。
    """
    if incoming is None:
        return existing
    if existing == 0:
        return incoming
    return existing + incoming
