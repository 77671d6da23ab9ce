"""
CSVレコードの型定義

金額は単位変換前の値をそのまま保持する（空欄はNone）。
単位変換は集計時に normalize_amount で行う。
"""
from typing import NamedTuple, Optional


class BudgetRecord(NamedTuple):
    """2-1 予算・執行サマリの1行"""
    fiscal_year: int
    budget_year: Optional[int]
    ministry: Optional[str]
    project_id: Optional[int]
    project_name: Optional[str]
    initial_budget: Optional[float]
    execution: Optional[float]
    execution_rate: Optional[float]

    @property
    def is_complete(self) -> bool:
        """府省庁・予算事業ID・事業名が揃っているか"""
        return bool(self.ministry) and self.project_id is not None and bool(self.project_name)


class ExpenditureRecord(NamedTuple):
    """5-1 支出先・支出情報の1行"""
    fiscal_year: int
    project_year: Optional[int]
    ministry: Optional[str]
    project_id: Optional[int]
    project_name: Optional[str]
    recipient_name: Optional[str]
    amount: Optional[float]
    block_id: Optional[str] = None
    corporate_number: Optional[str] = None
    location: Optional[str] = None
    contract_type: Optional[str] = None
    bidders: Optional[float] = None
    fall_rate: Optional[float] = None
    role: Optional[str] = None


class OverviewRecord(NamedTuple):
    """1-2 基本情報・事業概要の1行"""
    fiscal_year: int
    project_name: Optional[str]
    start_year: Optional[int]
    end_year: Optional[int]


class BlockConnectionRecord(NamedTuple):
    """5-2 支出ブロックのつながりの1行（2024年のみ）"""
    fiscal_year: int
    ministry: Optional[str]
    project_id: Optional[int]
    project_name: Optional[str]
    source_block: Optional[str]
    source_block_name: Optional[str]
    target_block: Optional[str]
    target_block_name: Optional[str]
    from_organization: bool
