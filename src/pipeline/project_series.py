"""
事業別時系列データ構築

全年度の予算・執行サマリ、事業概要、支出先を事業名で紐付け、
事業ごとの年度別予算・執行額とTop10支出先の推移を生成する
"""
import hashlib
import logging
from typing import Dict, List, Optional

from config import END_YEAR_RANGE, PROJECT_TOP_EXPENDITURES, START_YEAR_RANGE
from src.pipeline.records import BudgetRecord, ExpenditureRecord, OverviewRecord
from src.utils.amount import merge_amount, normalize_amount

logger = logging.getLogger(__name__)


def project_match_key(project_name: str) -> str:
    """
    年度をまたいで同一事業とみなすためのキー

    年度間で安定した事業IDが存在しないため、事業名の完全一致で紐付ける
    """
    return project_name


def project_key(project_name: str) -> str:
    """事業名からURLセーフなキーを生成（MD5ハッシュ）"""
    return hashlib.md5(project_name.encode('utf-8')).hexdigest()


def _in_range(year: Optional[int], year_range) -> bool:
    return year is not None and year_range[0] <= year <= year_range[1]


class ProjectTimeSeries:
    """事業別時系列データ"""

    def __init__(self, project_name: str, ministry: Optional[str]):
        self.project_name = project_name
        self.project_key = project_key(project_name)
        self.ministry = ministry
        self.start_year: Optional[int] = None
        self.end_year: Optional[int] = None
        self.yearly_data: Dict[int, Dict] = {}
        self.top_expenditures: List[Dict] = []

    def years(self) -> List[int]:
        return sorted(self.yearly_data)

    def total_budget(self) -> float:
        return sum(self.yearly_data[year]["budget"] for year in self.years())

    def to_dict(self) -> Dict:
        return {
            "projectName": self.project_name,
            "projectKey": self.project_key,
            "ministry": self.ministry,
            "startYear": self.start_year,
            "endYear": self.end_year,
            "yearlyData": {str(year): self.yearly_data[year] for year in self.years()},
            "topExpenditures": self.top_expenditures,
        }

    def to_index_item(self) -> Dict:
        """検索・一覧用のインデックス項目"""
        years = self.years()
        total_budget = self.total_budget()
        return {
            "projectKey": self.project_key,
            "projectName": self.project_name,
            "ministry": self.ministry,
            "startYear": self.start_year,
            "endYear": self.end_year,
            "dataStartYear": years[0] if years else None,
            "dataEndYear": years[-1] if years else None,
            "totalBudget": total_budget,
            "averageBudget": total_budget / len(years) if years else 0,
            "yearlyBudgets": {str(year): self.yearly_data[year]["budget"] for year in years},
        }


def _merge_budget_rows(
    projects: Dict[str, ProjectTimeSeries], year: int, records: List[BudgetRecord]
) -> None:
    """1年度分の予算行を事業別の年度データに集約"""
    for record in records:
        if record.budget_year != year or not record.project_name or record.project_id is None:
            continue

        key = project_match_key(record.project_name)
        project = projects.get(key)
        if project is None:
            project = ProjectTimeSeries(record.project_name, record.ministry)
            projects[key] = project

        # 空欄行は None のまま merge_amount に渡し、既存値を消さない
        budget = None if record.initial_budget is None else normalize_amount(record.initial_budget, year)
        execution = None if record.execution is None else normalize_amount(record.execution, year)

        existing = project.yearly_data.get(year)
        if existing is None:
            project.yearly_data[year] = {
                "projectId": record.project_id,
                "budget": budget or 0,
                "execution": execution,
                "executionRate": record.execution_rate,
            }
            continue

        existing["budget"] = merge_amount(existing["budget"], budget)
        if existing["execution"] is None:
            existing["execution"] = execution
        else:
            existing["execution"] = merge_amount(existing["execution"], execution)
        # 執行率がある行を優先
        if record.execution_rate:
            existing["executionRate"] = record.execution_rate


def _apply_declared_years(
    projects: Dict[str, ProjectTimeSeries], overview_by_year: Dict[int, List[OverviewRecord]]
) -> None:
    """事業概要から開始・終了年度を設定（新しい年度の記載を優先）"""
    for year in sorted(overview_by_year, reverse=True):
        for record in overview_by_year[year]:
            if not record.project_name:
                continue
            project = projects.get(project_match_key(record.project_name))
            if project is None:
                continue

            if project.start_year is None and _in_range(record.start_year, START_YEAR_RANGE):
                project.start_year = record.start_year
            if project.end_year is None and _in_range(record.end_year, END_YEAR_RANGE):
                project.end_year = record.end_year


def _collect_expenditures(
    projects: Dict[str, ProjectTimeSeries],
    expenditure_by_year: Dict[int, List[ExpenditureRecord]],
    top_n: int,
) -> None:
    """支出先を事業・支出先・年度ごとに合算し、全年度合計のTopNを残す"""
    by_project: Dict[str, Dict[str, Dict]] = {}

    for year in sorted(expenditure_by_year):
        for record in expenditure_by_year[year]:
            if record.project_year != year or not record.project_name or not record.recipient_name:
                continue
            key = project_match_key(record.project_name)
            if key not in projects:
                continue

            amount = normalize_amount(record.amount, year)
            if not amount:
                continue

            recipients = by_project.setdefault(key, {})
            entry = recipients.get(record.recipient_name)
            if entry is None:
                entry = {"name": record.recipient_name, "totalAmount": 0, "yearCount": 0, "yearlyAmounts": {}}
                recipients[record.recipient_name] = entry

            entry["totalAmount"] += amount
            year_key = str(year)
            if year_key not in entry["yearlyAmounts"]:
                entry["yearlyAmounts"][year_key] = 0
                entry["yearCount"] += 1
            entry["yearlyAmounts"][year_key] += amount

    for key, recipients in by_project.items():
        ranked = sorted(recipients.values(), key=lambda e: e["totalAmount"], reverse=True)
        projects[key].top_expenditures = ranked[:top_n]


def build_project_time_series(
    budget_by_year: Dict[int, List[BudgetRecord]],
    overview_by_year: Dict[int, List[OverviewRecord]],
    expenditure_by_year: Dict[int, List[ExpenditureRecord]],
    top_n: int = PROJECT_TOP_EXPENDITURES,
) -> Dict[str, ProjectTimeSeries]:
    """
    全年度のデータを事業名単位で集約

    Args:
        budget_by_year: 年度 → 予算・執行サマリのレコード
        overview_by_year: 年度 → 事業概要のレコード
        expenditure_by_year: 年度 → 支出先のレコード
        top_n: 残す支出先の数

    Returns:
        事業名 → ProjectTimeSeries
    """
    projects: Dict[str, ProjectTimeSeries] = {}

    for year in sorted(budget_by_year):
        _merge_budget_rows(projects, year, budget_by_year[year])

    # 執行率がない年度は執行額 ÷ 当初予算で補完（執行額が空欄のままなら補完しない）
    for project in projects.values():
        for data in project.yearly_data.values():
            if data["execution"] is None:
                data["execution"] = 0
            elif data["executionRate"] is None and data["budget"] > 0:
                data["executionRate"] = data["execution"] / data["budget"]

    _apply_declared_years(projects, overview_by_year)
    _collect_expenditures(projects, expenditure_by_year, top_n)

    logger.info(f"  - Projects (by name): {len(projects)}")
    return projects


def build_project_index(projects: Dict[str, ProjectTimeSeries]) -> List[Dict]:
    """事業インデックス（全年度合計予算の降順）"""
    items = [project.to_index_item() for project in projects.values()]
    return sorted(items, key=lambda item: item["totalBudget"], reverse=True)
