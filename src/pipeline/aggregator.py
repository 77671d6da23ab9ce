"""
年度別集計

予算・執行サマリと支出先データを府省庁・事業・支出先の単位で集計し、
統計情報、府省庁リスト、事業別支出先データを生成
"""
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from config import (
    LATEST_YEAR,
    MINISTRY_TOP_PROJECTS,
    RS_FORMAT_START_YEAR,
)
from src.pipeline.records import BudgetRecord, ExpenditureRecord
from src.utils.amount import merge_amount, normalize_amount

logger = logging.getLogger(__name__)


class ProjectAggregate:
    """1年度・1事業の集計結果"""

    def __init__(
        self,
        project_id: int,
        name: str,
        ministry: str,
        budget: float,
        recipients: Sequence[Tuple[str, float]] = (),
    ):
        self.project_id = project_id
        self.name = name
        self.ministry = ministry
        self.budget = budget
        # (支出先名, 金額) を金額降順で保持
        self.recipients = tuple(recipients)
        self.execution = sum(amount for _, amount in self.recipients)

    def to_dict(self) -> Dict:
        return {
            "projectId": self.project_id,
            "projectName": self.name,
            "ministry": self.ministry,
            "budget": self.budget,
            "expenditures": [{"name": name, "amount": amount} for name, amount in self.recipients],
            "totalExecution": self.execution,
        }


class MinistryAggregate:
    """1年度・1府省庁の集計結果"""

    def __init__(self, name: str, projects: Dict[int, ProjectAggregate]):
        self.name = name
        self.projects = projects
        self.budget = sum(p.budget for p in projects.values())
        self.execution = sum(p.execution for p in projects.values())

    def recipient_totals(self) -> List[Tuple[str, float]]:
        """府省庁内の支出先ごとの合計（金額降順）"""
        totals: Dict[str, float] = {}
        for project in self.projects.values():
            for name, amount in project.recipients:
                totals[name] = totals.get(name, 0) + amount
        return sorted(totals.items(), key=lambda item: item[1], reverse=True)


def _sorted_by_amount(amounts: Dict[str, float]) -> List[Tuple[str, float]]:
    return sorted(amounts.items(), key=lambda item: item[1], reverse=True)


class YearAggregator:
    """年度別集計クラス"""

    def __init__(self, year: int):
        self.year = year

    def execution_source_year(self) -> int:
        """
        執行額を取得する予算年度

        最新年度のファイルには前年度の執行実績が含まれるため前年度、
        それ以外は同じ年度
        """
        if self.year == LATEST_YEAR:
            return self.year - 1
        return self.year

    def has_stated_execution_rate(self) -> bool:
        """CSVに執行率カラムがある年度か（小数形式: 0.33 = 33%）"""
        return self.year >= RS_FORMAT_START_YEAR

    def current_budget_rows(self, budget_records: List[BudgetRecord]) -> List[BudgetRecord]:
        """予算年度 = 対象年度の行"""
        return [r for r in budget_records if r.budget_year == self.year]

    def execution_budget_rows(self, budget_records: List[BudgetRecord]) -> List[BudgetRecord]:
        """執行額の集計に使う行"""
        source_year = self.execution_source_year()
        return [r for r in budget_records if r.budget_year == source_year]

    def current_expenditure_rows(self, expenditure_records: List[ExpenditureRecord]) -> List[ExpenditureRecord]:
        """事業年度 = 対象年度の行"""
        return [r for r in expenditure_records if r.project_year == self.year]

    def aggregate(
        self, budget_records: List[BudgetRecord], expenditure_records: List[ExpenditureRecord]
    ) -> Dict[str, MinistryAggregate]:
        """
        府省庁ごとに予算・支出を集計

        予算は予算事業IDごとに merge_amount で集約し、支出先は同じ年度の予算データに
        存在する予算事業IDのみを対象に（事業, 支出先名）ごとに合算する

        Args:
            budget_records: 予算・執行サマリのレコード
            expenditure_records: 支出先のレコード

        Returns:
            府省庁名 → MinistryAggregate（予算データの出現順）
        """
        # 予算事業IDごとの (府省庁, 事業名, 予算)
        projects: Dict[int, Dict] = {}
        for record in self.current_budget_rows(budget_records):
            if not record.is_complete:
                continue

            incoming = None
            if record.initial_budget is not None:
                incoming = normalize_amount(record.initial_budget, self.year)

            existing = projects.get(record.project_id)
            if existing is None:
                projects[record.project_id] = {
                    "ministry": record.ministry,
                    "name": record.project_name,
                    "budget": incoming or 0,
                }
            else:
                existing["budget"] = merge_amount(existing["budget"], incoming)

        # 予算事業IDごとの支出先 → 金額
        recipients: Dict[int, Dict[str, float]] = {}
        dropped = 0
        for record in self.current_expenditure_rows(expenditure_records):
            if record.project_id not in projects:
                dropped += 1
                continue
            if not record.recipient_name:
                continue

            amount = normalize_amount(record.amount, self.year)
            if not amount:
                continue

            bucket = recipients.setdefault(record.project_id, {})
            bucket[record.recipient_name] = bucket.get(record.recipient_name, 0) + amount

        if dropped:
            logger.info(f"  - Expenditure rows without budget entry: {dropped}")

        by_ministry: Dict[str, Dict[int, ProjectAggregate]] = {}
        for project_id, info in projects.items():
            aggregate = ProjectAggregate(
                project_id=project_id,
                name=info["name"],
                ministry=info["ministry"],
                budget=info["budget"],
                recipients=_sorted_by_amount(recipients.get(project_id, {})),
            )
            by_ministry.setdefault(info["ministry"], {})[project_id] = aggregate

        return {name: MinistryAggregate(name, items) for name, items in by_ministry.items()}

    def _reported_execution(self, record: BudgetRecord) -> float:
        return normalize_amount(record.execution, self.year)

    def _execution_rate(self, record: BudgetRecord) -> Optional[float]:
        """
        1行分の執行率（集計対象外の行はNone）

        執行率カラムがある年度はその値を使い、それ以外は執行額 ÷ 当初予算で計算
        """
        if self.has_stated_execution_rate():
            rate = record.execution_rate
            if rate is None or rate != rate or rate == 0:
                return None
            return rate

        budget = normalize_amount(record.initial_budget, self.year)
        execution = normalize_amount(record.execution, self.year)
        if budget <= 0 or execution <= 0:
            return None
        return execution / budget

    def calculate_statistics(
        self,
        budget_records: List[BudgetRecord],
        expenditure_records: List[ExpenditureRecord],
        aggregates: Dict[str, MinistryAggregate],
    ) -> Dict:
        """
        統計情報を計算

        Args:
            budget_records: 予算・執行サマリのレコード
            expenditure_records: 支出先のレコード
            aggregates: aggregate() の結果

        Returns:
            statistics.json の内容
        """
        execution_rows = [r for r in self.execution_budget_rows(budget_records) if r.is_complete]

        total_budget = sum(m.budget for m in aggregates.values())
        total_execution = sum(self._reported_execution(r) for r in execution_rows)

        # 異常値(1を超える値)はキャップする
        rates = [min(rate, 1) for rate in map(self._execution_rate, execution_rows) if rate is not None]
        logger.info(f"  - Valid execution rates: {len(rates)}/{len(execution_rows)}")
        average_execution_rate = sum(rates) / len(rates) if rates else 0

        expenditure_rows = self.current_expenditure_rows(expenditure_records)
        total_expenditure = sum(normalize_amount(r.amount, self.year) for r in expenditure_rows)

        event_count = sum(len(m.projects) for m in aggregates.values())
        projects_with_expenditures = sum(
            1 for m in aggregates.values() for p in m.projects.values() if p.recipients
        )
        projects_without_expenditures = event_count - projects_with_expenditures

        logger.info(f"  - Total projects: {event_count}")
        logger.info(f"  - Projects with expenditures: {projects_with_expenditures}")
        logger.info(f"  - Projects without expenditures: {projects_without_expenditures}")

        return {
            "totalBudget": total_budget,
            "totalExecution": total_execution,
            "totalExpenditure": total_expenditure,
            "averageExecutionRate": average_execution_rate,
            "eventCount": event_count,
            "ministryCount": len(aggregates),
            "expenditureCount": len(expenditure_rows),
            "projectsWithoutExpenditures": projects_without_expenditures,
        }

    def extract_ministries(self, budget_records: List[BudgetRecord]) -> List[Dict]:
        """
        府省庁リストを抽出（予算・執行額付き、予算金額降順）

        予算は対象年度、執行額は execution_source_year() の行から集計
        """
        ministries: Dict[str, Dict[str, float]] = {}

        for record in self.current_budget_rows(budget_records):
            if not record.ministry:
                continue
            current = ministries.setdefault(record.ministry, {"budget": 0, "execution": 0})
            current["budget"] += normalize_amount(record.initial_budget, self.year)

        for record in self.execution_budget_rows(budget_records):
            if not record.ministry:
                continue
            current = ministries.setdefault(record.ministry, {"budget": 0, "execution": 0})
            current["execution"] += self._reported_execution(record)

        result = [
            {"name": name, "budget": data["budget"], "execution": data["execution"]}
            for name, data in ministries.items()
        ]
        return sorted(result, key=lambda m: m["budget"], reverse=True)

    def build_project_expenditures(self, aggregates: Dict[str, MinistryAggregate]) -> Dict[str, Dict]:
        """事業別支出先データ（予算事業IDがキー、支出先がない事業も含む）"""
        projects = [p for m in aggregates.values() for p in m.projects.values()]
        return {str(p.project_id): p.to_dict() for p in sorted(projects, key=lambda p: p.project_id)}

    def build_ministry_projects(
        self, aggregates: Dict[str, MinistryAggregate], top_n: int = MINISTRY_TOP_PROJECTS
    ) -> Dict[str, Dict]:
        """府省庁ごとの事業Top N + その他合計"""
        result = {}
        for name, ministry in aggregates.items():
            ranked = sorted(ministry.projects.values(), key=lambda p: p.budget, reverse=True)
            result[name] = {
                "top10": [
                    {"projectId": p.project_id, "name": p.name, "budget": p.budget}
                    for p in ranked[:top_n]
                ],
                "othersTotal": sum(p.budget for p in ranked[top_n:]),
                "totalProjects": len(ranked),
            }
        return result


def aggregate_year(
    budget_records: List[BudgetRecord], expenditure_records: List[ExpenditureRecord], year: int
) -> Dict[str, MinistryAggregate]:
    """府省庁ごとの集計（YearAggregator.aggregate のショートカット）"""
    return YearAggregator(year).aggregate(budget_records, expenditure_records)
