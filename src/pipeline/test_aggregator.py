"""年度別集計のテスト"""
import pytest

from src.pipeline.aggregator import YearAggregator, aggregate_year
from src.pipeline.records import BudgetRecord, ExpenditureRecord


def budget(year, project_id, name, ministry, initial, execution=None, rate=None, budget_year=None):
    return BudgetRecord(
        fiscal_year=year,
        budget_year=budget_year or year,
        ministry=ministry,
        project_id=project_id,
        project_name=name,
        initial_budget=initial,
        execution=execution,
        execution_rate=rate,
    )


def expenditure(year, project_id, name, ministry, recipient, amount):
    return ExpenditureRecord(
        fiscal_year=year,
        project_year=year,
        ministry=ministry,
        project_id=project_id,
        project_name=name,
        recipient_name=recipient,
        amount=amount,
    )


def test_recipient_amounts_are_summed():
    budgets = [budget(2024, 1, "事業A", "内閣府", 2000)]
    expenditures = [
        expenditure(2024, 1, "事業A", "内閣府", "株式会社X", 300),
        expenditure(2024, 1, "事業A", "内閣府", "株式会社X", 700),
    ]

    aggregates = aggregate_year(budgets, expenditures, 2024)
    project = aggregates["内閣府"].projects[1]

    assert project.recipients == (("株式会社X", 1000),)
    assert project.execution == 1000
    assert aggregates["内閣府"].execution == 1000


def test_amounts_are_normalized_to_yen():
    budgets = [budget(2020, 1, "事業A", "内閣府", 1.5)]
    expenditures = [expenditure(2020, 1, "事業A", "内閣府", "株式会社X", 0.5)]

    aggregates = aggregate_year(budgets, expenditures, 2020)

    assert aggregates["内閣府"].budget == 1_500_000
    assert aggregates["内閣府"].execution == 500_000


def test_duplicate_budget_rows_are_merged():
    budgets = [
        budget(2024, 1, "事業A", "内閣府", None),
        budget(2024, 1, "事業A", "内閣府", 100),
        budget(2024, 1, "事業A", "内閣府", 50),
    ]
    aggregates = aggregate_year(budgets, [], 2024)
    assert aggregates["内閣府"].projects[1].budget == 150


def test_rows_from_other_years_and_incomplete_rows_are_ignored():
    budgets = [
        budget(2024, 1, "事業A", "内閣府", 100),
        budget(2024, 2, "事業B", "内閣府", 100, budget_year=2023),
        budget(2024, 3, "事業C", None, 100),
        budget(2024, None, "事業D", "内閣府", 100),
    ]
    aggregates = aggregate_year(budgets, [], 2024)
    assert list(aggregates["内閣府"].projects) == [1]


def test_expenditures_for_unknown_projects_and_blank_recipients_are_dropped():
    budgets = [budget(2024, 1, "事業A", "内閣府", 100)]
    expenditures = [
        expenditure(2024, 99, "事業Z", "内閣府", "株式会社X", 300),
        expenditure(2024, 1, "事業A", "内閣府", None, 300),
        expenditure(2024, 1, "事業A", "内閣府", "株式会社Y", 0),
        expenditure(2024, 1, "事業A", "内閣府", "株式会社Z", 40),
    ]
    aggregates = aggregate_year(budgets, expenditures, 2024)
    assert aggregates["内閣府"].projects[1].recipients == (("株式会社Z", 40),)


def test_execution_source_year():
    assert YearAggregator(2024).execution_source_year() == 2023
    assert YearAggregator(2020).execution_source_year() == 2020


def test_statistics_for_latest_year_use_previous_year_execution():
    budgets = [
        budget(2024, 1, "事業A", "内閣府", 1000),
        budget(2024, 2, "事業B", "総務省", 500),
        budget(2024, 1, "事業A", "内閣府", 900, execution=800, rate=0.5, budget_year=2023),
        budget(2024, 2, "事業B", "総務省", 400, execution=500, rate=1.25, budget_year=2023),
        budget(2024, 3, "事業C", "総務省", 400, execution=0, rate=0, budget_year=2023),
    ]
    expenditures = [
        expenditure(2024, 1, "事業A", "内閣府", "株式会社X", 300),
        expenditure(2024, 1, "事業A", "内閣府", "株式会社Y", 200),
    ]
    aggregator = YearAggregator(2024)
    aggregates = aggregator.aggregate(budgets, expenditures)

    stats = aggregator.calculate_statistics(budgets, expenditures, aggregates)

    assert stats == {
        "totalBudget": 1500,
        "totalExecution": 1300,
        "totalExpenditure": 500,
        # 0.5 と 1.25（1にキャップ）の平均、執行率0の行は除外
        "averageExecutionRate": 0.75,
        "eventCount": 2,
        "ministryCount": 2,
        "expenditureCount": 2,
        "projectsWithoutExpenditures": 1,
    }


def test_statistics_derive_rate_from_amounts_before_rs_format():
    budgets = [
        budget(2020, 1, "事業A", "内閣府", 100, execution=80),
        budget(2020, 2, "事業B", "内閣府", 100, execution=120),
        budget(2020, 3, "事業C", "内閣府", 0, execution=10),
    ]
    aggregator = YearAggregator(2020)
    aggregates = aggregator.aggregate(budgets, [])

    stats = aggregator.calculate_statistics(budgets, [], aggregates)

    assert stats["averageExecutionRate"] == pytest.approx(0.9)
    assert stats["totalExecution"] == 210 * 1_000_000
    assert stats["projectsWithoutExpenditures"] == 3


def test_statistics_with_no_valid_rates():
    aggregator = YearAggregator(2020)
    stats = aggregator.calculate_statistics([], [], {})
    assert stats["averageExecutionRate"] == 0
    assert stats["eventCount"] == 0


def test_extract_ministries_sorted_by_budget():
    budgets = [
        budget(2024, 1, "事業A", "内閣府", 100),
        budget(2024, 2, "事業B", "総務省", 300),
        budget(2024, 2, "事業B", "総務省", 200, execution=150, budget_year=2023),
    ]
    ministries = YearAggregator(2024).extract_ministries(budgets)
    assert ministries == [
        {"name": "総務省", "budget": 300, "execution": 150},
        {"name": "内閣府", "budget": 100, "execution": 0},
    ]


def test_build_project_expenditures_includes_projects_without_recipients():
    budgets = [
        budget(2024, 2, "事業B", "内閣府", 50),
        budget(2024, 1, "事業A", "内閣府", 100),
    ]
    expenditures = [expenditure(2024, 1, "事業A", "内閣府", "株式会社X", 60)]
    aggregator = YearAggregator(2024)
    result = aggregator.build_project_expenditures(aggregator.aggregate(budgets, expenditures))

    assert list(result) == ["1", "2"]
    assert result["1"] == {
        "projectId": 1,
        "projectName": "事業A",
        "ministry": "内閣府",
        "budget": 100,
        "expenditures": [{"name": "株式会社X", "amount": 60}],
        "totalExecution": 60,
    }
    assert result["2"]["expenditures"] == []


def test_build_ministry_projects_top_n_and_others():
    budgets = [budget(2024, i, f"事業{i}", "内閣府", i * 10) for i in range(1, 6)]
    aggregator = YearAggregator(2024)
    result = aggregator.build_ministry_projects(aggregator.aggregate(budgets, []), top_n=2)

    entry = result["内閣府"]
    assert [p["projectId"] for p in entry["top10"]] == [5, 4]
    assert entry["othersTotal"] == 60
    assert entry["totalProjects"] == 5
