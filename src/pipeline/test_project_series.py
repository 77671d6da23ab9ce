"""事業別時系列データのテスト"""
import hashlib

from src.pipeline.project_series import (
    build_project_index,
    build_project_time_series,
    project_key,
    project_match_key,
)
from src.pipeline.records import BudgetRecord, ExpenditureRecord, OverviewRecord


def budget(year, name, initial, execution=None, rate=None, project_id=1, ministry="内閣府"):
    return BudgetRecord(
        fiscal_year=year,
        budget_year=year,
        ministry=ministry,
        project_id=project_id,
        project_name=name,
        initial_budget=initial,
        execution=execution,
        execution_rate=rate,
    )


def expenditure(year, name, recipient, amount):
    return ExpenditureRecord(
        fiscal_year=year,
        project_year=year,
        ministry="内閣府",
        project_id=1,
        project_name=name,
        recipient_name=recipient,
        amount=amount,
    )


def test_project_key_is_md5_of_name():
    assert project_key("事業A") == hashlib.md5("事業A".encode("utf-8")).hexdigest()
    assert project_key("事業A") == project_key("事業A")
    assert project_key("事業A") != project_key("事業B")


def test_project_match_key_is_exact_name():
    assert project_match_key("事業A") == "事業A"
    assert project_match_key("事業A") != project_match_key("事業 A")


def test_same_name_across_years_gives_one_series_with_yearly_entries():
    budgets = {
        2020: [budget(2020, "事業A", 1, execution=0.8)],
        2024: [budget(2024, "事業A", 3_000_000, rate=0.9, project_id=55)],
    }
    projects = build_project_time_series(budgets, {}, {})

    assert list(projects) == ["事業A"]
    series = projects["事業A"].to_dict()
    assert series["projectKey"] == project_key("事業A")
    assert list(series["yearlyData"]) == ["2020", "2024"]
    assert series["yearlyData"]["2020"] == {
        "projectId": 1,
        "budget": 1_000_000,
        "execution": 800_000,
        "executionRate": 0.8,
    }
    assert series["yearlyData"]["2024"]["budget"] == 3_000_000
    assert series["yearlyData"]["2024"]["executionRate"] == 0.9


def test_duplicate_rows_in_a_year_are_merged():
    budgets = {2024: [
        budget(2024, "事業A", None),
        budget(2024, "事業A", 100, execution=40),
        budget(2024, "事業A", 50, execution=10, rate=0.3),
    ]}
    data = build_project_time_series(budgets, {}, {})["事業A"].yearly_data[2024]
    assert data["budget"] == 150
    assert data["execution"] == 50
    assert data["executionRate"] == 0.3


def test_execution_rate_is_none_without_budget():
    budgets = {2020: [budget(2020, "事業A", 0, execution=5)]}
    data = build_project_time_series(budgets, {}, {})["事業A"].yearly_data[2020]
    assert data["executionRate"] is None


def test_execution_rate_is_not_derived_from_blank_execution():
    budgets = {2024: [budget(2024, "事業A", 12_000_000)]}
    data = build_project_time_series(budgets, {}, {})["事業A"].yearly_data[2024]
    assert data["execution"] == 0
    assert data["executionRate"] is None


def test_execution_rate_is_derived_once_any_row_has_execution():
    budgets = {2020: [
        budget(2020, "事業A", 10),
        budget(2020, "事業A", None, execution=4),
    ]}
    data = build_project_time_series(budgets, {}, {})["事業A"].yearly_data[2020]
    assert data["execution"] == 4_000_000
    assert data["executionRate"] == 0.4


def test_declared_years_prefer_most_recent_overview():
    budgets = {2023: [budget(2023, "事業A", 1)]}
    overviews = {
        2020: [OverviewRecord(2020, "事業A", 2010, 2025)],
        2023: [OverviewRecord(2023, "事業A", 2012, None)],
        2024: [OverviewRecord(2024, "事業A", 1990, 2099)],
    }
    series = build_project_time_series(budgets, overviews, {})["事業A"]

    # 2024年は範囲外のため無視、終了年度は2023年に記載がないため2020年の値
    assert series.start_year == 2012
    assert series.end_year == 2025


def test_top_expenditures_are_trimmed_to_ten():
    budgets = {2024: [budget(2024, "事業A", 1)]}
    expenditures = {2024: [expenditure(2024, "事業A", f"株式会社{i:02d}", i * 100) for i in range(1, 16)]}

    series = build_project_time_series(budgets, {}, expenditures)["事業A"]

    assert len(series.top_expenditures) == 10
    assert series.top_expenditures[0]["name"] == "株式会社15"
    assert series.top_expenditures[-1]["name"] == "株式会社06"


def test_top_expenditures_track_yearly_amounts():
    budgets = {
        2023: [budget(2023, "事業A", 1)],
        2024: [budget(2024, "事業A", 1)],
    }
    expenditures = {
        2023: [expenditure(2023, "事業A", "株式会社X", 2)],
        2024: [
            expenditure(2024, "事業A", "株式会社X", 300),
            expenditure(2024, "事業A", "株式会社X", 700),
            expenditure(2024, "事業B", "株式会社Y", 999),
        ],
    }
    series = build_project_time_series(budgets, {}, expenditures)["事業A"]

    assert series.top_expenditures == [{
        "name": "株式会社X",
        "totalAmount": 2_000_000 + 1000,
        "yearCount": 2,
        "yearlyAmounts": {"2023": 2_000_000, "2024": 1000},
    }]


def test_build_project_index_sorted_by_total_budget():
    budgets = {
        2023: [budget(2023, "事業A", 1), budget(2023, "事業B", 3, project_id=2)],
        2024: [budget(2024, "事業A", 4_000_000)],
    }
    index = build_project_index(build_project_time_series(budgets, {}, {}))

    assert [item["projectName"] for item in index] == ["事業A", "事業B"]
    first = index[0]
    assert first["totalBudget"] == 5_000_000
    assert first["averageBudget"] == 2_500_000
    assert first["dataStartYear"] == 2023
    assert first["dataEndYear"] == 2024
    assert first["yearlyBudgets"] == {"2023": 1_000_000, "2024": 4_000_000}
