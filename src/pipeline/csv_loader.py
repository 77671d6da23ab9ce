"""
CSV読み込み

年度ディレクトリから予算・執行サマリ、支出先、事業概要、支出ブロックのつながりを読み込み、
型付きレコードに変換する
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Dict, List, NamedTuple, Optional

import pandas as pd

from config import (
    COL_BIDDERS,
    COL_BLOCK_ID,
    COL_BUDGET_YEAR,
    COL_CONTRACT_TYPE,
    COL_CORPORATE_NUMBER,
    COL_EXECUTION_RATE,
    COL_FALL_RATE,
    COL_FROM_ORGANIZATION,
    COL_LOCATION,
    COL_MINISTRY,
    COL_PROJECT_ID,
    COL_PROJECT_NAME,
    COL_PROJECT_YEAR,
    COL_RECIPIENT_NAME,
    COL_ROLE,
    COL_SOURCE_BLOCK,
    COL_SOURCE_BLOCK_NAME,
    COL_TARGET_BLOCK,
    COL_TARGET_BLOCK_NAME,
    END_YEAR_COLUMNS,
    EXECUTION_COLUMNS,
    EXPENDITURE_AMOUNT_COLUMNS,
    INITIAL_BUDGET_COLUMNS,
    MANDATORY_SOURCES,
    RS_FORMAT_START_YEAR,
    SOURCE_FILES,
    SOURCE_FILES_RS_FORMAT,
    START_YEAR_COLUMNS,
)
from src.pipeline.records import (
    BlockConnectionRecord,
    BudgetRecord,
    ExpenditureRecord,
    OverviewRecord,
)
from src.utils.normalization import (
    is_blank,
    normalize_column_name,
    parse_flag,
    parse_int,
    parse_number,
    parse_text,
    parse_year,
)

logger = logging.getLogger(__name__)


class MissingSourceFileError(Exception):
    """年度の処理に必須のCSVが存在しない時の例外"""

    def __init__(self, year: int, path: Path):
        super().__init__(f"Mandatory source file not found for year {year}: {path}")
        self.year = year
        self.path = path


class YearSources(NamedTuple):
    """1年度分の入力レコード"""
    year: int
    budget: List[BudgetRecord]
    expenditure: List[ExpenditureRecord]
    overview: List[OverviewRecord]
    connections: List[BlockConnectionRecord]


def source_file_candidates(role: str, year: int) -> List[str]:
    """
    ファイル種別と年度からCSVファイル名の候補を返す

    2024年以降はRSシステムのダウンロード形式（RS_ 付き）も受け付け、
    事業概要は「事業概要等」に名称が変わる
    """
    number, suffix = SOURCE_FILES[role]
    if year >= RS_FORMAT_START_YEAR:
        number, suffix = SOURCE_FILES_RS_FORMAT.get(role, (number, suffix))
        return [
            f"{number}_{year}_{suffix}.csv",
            f"{number}_RS_{year}_{suffix}.csv",
        ]
    return [f"{number}_{year}_{suffix}.csv"]


def resolve_source_path(year_dir: Path, role: str, year: int) -> Path:
    """
    CSVファイルのパスを解決

    存在する候補があればそれを、なければ第一候補のパスを返す
    """
    candidates = [year_dir / name for name in source_file_candidates(role, year)]
    for path in candidates:
        if path.exists():
            return path
    return candidates[0]


def read_csv_rows(path: Path) -> List[Dict[str, Any]]:
    """
    CSVファイルを読み込んで行の辞書リストを返す

    - BOM付きUTF-8に対応
    - 1行目をヘッダーとし、カラム名を正規化
    - 行末の余分な区切り文字（空欄の列）は切り捨てる
    - それ以外でヘッダーより列数の多い行はスキップ（少ない行は空欄で補完）
    - ファイルが存在しない・読めない場合は空リスト

    Args:
        path: CSVファイルパス

    Returns:
        行ごとの辞書（カラム名 → セルの文字列）
    """
    if not path.exists():
        logger.warning(f"CSV file not found: {path}")
        return []

    skipped_lines = []
    width = 0

    def on_bad_line(line: List[str]) -> Optional[List[str]]:
        # 末尾の空欄だけがはみ出している行はヘッダー幅に切り詰めて残す
        if all(is_blank(value) for value in line[width:]):
            return line[:width]
        skipped_lines.append(line)
        return None

    try:
        # ヘッダー行もデータとして読む（列数の多い行を暗黙のインデックスとみなさないため）
        header = pd.read_csv(
            path,
            encoding='utf-8-sig',
            header=None,
            nrows=1,
            dtype=str,
            keep_default_na=False,
            engine='python',
        )
        width = header.shape[1]
        df = pd.read_csv(
            path,
            encoding='utf-8-sig',
            header=None,
            dtype=str,
            keep_default_na=False,
            engine='python',
            on_bad_lines=on_bad_line,
        )
    except (OSError, UnicodeDecodeError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        logger.error(f"Error reading CSV file {path}: {e}")
        return []

    columns = [normalize_column_name(col) for col in df.iloc[0]]
    df = df.iloc[1:]
    df.columns = columns

    if skipped_lines:
        logger.warning(f"  {path.name}: skipped {len(skipped_lines)} malformed rows")

    logger.info(f"  Loaded {path.name}: {len(df)} rows, {len(df.columns)} columns")
    return df.to_dict('records')


def _first_present(row: Dict[str, Any], columns: List[str]) -> Any:
    """別名カラムのうち最初に値が入っているものを返す"""
    for col in columns:
        value = row.get(col)
        if not is_blank(value):
            return value
    return None


def to_budget_record(row: Dict[str, Any], year: int) -> BudgetRecord:
    """予算・執行サマリの行をレコードに変換"""
    return BudgetRecord(
        fiscal_year=year,
        budget_year=parse_year(row.get(COL_BUDGET_YEAR)),
        ministry=parse_text(row.get(COL_MINISTRY)),
        project_id=parse_int(row.get(COL_PROJECT_ID)),
        project_name=parse_text(row.get(COL_PROJECT_NAME)),
        initial_budget=parse_number(_first_present(row, INITIAL_BUDGET_COLUMNS)),
        execution=parse_number(_first_present(row, EXECUTION_COLUMNS)),
        execution_rate=parse_number(row.get(COL_EXECUTION_RATE)),
    )


def to_expenditure_record(row: Dict[str, Any], year: int) -> ExpenditureRecord:
    """支出先・支出情報の行をレコードに変換"""
    return ExpenditureRecord(
        fiscal_year=year,
        project_year=parse_year(row.get(COL_PROJECT_YEAR)),
        ministry=parse_text(row.get(COL_MINISTRY)),
        project_id=parse_int(row.get(COL_PROJECT_ID)),
        project_name=parse_text(row.get(COL_PROJECT_NAME)),
        recipient_name=parse_text(row.get(COL_RECIPIENT_NAME)),
        amount=parse_number(_first_present(row, EXPENDITURE_AMOUNT_COLUMNS)),
        block_id=parse_text(row.get(COL_BLOCK_ID)),
        corporate_number=parse_text(row.get(COL_CORPORATE_NUMBER)),
        location=parse_text(row.get(COL_LOCATION)),
        contract_type=parse_text(row.get(COL_CONTRACT_TYPE)),
        bidders=parse_number(row.get(COL_BIDDERS)),
        fall_rate=parse_number(row.get(COL_FALL_RATE)),
        role=parse_text(row.get(COL_ROLE)),
    )


def to_overview_record(row: Dict[str, Any], year: int) -> OverviewRecord:
    """事業概要の行をレコードに変換"""
    return OverviewRecord(
        fiscal_year=year,
        project_name=parse_text(row.get(COL_PROJECT_NAME)),
        start_year=parse_year(_first_present(row, START_YEAR_COLUMNS)),
        end_year=parse_year(_first_present(row, END_YEAR_COLUMNS)),
    )


def to_block_connection_record(row: Dict[str, Any], year: int) -> BlockConnectionRecord:
    """支出ブロックのつながりの行をレコードに変換"""
    return BlockConnectionRecord(
        fiscal_year=year,
        ministry=parse_text(row.get(COL_MINISTRY)),
        project_id=parse_int(row.get(COL_PROJECT_ID)),
        project_name=parse_text(row.get(COL_PROJECT_NAME)),
        source_block=parse_text(row.get(COL_SOURCE_BLOCK)),
        source_block_name=parse_text(row.get(COL_SOURCE_BLOCK_NAME)),
        target_block=parse_text(row.get(COL_TARGET_BLOCK)),
        target_block_name=parse_text(row.get(COL_TARGET_BLOCK_NAME)),
        from_organization=parse_flag(row.get(COL_FROM_ORGANIZATION)),
    )


RECORD_CONVERTERS: Dict[str, Callable[[Dict[str, Any], int], Any]] = {
    "budget_summary": to_budget_record,
    "expenditure": to_expenditure_record,
    "project_overview": to_overview_record,
    "block_connection": to_block_connection_record,
}


def load_records(year_dir: Path, role: str, year: int) -> List[Any]:
    """
    指定したファイル種別のCSVを読み込んでレコードに変換

    Args:
        year_dir: 年度ディレクトリ
        role: ファイル種別（budget_summary, expenditure, project_overview, block_connection）
        year: 年度

    Returns:
        レコードのリスト（ファイルがない場合は空）
    """
    path = resolve_source_path(year_dir, role, year)
    convert = RECORD_CONVERTERS[role]
    return [convert(row, year) for row in read_csv_rows(path)]


def load_year_sources(year_dir: Path, year: int, max_workers: Optional[int] = None) -> YearSources:
    """
    1年度分のCSVを並列に読み込む

    Args:
        year_dir: 年度ディレクトリ（year_YYYY）
        year: 年度
        max_workers: 読み込みスレッド数

    Returns:
        YearSources

    Raises:
        MissingSourceFileError: 必須ファイル（予算・執行サマリ、支出先）がない場合
    """
    for role in MANDATORY_SOURCES:
        path = resolve_source_path(year_dir, role, year)
        if not path.exists():
            raise MissingSourceFileError(year, path)

    roles = ["budget_summary", "expenditure", "project_overview"]
    # 支出ブロックのつながりはRSシステム形式の年度のみ
    if year >= RS_FORMAT_START_YEAR:
        roles.append("block_connection")

    with ThreadPoolExecutor(max_workers=max_workers or len(roles)) as executor:
        futures = {role: executor.submit(load_records, year_dir, role, year) for role in roles}
        results = {role: future.result() for role, future in futures.items()}

    return YearSources(
        year=year,
        budget=results["budget_summary"],
        expenditure=results["expenditure"],
        overview=results["project_overview"],
        connections=results.get("block_connection", []),
    )
