"""
パイプライン設定

ディレクトリ、対象年度、単位変換、TopN設定、CSVファイル名・カラム名の定義
"""
import os
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent

# ディレクトリ設定（環境変数で上書き可能）
DATA_DIR = Path(os.environ.get("RS_DATA_DIR", PROJECT_ROOT / "data"))
DOWNLOAD_DIR = DATA_DIR / "download"
RAW_DIR = DATA_DIR / "rs_system"
OUTPUT_DIR = Path(os.environ.get("RS_OUTPUT_DIR", PROJECT_ROOT / "public" / "data"))

# 対象年度
AVAILABLE_YEARS = list(range(2014, 2025))
LATEST_YEAR = 2024

# 2014-2023年は百万円単位、2024年以降は1円単位
MILLION_YEN_LAST_YEAR = 2023
MILLION_YEN = 1_000_000

# RSシステム形式（ファイル名・執行率カラム）が始まる年度
RS_FORMAT_START_YEAR = 2024

# サンキー図のTopN設定
TOP_N_MINISTRIES = 10
MAIN_TOP_PROJECTS = 3
MAIN_TOP_RECIPIENTS = 3
MINISTRY_TOP_PROJECTS = 10
PROJECT_TOP_EXPENDITURES = 10

# 予算総計と支出総計の差額ノードを表示する閾値（大きい方の0.1%）
DIFFERENCE_THRESHOLD_RATIO = 0.001

# 事業開始・終了年度として受け付ける範囲
START_YEAR_RANGE = (2000, 2030)
END_YEAR_RANGE = (2000, 2050)

# 支出ブロックのサンキー図のノード数上限
BLOCK_GRAPH_MAX_NODES = 2000

# 並列読み込み・書き込みのスレッド数
MAX_WORKERS = 8

# CSVファイル名（番号, 名称）: {番号}_{年度}_{名称}.csv
SOURCE_FILES = {
    "project_overview": ("1-2", "基本情報_事業概要"),
    "budget_summary": ("2-1", "予算・執行_サマリ"),
    "expenditure": ("5-1", "支出先_支出情報"),
    "block_connection": ("5-2", "支出先_支出ブロックのつながり"),
}

# RSシステム形式で名称が変わったファイル
SOURCE_FILES_RS_FORMAT = {
    "project_overview": ("1-2", "基本情報_事業概要等"),
}

# 欠けていると年度ごとスキップするファイル
MANDATORY_SOURCES = ("budget_summary", "expenditure")

# カラム名（normalize_column_name 適用後の表記）
COL_BUDGET_YEAR = "予算年度"
COL_PROJECT_YEAR = "事業年度"
COL_MINISTRY = "府省庁"
COL_PROJECT_ID = "予算事業ID"
COL_PROJECT_NAME = "事業名"
COL_EXECUTION_RATE = "執行率"
COL_RECIPIENT_NAME = "支出先名"

# 年度により名称が異なるカラム（先頭から順に優先）
INITIAL_BUDGET_COLUMNS = ["当初予算(合計)"]
EXECUTION_COLUMNS = ["執行額(合計)"]
EXPENDITURE_AMOUNT_COLUMNS = ["金額", "支出額(百万円)", "支出額"]
START_YEAR_COLUMNS = ["事業開始年度"]
END_YEAR_COLUMNS = ["事業終了(予定)年度", "事業終了年度"]

# 支出ブロック関連カラム（2024年のみ）
COL_BLOCK_ID = "支出先ブロック番号"
COL_CORPORATE_NUMBER = "法人番号"
COL_LOCATION = "所在地"
COL_CONTRACT_TYPE = "契約方式等"
COL_BIDDERS = "入札者数"
COL_FALL_RATE = "落札率"
COL_ROLE = "事業を行う上での役割"
COL_SOURCE_BLOCK = "支出元の支出先ブロック"
COL_SOURCE_BLOCK_NAME = "支出元の支出先ブロック名"
COL_TARGET_BLOCK = "支出先の支出先ブロック"
COL_TARGET_BLOCK_NAME = "支出先の支出先ブロック名"
COL_FROM_ORGANIZATION = "担当組織からの支出"
