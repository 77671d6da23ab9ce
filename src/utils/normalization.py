"""
テキスト正規化ユーティリティ

CSVヘッダーの表記揺れ（全角/半角括弧、改行、空白）、和暦年度、数値セルを処理
"""
import math
import re
import unicodedata
from typing import Any, Optional

import neologdn
import pandas as pd


# 和暦→西暦変換用の正規表現パターン
RE_WAREKI_SINGLE = re.compile(
    r'(明治|大正|昭和|平成|令和|M|T|S|H|R)(\d{1,2}|元)年'
)

RE_WAREKI_RANGE = re.compile(
    r'(明治|大正|昭和|平成|令和|M|T|S|H|R)(\d{1,2}|元)[-~〜～](\d{1,2})年'
)

# 和暦開始年の定義
WAREKI_START_YEARS = {
    '明治': 1868, 'M': 1868,
    '大正': 1912, 'T': 1912,
    '昭和': 1926, 'S': 1926,
    '平成': 1989, 'H': 1989,
    '令和': 2019, 'R': 2019,
}

RE_SEIREKI_YEAR = re.compile(r'\d{4}')

# 真偽値として扱うセルの値
TRUE_VALUES = {'true', '1', '○', '〇', 'はい', 'yes'}


def convert_wareki_to_seireki(text: str) -> str:
    """
    和暦を西暦に変換

    例:
        - 平成25年 → 2013年
        - H25年 → 2013年
        - 平成25〜28年 → 2013〜2016年
        - 令和元年 → 2019年

    Args:
        text: 変換対象のテキスト

    Returns:
        変換後のテキスト
    """
    # 範囲指定の和暦（例：平成25〜28年）
    def replace_range(match):
        era = match.group(1)
        start_year = match.group(2)
        end_year = match.group(3)

        base_year = WAREKI_START_YEARS[era]

        # "元年" の処理
        if start_year == '元':
            start_year = '1'

        seireki_start = base_year + int(start_year) - 1
        seireki_end = base_year + int(end_year) - 1
        return f"{seireki_start}〜{seireki_end}年"

    # 単一の和暦（例：平成25年）
    def replace_single(match):
        era = match.group(1)
        year = match.group(2)

        base_year = WAREKI_START_YEARS[era]

        if year == '元':
            year = '1'

        return f"{base_year + int(year) - 1}年"

    # 範囲指定を先に処理
    text = RE_WAREKI_RANGE.sub(replace_range, text)
    text = RE_WAREKI_SINGLE.sub(replace_single, text)

    return text


def normalize_column_name(column: str) -> str:
    """
    カラム名の正規化

    neologdn と NFKC で全角/半角を統一し（例: 当初予算（合計）→ 当初予算(合計)）、
    改行、タブ、連続空白を削除して前後の空白をトリミング

    Args:
        column: カラム名

    Returns:
        正規化されたカラム名
    """
    if not isinstance(column, str):
        return column

    # 改行・タブを空白に変換
    column = column.replace('\n', ' ').replace('\r', ' ').replace('\t', ' ')

    column = neologdn.normalize(column)
    column = unicodedata.normalize('NFKC', column)

    # 連続空白を1つに
    column = re.sub(r'\s+', ' ', column)

    return column.strip()


def is_blank(value: Any) -> bool:
    """空欄（None、NaN、空文字）かどうか"""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ''
    return bool(pd.isna(value))


def parse_text(value: Any) -> Optional[str]:
    """文字列セルを解析（空欄はNone）"""
    if is_blank(value):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def parse_number(value: Any) -> Optional[float]:
    """数値を解析"""
    if is_blank(value):
        return None

    if isinstance(value, bool):
        return float(value)

    if isinstance(value, (int, float)):
        return float(value)

    if isinstance(value, str):
        # カンマを削除して数値に変換
        cleaned = value.replace(',', '').replace('円', '').strip()
        try:
            number = float(cleaned)
        except ValueError:
            return None
        # "nan" や "inf" の文字列は欠損扱い
        return number if math.isfinite(number) else None

    return None


def parse_int(value: Any) -> Optional[int]:
    """整数を解析（予算事業IDなど）"""
    number = parse_number(value)
    if number is None or not number.is_integer():
        return None
    return int(number)


def parse_year(value: Any) -> Optional[int]:
    """
    年度を解析

    西暦4桁の数値・文字列、和暦表記（平成25年度、令和元年度）に対応

    Args:
        value: セルの値

    Returns:
        西暦年（解析できない場合はNone）
    """
    if is_blank(value):
        return None

    if isinstance(value, (int, float)):
        return int(value)

    if isinstance(value, str):
        text = convert_wareki_to_seireki(unicodedata.normalize('NFKC', value))
        match = RE_SEIREKI_YEAR.search(text)
        if match:
            return int(match.group(0))

    return None


def parse_flag(value: Any) -> bool:
    """真偽値セルを解析"""
    if is_blank(value):
        return False
    return str(value).strip().lower() in TRUE_VALUES


def extract_year_from_filename(filename: str) -> Optional[int]:
    """
    ファイル名から年度を抽出

    Args:
        filename: ファイル名（例: RS_2024.zip, database2014.xlsx）

    Returns:
        年度（抽出できない場合はNone）
    """
    match = re.search(r'(20\d{2})', filename)
    if match:
        return int(match.group(1))

    return None
