"""
パイプラインステージ定義

各ステージの処理ロジックを定義
"""
import logging
import zipfile
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pandas as pd
from openpyxl import load_workbook

from config import (
    AVAILABLE_YEARS,
    BLOCK_GRAPH_MAX_NODES,
    DOWNLOAD_DIR,
    LATEST_YEAR,
    MAX_WORKERS,
    OUTPUT_DIR,
    RAW_DIR,
)
from src.pipeline.aggregator import YearAggregator
from src.pipeline.csv_loader import MissingSourceFileError, load_year_sources
from src.pipeline.project_series import build_project_index, build_project_time_series
from src.pipeline.sankey_builder import SankeyBuilder, to_renderer_format
from src.pipeline.writer import write_project_outputs, write_year_outputs
from src.utils.normalization import extract_year_from_filename

logger = logging.getLogger(__name__)


def build_year_outputs(year: int, sources) -> Dict[str, Any]:
    """
    1年度分の出力データを構築

    Args:
        year: 年度
        sources: load_year_sources() の結果

    Returns:
        出力ファイル名 → 内容
    """
    aggregator = YearAggregator(year)
    aggregates = aggregator.aggregate(sources.budget, sources.expenditure)
    builder = SankeyBuilder(year)

    logger.info(f"  - Ministries: {len(aggregates)}")

    outputs = {
        "sankey-main-topology-nivo.json": to_renderer_format(builder.build_topology_graph(aggregates)),
        "sankey-main.json": builder.build_main_graph(aggregates),
        "statistics.json": aggregator.calculate_statistics(sources.budget, sources.expenditure, aggregates),
        "ministries.json": aggregator.extract_ministries(sources.budget),
        "project-expenditures.json": aggregator.build_project_expenditures(aggregates),
        "ministry-projects.json": aggregator.build_ministry_projects(aggregates),
    }

    # 支出ブロックのつながりは最新年度のみ
    if year == LATEST_YEAR and sources.connections:
        outputs["sankey-blocks.json"] = builder.build_block_graph(
            sources.connections,
            aggregator.current_expenditure_rows(sources.expenditure),
            max_nodes=BLOCK_GRAPH_MAX_NODES,
        )

    return outputs


def process_year_data(year: int, year_dir: Path, output_dir: Path) -> List[Path]:
    """
    年度データを読み込み、集計してJSONを出力

    Args:
        year: 年度
        year_dir: 入力CSVの年度ディレクトリ（year_YYYY）
        output_dir: 出力ルートディレクトリ

    Returns:
        保存したファイルのパス

    Raises:
        MissingSourceFileError: 必須のCSVがない場合
        OSError: 出力の書き込みに失敗した場合
    """
    sources = load_year_sources(year_dir, year, MAX_WORKERS)
    outputs = build_year_outputs(year, sources)
    return write_year_outputs(output_dir, year, outputs)


def process_project_series(raw_dir: Path, output_dir: Path, years: List[int]) -> int:
    """
    全年度のCSVから事業別時系列データを構築して出力

    Returns:
        出力した事業数
    """
    budget_by_year = {}
    overview_by_year = {}
    expenditure_by_year = {}

    for year in years:
        try:
            sources = load_year_sources(raw_dir / f"year_{year}", year, MAX_WORKERS)
        except MissingSourceFileError as e:
            logger.warning(f"Skipping year {year}: {e}")
            continue
        budget_by_year[year] = sources.budget
        overview_by_year[year] = sources.overview
        expenditure_by_year[year] = sources.expenditure

    projects = build_project_time_series(budget_by_year, overview_by_year, expenditure_by_year)
    index = build_project_index(projects)
    return write_project_outputs(output_dir, projects, index)


class PipelineStage:
    """パイプラインステージの基底クラス"""

    def __init__(self, name: str, description: str):
        self.name = name
        self.description = description

    def run(self, update_callback: Optional[Callable] = None, target_year: Optional[int] = None) -> bool:
        """
        ステージを実行

        Args:
            update_callback: 進捗更新用のコールバック関数
            target_year: 処理対象年度（指定しない場合は全年度）

        Returns:
            成功した場合True
        """
        raise NotImplementedError


class Stage01_ExtractToCSV(PipelineStage):
    """Stage 1: ZIP/Excel → 年度別CSV"""

    def __init__(self, download_dir: Path = DOWNLOAD_DIR, raw_dir: Path = RAW_DIR):
        super().__init__(
            name="Stage 1: Extract to CSV",
            description="ダウンロードしたZIP/Excelファイルを年度別のCSVに展開"
        )
        self.download_dir = download_dir
        self.raw_dir = raw_dir

    def run(self, update_callback: Optional[Callable] = None, target_year: Optional[int] = None) -> bool:
        """ZIP/Excelファイルを year_YYYY/ 以下のCSVに展開"""
        logger.info(f"Starting {self.name}")
        if target_year:
            logger.info(f"Processing only year {target_year}")

        files = []
        if self.download_dir.exists():
            files = sorted(
                list(self.download_dir.glob("*.zip")) + list(self.download_dir.glob("*.xlsx"))
            )

        if not files:
            # 展開済みの年度別CSVがあればそのまま次のステージへ
            if self._has_year_dirs():
                logger.info(f"No Excel/ZIP files in {self.download_dir}, using existing CSVs in {self.raw_dir}")
                return True
            logger.error(f"No Excel/ZIP files found in {self.download_dir} and no year directories in {self.raw_dir}")
            return False

        failed = 0
        total_files = len(files)

        for idx, file_path in enumerate(files, 1):
            year = extract_year_from_filename(file_path.name)
            if year is None:
                logger.warning(f"Cannot extract year from {file_path.name}, skipped")
                continue
            if target_year and year != target_year:
                continue

            if update_callback:
                update_callback(f"Extracting {file_path.name} ({idx}/{total_files})")
            logger.info(f"Processing: {file_path.name}")

            year_dir = self.raw_dir / f"year_{year}"
            year_dir.mkdir(parents=True, exist_ok=True)

            try:
                if file_path.suffix == '.zip':
                    self._extract_zip(file_path, year_dir)
                else:
                    self._extract_excel_to_csv(file_path, year, year_dir)
            except (OSError, zipfile.BadZipFile, ValueError) as e:
                logger.error(f"Error processing {file_path.name}: {e}")
                failed += 1

        logger.info(f"Completed {self.name}: {total_files} files, {failed} failed")
        return failed == 0

    def _has_year_dirs(self) -> bool:
        """year_YYYY ディレクトリが既にあるか"""
        if not self.raw_dir.exists():
            return False
        return any(path.is_dir() for path in self.raw_dir.glob("year_*"))

    def _extract_zip(self, zip_path: Path, year_dir: Path):
        """ZIP内のCSVはそのまま、Excelはシートごとに変換して年度ディレクトリに展開"""
        year = extract_year_from_filename(zip_path.name)

        with zipfile.ZipFile(zip_path, 'r') as zip_ref:
            for member in zip_ref.infolist():
                if member.is_dir():
                    continue
                # サブディレクトリは無視して年度ディレクトリ直下に置く
                filename = Path(member.filename).name
                suffix = Path(filename).suffix.lower()
                if suffix not in ('.csv', '.xlsx'):
                    continue

                target = year_dir / filename
                with zip_ref.open(member) as src, open(target, 'wb') as dst:
                    dst.write(src.read())
                logger.info(f"  Extracted: {filename}")

                if suffix == '.xlsx':
                    self._extract_excel_to_csv(target, year, year_dir)

    def _extract_excel_to_csv(self, excel_path: Path, year: int, output_dir: Path):
        """ExcelファイルをシートごとにCSVに変換"""
        wb = load_workbook(excel_path, read_only=True, data_only=True)
        try:
            sheet_names = wb.sheetnames
        finally:
            wb.close()

        for sheet_name in sheet_names:
            logger.info(f"  Processing sheet: {sheet_name}")
            df = pd.read_excel(excel_path, sheet_name=sheet_name, dtype=str)

            # シート名に年度が含まれない場合は付与する
            csv_filename = f"{sheet_name}.csv" if str(year) in sheet_name else f"{year}_{sheet_name}.csv"
            df.to_csv(output_dir / csv_filename, index=False, encoding='utf-8-sig')
            logger.info(f"    Saved: {csv_filename}")


class Stage02_BuildYearOutputs(PipelineStage):
    """Stage 2: 年度別のサンキー図・統計データ"""

    def __init__(self, raw_dir: Path = RAW_DIR, output_dir: Path = OUTPUT_DIR):
        super().__init__(
            name="Stage 2: Build Year Outputs",
            description="年度ごとにサンキー図、統計情報、府省庁・事業別データを生成"
        )
        self.raw_dir = raw_dir
        self.output_dir = output_dir

    def run(self, update_callback: Optional[Callable] = None, target_year: Optional[int] = None) -> bool:
        """年度ごとに集計してJSONを出力"""
        logger.info(f"Starting {self.name}")
        if target_year:
            logger.info(f"Processing only year {target_year}")

        if not self.raw_dir.exists():
            logger.error(f"Raw directory not found: {self.raw_dir}")
            return False

        years = [target_year] if target_year else AVAILABLE_YEARS

        processed = 0
        skipped = 0
        failed = 0

        for year in years:
            if update_callback:
                update_callback(f"Processing year {year}")
            logger.info(f"Processing year_{year}")

            try:
                process_year_data(year, self.raw_dir / f"year_{year}", self.output_dir)
                processed += 1
            except MissingSourceFileError as e:
                logger.warning(f"Skipping year {year}: {e}")
                skipped += 1
            except OSError:
                # 書き込み失敗は致命的
                raise
            except Exception:
                logger.exception(f"Error processing year {year}")
                failed += 1

        logger.info(
            f"Completed {self.name}: {processed} processed, "
            f"{skipped} skipped, {failed} failed"
        )
        return failed == 0


class Stage03_BuildProjectSeries(PipelineStage):
    """Stage 3: 事業別の時系列データ"""

    def __init__(self, raw_dir: Path = RAW_DIR, output_dir: Path = OUTPUT_DIR):
        super().__init__(
            name="Stage 3: Build Project Series",
            description="全年度を事業名で紐付け、事業別の時系列データとインデックスを生成"
        )
        self.raw_dir = raw_dir
        self.output_dir = output_dir

    def run(self, update_callback: Optional[Callable] = None, target_year: Optional[int] = None) -> bool:
        """事業別時系列データを出力"""
        logger.info(f"Starting {self.name}")
        if target_year:
            logger.info("Year filter ignored: project series always spans all years")

        if not self.raw_dir.exists():
            logger.error(f"Raw directory not found: {self.raw_dir}")
            return False

        if update_callback:
            update_callback("Building project time series")

        count = process_project_series(self.raw_dir, self.output_dir, AVAILABLE_YEARS)

        logger.info(f"Completed {self.name}: {count} projects")
        return True


# 利用可能なステージのリスト
AVAILABLE_STAGES = [
    Stage01_ExtractToCSV(),
    Stage02_BuildYearOutputs(),
    Stage03_BuildProjectSeries(),
]
