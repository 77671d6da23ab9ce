"""
メインエントリーポイント

ステージ1〜3を順に実行するCLI
"""
import argparse
import logging
import sys
from typing import List, Optional

from config import (
    AVAILABLE_YEARS,
    DATA_DIR,
    DOWNLOAD_DIR,
    OUTPUT_DIR,
    RAW_DIR,
)
from src.pipeline.stages import AVAILABLE_STAGES, PipelineStage

logger = logging.getLogger(__name__)


def _setup_logging():
    """ログ設定（標準出力と pipeline.log）"""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler('pipeline.log', encoding='utf-8'),
        ]
    )


def _ensure_directories():
    """必要なディレクトリを作成"""
    for directory in [DATA_DIR, DOWNLOAD_DIR, RAW_DIR, OUTPUT_DIR]:
        directory.mkdir(parents=True, exist_ok=True)
        logger.info(f"Ensured directory exists: {directory}")


def run_pipeline(
    start_stage: int = 1,
    target_year: Optional[int] = None,
    stages: Optional[List[PipelineStage]] = None,
) -> List[int]:
    """
    指定ステージから最後のステージまで順に実行

    失敗を報告したステージがあっても後続のステージは実行する。
    出力の書き込み失敗（OSError）はそのまま送出する。

    Args:
        start_stage: 開始ステージ番号（1-3）
        target_year: 処理対象年度（指定しない場合は全年度）
        stages: 実行するステージ（指定しない場合は AVAILABLE_STAGES）

    Returns:
        失敗を報告したステージ番号のリスト
    """
    if stages is None:
        stages = AVAILABLE_STAGES

    failed_stages = []
    for stage_num, stage in enumerate(stages[start_stage - 1:], start_stage):
        logger.info(f"Running {stage.name}")
        success = stage.run(logger.debug, target_year)

        if success:
            logger.info(f"{stage.name}: OK")
        else:
            logger.error(f"{stage.name}: FAILED (continuing with later stages)")
            failed_stages.append(stage_num)

    return failed_stages


def cli_main(argv: Optional[List[str]] = None):
    """CLI実行"""
    parser = argparse.ArgumentParser(description="RS Sankey Pipeline CLI")
    parser.add_argument(
        "--stage",
        type=int,
        default=1,
        choices=list(range(1, len(AVAILABLE_STAGES) + 1)),
        help="Start stage (1: extract, 2: year outputs, 3: project series)",
    )
    parser.add_argument(
        "--year",
        type=int,
        default=None,
        choices=list(AVAILABLE_YEARS),
        metavar="YEAR",
        help="Process only specific year (e.g., 2014). If not specified, process all years.",
    )

    args = parser.parse_args(argv)

    _setup_logging()
    _ensure_directories()

    logger.info(f"Starting pipeline from stage {args.stage}")
    if args.year:
        logger.info(f"Processing only year {args.year}")

    try:
        failed_stages = run_pipeline(args.stage, target_year=args.year)
    except OSError:
        # 書き込み失敗は致命的
        logger.exception("Pipeline aborted")
        sys.exit(1)

    if failed_stages:
        logger.error(f"Pipeline finished with failures in stage(s): {failed_stages}")
        sys.exit(1)

    logger.info("Pipeline completed successfully")
    sys.exit(0)


if __name__ == "__main__":
    cli_main()
