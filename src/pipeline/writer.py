"""
JSON出力

書き込みは一時ファイルに書いてから置き換えるため、途中で失敗しても
既存の出力ファイルが壊れることはない
"""
import json
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, List

from tqdm import tqdm

from config import MAX_WORKERS
from src.pipeline.project_series import ProjectTimeSeries

logger = logging.getLogger(__name__)

PROJECT_INDEX_FILENAME = "project-index.json"
PROJECTS_DIRNAME = "projects"


def write_json(output_path: Path, data: Any) -> None:
    """
    JSONファイルを保存（UTF-8、ensure_ascii=False、インデント2）

    Raises:
        OSError: 書き込みに失敗した場合
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = output_path.with_name(output_path.name + ".tmp")

    try:
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        os.replace(tmp_path, output_path)
    except OSError:
        if tmp_path.exists():
            tmp_path.unlink()
        raise

    logger.debug(f"Saved: {output_path}")


def write_year_outputs(output_dir: Path, year: int, outputs: Dict[str, Any]) -> List[Path]:
    """
    年度別の出力ファイルを year_YYYY/ に保存

    Args:
        output_dir: 出力ルートディレクトリ
        year: 年度
        outputs: ファイル名 → 内容

    Returns:
        保存したファイルのパス
    """
    year_dir = output_dir / f"year_{year}"
    saved = []
    for filename, data in outputs.items():
        path = year_dir / filename
        write_json(path, data)
        saved.append(path)
        logger.info(f"  Saved: {path.relative_to(output_dir)}")
    return saved


def write_project_outputs(
    output_dir: Path,
    projects: Dict[str, ProjectTimeSeries],
    index: List[Dict],
    max_workers: int = MAX_WORKERS,
) -> int:
    """
    事業インデックスと事業別ファイル（projects/<projectKey>.json）を保存

    Returns:
        保存した事業ファイル数
    """
    write_json(output_dir / PROJECT_INDEX_FILENAME, index)
    logger.info(f"  Saved: {PROJECT_INDEX_FILENAME} ({len(index)} projects)")

    projects_dir = output_dir / PROJECTS_DIRNAME

    def save(project: ProjectTimeSeries) -> None:
        write_json(projects_dir / f"{project.project_key}.json", project.to_dict())

    items = list(projects.values())
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        # 書き込みの例外は map の反復時に送出される
        for _ in tqdm(executor.map(save, items), total=len(items), desc="  Writing projects", leave=False):
            pass

    logger.info(f"  Saved: {len(items)} project files")
    return len(items)
