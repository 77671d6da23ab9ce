#!/usr/bin/env python3
"""
生成済みサンキー図JSONの整合性チェック

各年度の sankey-main.json / sankey-main-topology-nivo.json について
- リンクが存在しないノードを参照していないか
- 予算総計・支出総計ノードへの流入額がメタデータの合計と一致するか
- TopN府省庁 + その他 の合計が予算総計と一致するか
- リンクが循環していないか（各ノードの段数）
を確認してレポートを出力する
"""
import json
import math
import sys
from pathlib import Path
from typing import Dict, List, Optional

# プロジェクトルートをパスに追加
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from config import DIFFERENCE_THRESHOLD_RATIO, OUTPUT_DIR

GRAPH_FILES = ["sankey-main.json", "sankey-main-topology-nivo.json"]
RELATIVE_TOLERANCE = 1e-6


def topological_depths(graph: Dict) -> Optional[Dict[str, int]]:
    """
    各ノードの段数（流入元からの最長パス長）を計算

    Returns:
        ノードID → 段数（循環がある場合はNone）
    """
    node_ids = [n["id"] for n in graph["nodes"]]
    incoming = {node_id: 0 for node_id in node_ids}
    outgoing: Dict[str, List[str]] = {node_id: [] for node_id in node_ids}
    for link in graph["links"]:
        if link["source"] in outgoing and link["target"] in incoming:
            outgoing[link["source"]].append(link["target"])
            incoming[link["target"]] += 1

    depths = {node_id: 0 for node_id in node_ids}
    queue = [node_id for node_id in node_ids if incoming[node_id] == 0]
    visited = 0

    while queue:
        node_id = queue.pop()
        visited += 1
        for target in outgoing[node_id]:
            depths[target] = max(depths[target], depths[node_id] + 1)
            incoming[target] -= 1
            if incoming[target] == 0:
                queue.append(target)

    if visited != len(node_ids):
        return None
    return depths


def _close(a: float, b: float, rel_tol: float) -> bool:
    return math.isclose(a, b, rel_tol=rel_tol, abs_tol=1e-9)


def check_graph(graph: Dict) -> List[str]:
    """
    サンキー図1件の整合性チェック

    Returns:
        検出した問題の説明（問題がなければ空）
    """
    issues = []
    nodes = {n["id"]: n for n in graph["nodes"]}

    for link in graph["links"]:
        for end in ("source", "target"):
            if link[end] not in nodes:
                issues.append(f"Link {end} not found: {link[end]}")

    inflow: Dict[str, float] = {}
    for link in graph["links"]:
        inflow[link["target"]] = inflow.get(link["target"], 0) + link["value"]

    has_difference = any(n["type"] == "difference" for n in nodes.values())

    for node in nodes.values():
        if node["type"] != "total":
            continue
        metadata = node.get("metadata", {})
        declared = metadata.get("budget", metadata.get("execution", 0))
        # 差額が閾値以下の場合、支出総計への流入は小さい方の額に揃えている
        rel_tol = RELATIVE_TOLERANCE
        if "execution" in metadata and not has_difference:
            rel_tol = DIFFERENCE_THRESHOLD_RATIO
        if not _close(inflow.get(node["id"], 0), declared, rel_tol):
            issues.append(
                f"Total mismatch at {node['id']}: inflow {inflow.get(node['id'], 0):,.0f} "
                f"!= declared {declared:,.0f}"
            )

    budget_total = nodes.get("total_budget")
    if budget_total is not None:
        budget_side = [
            n for n in nodes.values()
            if n["id"].startswith("ministry_budget_") or n["id"] == "ministry_others_budget"
        ]
        combined = sum(n["metadata"]["budget"] for n in budget_side)
        declared = budget_total["metadata"]["budget"]
        if not _close(combined, declared, RELATIVE_TOLERANCE):
            issues.append(f"Top-N + others budget {combined:,.0f} != total {declared:,.0f}")

    if topological_depths(graph) is None:
        issues.append("Links contain a cycle")

    return issues


def check_year(year_dir: Path) -> Dict[str, List[str]]:
    """年度ディレクトリ内のサンキー図をチェック（ファイル名 → 問題リスト）"""
    results = {}
    for filename in GRAPH_FILES:
        path = year_dir / filename
        if not path.exists():
            continue
        with open(path, encoding='utf-8') as f:
            graph = json.load(f)
        results[filename] = check_graph(graph)
    return results


def main(output_dir: Path = OUTPUT_DIR) -> int:
    print("=" * 80)
    print("サンキー図の整合性チェック")
    print("=" * 80)
    print()

    total_issues = 0
    for year_dir in sorted(output_dir.glob("year_*")):
        results = check_year(year_dir)
        if not results:
            print(f"【{year_dir.name}】 サンキー図未生成")
            continue

        print(f"【{year_dir.name}】")
        for filename, issues in results.items():
            status = "✓" if not issues else "✗"
            print(f"  {status} {filename}: {len(issues)}件")
            for issue in issues[:10]:
                print(f"    ⚠️ {issue}")
            total_issues += len(issues)
        print()

    print("=" * 80)
    print(f"検出した問題: {total_issues}件")
    print("=" * 80)
    return 1 if total_issues else 0


if __name__ == "__main__":
    sys.exit(main())
