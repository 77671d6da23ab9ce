"""
サンキー図データ構築

府省庁別の集計結果からノード・リンク構造を生成する

- build_main_graph: 6列（事業 → 府省庁(予算) → 予算総計 → 支出総計 → 府省庁(支出) → 支出先）、
  各ノードに column を付与
- build_topology_graph: 4列（府省庁(予算) → 予算総計 → 支出総計 → 府省庁(支出)）、
  column を持たずリンク構造のみで列配置が決まる
- build_block_graph: 支出ブロックのつながり（2024年のみ）
"""
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from config import (
    DIFFERENCE_THRESHOLD_RATIO,
    MAIN_TOP_PROJECTS,
    MAIN_TOP_RECIPIENTS,
    TOP_N_MINISTRIES,
)
from src.pipeline.aggregator import MinistryAggregate
from src.pipeline.records import BlockConnectionRecord, ExpenditureRecord
from src.utils.amount import normalize_amount

logger = logging.getLogger(__name__)

BUDGET_TOTAL_ID = "total_budget"
EXECUTION_TOTAL_ID = "total_execution"
OTHERS_BUDGET_ID = "ministry_others_budget"
OTHERS_EXECUTION_ID = "ministry_others_execution"
DIFFERENCE_BUDGET_EXCESS_ID = "difference_budget_excess"
DIFFERENCE_EXECUTION_EXCESS_ID = "difference_execution_excess"

# 6列版の列番号
COLUMN_PROJECT = 0
COLUMN_MINISTRY_BUDGET = 1
COLUMN_BUDGET_TOTAL = 2
COLUMN_EXECUTION_TOTAL = 3
COLUMN_MINISTRY_EXECUTION = 4
COLUMN_RECIPIENT = 5


def ministry_node_id(ministry: str, side: str) -> str:
    """府省庁ノードID（side: budget / execution）"""
    return f"ministry_{side}_{ministry}"


def split_top_n(items: Sequence, n: int, key) -> Tuple[List, List]:
    """key の降順で並べ、上位n件と残りに分ける"""
    ranked = sorted(items, key=key, reverse=True)
    return ranked[:n], ranked[n:]


def _node(node_id: str, name: str, node_type: str, metadata: Dict, column: Optional[int] = None) -> Dict:
    node = {"id": node_id, "name": name, "type": node_type}
    if column is not None:
        node["column"] = column
    node["metadata"] = metadata
    return node


def _link(source: str, target: str, value: float) -> Dict:
    return {"source": source, "target": target, "value": value}


def _ministry_list(ministries: List[MinistryAggregate]) -> List[Dict]:
    return [{"name": m.name, "budget": m.budget, "execution": m.execution} for m in ministries]


class SankeyBuilder:
    """サンキー図構築クラス"""

    def __init__(
        self,
        year: int,
        top_n_ministries: int = TOP_N_MINISTRIES,
        top_n_projects: int = MAIN_TOP_PROJECTS,
        top_n_recipients: int = MAIN_TOP_RECIPIENTS,
    ):
        self.year = year
        self.top_n_ministries = top_n_ministries
        self.top_n_projects = top_n_projects
        self.top_n_recipients = top_n_recipients

    def _build_core(self, aggregates: Dict[str, MinistryAggregate], with_columns: bool) -> Tuple[List, List, Tuple]:
        """
        府省庁(予算) → 予算総計 → 支出総計 → 府省庁(支出) の4段を構築

        予算側・支出側それぞれ独立にTopN府省庁を選び、残りは「その他」ノードに集約する

        Returns:
            (ノード, リンク, (予算Top, 予算その他, 支出Top, 支出その他))
        """
        def column(index: int) -> Optional[int]:
            return index if with_columns else None

        nodes: List[Dict] = []
        links: List[Dict] = []
        ministries = list(aggregates.values())

        total_budget = sum(m.budget for m in ministries)
        total_execution = sum(m.execution for m in ministries)

        # 予算側: Top府省庁 + その他
        top_budget, other_budget = split_top_n(ministries, self.top_n_ministries, key=lambda m: m.budget)
        for ministry in top_budget:
            node_id = ministry_node_id(ministry.name, "budget")
            nodes.append(_node(
                node_id, ministry.name, "ministry",
                {"ministry": ministry.name, "budget": ministry.budget, "execution": ministry.execution},
                column(COLUMN_MINISTRY_BUDGET),
            ))
            links.append(_link(node_id, BUDGET_TOTAL_ID, ministry.budget))

        if other_budget:
            others_budget = sum(m.budget for m in other_budget)
            nodes.append(_node(
                OTHERS_BUDGET_ID, f"その他{len(other_budget)}府省庁", "others",
                {
                    "ministry": "その他府省庁",
                    "budget": others_budget,
                    "execution": sum(m.execution for m in other_budget),
                    "ministryList": _ministry_list(other_budget),
                },
                column(COLUMN_MINISTRY_BUDGET),
            ))
            links.append(_link(OTHERS_BUDGET_ID, BUDGET_TOTAL_ID, others_budget))

        nodes.append(_node(
            BUDGET_TOTAL_ID, "予算総計", "total", {"budget": total_budget}, column(COLUMN_BUDGET_TOTAL)
        ))
        nodes.append(_node(
            EXECUTION_TOTAL_ID, "支出総計", "total", {"execution": total_execution}, column(COLUMN_EXECUTION_TOTAL)
        ))

        nodes_diff, links_diff = self._build_difference(total_budget, total_execution, column)
        nodes.extend(nodes_diff)
        links.extend(links_diff)

        # 支出側: Top府省庁 + その他（支出額でソート）
        top_execution, other_execution = split_top_n(
            ministries, self.top_n_ministries, key=lambda m: m.execution
        )
        for ministry in top_execution:
            node_id = ministry_node_id(ministry.name, "execution")
            nodes.append(_node(
                node_id, ministry.name, "ministry",
                {"ministry": ministry.name, "execution": ministry.execution, "budget": ministry.budget},
                column(COLUMN_MINISTRY_EXECUTION),
            ))
            links.append(_link(EXECUTION_TOTAL_ID, node_id, ministry.execution))

        if other_execution:
            others_execution = sum(m.execution for m in other_execution)
            nodes.append(_node(
                OTHERS_EXECUTION_ID, f"その他{len(other_execution)}府省庁", "others",
                {
                    "ministry": "その他府省庁",
                    "execution": others_execution,
                    "budget": sum(m.budget for m in other_execution),
                    "ministryList": _ministry_list(other_execution),
                },
                column(COLUMN_MINISTRY_EXECUTION),
            ))
            links.append(_link(EXECUTION_TOTAL_ID, OTHERS_EXECUTION_ID, others_execution))

        return nodes, links, (top_budget, other_budget, top_execution, other_execution)

    def _build_difference(self, total_budget: float, total_execution: float, column) -> Tuple[List, List]:
        """
        予算総計と支出総計の差額を調整

        - 予算超過: 予算総計 → 支出総計（支出額）、予算総計 → 差額
        - 支出超過: 予算総計 → 支出総計（予算額）、差額 → 支出総計
        - 差額が閾値以下: 予算総計 → 支出総計（小さい方の額）
        """
        difference = abs(total_budget - total_execution)
        threshold = max(total_budget, total_execution) * DIFFERENCE_THRESHOLD_RATIO

        if difference <= threshold:
            return [], [_link(BUDGET_TOTAL_ID, EXECUTION_TOTAL_ID, min(total_budget, total_execution))]

        if total_budget > total_execution:
            direction = "budget-excess"
            node_id = DIFFERENCE_BUDGET_EXCESS_ID
            name = "差額（予算超過）"
            node_column = column(COLUMN_EXECUTION_TOTAL)
            links = [
                _link(BUDGET_TOTAL_ID, EXECUTION_TOTAL_ID, total_execution),
                _link(BUDGET_TOTAL_ID, node_id, difference),
            ]
        else:
            direction = "execution-excess"
            node_id = DIFFERENCE_EXECUTION_EXCESS_ID
            name = "差額（支出超過）"
            node_column = column(COLUMN_BUDGET_TOTAL)
            links = [
                _link(BUDGET_TOTAL_ID, EXECUTION_TOTAL_ID, total_budget),
                _link(node_id, EXECUTION_TOTAL_ID, difference),
            ]

        node = _node(node_id, name, "difference", {
            "differenceData": {
                "budgetTotal": total_budget,
                "executionTotal": total_execution,
                "difference": difference,
                "direction": direction,
            },
        }, node_column)
        return [node], links

    def build_topology_graph(self, aggregates: Dict[str, MinistryAggregate]) -> Dict:
        """
        トポロジーベースの4列サンキー図

        ノードに column を持たせず、リンク構造（府省庁(予算) → 予算総計 → 支出総計 → 府省庁(支出)）
        だけで列配置が決まるようにする

        Args:
            aggregates: 府省庁別の集計結果

        Returns:
            {"nodes": [...], "links": [...]}
        """
        nodes, links, _ = self._build_core(aggregates, with_columns=False)
        return {"nodes": nodes, "links": links}

    def build_main_graph(self, aggregates: Dict[str, MinistryAggregate]) -> Dict:
        """
        6列メインサンキー図

        列0: 府省庁ごとの事業TopN（+ その他）
        列1: 府省庁別予算合計
        列2: 予算総計
        列3: 支出総計
        列4: 府省庁別支出合計
        列5: 府省庁ごとの支出先TopN（+ その他）

        Args:
            aggregates: 府省庁別の集計結果

        Returns:
            {"nodes": [...], "links": [...]}
        """
        nodes, links, sides = self._build_core(aggregates, with_columns=True)
        top_budget, other_budget, top_execution, other_execution = sides

        # 列0: 事業 → 府省庁(予算)
        for ministry in top_budget:
            target = ministry_node_id(ministry.name, "budget")
            projects = list(ministry.projects.values())
            top_projects, other_projects = split_top_n(projects, self.top_n_projects, key=lambda p: p.budget)

            for project in top_projects:
                if project.budget <= 0:
                    continue
                node_id = f"project_{project.project_id}"
                nodes.append(_node(node_id, project.name, "project", {
                    "ministry": ministry.name,
                    "projectId": project.project_id,
                    "projectName": project.name,
                    "budget": project.budget,
                    "execution": project.execution,
                }, COLUMN_PROJECT))
                links.append(_link(node_id, target, project.budget))

            self._append_project_others(
                nodes, links, f"project_others_{ministry.name}", ministry.name, other_projects, target
            )

        if other_budget:
            collapsed = [p for m in other_budget for p in m.projects.values()]
            self._append_project_others(
                nodes, links, "project_others_ministries", "その他府省庁", collapsed, OTHERS_BUDGET_ID
            )

        # 列5: 府省庁(支出) → 支出先
        for ministry in top_execution:
            source = ministry_node_id(ministry.name, "execution")
            recipients = ministry.recipient_totals()
            top_recipients = recipients[:self.top_n_recipients]
            other_recipients = recipients[self.top_n_recipients:]

            for name, amount in top_recipients:
                node_id = f"recipient_{ministry.name}_{name}"
                nodes.append(_node(node_id, name, "recipient", {
                    "ministry": ministry.name,
                    "spendingName": name,
                    "amount": amount,
                }, COLUMN_RECIPIENT))
                links.append(_link(source, node_id, amount))

            self._append_recipient_others(
                nodes, links, f"recipient_others_{ministry.name}", ministry.name, other_recipients, source
            )

        if other_execution:
            totals: Dict[str, float] = {}
            for ministry in other_execution:
                for name, amount in ministry.recipient_totals():
                    totals[name] = totals.get(name, 0) + amount
            collapsed = sorted(totals.items(), key=lambda item: item[1], reverse=True)
            self._append_recipient_others(
                nodes, links, "recipient_others_ministries", "その他府省庁", collapsed, OTHERS_EXECUTION_ID
            )

        return {"nodes": nodes, "links": links}

    def _append_project_others(self, nodes, links, node_id, ministry, projects, target):
        total = sum(p.budget for p in projects)
        if total <= 0:
            return
        nodes.append(_node(node_id, f"その他{len(projects)}事業", "others", {
            "ministry": ministry,
            "budget": total,
            "projectCount": len(projects),
            "projectList": [
                {"name": p.name, "budget": p.budget, "ministry": p.ministry, "projectId": p.project_id}
                for p in sorted(projects, key=lambda p: p.budget, reverse=True)
            ],
        }, COLUMN_PROJECT))
        links.append(_link(node_id, target, total))

    def _append_recipient_others(self, nodes, links, node_id, ministry, recipients, source):
        total = sum(amount for _, amount in recipients)
        if total <= 0:
            return
        nodes.append(_node(node_id, f"その他{len(recipients)}支出先", "others", {
            "ministry": ministry,
            "amount": total,
            "spendingList": [{"name": name, "amount": amount} for name, amount in recipients],
        }, COLUMN_RECIPIENT))
        links.append(_link(source, node_id, total))

    def build_block_graph(
        self,
        connections: List[BlockConnectionRecord],
        expenditure_records: List[ExpenditureRecord],
        ministry_filter: Optional[str] = None,
        max_nodes: Optional[int] = None,
    ) -> Dict:
        """
        支出ブロックのつながりからサンキー図を構築

        ブロックIDは事業ごとに振られているため「block_{予算事業ID}_{ブロック}」で一意にする。
        担当組織からの支出は府省庁ノードを起点とする。

        Args:
            connections: 支出ブロックのつながり
            expenditure_records: 支出先のレコード
            ministry_filter: 指定した府省庁のみに絞り込む
            max_nodes: ノード数の上限（府省庁・ブロックは必ず残し、支出先を金額順に削る）

        Returns:
            {"nodes": [...], "links": [...]}
        """
        if ministry_filter:
            connections = [c for c in connections if c.ministry == ministry_filter]
            expenditure_records = [r for r in expenditure_records if r.ministry == ministry_filter]

        nodes: Dict[str, Dict] = {}
        links: List[Dict] = []

        def block_id(project_id, block) -> str:
            return f"block_{project_id}_{block}"

        # ブロックごとの合計支出額、ブロック → 支出先の金額
        block_totals: Dict[str, float] = {}
        recipient_links: Dict[Tuple[str, str], float] = {}

        for record in expenditure_records:
            if record.project_id is None or not record.block_id:
                continue
            amount = normalize_amount(record.amount, record.fiscal_year)
            if amount <= 0:
                continue

            source = block_id(record.project_id, record.block_id)
            block_totals[source] = block_totals.get(source, 0) + amount

            if not record.recipient_name:
                continue
            recipient_id = f"recipient_{record.project_id}_{record.block_id}_{record.recipient_name}"
            if recipient_id not in nodes:
                nodes[recipient_id] = _node(recipient_id, record.recipient_name, "recipient", {
                    "ministry": record.ministry,
                    "location": record.location,
                    "corporateNumber": record.corporate_number,
                    "projectId": record.project_id,
                    "projectName": record.project_name,
                })
            key = (source, recipient_id)
            recipient_links[key] = recipient_links.get(key, 0) + amount

        block_links: Dict[Tuple[str, str], float] = {}
        for connection in connections:
            # 府省庁が空欄の行は除外
            if connection.project_id is None or not connection.target_block or not connection.ministry:
                continue

            if connection.from_organization or not connection.source_block:
                source = f"ministry_{connection.ministry}"
                source_name = connection.ministry
                source_type = "ministry"
            else:
                source = block_id(connection.project_id, connection.source_block)
                source_name = connection.source_block_name or connection.source_block
                source_type = "block"
            target = block_id(connection.project_id, connection.target_block)

            metadata = {
                "ministry": connection.ministry,
                "projectId": connection.project_id,
                "projectName": connection.project_name,
            }
            if source not in nodes:
                nodes[source] = _node(source, source_name, source_type, dict(metadata))
            if target not in nodes:
                nodes[target] = _node(
                    target, connection.target_block_name or connection.target_block, "block", dict(metadata)
                )

            amount = block_totals.get(target, 0)
            if amount > 0:
                block_links[(source, target)] = amount

        links.extend(_link(s, t, v) for (s, t), v in block_links.items())
        # 支出ブロックのつながりにないブロックからの支出は除外
        links.extend(_link(s, t, v) for (s, t), v in recipient_links.items() if s in nodes)

        linked = {l["target"] for l in links}
        final_nodes = [n for n in nodes.values() if n["type"] != "recipient" or n["id"] in linked]
        if max_nodes and len(final_nodes) > max_nodes:
            final_nodes, links = self._limit_nodes(final_nodes, links, max_nodes)

        logger.info(f"  - Block graph: {len(final_nodes)} nodes, {len(links)} links")
        return {"nodes": final_nodes, "links": links}

    def _limit_nodes(self, nodes: List[Dict], links: List[Dict], max_nodes: int) -> Tuple[List, List]:
        """府省庁・ブロックを優先して残し、支出先は流入額の大きい順に上限まで残す"""
        inflow: Dict[str, float] = {}
        for link in links:
            inflow[link["target"]] = inflow.get(link["target"], 0) + link["value"]

        priority = [n for n in nodes if n["type"] in ("ministry", "block")]
        recipients = sorted(
            (n for n in nodes if n["type"] == "recipient"),
            key=lambda n: inflow.get(n["id"], 0),
            reverse=True,
        )
        kept = priority + recipients[:max(0, max_nodes - len(priority))]
        node_ids = {n["id"] for n in kept}
        return kept, [l for l in links if l["source"] in node_ids and l["target"] in node_ids]


def to_renderer_format(graph: Dict) -> Dict:
    """描画ライブラリ（Nivo）向けの形式に変換（リンクは source/target/value のみ）"""
    return {
        "nodes": [dict(node) for node in graph["nodes"]],
        "links": [_link(l["source"], l["target"], l["value"]) for l in graph["links"]],
    }
