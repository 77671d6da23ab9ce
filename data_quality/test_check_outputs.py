"""サンキー図整合性チェックのテスト"""
import json

from data_quality.check_outputs import check_graph, check_year, main, topological_depths
from src.pipeline.aggregator import MinistryAggregate, ProjectAggregate
from src.pipeline.sankey_builder import SankeyBuilder


def build_aggregates(count):
    aggregates = {}
    for i in range(1, count + 1):
        name = f"省{i}"
        project = ProjectAggregate(i, f"事業{i}", name, i * 100, [(f"株式会社{i}", i * 80)])
        aggregates[name] = MinistryAggregate(name, {i: project})
    return aggregates


def test_built_graphs_pass_all_checks():
    builder = SankeyBuilder(2024, top_n_ministries=3)
    aggregates = build_aggregates(5)

    assert check_graph(builder.build_main_graph(aggregates)) == []
    assert check_graph(builder.build_topology_graph(aggregates)) == []


def test_small_difference_passes_conservation():
    project = ProjectAggregate(1, "事業1", "内閣府", 100, [("株式会社X", 100.05)])
    aggregates = {"内閣府": MinistryAggregate("内閣府", {1: project})}
    assert check_graph(SankeyBuilder(2024).build_topology_graph(aggregates)) == []


def test_topology_graph_has_four_stages():
    graph = SankeyBuilder(2024, top_n_ministries=3).build_topology_graph(build_aggregates(5))
    depths = topological_depths(graph)

    assert depths["ministry_budget_省5"] == 0
    assert depths["total_budget"] == 1
    assert depths["total_execution"] == 2
    assert depths["ministry_execution_省5"] == 3
    assert max(depths.values()) == 3


def test_dangling_link_is_reported():
    graph = {
        "nodes": [{"id": "a", "type": "ministry"}],
        "links": [{"source": "a", "target": "b", "value": 1}],
    }
    assert check_graph(graph) == ["Link target not found: b"]


def test_total_mismatch_is_reported():
    graph = {
        "nodes": [
            {"id": "m", "type": "ministry", "metadata": {"budget": 90}},
            {"id": "total_budget", "type": "total", "metadata": {"budget": 100}},
        ],
        "links": [{"source": "m", "target": "total_budget", "value": 90}],
    }
    issues = check_graph(graph)
    assert any(issue.startswith("Total mismatch at total_budget") for issue in issues)


def test_cycle_is_reported():
    graph = {
        "nodes": [{"id": "a", "type": "block"}, {"id": "b", "type": "block"}],
        "links": [
            {"source": "a", "target": "b", "value": 1},
            {"source": "b", "target": "a", "value": 1},
        ],
    }
    assert topological_depths(graph) is None
    assert check_graph(graph) == ["Links contain a cycle"]


def test_report_over_output_dir(tmp_path, capsys):
    year_dir = tmp_path / "year_2024"
    year_dir.mkdir()
    graph = SankeyBuilder(2024).build_main_graph(build_aggregates(2))
    (year_dir / "sankey-main.json").write_text(json.dumps(graph, ensure_ascii=False), encoding="utf-8")

    assert check_year(year_dir) == {"sankey-main.json": []}
    assert main(tmp_path) == 0
    assert "year_2024" in capsys.readouterr().out
