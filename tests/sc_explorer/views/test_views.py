import math

import pandas as pd
import plotly.graph_objs as go
import pytest

from sc_explorer.core.base_view import BaseView
from sc_explorer.core.session import SessionStateMachine
from sc_explorer.core.view_registry import ViewRegistry
from sc_explorer.views import ClusterView, CorrelationView, ExpressionView, QualityView
from sc_explorer.views.cluster_view import UNLABELLED_COLOR, cluster_label_positions
from sc_explorer.views.correlation_view import CorrelationData, pearson_r
from sc_explorer.views.marker_table import gene_for_row, marker_table_records


@pytest.fixture
def machine(store, resolver, backend, clock):
    m = SessionStateMachine(store, resolver, backend, clock=clock)
    m.select_dataset("PBMC")
    m.snapshot()
    return m


def _render(view_cls, snapshot):
    return view_cls(snapshot.subset or snapshot.dataset).render(snapshot)


# -----------------------------------------------------------------------------
# Cluster plot
# -----------------------------------------------------------------------------
def test_cluster_view_draws_one_trace_per_cluster_plus_labels(machine):
    fig = _render(ClusterView, machine.snapshot())

    names = [t.name for t in fig.data if t.mode == "markers"]
    assert names == ["Cluster 1", "Cluster 2", "Cluster 3"]
    assert fig.data[-1].mode == "text"
    assert list(fig.data[-1].text) == ["1", "2", "3"]
    assert fig.layout.height == 700


def test_cluster_sizes_in_labels(machine):
    machine.set_inputs(show_cluster_size=True)

    fig = _render(ClusterView, machine.snapshot())

    assert list(fig.data[-1].text) == ["Cluster 1 (50)", "Cluster 2 (40)", "Cluster 3 (10)"]


def test_unlabelled_cells_are_grey_when_all_points_shown(machine):
    machine.set_inputs(subset_enabled=True, subset_clusters=["3"], show_all_points=True)

    fig = _render(ClusterView, machine.snapshot())

    grey = fig.data[0]
    assert grey.marker.color == UNLABELLED_COLOR
    assert len(grey.x) == 90


def test_label_positions_are_cluster_medians():
    data = pd.DataFrame(
        {"x": [0.0, 2.0, 10.0, 12.0, 5.0], "y": [0.0, 0.0, 1.0, 3.0, 9.0], "cluster": ["1", "1", "2", "2", None]}
    )

    labels = cluster_label_positions(data, show_size=False)

    assert labels["x"].tolist() == [1.0, 11.0]
    assert labels["y"].tolist() == [0.0, 2.0]


def test_no_dataset_renders_empty_figures(store, resolver, backend):
    snap = SessionStateMachine(store, resolver, backend).snapshot()

    for view_cls in (ClusterView, ExpressionView, CorrelationView, QualityView):
        fig = view_cls(None).render(snap)
        assert isinstance(fig, go.Figure)
        assert len(fig.data) == 0


# -----------------------------------------------------------------------------
# Expression plot
# -----------------------------------------------------------------------------
def test_expression_view_falls_back_to_clusters_without_gene(machine):
    machine.set_inputs(gene_query="NOPE")

    fig = _render(ExpressionView, machine.snapshot())

    assert not any(isinstance(t, go.Violin) for t in fig.data)
    assert fig.layout.title.text == "PBMC"


def test_expression_view_combines_overlay_and_violins(machine):
    machine.set_inputs(gene_query="tnfa")

    fig = _render(ExpressionView, machine.snapshot())

    violins = [t for t in fig.data if isinstance(t, go.Violin)]
    assert [v.name for v in violins] == ["1", "2", "3"]
    titles = [a.text for a in fig.layout.annotations]
    assert "TNF (TNFA|TNFSF2)" in titles
    assert fig.layout.xaxis.range == fig.layout.xaxis2.range


def test_expression_view_follows_the_subset(machine):
    machine.set_inputs(gene_query="TNF", subset_enabled=True, subset_clusters=["1", "3"])

    fig = _render(ExpressionView, machine.snapshot())

    violins = [t for t in fig.data if isinstance(t, go.Violin)]
    assert [v.name for v in violins] == ["1", "3"]
    assert sum(len(v.y) for v in violins) == 60


# -----------------------------------------------------------------------------
# Correlation plot
# -----------------------------------------------------------------------------
def test_correlation_needs_two_different_valid_genes(machine):
    machine.set_inputs(gene1_query="TNF", gene2_query="TNF", cluster_filter=["1"])

    fig = _render(CorrelationView, machine.snapshot())

    assert fig.layout.title.text == CorrelationView.empty_message


def test_correlation_without_clusters_asks_for_a_selection(machine):
    machine.set_inputs(gene1_query="TNF", gene2_query="CD4")

    fig = _render(CorrelationView, machine.snapshot())

    assert "Select clusters" in fig.layout.title.text


def test_correlation_title_reports_pearson_r(machine):
    machine.set_inputs(gene1_query="TNF", gene2_query="CD4", cluster_filter=["1", "2"])

    snap = machine.snapshot()
    data = CorrelationView(snap.subset).compute_data(snap)
    fig = CorrelationView(snap.subset).render(snap)

    assert len(data.frame) == 90
    assert data.r < 0
    assert fig.layout.title.text.startswith("TNF & CD4 (cluster 1/2) [r = -")


def test_correlation_data_title_with_undefined_r():
    data = CorrelationData("A", "B", ("3",), pd.DataFrame({"A": [1.0], "B": [2.0]}))
    assert data.title == "A & B (cluster 3) [r = NA]"


def test_pearson_r_edge_cases():
    assert math.isnan(pearson_r(pd.Series([1.0]), pd.Series([2.0])))
    assert math.isnan(pearson_r(pd.Series([1.0, 1.0]), pd.Series([2.0, 3.0])))
    assert pearson_r(pd.Series([1.0, 2.0, 3.0]), pd.Series([2.0, 4.0, 6.0])) == pytest.approx(1.0)


# -----------------------------------------------------------------------------
# Quality plot / marker table
# -----------------------------------------------------------------------------
def test_quality_view_plots_two_metrics_per_sample(machine):
    snap = machine.snapshot()

    data = QualityView(snap.dataset).compute_data(snap)
    fig = QualityView(snap.dataset).render(snap)

    assert set(data["metric"]) == {"nUMI", "nGene"}
    assert set(data["sample"]) == {"s1", "s2"}
    assert len(data) == 200
    assert len(fig.data) > 0


def test_marker_table_records_and_row_click(machine):
    machine.set_inputs(marker_group1="3")
    columns, records = marker_table_records(machine.snapshot().marker_table)

    assert [c["id"] for c in columns] == ["gene", "myAUC", "avg_diff", "power", "avg_logFC", "pct.1", "pct.2"]
    assert gene_for_row(records, 0) == "PTPRC"
    assert gene_for_row(records, len(records)) is None
    assert gene_for_row([], 0) is None
    assert gene_for_row(records, None) is None


def test_empty_marker_table_records():
    columns, records = marker_table_records(None)
    assert len(columns) == 7 and records == []


# -----------------------------------------------------------------------------
# Registry
# -----------------------------------------------------------------------------
def test_registry_creates_views_by_id(dataset):
    registry = ViewRegistry()
    for cls in (ClusterView, ExpressionView, CorrelationView, QualityView):
        registry.register(cls)

    view = registry.create("expression", dataset, scale_factor=0.5)

    assert isinstance(view, ExpressionView)
    assert view.plot_height() == 500
    assert registry.ids() == ["cluster", "expression", "correlation", "quality"]


def test_registry_rejects_duplicates_and_non_views():
    registry = ViewRegistry()
    registry.register(ClusterView)

    with pytest.raises(ValueError):
        registry.register(ClusterView)
    with pytest.raises(TypeError):
        registry.register(dict)
    with pytest.raises(KeyError):
        registry.create("nope", None)
    assert issubclass(registry.all_classes()[0], BaseView)
