import pytest
from conftest import FakeStore

from sc_explorer.core.session import NODES, SessionStateMachine
from sc_explorer.core.state import REST_GROUP, DatasetStatus, Polarity, Validity


@pytest.fixture
def machine(store, resolver, backend, clock):
    return SessionStateMachine(store, resolver, backend, clock=clock)


def _ready(machine, label="PBMC"):
    assert machine.select_dataset(label) is DatasetStatus.READY
    return machine.snapshot()


# -----------------------------------------------------------------------------
# Dataset selection
# -----------------------------------------------------------------------------
def test_starts_empty(machine):
    snap = machine.snapshot()

    assert snap.status is DatasetStatus.EMPTY
    assert snap.dataset is None
    assert snap.embedding_data is None
    assert snap.marker_table is None


def test_selecting_a_dataset_loads_and_clusters_at_default(machine, backend):
    snap = _ready(machine)

    assert snap.dataset_name == "PBMC"
    assert snap.inputs.resolution == 0.8
    assert snap.inputs.subset_resolution == 0.8
    assert snap.subset_choices == ("1", "2", "3")
    assert snap.cluster_choices == ("1", "2", "3")
    assert snap.info_text == "8 genes across 100 samples"
    # identity subset reuses the full clustering
    assert backend.cluster_calls == [(100, 0.8)]


def test_resolution_round_trip_recomputes_only_the_new_value(machine, backend):
    _ready(machine)

    machine.set_inputs(resolution=1.0)
    assert machine.snapshot().clustering.resolution == 1.0
    machine.set_inputs(resolution=0.8)
    assert machine.snapshot().clustering.resolution == 0.8

    assert backend.resolutions() == [0.8, 1.0]


def test_out_of_range_resolution_keeps_the_active_one(machine, backend):
    _ready(machine)

    assert machine.set_inputs(resolution=1.6) == set()
    assert machine.set_inputs(resolution="abc") == set()

    snap = machine.snapshot()
    assert snap.inputs.resolution == 0.8
    assert snap.clustering.resolution == 0.8
    assert backend.resolutions() == [0.8]


def test_dataset_switch_resets_inputs_together(machine):
    _ready(machine)
    machine.set_inputs(
        resolution=1.2,
        gene_query="TNF",
        subset_enabled=True,
        subset_clusters=["1"],
        cluster_filter=["1"],
        marker_polarity="neg",
    )
    machine.snapshot()

    machine.select_dataset("Other")
    inputs = machine.snapshot().inputs

    assert inputs.dataset_label == "Other"
    assert inputs.resolution == 0.8
    assert inputs.gene_query == ""
    assert not inputs.subset_enabled
    assert inputs.subset_clusters == ()
    assert inputs.cluster_filter == ()
    assert inputs.marker_polarity is Polarity.POS
    assert machine.snapshot().subset_choices == ("1", "2")


def test_failed_load_falls_back_to_empty_without_stale_data(machine):
    _ready(machine)
    machine.drain_notices()

    status = machine.select_dataset("Broken")
    snap = machine.snapshot()

    assert status is DatasetStatus.EMPTY
    assert snap.dataset is None
    assert snap.subset is None
    assert snap.embedding_data is None
    assert snap.subset_choices == ()
    assert snap.inputs.dataset_label is None
    notices = machine.drain_notices()
    assert [n.level for n in notices] == ["error"]
    assert "Broken" in notices[0].message


def test_selecting_none_clears_the_dataset(machine):
    _ready(machine)

    machine.select_dataset("none")

    assert machine.snapshot().status is DatasetStatus.EMPTY
    assert machine.snapshot().dataset is None


def test_deep_link_selects_a_known_dataset(machine, store):
    assert machine.apply_deep_link({"dataset": ["PBMC"]}) is True
    assert machine.status is DatasetStatus.READY

    assert machine.apply_deep_link({"dataset": "Unknown"}) is False
    assert machine.apply_deep_link({}) is False
    assert machine.inputs.dataset_label == "PBMC"
    assert store.loads == ["PBMC"]


def test_reads_are_pull_based(machine, backend):
    machine.set_inputs(dataset_label="PBMC")

    gene = machine.get("gene")

    assert gene.validity is Validity.NEUTRAL
    assert backend.cluster_calls == []
    assert machine.get("dataset") is not None


def test_unknown_input_is_rejected(machine):
    with pytest.raises(ValueError):
        machine.set_inputs(colour="red")
    with pytest.raises(KeyError):
        machine.get("nope")


# -----------------------------------------------------------------------------
# Subset
# -----------------------------------------------------------------------------
def test_subset_of_one_cluster(machine, backend):
    _ready(machine)

    machine.set_inputs(subset_enabled=True, subset_clusters=["3"])
    snap = machine.snapshot()

    assert snap.subset.n_cells == 10
    assert snap.subset_resolution_visible
    assert snap.cluster_choices == ("3",)
    assert snap.info_text == "8 genes across 10 samples"
    assert backend.cluster_calls[-1] == (10, 0.8)
    assert len(snap.embedding_data) == 10


def test_subset_ignores_unknown_cluster_ids(machine):
    _ready(machine)

    machine.set_inputs(subset_enabled=True, subset_clusters=["9"])
    snap = machine.snapshot()

    assert not snap.subset_resolution_visible
    assert snap.subset.n_cells == 100


def test_subset_resolution_only_touches_the_subset(machine, backend):
    _ready(machine)
    machine.set_inputs(subset_enabled=True, subset_clusters=["2", "3"])
    machine.snapshot()

    machine.set_inputs(subset_resolution=0.5)
    snap = machine.snapshot()

    assert snap.subset_clustering.resolution == 0.5
    assert backend.cluster_calls[-1] == (50, 0.5)
    assert not snap.dataset.has_clustering(0.5)
    assert snap.clustering.resolution == 0.8


def test_new_full_resolution_clears_the_subset_selection(machine):
    _ready(machine)
    machine.set_inputs(subset_enabled=True, subset_clusters=["3"])
    assert machine.snapshot().subset_resolution_visible

    machine.set_inputs(resolution=1.0)
    snap = machine.snapshot()

    assert snap.inputs.subset_clusters == ()
    assert snap.inputs.subset_resolution == 1.0
    assert not snap.subset_resolution_visible
    assert snap.subset.n_cells == 100


def test_disabling_subset_clears_selection(machine):
    _ready(machine)
    machine.set_inputs(subset_enabled=True, subset_clusters=["3"])

    changed = machine.set_inputs(subset_enabled=False)

    assert changed == {"subset_enabled", "subset_clusters"}
    assert machine.snapshot().subset.n_cells == 100


def test_show_all_points_keeps_unlabelled_cells(machine):
    _ready(machine)
    machine.set_inputs(subset_enabled=True, subset_clusters=["3"], show_all_points=True)

    data = machine.snapshot().embedding_data

    assert len(data) == 100
    assert data["cluster"].isna().sum() == 90
    assert data.index.name == "cell"


def test_missing_cellranger_coordinates_fall_back_with_a_warning(machine):
    _ready(machine)
    machine.drain_notices()

    machine.set_inputs(use_cellranger=True)
    data = machine.snapshot().embedding_data

    assert len(data) == 100
    assert [n.level for n in machine.drain_notices()] == ["warning"]


def test_clustering_failure_keeps_last_good_value(machine, backend):
    _ready(machine)
    machine.drain_notices()
    backend.fail_cluster = True

    machine.set_inputs(resolution=1.0)
    snap = machine.snapshot()
    calls = len(backend.cluster_calls)
    machine.snapshot()

    assert snap.clustering.resolution == 0.8
    assert snap.inputs.resolution == 0.8
    assert [n.level for n in machine.drain_notices()] == ["error"]
    assert len(backend.cluster_calls) == calls


# -----------------------------------------------------------------------------
# Genes
# -----------------------------------------------------------------------------
def test_gene_fields_resolve_against_the_dataset(machine):
    _ready(machine)

    machine.set_inputs(gene_query="tnfa", gene1_query="NOPE", gene2_query="")
    snap = machine.snapshot()

    assert snap.gene.symbol == "TNF" and snap.gene.validity is Validity.VALID
    assert snap.gene_title == "TNF (TNFA|TNFSF2)"
    assert snap.gene1.validity is Validity.INVALID
    assert snap.gene2.validity is Validity.NEUTRAL


def test_typing_is_debounced_until_the_query_settles(machine, clock):
    _ready(machine)

    for query in ["T", "TN", "TNF"]:
        assert machine.submit("gene_query", query) == set()
        clock.advance(0.5)

    assert machine.pending_fields() == {"gene_query"}
    assert machine.tick() == set()
    assert machine.snapshot().inputs.gene_query == ""

    clock.advance(1.0)
    assert machine.tick() == {"gene_query"}
    assert machine.snapshot().gene.symbol == "TNF"
    assert not machine.has_pending()


def test_debounced_cluster_list_builds_one_subset(machine, backend, clock):
    _ready(machine)
    machine.submit("subset_enabled", True)

    machine.submit("subset_clusters", ["1"])
    clock.advance(1.0)
    machine.submit("subset_clusters", ["1", "2"])
    clock.advance(2.0)
    machine.tick()
    snap = machine.snapshot()

    assert snap.subset.n_cells == 90
    assert [n for n, _ in backend.cluster_calls] == [100, 90]


def test_dataset_switch_drops_pending_input(machine, clock):
    _ready(machine)
    machine.submit("gene_query", "TNF")

    machine.select_dataset("Other")
    clock.advance(5.0)
    machine.tick()

    assert machine.snapshot().inputs.gene_query == ""


def test_closed_session_ignores_events(machine, clock):
    _ready(machine)
    machine.submit("gene_query", "TNF")

    machine.close()
    clock.advance(5.0)

    assert machine.closed
    assert machine.tick() == set()
    assert machine.submit("resolution", 1.0) == set()
    assert machine.set_inputs(gene_query="CD4") == set()
    assert machine.inputs.gene_query == ""


# -----------------------------------------------------------------------------
# Marker genes
# -----------------------------------------------------------------------------
def test_marker_table_for_one_cluster_against_the_rest(machine, backend):
    _ready(machine)

    machine.set_inputs(marker_group1="3")
    table = machine.snapshot().marker_table

    assert backend.marker_calls == [(10, None)]
    assert table["gene"].iloc[0] == "PTPRC"
    assert (table["myAUC"] >= 0.7).all()
    assert table["myAUC"].is_monotonic_decreasing
    assert (table["avg_logFC"] > 0).all()


def test_negative_polarity_lists_genes_up_in_the_background(machine):
    _ready(machine)

    machine.set_inputs(marker_group1="3", marker_polarity="neg")
    table = machine.snapshot().marker_table

    assert "TNF" in set(table["gene"])
    assert (table["avg_logFC"] < 0).all()
    assert (table["myAUC"] >= 0.7).all()


def test_same_group_twice_keeps_the_previous_table(machine, backend):
    _ready(machine)
    machine.set_inputs(marker_group1="3")
    first = machine.snapshot().marker_table

    machine.set_inputs(marker_group2="3")
    snap = machine.snapshot()

    assert snap.marker_table is first
    assert len(backend.marker_calls) == 1


def test_too_few_cells_gives_empty_table_and_warning(resolver, backend, clock):
    machine = SessionStateMachine(FakeStore({"Tiny": (20, 3)}), resolver, backend, clock=clock)
    _ready(machine, "Tiny")
    machine.drain_notices()

    machine.set_inputs(marker_group1="2")
    table = machine.snapshot().marker_table

    assert table.empty
    assert list(table.columns) == ["gene", "myAUC", "avg_diff", "power", "avg_logFC", "pct.1", "pct.2"]
    assert [n.level for n in machine.drain_notices()] == ["warning"]
    assert backend.marker_calls == []


def test_new_subset_clustering_resets_marker_groups(machine):
    _ready(machine)
    machine.set_inputs(marker_group1="3", marker_group2="1", cluster_filter=["1", "3"])
    machine.snapshot()

    machine.set_inputs(subset_enabled=True, subset_clusters=["1", "2"])
    snap = machine.snapshot()

    assert snap.inputs.marker_group1 == ""
    assert snap.inputs.marker_group2 == REST_GROUP
    assert snap.inputs.cluster_filter == ("1",)
    assert snap.marker_table.empty


# -----------------------------------------------------------------------------
# Bookkeeping
# -----------------------------------------------------------------------------
def test_snapshot_without_changes_recomputes_nothing(machine):
    _ready(machine)
    versions = {name: machine.version(name) for name in NODES}
    revision = machine.revision

    machine.snapshot()

    assert {name: machine.version(name) for name in NODES} == versions
    assert machine.revision == revision


def test_progress_is_recorded_for_long_operations(machine):
    _ready(machine)
    machine.set_inputs(resolution=1.1)
    machine.snapshot()

    last = machine.progress_log.last
    assert last is not None
    assert last.stage == "done"
