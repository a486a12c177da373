import numpy as np
import pytest

from sc_explorer.analysis.exceptions import AnalysisError
from sc_explorer.core.progress import ProgressLog, ProgressReporter
from sc_explorer.core.resolution import CLUSTERING_OPERATION, ensure_clustering, normalise_resolution


@pytest.mark.parametrize(
    "value, expected",
    [
        (0.8, 0.8),
        ("1.0", 1.0),
        (0.84, 0.8),
        (0.1, 0.1),
        (1.5, 1.5),
        (0.05, None),
        (1.6, None),
        (-1, None),
        ("abc", None),
        (None, None),
        (True, None),
        (float("nan"), None),
    ],
)
def test_normalise_resolution(value, expected):
    assert normalise_resolution(value) == expected


def test_out_of_range_resolution_is_ignored(dataset, backend):
    result = ensure_clustering(dataset, 2.0, backend)

    assert result is dataset
    assert backend.cluster_calls == []
    assert dataset.resolution_columns() == []


def test_second_call_is_a_cache_hit_with_identical_labels(dataset, backend):
    ensure_clustering(dataset, 0.8, backend)
    first = dataset.cluster_labels(0.8).copy()

    ensure_clustering(dataset, 0.8, backend)
    ensure_clustering(dataset, "0.80", backend)

    assert backend.resolutions() == [0.8]
    assert dataset.cluster_labels(0.8).equals(first)
    assert dataset.resolution_columns() == ["res_0.8"]


def test_new_resolution_appends_a_column(dataset, backend):
    ensure_clustering(dataset, 0.8, backend)
    ensure_clustering(dataset, 1.0, backend)

    assert dataset.resolution_columns() == ["res_0.8", "res_1.0"]
    assert dataset.cluster_choices(1.0) == ["1", "2", "3"]


def test_failure_commits_nothing(dataset, backend):
    backend.fail_cluster = True

    with pytest.raises(AnalysisError):
        ensure_clustering(dataset, 0.8, backend)

    assert not dataset.has_clustering(0.8)


def test_labels_for_other_cells_are_rejected(dataset):
    class WrongCells:
        def cluster(self, adata, resolution, n_dims):
            return ["0"] * (adata.n_obs - 1)

    with pytest.raises(AnalysisError):
        ensure_clustering(dataset, 0.8, WrongCells())
    assert dataset.resolution_columns() == []


def test_clustering_reports_progress(dataset, backend):
    log = ProgressLog()
    progress = ProgressReporter([log])

    ensure_clustering(dataset, 0.8, backend, progress=progress)

    stages = [e.stage for e in log.events]
    assert stages[0] == "start" and stages[-1] == "done"
    assert "running" in stages
    assert all(e.operation == CLUSTERING_OPERATION for e in log.events)
    fractions = [e.fraction for e in log.events]
    assert fractions == sorted(fractions)
    assert np.isclose(fractions[-1], 1.0)
