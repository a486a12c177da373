from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple

import pandas as pd

from sc_explorer.analysis.backend import AnalysisBackend
from sc_explorer.analysis.exceptions import AnalysisError
from sc_explorer.analysis.markers import empty_marker_table, find_markers
from sc_explorer.config.model import AnalysisSettings, DebounceSettings
from sc_explorer.core.dataset import Dataset, resolution_key
from sc_explorer.core.debounce import Clock, Debouncer
from sc_explorer.core.exceptions import ScExplorerError
from sc_explorer.core.genes import GeneResolver
from sc_explorer.core.graph import DependencyGraph
from sc_explorer.core.progress import ProgressLog, ProgressReporter
from sc_explorer.core.resolution import ensure_clustering, normalise_resolution
from sc_explorer.core.state import (
    REST_GROUP,
    ClusteringResult,
    DatasetStatus,
    GeneSelection,
    Notice,
    Polarity,
    SessionInputs,
    SessionSnapshot,
)
from sc_explorer.core.subset import subset as make_subset

if TYPE_CHECKING:
    from sc_explorer.services.dataset_service import DatasetStore

logger = logging.getLogger(__name__)

NO_DATASET = "none"

# -----------------------------------------------------------------------------
# Dependency declaration
# -----------------------------------------------------------------------------
INPUTS: Tuple[str, ...] = SessionInputs.field_names()

# recompute_embedding is read when a subset is built but never triggers a rebuild
NODES: Dict[str, Tuple[str, ...]] = {
    "dataset": ("dataset_label",),
    "clustering": ("dataset", "resolution"),
    "subset_choices": ("clustering",),
    "subset": ("dataset", "clustering", "subset_enabled", "subset_clusters"),
    "subset_clustering": ("subset", "subset_resolution"),
    "cluster_choices": ("subset_clustering",),
    "embedding_data": (
        "dataset",
        "clustering",
        "subset",
        "subset_clustering",
        "subset_enabled",
        "show_all_points",
        "use_cellranger",
    ),
    "gene": ("dataset", "gene_query"),
    "gene1": ("dataset", "gene1_query"),
    "gene2": ("dataset", "gene2_query"),
    "markers": ("subset_clustering", "marker_group1", "marker_group2", "marker_polarity"),
}

# Raw input field -> debounce group. Fields not listed apply immediately.
FIELD_GROUPS: Dict[str, str] = {
    "gene_query": "gene",
    "gene1_query": "gene1",
    "gene2_query": "gene2",
    "subset_clusters": "subset_clusters",
    "cluster_filter": "cluster_filter",
    "marker_group1": "markers",
    "marker_group2": "markers",
    "marker_polarity": "markers",
    "resolution": "resolution",
    "subset_resolution": "resolution_subset",
}


def debounce_windows(settings: DebounceSettings) -> Dict[str, float]:
    return {
        "gene": settings.gene,
        "gene1": settings.gene,
        "gene2": settings.gene,
        "subset_clusters": settings.clusters,
        "cluster_filter": settings.clusters,
        "markers": settings.markers,
        "resolution": settings.resolution,
        "resolution_subset": settings.resolution,
    }


def build_graph() -> DependencyGraph:
    return DependencyGraph(INPUTS, NODES)


class SessionStateMachine:
    """
    Reactive core of one user session.

    Raw inputs (SessionInputs) feed a fixed graph of derived nodes (NODES). Reads
    are pull-based: each node remembers the versions of its dependencies it was
    last computed from, and is recomputed only when one of them has moved on.
    Nodes are always visited in topological order, so a node never observes a
    half-updated dependency.

    Failure policy:
    - a failing node keeps its last good value and its version is not bumped;
      it is not retried until one of its dependencies changes again
    - a failed dataset load resets the session to EMPTY (no stale data)
    - a failed clustering reverts the corresponding resolution input
    Every failure is turned into a Notice, collected by drain_notices().

    Not thread-safe: callers serialise access (see SessionService).
    """

    def __init__(
        self,
        store: "DatasetStore",
        resolver: GeneResolver,
        backend: AnalysisBackend,
        settings: Optional[AnalysisSettings] = None,
        debounce: Optional[DebounceSettings] = None,
        clock: Clock = time.monotonic,
        progress: Optional[ProgressReporter] = None,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.backend = backend
        self.settings = settings or AnalysisSettings()
        self.graph = build_graph()

        self.progress = progress or ProgressReporter()
        self.progress_log = ProgressLog()
        self.progress.subscribe(self.progress_log)

        self._clock = clock
        self._debouncer = Debouncer(debounce_windows(debounce or DebounceSettings()), clock)
        self._closed = False

        self.inputs = SessionInputs()
        self.status = DatasetStatus.EMPTY

        self._input_versions: Dict[str, int] = {name: 0 for name in INPUTS}
        self._values: Dict[str, Any] = {name: None for name in NODES}
        self._versions: Dict[str, int] = {name: 0 for name in NODES}
        self._seen: Dict[str, Optional[Tuple[int, ...]]] = {name: None for name in NODES}
        self._subset_active = False
        self._notices: List[Notice] = []
        self.revision = 0

        self._compute: Dict[str, Callable[[Any], Any]] = {
            "dataset": self._compute_dataset,
            "clustering": self._compute_clustering,
            "subset_choices": self._compute_subset_choices,
            "subset": self._compute_subset,
            "subset_clustering": self._compute_subset_clustering,
            "cluster_choices": self._compute_cluster_choices,
            "embedding_data": self._compute_embedding_data,
            "gene": lambda prev: self._compute_gene("gene_query"),
            "gene1": lambda prev: self._compute_gene("gene1_query"),
            "gene2": lambda prev: self._compute_gene("gene2_query"),
            "markers": self._compute_markers,
        }

    # -------------------------------------------------------------------------
    # Inputs
    # -------------------------------------------------------------------------
    def set_inputs(self, **changes: Any) -> Set[str]:
        """
        Apply raw input changes as one atomic step and return the fields that changed.

        - invalid or out-of-range values are ignored (the previous value is kept)
        - a dataset switch resets resolution, subset, genes, cluster filter and
          marker groups in the same step, and drops pending debounced input
        - disabling subsetting clears the subset selection
        """
        if self._closed:
            return set()

        unknown = set(changes) - set(INPUTS)
        if unknown:
            raise ValueError(f"Unknown session inputs: {sorted(unknown)}")

        changed: Set[str] = set()
        for name, raw in changes.items():
            ok, value = self._coerce(name, raw)
            if not ok:
                logger.info("Ignoring invalid input", extra={"field": name, "value": repr(raw)})
                continue
            if self._set_input(name, value):
                changed.add(name)

        if "dataset_label" in changed:
            changed |= self._reset_for_dataset(self.inputs.dataset_label)
        elif "subset_enabled" in changed and not self.inputs.subset_enabled:
            if self._set_input("subset_clusters", ()):
                changed.add("subset_clusters")

        if changed:
            logger.debug("Inputs changed", extra={"fields": sorted(changed)})
        return changed

    def _coerce(self, name: str, raw: Any) -> Tuple[bool, Any]:
        if name == "dataset_label":
            if raw is None or str(raw).strip() in ("", NO_DATASET):
                return True, None
            return True, str(raw)
        if name in ("resolution", "subset_resolution"):
            res = normalise_resolution(raw, self.settings.resolution_bounds)
            return res is not None, res
        if name in ("subset_clusters", "cluster_filter"):
            if raw is None:
                return True, ()
            if isinstance(raw, (str, int)):
                raw = [raw]
            return True, tuple(dict.fromkeys(str(c) for c in raw))
        if name == "marker_polarity":
            try:
                return True, Polarity(raw)
            except ValueError:
                return False, None
        if name == "marker_group2":
            return True, str(raw) if raw else REST_GROUP
        if name in ("subset_enabled", "recompute_embedding", "show_all_points",
                    "use_cellranger", "show_cluster_size"):
            return True, bool(raw)
        return True, "" if raw is None else str(raw)

    def _set_input(self, name: str, value: Any) -> bool:
        if getattr(self.inputs, name) == value:
            return False
        setattr(self.inputs, name, value)
        self._input_versions[name] += 1
        self.revision += 1
        return True

    def _reset_for_dataset(self, label: Optional[str]) -> Set[str]:
        self._debouncer.clear()
        default = self.store.catalog.default_resolution(label) if label is not None else None
        resets = {
            "resolution": default,
            "subset_enabled": False,
            "subset_clusters": (),
            "recompute_embedding": False,
            "subset_resolution": default,
            "gene_query": "",
            "gene1_query": "",
            "gene2_query": "",
            "cluster_filter": (),
            "marker_group1": "",
            "marker_group2": REST_GROUP,
            "marker_polarity": Polarity.POS,
        }
        return {name for name, value in resets.items() if self._set_input(name, value)}

    def select_dataset(self, label: Optional[str]) -> DatasetStatus:
        """Switch dataset (None / 'none' = no dataset) and load it immediately."""
        self.set_inputs(dataset_label=label)
        self.get("dataset")
        return self.status

    def apply_deep_link(self, params: Mapping[str, Any]) -> bool:
        """Select params['dataset'] if it names a catalog entry."""
        label = params.get("dataset") if params else None
        if isinstance(label, (list, tuple)):
            label = label[0] if label else None
        if not label or label not in self.store.catalog:
            if label:
                logger.info("Deep link to unknown dataset ignored", extra={"dataset": label})
            return False
        self.select_dataset(str(label))
        return True

    # -------------------------------------------------------------------------
    # Debounced input
    # -------------------------------------------------------------------------
    def submit(self, field: str, value: Any, now: Optional[float] = None) -> Set[str]:
        """
        Queue a raw input event. Fields with a settle window wait for tick();
        everything else is applied at once. Returns the fields applied now.
        """
        if self._closed:
            return set()
        group = FIELD_GROUPS.get(field)
        if group is None:
            return self.set_inputs(**{field: value})
        self._debouncer.push(group, {field: value}, now)
        return set()

    def tick(self, now: Optional[float] = None) -> Set[str]:
        """Apply every debounce group that has settled, all in one atomic step."""
        if self._closed:
            return set()
        ready = self._debouncer.due(now)
        if not ready:
            return set()
        merged: Dict[str, Any] = {}
        for group in sorted(ready):
            merged.update(ready[group])
        return self.set_inputs(**merged)

    def has_pending(self) -> bool:
        return self._debouncer.next_deadline() is not None

    def pending_fields(self) -> Set[str]:
        """Fields whose debounce group has raw input waiting to settle."""
        return {f for f, g in FIELD_GROUPS.items() if self._debouncer.is_pending(g)}

    def close(self) -> None:
        """Drop pending timers; later submit()/tick() calls are no-ops."""
        self._debouncer.clear()
        self._closed = True
        self.progress.unsubscribe(self.progress_log)

    @property
    def closed(self) -> bool:
        return self._closed

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------
    def get(self, name: str) -> Any:
        """Current value of a derived node, refreshing only what it depends on."""
        if name not in NODES:
            raise KeyError(f"Unknown node '{name}'")
        self._refresh(self.graph.plan(name))
        return self._values[name]

    def version(self, name: str) -> int:
        return self._versions[name] if name in self._versions else self._input_versions[name]

    def snapshot(self) -> SessionSnapshot:
        self._refresh(self.graph.order)
        v = self._values
        gene: GeneSelection = v["gene"] or GeneSelection()
        dataset: Optional[Dataset] = v["dataset"]

        title = ""
        if dataset is not None and gene.is_valid:
            title = self.resolver.title(gene.symbol, dataset.species)

        return SessionSnapshot(
            status=self.status,
            inputs=replace(self.inputs),
            dataset=dataset,
            subset=v["subset"],
            clustering=v["clustering"],
            subset_clustering=v["subset_clustering"],
            subset_choices=v["subset_choices"] or (),
            cluster_choices=v["cluster_choices"] or (),
            embedding_data=v["embedding_data"],
            gene=gene,
            gene1=v["gene1"] or GeneSelection(),
            gene2=v["gene2"] or GeneSelection(),
            marker_table=v["markers"],
            subset_resolution_visible=self._subset_active,
            gene_title=title,
            revision=self.revision,
        )

    def notify(self, level: str, message: str, source: str = "") -> None:
        self._notices.append(Notice(level=level, message=message, source=source))

    def drain_notices(self) -> List[Notice]:
        notices, self._notices = self._notices, []
        return notices

    # -------------------------------------------------------------------------
    # Recomputation
    # -------------------------------------------------------------------------
    def _dep_versions(self, name: str) -> Tuple[int, ...]:
        return tuple(self.version(d) for d in self.graph.deps[name])

    def _refresh(self, names: Iterable[str]) -> None:
        for name in names:
            if self._seen[name] == self._dep_versions(name):
                continue

            previous = self._values[name]
            try:
                value = self._compute[name](previous)
            except ScExplorerError as e:
                logger.warning(
                    "Node recompute failed; keeping last good value",
                    extra={"node": name, "error": str(e)},
                )
                self.notify("error", str(e), name)
                self._seen[name] = self._dep_versions(name)
                continue

            self._values[name] = value
            self._versions[name] += 1
            self.revision += 1
            self._seen[name] = self._dep_versions(name)
            logger.debug("Node recomputed", extra={"node": name, "version": self._versions[name]})

    def _clear_downstream(self) -> None:
        for name in self.graph.descendants("dataset"):
            self._values[name] = None
        self._subset_active = False

    # --- dataset ---------------------------------------------------------------
    def _compute_dataset(self, previous: Optional[Dataset]) -> Optional[Dataset]:
        label = self.inputs.dataset_label
        self._clear_downstream()

        if label is None:
            self.status = DatasetStatus.EMPTY
            return None

        self.status = DatasetStatus.LOADING
        try:
            dataset = self.store.load(label, progress=self.progress)
        except ScExplorerError as e:
            self.status = DatasetStatus.EMPTY
            self.notify("error", f"Could not load dataset '{label}': {e}", "dataset")
            self._set_input("dataset_label", None)
            self._reset_for_dataset(None)
            return None

        self.status = DatasetStatus.READY
        return dataset

    # --- full-dataset clustering ------------------------------------------------
    def _compute_clustering(self, previous: Optional[ClusteringResult]) -> Optional[ClusteringResult]:
        dataset: Optional[Dataset] = self._values["dataset"]
        if dataset is None:
            return None

        res = self.inputs.resolution
        if res is None:
            res = self.store.catalog.default_resolution(dataset.name)

        try:
            self._cluster(dataset, res)
        except AnalysisError:
            if previous is not None:
                self._set_input("resolution", previous.resolution)
            raise

        result = ClusteringResult(
            resolution=res,
            column=resolution_key(res),
            choices=tuple(dataset.cluster_choices(res)),
        )

        # Cluster ids of another resolution mean nothing here
        if previous is not None and previous.resolution != res:
            self._set_input("subset_clusters", ())
        self._set_input("subset_resolution", res)
        return result

    def _cluster(self, dataset: Dataset, res: float) -> None:
        ensure_clustering(
            dataset,
            res,
            self.backend,
            n_dims=self.settings.n_dims,
            bounds=self.settings.resolution_bounds,
            progress=self.progress,
        )

    def _compute_subset_choices(self, previous: Any) -> Tuple[str, ...]:
        clustering: Optional[ClusteringResult] = self._values["clustering"]
        return clustering.choices if clustering is not None else ()

    # --- subset -------------------------------------------------------------------
    def _compute_subset(self, previous: Optional[Dataset]) -> Optional[Dataset]:
        dataset: Optional[Dataset] = self._values["dataset"]
        clustering: Optional[ClusteringResult] = self._values["clustering"]
        if dataset is None or clustering is None:
            self._subset_active = False
            return None

        keep = [c for c in self.inputs.subset_clusters if c in clustering.choices]
        if not self.inputs.subset_enabled or not keep:
            self._subset_active = False
            return dataset.fork()

        result = make_subset(
            dataset,
            keep,
            resolution=clustering.resolution,
            recompute_embedding=self.inputs.recompute_embedding,
            backend=self.backend,
            n_dims=self.settings.n_dims,
            progress=self.progress,
        )
        self._subset_active = True
        return result

    def _compute_subset_clustering(self, previous: Optional[ClusteringResult]) -> Optional[ClusteringResult]:
        sub: Optional[Dataset] = self._values["subset"]
        clustering: Optional[ClusteringResult] = self._values["clustering"]
        if sub is None or clustering is None:
            return None

        res = self.inputs.subset_resolution
        if res is None:
            res = clustering.resolution

        try:
            if sub.n_cells > 0:
                self._cluster(sub, res)
        except AnalysisError:
            if previous is not None:
                self._set_input("subset_resolution", previous.resolution)
            raise

        result = ClusteringResult(
            resolution=res,
            column=resolution_key(res),
            choices=tuple(sub.cluster_choices(res)),
        )

        self._set_input("marker_group1", "")
        self._set_input("marker_group2", REST_GROUP)
        kept = tuple(c for c in self.inputs.cluster_filter if c in result.choices)
        self._set_input("cluster_filter", kept)
        return result

    def _compute_cluster_choices(self, previous: Any) -> Tuple[str, ...]:
        clustering: Optional[ClusteringResult] = self._values["subset_clustering"]
        return clustering.choices if clustering is not None else ()

    # --- embedding plot data ------------------------------------------------------
    def _compute_embedding_data(self, previous: Any) -> Optional[pd.DataFrame]:
        dataset: Optional[Dataset] = self._values["dataset"]
        if dataset is None or self._values["clustering"] is None:
            return None

        inputs = self.inputs
        sub: Optional[Dataset] = self._values["subset"]
        sub_clustering: Optional[ClusteringResult] = self._values["subset_clustering"]

        if inputs.subset_enabled and sub is not None and sub_clustering is not None:
            labels = sub.cluster_labels(sub_clustering.resolution)
            coords_source = sub
        else:
            labels = dataset.cluster_labels(self._values["clustering"].resolution)
            coords_source = dataset

        cellranger = dataset.cellranger_embedding if inputs.use_cellranger else None
        if inputs.use_cellranger and cellranger is None:
            self.notify("warning", "Cellranger t-SNE is not available for this dataset.", "embedding_data")

        if cellranger is not None:
            coords = cellranger
        elif inputs.show_all_points:
            coords = dataset.full_embedding
        else:
            coords = coords_source.embedding()

        data = coords[["x", "y"]].copy()
        if labels is None:
            data["cluster"] = pd.Series(pd.NA, index=data.index, dtype=object)
        else:
            data = data.join(labels.rename("cluster"), how="left")

        if not inputs.show_all_points:
            data = data[data["cluster"].notna()]
        data.index.name = "cell"
        return data

    # --- genes ----------------------------------------------------------------------
    def _compute_gene(self, field: str) -> GeneSelection:
        query = getattr(self.inputs, field)
        dataset: Optional[Dataset] = self._values["dataset"]
        if dataset is None:
            return GeneSelection(query=query)

        symbol = self.resolver.resolve(query, dataset.species, dataset.valid_sets().genes)
        return GeneSelection(
            query=query,
            symbol=symbol,
            validity=self.resolver.validity(query, symbol),
        )

    # --- marker genes -----------------------------------------------------------------
    def _compute_markers(self, previous: Optional[pd.DataFrame]) -> Optional[pd.DataFrame]:
        sub: Optional[Dataset] = self._values["subset"]
        clustering: Optional[ClusteringResult] = self._values["subset_clustering"]
        if sub is None or clustering is None:
            return None

        inputs = self.inputs
        group1, group2 = inputs.marker_group1, inputs.marker_group2
        if not group1:
            return empty_marker_table()
        if group1 == group2:
            return previous if previous is not None else empty_marker_table()

        cells1 = sub.cells_in_clusters(clustering.resolution, [group1])
        cells2: Any = REST_GROUP
        if group2 != REST_GROUP:
            cells2 = sub.cells_in_clusters(clustering.resolution, [group2])

        result = find_markers(
            sub,
            cells1,
            cells2,
            inputs.marker_polarity,
            self.backend,
            min_cells=self.settings.min_cells,
            min_auc=self.settings.min_auc,
            min_pct=self.settings.min_pct,
            progress=self.progress,
        )
        if result.warning:
            self.notify("warning", result.warning, "markers")
        return result.table
