from __future__ import annotations

__all__ = ["IDs", "OPTION_FIELDS"]


class IDs:
    class Store:
        SESSION_ID = "session-id"
        REVISION = "session-revision"
        MARKER_PICK = "marker-pick"

    class Control:
        URL = "url"
        TICK = "debounce-tick"

        # Dataset
        DATASET_SELECT = "dataset-select"
        DATASET_INFO = "dataset-info"
        DATASET_PANEL = "dataset-panel"

        # Clustering / subset
        RESOLUTION = "resolution-slider"
        SUBSET_ENABLED = "subset-enabled"
        SUBSET_CONTAINER = "subset-container"
        SUBSET_CLUSTERS = "subset-clusters"
        RECOMPUTE_TSNE = "recompute-tsne"
        SUBSET_RESOLUTION = "subset-resolution-slider"
        SUBSET_RESOLUTION_CONTAINER = "subset-resolution-container"
        OPTIONS_CHECKLIST = "options-checklist"

        # Genes
        GENE_INPUT = "gene-input"
        GENE1_INPUT = "gene1-input"
        GENE2_INPUT = "gene2-input"
        CLUSTER_FILTER = "cluster-filter"

        # Marker genes
        MARKER_GROUP1 = "marker-group1"
        MARKER_GROUP2 = "marker-group2"
        MARKER_POLARITY = "marker-polarity"
        MARKER_TABLE = "marker-table"

        # Graphs + downloads
        EXPRESSION_GRAPH = "expression-graph"
        CORRELATION_GRAPH = "correlation-graph"
        QUALITY_GRAPH = "quality-graph"
        DOWNLOAD_IMAGE = "download-image"
        DOWNLOAD_IMAGE_BTN = "download-image-btn"

        # Feedback
        NOTICES = "notices"
        STATUS_BAR = "status-bar"


# OPTIONS_CHECKLIST value -> session input
OPTION_FIELDS = {
    "show_all": "show_all_points",
    "cellranger": "use_cellranger",
    "show_size": "show_cluster_size",
}
