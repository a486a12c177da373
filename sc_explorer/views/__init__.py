from .cluster_view import ClusterView
from .correlation_view import CorrelationView
from .expression_view import ExpressionView
from .quality_view import QualityView

__all__ = ["ClusterView", "CorrelationView", "ExpressionView", "QualityView"]
