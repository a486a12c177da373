from sc_explorer.core.exceptions import ScExplorerError

class AnalysisError(ScExplorerError):
    """An external numerical routine (clustering, t-SNE, marker test) failed at runtime"""
    pass
