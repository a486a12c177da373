class ScExplorerError(Exception):
    """Base exception for all sc_explorer errors"""
    pass

class ConfigError(ScExplorerError):
    """Invalid or inconsistent global.json / dataset catalog entry"""
    pass

class DatasetLoadError(ScExplorerError):
    """
    A persisted dataset artifact is missing or unreadable.
    Aborts the current dataset-load transition.
    """
    pass

class DatasetSchemaError(ScExplorerError):
    """
    AnnData / artifacts don't match what Dataset expects
    missing embedding, misaligned cell ids, missing clustering column, etc
    """
    pass
