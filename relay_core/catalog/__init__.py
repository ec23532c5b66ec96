from relay_core.catalog.registry import ModelEntry, StaticModelCatalog

__all__ = ["ModelEntry", "StaticModelCatalog"]
