from relay_core.catalog.registry import StaticModelCatalog
from relay_core.config.settings import RelaySettings


def test_display_name_lookup_is_case_insensitive():
    catalog = StaticModelCatalog.from_mapping({"basic:gpt-4o-mini": "GPT-4o Mini"})
    assert catalog.display_name("BASIC:GPT-4o-mini") == "GPT-4o Mini"
    assert catalog.display_name("pro:gpt-5") is None


def test_catalog_from_settings_accepts_both_key_styles():
    s = RelaySettings(models=[
        {"model_key": "basic:gpt-4o-mini", "display_name": "GPT-4o Mini"},
        {"modelKey": "pro:gpt-5", "displayName": "GPT-5"},
        {"modelKey": "open:llama3-70b"},
        {"display_name": "orphan"},
    ])
    catalog = StaticModelCatalog.from_settings(s)
    assert catalog.display_name("pro:gpt-5") == "GPT-5"
    assert catalog.display_name("open:llama3-70b") == "open:llama3-70b"
    assert catalog.display_name("orphan") is None
