"""
Establishment configuration defaults.
Stored configuration is merged over these values when read.
"""
import copy

DEFAULT_ESTABLISHMENT_CONFIG = {
    "features": {
        "appointments": True,
        "customers": True,
        "services": True,
        "professionals": True,
        "reports": True,
        "settings": True,
    },
    "theme": {
        "primaryColor": "#0f172a",
        "secondaryColor": "#1e293b",
        "accentColor": "#3b82f6",
    },
    "labels": {
        "customer": "Cliente",
        "service": "Serviço",
        "professional": "Profissional",
        "appointment": "Agendamento",
    },
}


def get_default_config() -> dict:
    return copy.deepcopy(DEFAULT_ESTABLISHMENT_CONFIG)


def merge_config(stored: dict, updates: dict) -> dict:
    """Shallow merge: top-level keys of `updates` replace those of `stored`"""
    merged = dict(stored or {})
    merged.update(updates or {})
    return merged


def resolve_config(stored: dict) -> dict:
    """Defaults with the stored configuration applied on top"""
    return merge_config(get_default_config(), stored)
