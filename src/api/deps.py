import os
from functools import lru_cache
from pathlib import Path

from fastapi import Depends

from src.adapters.clock import SystemClock
from src.adapters.local_store import LocalFileStore, create_local_store
from src.core.ports.store import StoreClientPort
from src.rules.loader import load_rules
from src.rules.models import Rules
from src.services.families import FamilyService


# --- Settings ---
class Settings:
    def __init__(self) -> None:
        self.base_dir = Path(os.getcwd())
        self.data_dir = Path(os.environ.get("VIDEO_PIPELINE_DATA_DIR", "./data"))
        self.rules_path = Path(
            os.environ.get("VIDEO_PIPELINE_RULES", str(self.base_dir / "rules.yaml"))
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()


# --- Rules ---
@lru_cache
def get_rules(settings: Settings = Depends(get_settings)) -> Rules:
    return load_rules(settings.rules_path)


# --- Store ---
@lru_cache
def get_store(settings: Settings = Depends(get_settings)) -> LocalFileStore:
    return create_local_store(settings.data_dir)


# --- Services ---
def get_family_service(
    store: StoreClientPort = Depends(get_store),
    rules: Rules = Depends(get_rules),
) -> FamilyService:
    return FamilyService(store, rules=rules, clock=SystemClock())
