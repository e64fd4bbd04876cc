from __future__ import annotations
import json
import logging
import os
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# --- Chemins de base ---
ROOT_DIR = Path(__file__).resolve().parents[1]
DATA_DIR = ROOT_DIR / "data"
SETTINGS_JSON = DATA_DIR / "settings.json"


class NumberingSettings(BaseModel):
    quote_prefix: str = "DEV"
    invoice_prefix: str = "FAC"
    deposit_prefix: str = "DEP"
    receipt_prefix: str = "REC"
    padding: int = 4


class SuperPDPSettings(BaseModel):
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    base_url: str = "https://api.superpdp.tech"
    token_url: str = "https://api.superpdp.tech/oauth2/token"
    timeout: float = 30.0


class Settings(BaseModel):
    data_dir: Path = DATA_DIR
    cron_secret: Optional[str] = None
    app_url: str = "http://localhost:8000"
    log_level: str = "INFO"
    backup_keep: int = 5
    default_vat_rate: Decimal = Decimal("20")
    sync_max_pages: int = 1000
    numbering: NumberingSettings = Field(default_factory=NumberingSettings)
    superpdp: SuperPDPSettings = Field(default_factory=SuperPDPSettings)


# ---------- Utils JSON ----------
def _load_json(path: os.PathLike | str) -> Optional[Dict[str, Any]]:
    p = Path(path)
    if not p.exists():
        return None
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        logger.warning("settings.json illisible (%s), valeurs par défaut utilisées", e)
        return None
    return data if isinstance(data, dict) else None


# variable d'env -> chemin dans les settings
_ENV_OVERRIDES = {
    "FACTURFLOW_DATA_DIR": ("data_dir",),
    "CRON_SECRET": ("cron_secret",),
    "APP_URL": ("app_url",),
    "FACTURFLOW_LOG_LEVEL": ("log_level",),
    "SUPERPDP_CLIENT_ID": ("superpdp", "client_id"),
    "SUPERPDP_CLIENT_SECRET": ("superpdp", "client_secret"),
    "SUPERPDP_BASE_URL": ("superpdp", "base_url"),
}


def load_settings(path: Optional[os.PathLike | str] = None, env: Optional[Dict[str, str]] = None) -> Settings:
    """
    Charge la configuration :
      1) valeurs par défaut
      2) data/settings.json (ou FACTURFLOW_SETTINGS)
      3) variables d'environnement
    """
    env = dict(os.environ if env is None else env)
    settings_path = path or env.get("FACTURFLOW_SETTINGS") or SETTINGS_JSON
    raw = _load_json(settings_path) or {}

    for var, keys in _ENV_OVERRIDES.items():
        val = env.get(var)
        if not val:
            continue
        target = raw
        for k in keys[:-1]:
            target = target.setdefault(k, {})
        target[keys[-1]] = val

    return Settings.model_validate(raw)
