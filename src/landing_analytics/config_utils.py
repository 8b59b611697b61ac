# src/landing_analytics/config_utils.py
import os
from pathlib import Path
from typing import Dict, Optional

import yaml
from dotenv import load_dotenv

from landing_analytics.forms import FormMetadata
from landing_analytics.logging_utils import get_logger
from landing_analytics.website import ChannelBehaviour, LandingPage

log = get_logger("config")


def load_yaml(p: Path) -> dict:
    return yaml.safe_load(p.read_text()) if p.exists() else {}


def landing_page_from_yaml(cfg: dict, base_dir: Path) -> LandingPage:
    """
    Build the LandingPage from YAML. `html` is a path relative to base_dir.
    FORM_INTAKE_URL in the environment overrides intake_url.
    """
    load_dotenv()
    cfg = cfg or {}
    html_path = base_dir / str(cfg.get("html", "landing_page.html"))
    html = html_path.read_text(encoding="utf-8") if html_path.exists() else ""
    if not html:
        log.warning("landing_page_html_missing", extra={"path": str(html_path)})

    form_cfg = cfg.get("form") or {}
    form = FormMetadata(**{k: str(v) for k, v in form_cfg.items() if k in FormMetadata.__dataclass_fields__})

    return LandingPage(
        url=str(cfg.get("url", "https://example.com/")),
        html=html,
        viewport_height=float(cfg.get("viewport_height", 900.0)),
        load_delay_s=float(cfg.get("load_delay_s", 0.5)),
        default_section_height=float(cfg.get("default_section_height", 800.0)),
        form_section=cfg.get("form_section", "application-form"),
        intake_url=os.getenv("FORM_INTAKE_URL") or cfg.get("intake_url") or None,
        form=form,
    )


_BEHAVIOUR_KEYS = ("scroll_step_px", "dwell_s", "dropoff_prob", "form_conversion_prob", "return_prob")


def build_channel_plan(raw_cfg: dict | None) -> dict[str, dict]:
    """
    Normalize raw YAML channel config into the format run_simulation expects.

    Expected YAML:
      Newsletter:
        visitors: 120
        mean_gap_s: 20
        utm: {source: newsletter, medium: email, campaign: launch}
        referrer: https://mail.example.com/
        form_conversion_prob: 0.3

    Returns dict like:
      {"Newsletter": {"visitors": 120, "mean_gap_s": 20.0, "behaviour": ChannelBehaviour(...)}, ...}
    Falls back to defaults if no config provided.
    """
    if not raw_cfg:
        raw_cfg = {
            "Direct":     {"visitors": 40, "mean_gap_s": 30.0},
            "Newsletter": {"visitors": 60, "mean_gap_s": 20.0,
                           "utm": {"source": "newsletter", "medium": "email"}},
            "Paid":       {"visitors": 80, "mean_gap_s": 15.0,
                           "utm": {"source": "google", "medium": "cpc", "campaign": "launch"}},
        }

    plan: dict[str, dict] = {}
    for ch, ch_cfg in raw_cfg.items():
        ch_cfg = ch_cfg or {}
        utm = {str(k): str(v) for k, v in (ch_cfg.get("utm") or {}).items() if v is not None}
        behaviour = ChannelBehaviour(
            utm=utm,
            referrer=str(ch_cfg.get("referrer") or ""),
            return_with_utm=bool(ch_cfg.get("return_with_utm", False)),
            **{k: float(ch_cfg[k]) for k in _BEHAVIOUR_KEYS if ch_cfg.get(k) is not None},
        )
        plan[ch] = {
            "visitors": int(ch_cfg.get("visitors", 0)),
            "mean_gap_s": float(ch_cfg.get("mean_gap_s", 0.0)),
            "behaviour": behaviour,
        }
    return plan
