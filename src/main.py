# src/main.py
from pathlib import Path
from datetime import datetime, timezone
import simpy

from landing_analytics import db_utils
from landing_analytics.config_utils import load_yaml, landing_page_from_yaml, build_channel_plan
from landing_analytics.events import EventDrain, LoggingSink
from landing_analytics.logging_utils import init_logging, get_logger
from landing_analytics.simulation import run_simulation
from landing_analytics.website import Website


init_logging(reset=True)
log = get_logger("app")

CONFIG_DIR = Path(__file__).resolve().parents[1] / "configs"


def _parse_utc(ts: str) -> datetime:
    return datetime.fromisoformat(ts.replace("Z", "+00:00")).astimezone(timezone.utc)


def _build_sink(sim_cfg: dict):
    kind = str(sim_cfg.get("sink", "log")).lower()
    if kind == "database":
        db_utils.ensure_tables()
        if sim_cfg.get("reset_tables", False):
            db_utils.reset_tables(mode="delete")
        return EventDrain(flush_every=int(sim_cfg.get("events_flush_every", 1000)))
    if kind == "log":
        return LoggingSink()
    if kind == "none":
        return None
    raise ValueError(f"unknown sink {kind!r}: expected 'database', 'log' or 'none'")


def main():
    log.info("starting_app")
    sim_cfg  = load_yaml(CONFIG_DIR / "simulation.default.yaml")
    ch_cfg   = load_yaml(CONFIG_DIR / "channels.yaml")
    page_cfg = load_yaml(CONFIG_DIR / "landing_page.yaml")

    seed  = int(sim_cfg.get("seed", 42))
    grace = int(sim_cfg.get("grace_period_s", 600))

    start_dt = _parse_utc(sim_cfg["start_dt_utc"])
    end_dt   = _parse_utc(sim_cfg["end_dt_utc"])
    if not (end_dt > start_dt):
        raise ValueError("end_dt_utc must be strictly greater than start_dt_utc")

    env = simpy.Environment()
    site = Website(env, landing_page_from_yaml(page_cfg, CONFIG_DIR), start_dt=start_dt)
    channel_plan = build_channel_plan(ch_cfg)

    summary = run_simulation(
        site=site,
        channel_plan=channel_plan,
        sink=_build_sink(sim_cfg),
        seed=seed,
        end_dt=end_dt,
        grace_period_s=grace,
    )
    print(summary)
    log.info("app_completed")


if __name__ == "__main__":
    main()
