# src/landing_analytics/simulation.py
from __future__ import annotations

import random
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from faker import Faker

from landing_analytics.events import EventSink, FanoutSink, RecordingSink, EventDrain
from landing_analytics.logging_utils import get_logger, log_time
from landing_analytics.visitor import VisitorAgent
from landing_analytics.website import ChannelBehaviour, Session as WebSession, Website

log = get_logger("sim")


# ---------------------------------------------------------------------------
# Arrival process (exact count or constant-rate Poisson)
# ---------------------------------------------------------------------------
def _generate_arrivals(
    env,
    website: Website,
    channel_name: str,
    behaviour: ChannelBehaviour,
    sink: EventSink,
    rng: random.Random,
    faker: Faker,
    logger: logging.Logger,
    sessions_out: List[WebSession],
    *,
    until_s: float | None = None,
    n_visitors: int | None = None,
    rate_per_s: float | None = None,
):
    """Generate arrivals by exact count or constant-rate Poisson."""

    spawned = 0

    def _spawn_one():
        nonlocal spawned
        v = VisitorAgent(channel=channel_name, created_at=website.get_current_time(), rng=rng, faker=faker)
        sess = WebSession(env, website, v, sink, channel=channel_name, behaviour=behaviour, rng=rng, logger=logger)
        sessions_out.append(sess)
        env.process(sess.simulate_site_interactions())
        spawned += 1
        logger.debug("agent_spawn", extra={"channel": channel_name, "env_now": float(env.now)})

    def _next_gap_const():
        return rng.expovariate(rate_per_s) if rate_per_s and rate_per_s > 0 else 0.0

    # ---------- Mode 1: exact count ----------
    if n_visitors is not None:
        for _ in range(n_visitors):
            gap = _next_gap_const()
            if gap > 0:
                yield env.timeout(gap)
            _spawn_one()
        logger.info("arrivals_done", extra={"channel": channel_name, "mode": "count", "planned": n_visitors, "actual": spawned})
        return

    # ---------- Mode 2: constant-rate Poisson ----------
    if until_s is not None and rate_per_s:
        while env.now < until_s:
            gap = _next_gap_const()
            if env.now + gap >= until_s:
                break
            yield env.timeout(gap)
            _spawn_one()

    logger.info("arrivals_done", extra={"channel": channel_name, "mode": "rate", "window_s": until_s, "actual": spawned})


# ---------------------------------------------------------------------------
# Simulation runner
# ---------------------------------------------------------------------------
@log_time(log)
def run_simulation(
    *,
    site: Website,
    channel_plan: Dict[str, Dict],
    sink: Optional[EventSink] = None,
    seed: int = 42,
    end_dt: Optional[datetime] = None,
    grace_period_s: int = 600,
) -> dict:
    """
    Run every channel's arrivals against the landing page until end_dt
    (+ grace period for sessions still in progress) and summarise the
    tracked events.
    """
    rng = random.Random(seed)
    faker = Faker()
    faker.seed_instance(seed)

    start_dt = site.start_dt
    if end_dt is None or not (end_dt > start_dt):
        raise ValueError("end_dt is required and must be strictly greater than start_dt")

    env = site.env
    window_s = int((end_dt - start_dt).total_seconds())

    recorder = RecordingSink()
    fanout = FanoutSink([recorder] + ([sink] if sink is not None else []))
    sessions: List[WebSession] = []

    for ch, cfg in channel_plan.items():
        behaviour = cfg.get("behaviour") or ChannelBehaviour()
        n_visitors = None
        rate_per_s = None
        mean_gap = float(cfg.get("mean_gap_s") or 0.0)
        if cfg.get("visitors"):
            n_visitors = int(cfg["visitors"])
            rate_per_s = 1.0 / mean_gap if mean_gap > 0 else None
        elif mean_gap > 0:
            rate_per_s = 1.0 / mean_gap

        env.process(_generate_arrivals(
            env=env,
            website=site,
            channel_name=ch,
            behaviour=behaviour,
            sink=fanout,
            rng=rng,
            faker=faker,
            logger=log,
            sessions_out=sessions,
            until_s=window_s,
            n_visitors=n_visitors,
            rate_per_s=rate_per_s,
        ))

    run_id = f"run_{seed}_{int(start_dt.timestamp())}"
    log.info("sim_start", extra={
        "run_id": run_id,
        "seed": seed,
        "start_dt": start_dt.isoformat(),
        "end_dt": end_dt.isoformat(),
        "sim_window_seconds": window_s,
        "grace_period_s": grace_period_s,
        "channels": {k: {"visitors_total": v.get("visitors"), "mean_gap_s": v.get("mean_gap_s")}
                     for k, v in channel_plan.items()},
    })

    # Run the sim
    try:
        env.run(until=window_s + int(grace_period_s))
    finally:
        site.close()

    if isinstance(sink, EventDrain):
        sink.flush(reason="run_end")

    counts = recorder.counts()
    leads_by_channel: Dict[str, int] = {}
    for s in sessions:
        if s.visitor.is_lead:
            leads_by_channel[s.channel] = leads_by_channel.get(s.channel, 0) + 1

    summary = {
        "run_id": run_id,
        "seed": seed,
        "visitors": len({s.visitor.visitor_id for s in sessions}),
        "page_views": sum(s.page_views for s in sessions),
        "events": len(recorder.events),
        "event_counts": counts,
        "leads": sum(leads_by_channel.values()),
        "leads_by_channel": leads_by_channel,
        "lead_records": [s.visitor.to_dict() for s in sessions if s.visitor.is_lead],
        "start_dt": start_dt,
        "end_dt": end_dt,
        "ended_at": site.get_current_time(),
        "sim_window_seconds": window_s,
    }
    skip = ("start_dt", "end_dt", "ended_at", "lead_records")
    log.info("sim_complete", extra={k: v for k, v in summary.items() if k not in skip})
    return summary
