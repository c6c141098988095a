"""Two districts, five residents and a simulated afternoon.

Run deterministically (templated text, seeded randomness):

    uv run python -m examples.old_town.run --hours 3 --seed 7

Generate routines and openers with an LLM (requires LLM_PROVIDER, LLM_MODEL
and the matching API key):

    uv run python -m examples.old_town.run --llm --hours 3

Keep completed transcripts on disk:

    uv run python -m examples.old_town.run --store conversations
"""

from __future__ import annotations

import argparse
import asyncio
from datetime import datetime, timezone
from typing import Dict, List

from citypulse import (
    CONVERSATION_ENDED,
    CONVERSATION_STARTED,
    EVENT_GENERATED,
    Agent,
    AgentTraits,
    CityEngine,
    District,
    InMemoryDistrictDirectory,
    InMemoryMetrics,
    InMemorySearchIndex,
    JsonConversationStore,
    LLMTextGenerator,
    RandomSource,
    SimulatedClock,
)
from citypulse.config import Config


DISTRICTS = [
    District(
        id="old-town",
        name="Old Town",
        type="mixed",
        traditions=["lantern festival", "street food"],
        cultural_events=[{"title": "Lantern Festival", "type": "festival"}],
        engagement=0.7,
    ),
    District(id="riverside", name="Riverside", type="residential", engagement=0.4),
]

DISTRICT_PROFILES = {
    "old-town": "heritage buildings market squares cultural festivals community tensions",
    "riverside": "homes clinic school air quality respiratory health green parks",
}


def build_agents() -> List[Agent]:
    def traits(**values: float) -> AgentTraits:
        base = dict(analytical_thinking=0.5, creativity=0.5, empathy=0.5, curiosity=0.5, enthusiasm=0.5)
        base.update(values)
        return AgentTraits(**base)

    return [
        Agent(id="elena", name="Elena", role="community organizer", personality="warm and outgoing",
              interests=["lantern festival", "community"], traits=traits(enthusiasm=0.9, empathy=0.8),
              district_id="old-town"),
        Agent(id="sophia", name="Sophia", role="historian", personality="curious and precise",
              interests=["history", "street food"], traits=traits(curiosity=0.9, creativity=0.7),
              district_id="old-town"),
        Agent(id="marcus", name="Marcus", role="shop owner", personality="practical",
              interests=["business"], traits=traits(enthusiasm=0.6), district_id="old-town"),
        Agent(id="raj", name="Raj", role="grid engineer", personality="analytical",
              interests=["technology", "energy"], traits=traits(analytical_thinking=0.9, enthusiasm=0.4),
              district_id="riverside"),
        Agent(id="olivia", name="Olivia", role="environmental scientist", personality="thoughtful",
              interests=["nature", "science"], traits=traits(curiosity=0.8, empathy=0.7),
              district_id="riverside"),
    ]


def attach_printers(engine: CityEngine, names: Dict[str, str]) -> None:
    def on_started(payload: dict) -> None:
        who = ", ".join(names.get(agent_id, agent_id) for agent_id in payload["participants"])
        print(f"    + {payload['timestamp'][11:16]} {who} meet at {payload['location']} ({payload['topic']})")

    def on_ended(payload: dict) -> None:
        summary = payload["summary"]
        print(
            f"    - {payload['timestamp'][11:16]} conversation at {summary['location']} ended after "
            f"{summary['message_count']} message(s), sentiment {summary['sentiment']:.2f}"
        )

    def on_event(payload: dict) -> None:
        event = payload["event"]
        print(f"    ! {payload['timestamp'][11:16]} {event['title']} in {payload['district_id']}")

    engine.bus.subscribe(CONVERSATION_STARTED, on_started)
    engine.bus.subscribe(CONVERSATION_ENDED, on_ended)
    engine.bus.subscribe(EVENT_GENERATED, on_event)


async def run_simulation(
    hours: float,
    *,
    use_llm: bool = False,
    seed: int | None = None,
    store_path: str | None = None,
    weather: str | None = None,
) -> Dict[str, object]:
    if use_llm:
        Config.validate()
        text_generator = LLMTextGenerator(
            Config.LLM_PROVIDER,
            Config.LLM_MODEL,
            timeout=Config.TEXT_GENERATION_TIMEOUT_SECONDS,
        )
    else:
        text_generator = None

    search_index = InMemorySearchIndex()
    for district in DISTRICTS:
        await search_index.index_district(district, DISTRICT_PROFILES[district.id])

    metrics = InMemoryMetrics()
    store = JsonConversationStore(store_path) if store_path else None
    engine = CityEngine(
        InMemoryDistrictDirectory(DISTRICTS),
        metrics,
        search_index=search_index,
        text_generator=text_generator,
        store=store,
        clock=SimulatedClock(datetime(2025, 1, 1, 11, 0, tzinfo=timezone.utc)),
        rng=RandomSource(seed),
        weather=weather,
    )
    if store is not None:
        await store.initialize()

    agents = build_agents()
    for agent in agents:
        await engine.register_agent(agent)
    attach_printers(engine, {agent.id: agent.name for agent in agents})

    print(Config.display())
    print(f"\nSimulating {hours:g} hour(s) from {engine.clock.now():%H:%M}...\n")
    await engine.advance(hours * 60 * 60)
    await engine.close()

    return {
        "completed_conversations": len(engine.conversations.completed),
        "active_conversations": len(engine.conversations.active),
        "active_events": engine.events.current_event_titles(),
        "metrics": metrics.values,
        "task_failures": {name: job.failures for name, job in engine.scheduler.jobs.items()},
    }


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Old Town city simulation")
    parser.add_argument("--hours", type=float, default=3, help="Simulated hours to run")
    parser.add_argument("--llm", action="store_true", help="Use an LLM for routines and openers")
    parser.add_argument("--seed", type=int, default=None, help="Seed for reproducible runs")
    parser.add_argument("--store", default=None, help="Directory for JSON conversation transcripts")
    parser.add_argument("--weather", default=None, help="Weather label, e.g. storm or sunny")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    result = asyncio.run(
        run_simulation(args.hours, use_llm=args.llm, seed=args.seed, store_path=args.store, weather=args.weather)
    )
    print("\nSummary:")
    for key, value in result.items():
        print(f"  {key}: {value}")


if __name__ == "__main__":
    main()
