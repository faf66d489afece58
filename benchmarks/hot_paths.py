#!/usr/bin/env python3
"""Performance benchmark for lead pipeline board hot paths."""

from __future__ import annotations

import argparse
import asyncio
import time
from datetime import datetime, timedelta, timezone

from lead_pipeline.constants import LEAD_STATUSES
from lead_pipeline.data.store import LeadStore, apply_patch, group_by_status, search_leads
from lead_pipeline.models import Lead
from lead_pipeline.pipeline.board import BoardController
from lead_pipeline.tools.board import get_pipeline_board_impl

NOW = datetime(2025, 11, 5, 12, 0, tzinfo=timezone.utc)
BRANDS = ["Toyota", "Kia", "Ford", "Hyundai", "Chevrolet"]
MODELS = ["Corolla", "Rio", "Ranger", "Tucson", "Sail"]


def make_lead(i: int) -> dict:
    return {
        "id": f"BM-{i:07d}",
        "name": f"Customer {i}",
        "email": f"cust{i}@bench.test",
        "message": "Interested in a test drive" if i % 3 else "Asking about financing",
        "status": LEAD_STATUSES[i % len(LEAD_STATUSES)],
        "source": "WEBSITE",
        "createdAt": (NOW - timedelta(minutes=i)).isoformat(),
        "estimatedValue": 8_000_000 + (i % 50) * 100_000,
        "assignedTo": {"id": f"u{i % 7}", "name": f"Seller {i % 7}"} if i % 4 else None,
        "vehicle": {
            "id": f"V{i % 500}",
            "title": f"{BRANDS[i % 5]} {MODELS[i % 5]} {2018 + i % 7}",
            "brand": BRANDS[i % 5],
            "model": MODELS[i % 5],
        },
    }


class StaticCrm:
    """Serves a fixed lead list; confirms every PATCH."""

    def __init__(self, payloads: list[dict]) -> None:
        self.payloads = payloads

    async def list_leads(self, *, assigned_to: str = "all", search: str = "") -> list[dict]:
        return self.payloads

    async def update_lead(self, lead_id: str, fields: dict) -> dict:
        return {"id": lead_id, **fields}


# ── Benchmarks ────────────────────────────────────────────────────────


def bench_parse(records: int) -> tuple[float, tuple[Lead, ...]]:
    payloads = [make_lead(i) for i in range(records)]
    start = time.perf_counter()
    leads = tuple(Lead.from_payload(p) for p in payloads)
    return time.perf_counter() - start, leads


def bench_reducer(leads: tuple[Lead, ...], repeats: int) -> dict[str, float]:
    start = time.perf_counter()
    state = leads
    for i in range(repeats):
        state = apply_patch(state, leads[i % len(leads)].id, {"status": "QUALIFIED"})
    patch_elapsed = time.perf_counter() - start

    start = time.perf_counter()
    for _ in range(repeats):
        group_by_status(state)
    group_elapsed = time.perf_counter() - start

    start = time.perf_counter()
    for i in range(repeats):
        search_leads(state, MODELS[i % 5].lower())
    search_elapsed = time.perf_counter() - start

    return {
        "apply_patch_ms": patch_elapsed / max(repeats, 1) * 1000,
        "group_by_status_ms": group_elapsed / max(repeats, 1) * 1000,
        "search_ms": search_elapsed / max(repeats, 1) * 1000,
    }


async def bench_board_tool(records: int, repeats: int) -> tuple[float, float]:
    board = BoardController(StaticCrm([make_lead(i) for i in range(records)]), clock=lambda: NOW)
    # Warmup
    await get_pipeline_board_impl(board, raw=True)

    start = time.perf_counter()
    for _ in range(repeats):
        await get_pipeline_board_impl(board, raw=True)
    elapsed = time.perf_counter() - start
    return elapsed, (elapsed / max(repeats, 1)) * 1000


async def bench_transitions(records: int, moves: int) -> float:
    board = BoardController(
        StaticCrm([make_lead(i) for i in range(records)]),
        store=LeadStore(),
        clock=lambda: NOW,
    )
    await board.load()
    ids = [lead.id for lead in board.store.leads]

    start = time.perf_counter()
    for i in range(moves):
        board.schedule_transition(ids[i % len(ids)], LEAD_STATUSES[(i + 1) % len(LEAD_STATUSES)])
    await board.wait_for_transitions()
    return time.perf_counter() - start


# ── Main ──────────────────────────────────────────────────────────────


async def main() -> None:
    parser = argparse.ArgumentParser(description="Benchmark lead pipeline hot paths.")
    parser.add_argument("--records", type=int, default=5_000)
    parser.add_argument("--repeats", type=int, default=50)
    args = parser.parse_args()

    print("lead_pipeline_hot_path_benchmark")
    print(f"records={args.records}")
    print(f"repeats={args.repeats}")
    print()

    parse_elapsed, leads = bench_parse(args.records)
    print(f"parse_payloads_seconds={parse_elapsed:.6f}")

    for name, value in bench_reducer(leads, args.repeats).items():
        print(f"{name}={value:.3f}")

    tool_elapsed, tool_ms = await bench_board_tool(args.records, args.repeats)
    print(f"board_tool_seconds={tool_elapsed:.6f}")
    print(f"board_tool_avg_ms={tool_ms:.3f}")

    moves_elapsed = await bench_transitions(args.records, args.repeats * 10)
    print(f"optimistic_transitions_seconds={moves_elapsed:.6f}")


if __name__ == "__main__":
    asyncio.run(main())
