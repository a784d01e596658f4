"""
Seed script for SafeGrid Firestore collections.

Usage:
  - Dry run (default): python scripts/seed_db.py
  - Apply to configured Firestore: python scripts/seed_db.py --apply
  - Also recompute risk cells after seeding: python scripts/seed_db.py --apply --recompute

Behavior:
  - Loads `db_seed.json` from the repo root when present, else uses the
    built-in sample danger zones and events below.
  - Gets the client via `safegrid.config.firebase.get_db()`.
  - Writes each top-level collection/document to Firestore.

NOTE: Ensure `FIREBASE_CREDENTIALS_PATH` is set in `.env` before applying.
"""

import argparse
import json
import os
from datetime import timedelta
from typing import Any

from safegrid.config.firebase import (
    DANGER_ZONE_COLLECTION,
    DISTRESS_COLLECTION,
    INCIDENT_COLLECTION,
    get_db,
)
from safegrid.utils.geo import utc_now


def sample_seed() -> dict:
    now = utc_now()
    return {
        DANGER_ZONE_COLLECTION: {
            "disaster-0": {
                "name": "Flood-prone riverbank",
                "type": "circle",
                "coords": [15.4989, 73.8278],
                "latitude": 15.4989,
                "longitude": 73.8278,
                "radius_km": 1.5,
                "risk_level": "High",
                "category": "flood",
                "source": "seed",
            },
            "disaster-1": {
                "name": "Night market crowding",
                "type": "polygon",
                "coords": [15.5530, 73.7517],
                "latitude": 15.5530,
                "longitude": 73.7517,
                "risk_level": "Medium",
                "category": "crowd",
                "source": "seed",
            },
        },
        DISTRESS_COLLECTION: {
            "seed-distress-1": {
                "user_id": "seed-user",
                "latitude": 15.5440,
                "longitude": 73.7553,
                "timestamp": now - timedelta(hours=3),
                "safety_score": 42,
                "reason": "IMMEDIATE PANIC",
                "location_name": "Calangute Beach",
                "status": "new",
            },
        },
        INCIDENT_COLLECTION: {
            "seed-incident-1": {
                "latitude": 15.5445,
                "longitude": 73.7560,
                "timestamp": now - timedelta(days=2),
                "severity": 0.7,
                "title": "Bag snatching reported",
                "category": "theft",
            },
        },
    }


def load_seed(path: str) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def write_to_db(db: Any, seed: dict, apply: bool = False):
    for collection, docs in seed.items():
        for doc_id, data in docs.items():
            print(f"Preparing: {collection}/{doc_id}")
            if not apply:
                continue
            try:
                db.collection(collection).document(doc_id).set(data)
                print(f"Wrote: {collection}/{doc_id}")
            except Exception as e:
                print(f"Failed to write {collection}/{doc_id}: {e}")


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--apply", action="store_true", help="Write seed to Firestore instead of dry-run")
    parser.add_argument("--recompute", action="store_true", help="Run a full risk update after seeding")
    args = parser.parse_args()

    seed_path = os.path.join(os.getcwd(), "db_seed.json")
    if os.path.exists(seed_path):
        seed = load_seed(seed_path)
        print(f"Loaded seed from {seed_path}")
    else:
        seed = sample_seed()
        print("Using built-in sample seed")

    db = get_db() if args.apply else None
    write_to_db(db, seed, apply=args.apply)

    if args.apply and args.recompute:
        from safegrid.services.risk_aggregator import RiskAggregator

        summary = RiskAggregator(db=db).recompute_active_cells()
        print(f"Risk update: {summary.processed} processed, {summary.updated} updated, "
              f"{summary.evicted} evicted, {summary.failed} failed")

    if not args.apply:
        print("Dry run complete. Re-run with --apply to write to Firestore.")


if __name__ == "__main__":
    main()
