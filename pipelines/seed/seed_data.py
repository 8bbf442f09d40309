"""
Seed data generator -- creates realistic market-intelligence data for every
table in the source catalog.

Generates:
  - ~300 investors
  - ~400 exits (funding_rounds_exits)
  - ~500 US seed rounds (funding_rounds_us_sfd_23)
  - ~1 200 startups (ranks stored as text: "48", "1,065")
  - ~600 growth companies (rankings stored as "# 48", revenue as "$1.5M")
  - ~200 franchises (ranks stored as "#12")
  - ~800 live funding rounds (company_info JSONB)

``generate_all()`` returns the rows per table; ``DATA_SOURCE=memory`` serves
them directly.  ``main()`` creates the tables and inserts into Postgres.
Run:  python -m pipelines.seed.seed_data
"""
from __future__ import annotations

import json
import os
import random
from datetime import date, timedelta
from pathlib import Path

from dotenv import load_dotenv
from faker import Faker
from sqlalchemy import create_engine, text

# ── Load .env from project root ─────────────────────────
_PROJECT_ROOT = Path(__file__).resolve().parents[2]
load_dotenv(_PROJECT_ROOT / ".env")

SEED = 42

# ── Tunables ─────────────────────────────────────────────
NUM_INVESTORS = 300
NUM_EXITS = 400
NUM_US_SEED = 500
NUM_STARTUPS = 1_200
NUM_GROWTH = 600
NUM_FRANCHISES = 200
NUM_LIVE_FUNDING = 800

INDUSTRIES = [
    "Fintech", "Healthcare", "AI", "SaaS", "E-commerce", "Climate",
    "Edtech", "Biotech", "Cybersecurity", "Logistics", "Gaming", "Robotics",
]
COUNTRIES = [
    "United States", "United Kingdom", "Canada", "Germany", "France",
    "India", "Singapore", "Australia", "Brazil", "Israel",
]
US_STATES = ["CA", "NY", "MA", "TX", "WA", "IL", "FL", "CO"]
INVESTOR_TYPES = ["Angel", "VC", "Corporate VC", "Accelerator", "Family Office"]
EXIT_TYPES = ["Acquisition", "IPO", "Merger", "SPAC"]
ROUND_TYPES = ["Pre-Seed", "Seed", "Series A", "Series B", "Series C", "Debt"]
CURRENCIES = ["USD", "EUR", "GBP", "INR", "CAD"]
TEAM_SIZES = ["1-10", "11-50", "51-200", "201-500", "500+"]
FUND_NAMES = [
    "Sequoia Capital", "Accel", "Y Combinator", "Andreessen Horowitz",
    "Index Ventures", "General Catalyst", "Lightspeed", "First Round",
]

# ── Helper: date ranges ─────────────────────────────────
DATE_START = date(2019, 1, 1)
DATE_END = date(2025, 12, 31)
DATE_RANGE_DAYS = (DATE_END - DATE_START).days


def _rand_date(rng: random.Random, start: date = DATE_START, days: int = DATE_RANGE_DAYS) -> date:
    return start + timedelta(days=rng.randint(0, days))


def _maybe(rng: random.Random, value, p_missing: float = 0.05):
    """Return *value*, or ``None`` with probability *p_missing*."""
    return None if rng.random() < p_missing else value


def _money_text(amount: float) -> str:
    """Format dollars the way scraped sources store them: "$1.5M", "$230K", "$2B"."""
    for suffix, unit in (("B", 1e9), ("M", 1e6), ("K", 1e3)):
        if amount >= unit:
            return f"${amount / unit:.1f}{suffix}".replace(".0" + suffix, suffix)
    return f"${amount:.0f}"


def _db_url() -> str:
    user = os.getenv("POSTGRES_USER", "postgres")
    pw = os.getenv("POSTGRES_PASSWORD", "postgres")
    host = os.getenv("POSTGRES_HOST", "localhost")
    port = os.getenv("POSTGRES_PORT", "5432")
    db = os.getenv("POSTGRES_DB", "postgres")
    return f"postgresql://{user}:{pw}@{host}:{port}/{db}"


# ── Generators ───────────────────────────────────────────

def gen_investors(fake: Faker, rng: random.Random) -> list[dict]:
    rows = []
    for iid in range(1, NUM_INVESTORS + 1):
        low = rng.choice([25_000, 100_000, 500_000, 1_000_000, 5_000_000, 25_000_000])
        high = low * rng.choice([2, 5, 10])
        rows.append({
            "id": iid,
            "name": fake.name(),
            "profile": rng.choice(INVESTOR_TYPES),
            "location": _maybe(rng, f"{fake.city()}, {rng.choice(COUNTRIES)}"),
            "current_position": f"{fake.job()} at {rng.choice(FUND_NAMES)}",
            "investment_min": low / 1e6,
            "investment_max": high / 1e6,
            "sweet_spot": _maybe(rng, float(rng.randint(low, high)), 0.1),
            "current_fund_size": _money_text(rng.choice([10, 50, 150, 400, 1200]) * 1e6),
            "ranking": iid,
        })
    return rows


def gen_exits(fake: Faker, rng: random.Random) -> list[dict]:
    rows = []
    for eid in range(1, NUM_EXITS + 1):
        rows.append({
            "id": eid,
            "company": fake.company(),
            "exit_value_billions": _maybe(rng, round(rng.lognormvariate(0, 1.2), 2)),
            "exit_type": _maybe(rng, rng.choice(EXIT_TYPES)),
            "total_funding_millions": _maybe(rng, round(rng.lognormvariate(4, 1.5), 1)),
            "industry": _maybe(rng, rng.choice(INDUSTRIES)),
            "deal_closed_date": _maybe(rng, _rand_date(rng)),
        })
    return rows


def gen_us_seed(fake: Faker, rng: random.Random) -> list[dict]:
    rows = []
    for sid in range(1, NUM_US_SEED + 1):
        amount = rng.choice([250_000, 500_000, 1_000_000, 2_500_000, 5_000_000, 12_000_000])
        leads = rng.sample(FUND_NAMES, rng.randint(1, 3))
        rows.append({
            "id": sid,
            "company": fake.company(),
            "industry": rng.choice(INDUSTRIES),
            "amount": float(amount),
            "valuation": _maybe(rng, float(amount * rng.randint(4, 12)), 0.2),
            "lead_investors": _maybe(rng, ", ".join(leads), 0.1),
            "date_raised": _rand_date(rng, date(2023, 1, 1), 364),
        })
    return rows


def gen_startups(fake: Faker, rng: random.Random) -> list[dict]:
    rows = []
    for sid in range(1, NUM_STARTUPS + 1):
        tags = rng.sample(INDUSTRIES, rng.randint(1, 3))
        country = rng.choice(COUNTRIES)
        rows.append({
            "id": sid,
            "name": fake.company(),
            "short_description": fake.catch_phrase(),
            "tags": ", ".join(tags),
            "country": country,
            "state": rng.choice(US_STATES) if country == "United States" else None,
            # Ranks above 999 carry a thousands separator
            "rank": f"{sid:,}",
            "founded": str(rng.randint(2005, 2024)),
        })
    return rows


def gen_growth(fake: Faker, rng: random.Random) -> list[dict]:
    rows = []
    for gid in range(1, NUM_GROWTH + 1):
        revenue = rng.lognormvariate(16, 2)
        rows.append({
            "id": gid,
            "name": fake.company(),
            "industry": rng.choice(INDUSTRIES),
            "what_is": fake.bs(),
            "location": f"{fake.city()}, {rng.choice(US_STATES)}",
            "growjo_ranking": f"# {gid}",
            "annual_revenue": _maybe(rng, _money_text(revenue), 0.08),
            "employees": rng.randint(5, 5_000),
        })
    return rows


def gen_franchises(fake: Faker, rng: random.Random) -> list[dict]:
    rows = []
    for fid in range(1, NUM_FRANCHISES + 1):
        low = rng.choice([50, 100, 250, 500])
        rows.append({
            "id": fid,
            "title": fake.company(),
            "description": fake.catch_phrase(),
            "industry": _maybe(rng, rng.choice(["Food", "Fitness", "Retail", "Services", "Education"])),
            "rank": f"#{fid}",
            "initial_investment": f"${low}K - ${low * 4}K",
            "units_as_of_2024": f"{rng.randint(10, 20_000):,}",
        })
    return rows


def gen_live_funding(fake: Faker, rng: random.Random) -> list[dict]:
    rows = []
    for lid in range(1, NUM_LIVE_FUNDING + 1):
        rows.append({
            "id": lid,
            "company_name": fake.company(),
            "round_type": rng.choice(ROUND_TYPES),
            "main_category": rng.choice(INDUSTRIES),
            "currency": rng.choices(CURRENCIES, weights=[0.7, 0.1, 0.1, 0.05, 0.05], k=1)[0],
            "funding_amount": _maybe(rng, float(rng.randint(1, 400) * 250_000)),
            "date_seen": _rand_date(rng, date(2024, 1, 1), 700),
            "company_info": _maybe(rng, {
                "hq_country": rng.choice(COUNTRIES),
                "size": rng.choice(TEAM_SIZES),
            }),
        })
    return rows


def generate_all(seed: int = SEED) -> dict[str, list[dict]]:
    """Return deterministic demo rows keyed by physical table name."""
    fake = Faker()
    fake.seed_instance(seed)
    rng = random.Random(seed)
    return {
        "investors": gen_investors(fake, rng),
        "funding_rounds_exits": gen_exits(fake, rng),
        "funding_rounds_us_sfd_23": gen_us_seed(fake, rng),
        "companies_startups": gen_startups(fake, rng),
        "companies_growth": gen_growth(fake, rng),
        "companies_franchises": gen_franchises(fake, rng),
        "live_funding": gen_live_funding(fake, rng),
    }


def build_memory_source():
    """In-memory data source pre-loaded with the demo rows."""
    from src.db.memory_source import InMemoryDataSource

    return InMemoryDataSource(generate_all())


# ── DDL ──────────────────────────────────────────────────

DDL = {
    "investors": """
        id INTEGER PRIMARY KEY, name TEXT, profile TEXT, location TEXT,
        current_position TEXT, investment_min NUMERIC, investment_max NUMERIC,
        sweet_spot NUMERIC, current_fund_size TEXT, ranking INTEGER""",
    "funding_rounds_exits": """
        id INTEGER PRIMARY KEY, company TEXT, exit_value_billions NUMERIC,
        exit_type TEXT, total_funding_millions NUMERIC, industry TEXT,
        deal_closed_date DATE""",
    "funding_rounds_us_sfd_23": """
        id INTEGER PRIMARY KEY, company TEXT, industry TEXT, amount NUMERIC,
        valuation NUMERIC, lead_investors TEXT, date_raised DATE""",
    "companies_startups": """
        id INTEGER PRIMARY KEY, name TEXT, short_description TEXT, tags TEXT,
        country TEXT, state TEXT, rank TEXT, founded TEXT""",
    "companies_growth": """
        id INTEGER PRIMARY KEY, name TEXT, industry TEXT, what_is TEXT,
        location TEXT, growjo_ranking TEXT, annual_revenue TEXT, employees INTEGER""",
    "companies_franchises": """
        id INTEGER PRIMARY KEY, title TEXT, description TEXT, industry TEXT,
        rank TEXT, initial_investment TEXT, units_as_of_2024 TEXT""",
    "live_funding": """
        id INTEGER PRIMARY KEY, company_name TEXT, round_type TEXT,
        main_category TEXT, currency TEXT, funding_amount NUMERIC,
        date_seen DATE, company_info JSONB""",
}

JSONB_COLUMNS = {"live_funding": {"company_info"}}


# ── Bulk insert helper ───────────────────────────────────

def _bulk_insert(engine, table: str, rows: list[dict], batch_size: int = 2000):
    """Insert rows into *table* in batches using executemany-style VALUES."""
    if not rows:
        return
    json_cols = JSONB_COLUMNS.get(table, set())
    cols = list(rows[0].keys())
    col_list = ", ".join(cols)
    param_list = ", ".join(
        f"CAST(:{c} AS JSONB)" if c in json_cols else f":{c}" for c in cols
    )
    if json_cols:
        rows = [
            {k: json.dumps(v) if k in json_cols and v is not None else v for k, v in r.items()}
            for r in rows
        ]
    sql = text(f"INSERT INTO {table} ({col_list}) VALUES ({param_list}) ON CONFLICT DO NOTHING")
    with engine.begin() as conn:
        for i in range(0, len(rows), batch_size):
            conn.execute(sql, rows[i : i + batch_size])
    print(f"  ✓ {table}: {len(rows):,} rows")


# ── Main ─────────────────────────────────────────────────

def main():
    print("═══ Seed Data Generator ═══")
    engine = create_engine(_db_url(), echo=False)

    print("Creating tables …")
    with engine.begin() as conn:
        for table, columns in DDL.items():
            conn.execute(text(f"CREATE TABLE IF NOT EXISTS {table} ({columns})"))
            # Truncate existing data for idempotency
            conn.execute(text(f"TRUNCATE TABLE {table}"))

    print("Generating data …")
    tables = generate_all()

    print("Inserting …")
    for table, rows in tables.items():
        _bulk_insert(engine, table, rows)

    total = sum(len(rows) for rows in tables.values())
    print(f"\nDone -- seeded {total:,} rows across {len(tables)} tables.")


if __name__ == "__main__":
    main()
