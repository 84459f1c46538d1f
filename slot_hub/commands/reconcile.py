import asyncio

from slot_hub.context import build_context
from slot_hub.database import SessionLocal
from slot_hub.reconciliation import generate_reconciliation_csv, sweep_reservations


async def reconcile(output_path: str = "reconciliation.csv") -> int:
    ctx = build_context()
    db = SessionLocal()
    try:
        results = await sweep_reservations(db, ctx)
    finally:
        db.close()
        await ctx.ledger.aclose()
    csv_text, in_flight = generate_reconciliation_csv(results, ctx.settings.token_decimals)
    with open(output_path, "w", newline="") as f:
        f.write(csv_text)
    return 1 if in_flight else 0

if __name__ == "__main__":
    exit_code = asyncio.run(reconcile())
    raise SystemExit(exit_code)
