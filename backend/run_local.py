# backend/run_local.py
import sys

from backend.lib.water_balance_core.calculator import compute_metrics
from backend.lib.water_balance_core.io import load_csv_file
from backend.lib.water_balance_core.quality import rank_zone_losses
from backend.lib.water_balance_core.trend import compute_trend


def main(csv_path, month="Mar", year="2025"):
    records = load_csv_file(csv_path)
    print(f"Parsed {len(records)} meters")

    m = compute_metrics(records, month, year)
    print(f"Water balance {m.period.key}:")
    print(f" - L1 supply     : {m.total_l1_supply:,.0f} m3")
    print(f" - L2 + DC volume: {m.total_l2_volume:,.0f} m3")
    print(f" - L3 + DC volume: {m.total_l3_volume:,.0f} m3")
    print(f" - Stage 1 loss  : {m.stage1_loss:,.0f} m3 ({m.stage1_loss_percentage:.1f}%)")
    print(f" - Stage 2 loss  : {m.stage2_loss:,.0f} m3 ({m.stage2_loss_percentage:.1f}%)")
    print(f" - Total loss    : {m.total_loss:,.0f} m3 ({m.total_loss_percentage:.1f}%)")

    for row in rank_zone_losses(m):
        print(f" - {row['zone']}: {row['lossPercentage']}% ({row['status']})")

    print(f"Loss trend {year}:")
    for p in compute_trend(records, year):
        print(f" - {p.period}: total {p.total_loss:,.0f} m3 ({p.total_loss_pct:.1f}%)")


if __name__ == "__main__":
    csv = sys.argv[1] if len(sys.argv) > 1 else "backend/data/meters.csv"
    month = sys.argv[2] if len(sys.argv) > 2 else "Mar"
    year = sys.argv[3] if len(sys.argv) > 3 else "2025"
    main(csv, month, year)
