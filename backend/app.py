"""
=============================================================================
WATER BALANCE TRACKER - MAIN FLASK APPLICATION
=============================================================================
JSON API over the water balance engine of a hierarchical metering network
(L1 source -> L2 zone bulk / DC direct connections -> L3 consumers):
- Monthly water balance (supply, volumes, stage losses, percentages)
- Loss trend for a year
- Zone loss ranking, consumption per zone, zone summaries, meters of a zone
- Data-quality flags (missing L1 meter, negative stage-1 loss, ...)
- Uploading a new meter export (CSV)

The meter dataset comes from a local CSV file, or from S3 when
USE_S3_STORAGE=true.

How to run:
    python -m backend.app

Then visit: http://127.0.0.1:5000/api/metrics?month=Mar&year=2025
=============================================================================
"""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from flask import Flask, jsonify, request
from werkzeug.utils import secure_filename

# Must run before any environment variable is read
load_dotenv()

from backend.lib.water_balance_core.cache import MetricsCache
from backend.lib.water_balance_core.calculator import parse_excluded_accounts
from backend.lib.water_balance_core.io import load_csv_file, parse_csv_string
from backend.lib.water_balance_core.models import Period
from backend.lib.water_balance_core.quality import (
    check_data_quality,
    consumption_by_zone,
    rank_zone_losses,
    zone_meters,
    zone_summaries,
)
from backend.lib.water_balance_core.repository import MeterRepository
from backend.lib.water_balance_core.trend import compute_trend

logging.basicConfig(
    level=os.getenv('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s'
)

# =============================================================================
# FLASK APPLICATION INITIALIZATION
# =============================================================================

app = Flask(__name__)

app.config.update(
    METERS_CSV_PATH=Path(os.getenv('METERS_CSV_PATH', 'backend/data/meters.csv')),
    EXCLUDED_ACCOUNTS=parse_excluded_accounts(os.getenv('EXCLUDED_ACCOUNTS')),
    TREND_WORKERS=int(os.getenv('TREND_WORKERS', '1')),
    # Loaded lazily by get_repository(); replaced on upload
    METER_REPOSITORY=None,
)

metrics_cache = MetricsCache(max_entries=int(os.getenv('METRICS_CACHE_SIZE', '128')))

# -----------------------------------------------------------------------------
# S3 SERVICE - optional remote storage of the meter dataset
# -----------------------------------------------------------------------------
USE_S3 = os.getenv('USE_S3_STORAGE', 'false').lower() == 'true'
s3_service = None

if USE_S3:
    try:
        from backend.lib.s3_service import S3Service
        s3_service = S3Service()
        app.logger.info("S3 storage enabled (bucket %s)", s3_service.bucket_name)
    except Exception as e:
        # fall back to the local CSV file
        app.logger.warning("S3 initialization failed: %s. Using local storage.", e)
        USE_S3 = False

# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def load_repository() -> MeterRepository:
    """
    Load the meter dataset from S3 (if enabled) or from the local CSV file.
    A missing local file gives an empty repository.
    """
    if USE_S3 and s3_service:
        records = s3_service.load_meter_records()
        app.logger.info("Loaded %d meters from s3://%s/%s",
                        len(records), s3_service.bucket_name, s3_service.dataset_key)
        return MeterRepository(records)

    csv_path = Path(app.config['METERS_CSV_PATH'])
    if not csv_path.exists():
        app.logger.warning("Meter file %s not found; starting with no meters", csv_path)
        return MeterRepository([])
    records = load_csv_file(csv_path)
    app.logger.info("Loaded %d meters from %s", len(records), csv_path)
    return MeterRepository(records)


def get_repository() -> MeterRepository:
    repository = app.config.get('METER_REPOSITORY')
    if repository is None:
        repository = load_repository()
        app.config['METER_REPOSITORY'] = repository
    return repository


def upload_filename(filename) -> str:
    """Safe name for an uploaded export; meters.csv when none was sent."""
    return secure_filename(filename or "") or "meters.csv"


def selected_period() -> Period:
    """Period from the ?month=Mar&year=2025 query parameters."""
    month = request.args.get('month')
    year = request.args.get('year')
    if not month or not year:
        raise ValueError("month and year are required")
    return Period.from_selector(month, year)


def period_metrics(period: Period):
    return metrics_cache.get_metrics(
        get_repository(), period.month_token, period.year,
        excluded_accounts=app.config['EXCLUDED_ACCOUNTS']
    )


@app.errorhandler(ValueError)
def bad_request(error):
    return jsonify({"error": str(error)}), 400

# =============================================================================
# API ROUTES
# =============================================================================

@app.route("/health")
def health():
    repository = get_repository()
    return jsonify({
        "status": "ok",
        "meters": len(repository),
        "storage": "s3" if USE_S3 else "local"
    })


@app.route("/api/metrics", methods=["GET"])
def metrics():
    """
    Water balance for one month.

    Example Request:
        GET /api/metrics?month=Mar&year=2025
    """
    return jsonify(period_metrics(selected_period()).to_dict())


@app.route("/api/trend", methods=["GET"])
def trend():
    """
    Loss trend for a year. 2025 covers Jan-Mar only.

    Example Request:
        GET /api/trend?year=2024
    """
    year = request.args.get('year')
    if not year:
        return jsonify({"error": "year required"}), 400
    points = compute_trend(
        get_repository().get_all(), year,
        excluded_accounts=app.config['EXCLUDED_ACCOUNTS'],
        max_workers=app.config['TREND_WORKERS']
    )
    return jsonify({"year": year, "data": [p.to_dict() for p in points]})


@app.route("/api/zones/losses", methods=["GET"])
def zone_losses():
    """
    Zones ranked by loss percentage, worst first.

    Query Parameters:
        month, year (required)
        limit (optional): number of zones, default 5
    """
    period = selected_period()
    try:
        limit = int(request.args.get('limit', 5))
    except ValueError:
        return jsonify({"error": "limit must be an integer"}), 400
    if limit < 0:
        return jsonify({"error": "limit must be >= 0"}), 400
    return jsonify({
        "period": period.key,
        "zones": rank_zone_losses(period_metrics(period), limit=limit)
    })


@app.route("/api/zones/consumption", methods=["GET"])
def zone_consumption():
    period = selected_period()
    data = consumption_by_zone(
        get_repository().get_all(), period, app.config['EXCLUDED_ACCOUNTS']
    )
    return jsonify({
        "period": period.key,
        "data": [{"zone": zone, "value": value} for zone, value in data.items()]
    })


@app.route("/api/zones/summary", methods=["GET"])
def zone_summary():
    """
    Per-zone consumption over all periods in the dataset, share of the
    L1 supply, and meter counts by type.
    """
    summaries = zone_summaries(get_repository().get_all(), app.config['EXCLUDED_ACCOUNTS'])
    return jsonify({"zones": summaries})


@app.route("/api/zones/<zone>/meters", methods=["GET"])
def meters_in_zone(zone):
    """
    End-consumer (L3) meters of a zone. With month and year, each meter
    also carries its reading for that period.
    """
    period = selected_period() if request.args.get('month') else None
    meters = []
    for record in zone_meters(get_repository().get_all(), zone, app.config['EXCLUDED_ACCOUNTS']):
        row = record.to_dict()
        if period is not None:
            row["reading"] = record.reading(period)
        meters.append(row)
    return jsonify({"zone": zone, "meters": meters})


@app.route("/api/quality", methods=["GET"])
def quality():
    period = selected_period()
    repository = get_repository()
    issues = check_data_quality(repository.get_all(), period_metrics(period))
    return jsonify({"period": period.key, "issues": issues})


@app.route("/upload", methods=["POST"])
def upload():
    """
    Replace the meter dataset with an uploaded export.

    Expected CSV format:
        Label,Meter Label,Acct #,Zone,Type,Parent Meter,Jan-25,Feb-25,...
        L1,Main Bulk (NAMA),C43659,Main Bulk,Bulk,,32580,44043,...

    HTTP Status Codes:
        202: Accepted
        400: No file, or the CSV could not be parsed
        500: The dataset could not be saved to S3; nothing is replaced
    """
    if "file" not in request.files:
        return jsonify({"error": "No file uploaded"}), 400

    file = request.files["file"]
    filename = upload_filename(file.filename)
    content_bytes = file.read()
    records = parse_csv_string(content_bytes.decode("utf-8-sig"))

    response = {
        "upload_id": filename,
        "processed_count": len(records)
    }

    if USE_S3 and s3_service:
        if not s3_service.save_dataset(content_bytes):
            return jsonify({"error": "Failed to save dataset to S3"}), 500
        s3_key = s3_service.upload_file(content_bytes, filename)
        if s3_key:
            response["s3_key"] = s3_key
    else:
        csv_path = Path(app.config['METERS_CSV_PATH'])
        csv_path.parent.mkdir(parents=True, exist_ok=True)
        csv_path.write_bytes(content_bytes)

    app.config['METER_REPOSITORY'] = MeterRepository(records)
    app.logger.info("Meter dataset replaced from %s (%d meters)", filename, len(records))
    return jsonify(response), 202


@app.route("/s3/files", methods=["GET"])
def s3_files():
    if not (USE_S3 and s3_service):
        return jsonify({"error": "S3 storage not enabled"}), 400
    return jsonify({"files": s3_service.list_files()})

# =============================================================================
# RUN THE SERVER
# =============================================================================

if __name__ == "__main__":
    app.run(debug=os.getenv('FLASK_DEBUG', 'false').lower() == 'true')
