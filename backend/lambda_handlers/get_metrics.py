# backend/lambda_handlers/get_metrics.py
"""
Lambda function returning water balance metrics or a loss trend
Triggered by API Gateway; reads the meter export from S3
"""
import json
import logging
import os

from backend.lib.s3_service import S3Service
from backend.lib.water_balance_core.calculator import compute_metrics, parse_excluded_accounts
from backend.lib.water_balance_core.trend import compute_trend

logger = logging.getLogger()
logger.setLevel(os.getenv('LOG_LEVEL', 'INFO').upper())


def _s3_service() -> S3Service:
    return S3Service()


def lambda_handler(event, context):
    """
    Query parameters:
    - view: 'metrics' (default) or 'trend'
    - month: required for 'metrics', e.g. 'Mar'
    - year: required, e.g. '2025'
    """
    logger.info("Received event: %s", json.dumps(event))

    params = event.get('queryStringParameters') or {}
    view = params.get('view', 'metrics')
    month = params.get('month')
    year = params.get('year')

    if view not in ('metrics', 'trend'):
        return response(400, {'error': "view must be 'metrics' or 'trend'"})
    if not year or (view == 'metrics' and not month):
        return response(400, {'error': 'month and year are required'})

    excluded = parse_excluded_accounts(os.getenv('EXCLUDED_ACCOUNTS'))
    try:
        records = _s3_service().load_meter_records()
        if view == 'trend':
            points = compute_trend(records, year, excluded_accounts=excluded)
            return response(200, {'year': year, 'data': [p.to_dict() for p in points]})
        metrics = compute_metrics(records, month, year, excluded_accounts=excluded)
        return response(200, metrics.to_dict())
    except ValueError as e:
        return response(400, {'error': str(e)})
    except Exception as e:
        logger.exception("Failed to compute %s", view)
        return response(500, {'error': str(e)})


def response(status_code: int, body: dict) -> dict:
    """Create API Gateway response."""
    return {
        'statusCode': status_code,
        'headers': {
            'Content-Type': 'application/json',
            'Access-Control-Allow-Origin': '*',
            'Access-Control-Allow-Methods': 'GET,OPTIONS',
            'Access-Control-Allow-Headers': 'Content-Type'
        },
        'body': json.dumps(body)
    }
