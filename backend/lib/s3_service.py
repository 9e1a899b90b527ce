"""
=============================================================================
S3 SERVICE - Meter dataset storage on Amazon S3
=============================================================================
The water balance app can read its meter export (the CSV with one row per
meter and one column per 'Mon-YY' period) from S3 instead of the local
disk, and keeps a backup copy of every uploaded export.

Example:
    Bucket: water-balance-meters
    Key:    meters/meters.csv                      (current dataset)
    Key:    uploads/20250401T120000Z_meters.csv    (upload backups)
=============================================================================
"""

import logging
import os
from datetime import datetime, timezone
from typing import Dict, List, Optional

import boto3
from botocore.exceptions import ClientError

from backend.lib.water_balance_core.io import parse_csv_string
from backend.lib.water_balance_core.models import MeterRecord

logger = logging.getLogger(__name__)


class S3Service:
    """
    Wrapper around a boto3 S3 client for the meter dataset.

    Usage:
        s3 = S3Service()
        records = s3.load_meter_records()
        s3.upload_file(b"Label,Meter Label,...", "meters.csv")
    """

    def __init__(self, bucket_name: str = None, client=None):
        """
        Credentials and region come from the environment:
        - AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY / AWS_SESSION_TOKEN
        - AWS_REGION (default 'us-east-1')

        Args:
            bucket_name: overrides S3_BUCKET_NAME.
            client: an existing S3 client (tests pass a fake one).
        """
        self.bucket_name = bucket_name or os.getenv('S3_BUCKET_NAME', 'water-balance-meters')
        self.dataset_key = os.getenv('METERS_S3_KEY', 'meters/meters.csv')
        self.region = os.getenv('AWS_REGION', 'us-east-1')

        if client is not None:
            self.s3_client = client
        else:
            session_token = os.getenv('AWS_SESSION_TOKEN')
            self.s3_client = boto3.client(
                's3',
                region_name=self.region,
                aws_access_key_id=os.getenv('AWS_ACCESS_KEY_ID'),
                aws_secret_access_key=os.getenv('AWS_SECRET_ACCESS_KEY'),
                aws_session_token=session_token if session_token else None
            )

    def upload_file(self, file_content: bytes, filename: str, content_type: str = 'text/csv') -> Optional[str]:
        """
        Store a backup copy of an uploaded export under uploads/ with a
        timestamp prefix.

        Returns:
            str: the S3 key, or None if the upload failed
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y%m%dT%H%M%SZ')
        s3_key = f"uploads/{timestamp}_{filename}"
        try:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=s3_key,
                Body=file_content,
                ContentType=content_type
            )
            return s3_key
        except ClientError as e:
            logger.error("Failed to upload %s to S3: %s", s3_key, e)
            return None

    def save_dataset(self, file_content: bytes) -> bool:
        """Replace the current meter dataset object."""
        try:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=self.dataset_key,
                Body=file_content,
                ContentType='text/csv'
            )
            return True
        except ClientError as e:
            logger.error("Failed to save dataset to S3: %s", e)
            return False

    def download_file(self, s3_key: str) -> Optional[bytes]:
        """
        Returns:
            bytes: the object body, or None if it could not be read
        """
        try:
            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=s3_key)
            return response['Body'].read()
        except ClientError as e:
            logger.error("Failed to download %s from S3: %s", s3_key, e)
            return None

    def load_meter_records(self, s3_key: str = None) -> List[MeterRecord]:
        """
        Download and parse the meter export. A missing object gives an
        empty list; a malformed export raises ValueError from the parser.
        """
        content = self.download_file(s3_key or self.dataset_key)
        if content is None:
            return []
        return parse_csv_string(content.decode('utf-8-sig'))

    def list_files(self, prefix: str = 'uploads/') -> List[Dict]:
        """
        Returns:
            list: dicts with key, size and last_modified of each object
        """
        try:
            response = self.s3_client.list_objects_v2(Bucket=self.bucket_name, Prefix=prefix)
            return [
                {
                    'key': obj['Key'],
                    'size': obj['Size'],
                    'last_modified': obj['LastModified'].isoformat()
                }
                for obj in response.get('Contents', [])
            ]
        except ClientError as e:
            logger.error("Failed to list files: %s", e)
            return []
