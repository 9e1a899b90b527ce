# tests/test_app.py
import io
import pathlib

import pytest
from botocore.exceptions import ClientError

from backend.app import app, upload_filename
from backend.lib.s3_service import S3Service
from backend.lib.water_balance_core.io import load_csv_file
from backend.lib.water_balance_core.repository import MeterRepository

SAMPLE = pathlib.Path(__file__).parent / "sample.csv"


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setitem(app.config, "TESTING", True)
    monkeypatch.setitem(app.config, "METERS_CSV_PATH", tmp_path / "meters.csv")
    monkeypatch.setitem(app.config, "EXCLUDED_ACCOUNTS", ["4300322"])
    monkeypatch.setitem(app.config, "METER_REPOSITORY", MeterRepository(load_csv_file(SAMPLE)))
    with app.test_client() as c:
        yield c


def test_health(client):
    data = client.get("/health").get_json()
    assert data["status"] == "ok"
    assert data["meters"] == 5


def test_metrics(client):
    resp = client.get("/api/metrics?month=Jan&year=2025")
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["period"] == "Jan-25"
    assert data["totalL1Supply"] == 1000
    assert data["totalL2Volume"] == 1750
    assert data["totalL3Volume"] == 1450
    assert data["stage1Loss"] == -750
    assert data["stage2Loss"] == 300
    assert data["consumptionByType"] == {"Residential (Villa)": 400, "Retail": 1050}
    assert data["zoneMetrics"]["Zone_A"]["l3Sum"] == 400


def test_metrics_requires_selector(client):
    resp = client.get("/api/metrics?month=Jan")
    assert resp.status_code == 400
    assert "required" in resp.get_json()["error"]
    assert client.get("/api/metrics?month=Foo&year=2025").status_code == 400


def test_trend(client):
    data = client.get("/api/trend?year=2025").get_json()
    assert [p["period"] for p in data["data"]] == ["Jan-25", "Feb-25", "Mar-25"]
    # no L1 reading in March
    assert data["data"][2]["totalLossPct"] == 0
    assert client.get("/api/trend").status_code == 400


def test_zone_endpoints(client):
    losses = client.get("/api/zones/losses?month=Feb&year=2025").get_json()
    assert losses["zones"][0]["zone"] == "Zone_A"
    assert losses["zones"][0]["lossPercentage"] == pytest.approx(41.7)

    consumption = client.get("/api/zones/consumption?month=Feb&year=2025").get_json()
    assert {"zone": "Zone_A", "value": 350} in consumption["data"]

    meters = client.get("/api/zones/Zone_A/meters?month=Feb&year=2025").get_json()
    assert [m["accountId"] for m in meters["meters"]] == ["3001"]
    assert meters["meters"][0]["reading"] == 350

    assert client.get("/api/zones/losses?month=Feb&year=2025&limit=x").status_code == 400


def test_quality(client):
    data = client.get("/api/quality?month=Jan&year=2025").get_json()
    assert data["issues"] == ["negative_stage1_loss"]


def test_upload_replaces_dataset(client):
    csv_text = "Label,Acct #,Zone,Jan-25\nL1,C1,Main Bulk,500\nL2,2,Z1,400\n"
    resp = client.post("/upload", data={"file": (io.BytesIO(csv_text.encode()), "new.csv")},
                       content_type="multipart/form-data")
    assert resp.status_code == 202
    assert resp.get_json() == {"upload_id": "new.csv", "processed_count": 2}
    assert (app.config["METERS_CSV_PATH"]).read_text() == csv_text
    data = client.get("/api/metrics?month=Jan&year=2025").get_json()
    assert data["totalL1Supply"] == 500
    assert data["stage1Loss"] == 100


def test_upload_errors(client):
    assert client.post("/upload").status_code == 400
    bad = "Label,Acct #,Jan-25\nL7,1,5\n"
    resp = client.post("/upload", data={"file": (io.BytesIO(bad.encode()), "bad.csv")},
                       content_type="multipart/form-data")
    assert resp.status_code == 400
    assert "Unknown hierarchy level" in resp.get_json()["error"]


def test_s3_files_disabled(client):
    assert client.get("/s3/files").status_code == 400


def test_zone_losses_negative_limit(client):
    assert client.get("/api/zones/losses?month=Feb&year=2025&limit=-1").status_code == 400
    assert client.get("/api/zones/losses?month=Feb&year=2025&limit=0").get_json()["zones"] == []


def test_zone_summary(client):
    zones = client.get("/api/zones/summary").get_json()["zones"]
    assert [z["zoneName"] for z in zones] == ["Main Bulk", "Zone_A"]
    zone_a = zones[1]
    assert zone_a["monthlyConsumption"] == {"Jan-25": 1100, "Feb-25": 950, "Mar-25": 800}
    assert zone_a["totalConsumption"] == 2850
    assert zone_a["percentageOfMain"] == pytest.approx(150.0)
    assert zone_a["meterCount"] == 2
    assert zone_a["meterTypes"] == {"Bulk": 1, "Residential (Villa)": 1}


class RecordingS3Client:
    def __init__(self, fail=False):
        self.fail = fail
        self.objects = {}

    def put_object(self, Bucket, Key, Body, ContentType):
        if self.fail:
            raise ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject")
        self.objects[Key] = Body


def post_csv(client, csv_text, filename="new.csv"):
    return client.post("/upload", data={"file": (io.BytesIO(csv_text.encode()), filename)},
                       content_type="multipart/form-data")


def test_upload_keeps_dataset_when_s3_save_fails(client, monkeypatch):
    s3_client = RecordingS3Client(fail=True)
    monkeypatch.setattr("backend.app.USE_S3", True)
    monkeypatch.setattr("backend.app.s3_service", S3Service(bucket_name="b", client=s3_client))
    before = app.config["METER_REPOSITORY"]

    resp = post_csv(client, "Label,Acct #,Zone,Jan-25\nL1,C1,Main Bulk,500\n")
    assert resp.status_code == 500
    assert "error" in resp.get_json()
    assert app.config["METER_REPOSITORY"] is before
    assert s3_client.objects == {}


def test_upload_saves_dataset_and_backup_to_s3(client, monkeypatch):
    s3_client = RecordingS3Client()
    service = S3Service(bucket_name="b", client=s3_client)
    monkeypatch.setattr("backend.app.USE_S3", True)
    monkeypatch.setattr("backend.app.s3_service", service)
    csv_text = "Label,Acct #,Zone,Jan-25\nL1,C1,Main Bulk,500\n"

    resp = post_csv(client, csv_text)
    assert resp.status_code == 202
    body = resp.get_json()
    assert body["s3_key"].startswith("uploads/")
    assert body["s3_key"].endswith("_new.csv")
    assert s3_client.objects[service.dataset_key] == csv_text.encode()
    assert not app.config["METERS_CSV_PATH"].exists()
    assert len(app.config["METER_REPOSITORY"]) == 1


def test_upload_filename():
    assert upload_filename(None) == "meters.csv"
    assert upload_filename("") == "meters.csv"
    assert upload_filename("../x.csv") == "x.csv"
    assert upload_filename("Meters Apr.csv") == "Meters_Apr.csv"
