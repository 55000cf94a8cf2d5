#!/usr/bin/env python3
"""Walk the HTTP API against the simulated adapter and print each reply."""
from fastapi.testclient import TestClient
from elmbridge.webapp.main import app


def run():
    client = TestClient(app)

    r = client.get("/api/obd/status")
    print('status ->', r.status_code, r.json())

    r = client.post("/api/obd/connect", json={"simulate": True, "device_name": "Simulator"})
    print('connect(sim) ->', r.status_code, r.json())

    r = client.get("/api/obd/dtcs")
    print('dtcs ->', r.status_code, r.json())

    r = client.get("/api/obd/dtcs/pending")
    print('pending ->', r.status_code, r.json())

    r = client.get("/api/obd/vehicle-data")
    print('vehicle-data ->', r.status_code, r.json())

    r = client.get("/api/obd/vin")
    print('vin ->', r.status_code, r.json())

    r = client.get("/api/coding/functions?pro=true")
    print('coding functions ->', r.status_code, len(r.json()['functions']))

    r = client.post("/api/obd/disconnect")
    print('disconnect ->', r.status_code, r.json())


if __name__ == '__main__':
    run()
