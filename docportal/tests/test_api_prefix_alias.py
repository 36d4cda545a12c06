from fastapi.testclient import TestClient

from docportal.app import app, create_app
from docportal.config import PortalSettings


def test_api_prefixed_health_route_supported():
    client = TestClient(app)

    response = client.get('/api/health')

    assert response.status_code == 200
    assert response.json() == {'status': 'ok'}


def test_api_prefix_and_plain_routes_share_state(tmp_path):
    client = TestClient(create_app(PortalSettings(work_dir=tmp_path, sweep_on_startup=False)))

    created = client.post('/documents', files={'file': ('a.txt', b'abc', 'text/plain')})

    assert created.status_code == 201
    assert client.get('/api/documents/1').json()['originalName'] == 'a.txt'
