from fastapi.testclient import TestClient

from docportal.app import app


def test_health_endpoint_ok():
    client = TestClient(app)
    response = client.get('/health')

    assert response.status_code == 200
    assert response.json() == {'status': 'ok'}


def test_health_does_not_count_as_page_connection():
    client = TestClient(app)

    client.get('/health')

    assert app.state.portal.connections.active == 0
