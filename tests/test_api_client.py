"""
API Client Tests
================
Envelope unwrapping and status-code to error mapping.
"""

import asyncio

import httpx
import pytest

from state.models import Instance, Mapping
from utils.api_client import ApiClient, ProjectsApi, mapping_id
from utils.errors import NotFoundError, PersistenceConflict, PersistenceError


def client_for(handler):
    return ApiClient("http://api.test/api", transport=httpx.MockTransport(handler))


class TestRequests:

    def test_data_envelope_is_unwrapped(self):
        client = client_for(lambda request: httpx.Response(200, json={"message": "ok", "data": [1, 2]}))
        assert asyncio.run(client.get("projects")) == [1, 2]

    def test_empty_body_returns_none(self):
        client = client_for(lambda request: httpx.Response(204))
        assert asyncio.run(client.delete("projects/p1")) is None

    def test_query_params_are_sent(self):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, json={"data": []})

        asyncio.run(client_for(handler).get("projects", params={"userId": "u1"}))
        assert seen == ["http://api.test/api/projects?userId=u1"]


class TestErrors:

    @pytest.mark.parametrize("status, error_type", [
        (404, NotFoundError),
        (409, PersistenceConflict),
        (403, PersistenceConflict),
        (500, PersistenceError),
    ])
    def test_status_mapping(self, status, error_type):
        client = client_for(lambda request: httpx.Response(status, json={"message": "nope", "code": "E1"}))
        with pytest.raises(error_type) as excinfo:
            asyncio.run(client.get("projects/p1"))
        assert excinfo.value.status_code == status
        assert excinfo.value.to_dict()["code"] == "E1"

    def test_non_json_success_body(self):
        client = client_for(lambda request: httpx.Response(200, text="<html>proxy ok</html>"))
        with pytest.raises(PersistenceError) as excinfo:
            asyncio.run(client.get("projects"))
        assert excinfo.value.code == "invalid_response"
        assert excinfo.value.status_code == 200

    def test_unreachable_endpoint(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(PersistenceError) as excinfo:
            asyncio.run(client_for(handler).get("projects"))
        assert excinfo.value.code == "unreachable"
        assert excinfo.value.status_code is None


class TestMappingsResource:

    def test_save_mapping_puts_tab_payload(self):
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path, request.url.params.get("userId"), request.content))
            return httpx.Response(200, json={"data": None})

        instance = Instance("srv1", "db1", "Claims")
        mapping = Mapping("Procedure", "Procedure", ({"Waterfall_Group": "E&M"},))
        asyncio.run(ProjectsApi(client_for(handler)).save_mapping("u1", instance, mapping))

        method, path, user_id, body = seen[0]
        assert method == "PUT"
        assert path == f"/api/mappings/{mapping_id(instance, 'Procedure')}"
        assert user_id == "u1"
        assert b'"tabName": "Procedure"' in body or b'"tabName":"Procedure"' in body

    def test_mapping_id_is_stable_per_tab(self):
        instance = Instance("srv1", "db1", "Claims")
        assert mapping_id(instance, "Procedure") == mapping_id(Instance("srv1", "db1", "Claims"), "Procedure")
        assert mapping_id(instance, "Procedure") != mapping_id(instance, "Insurance")
