"""Integration tests for the /api/services and /api/packages catalogue endpoints."""

from decimal import Decimal

from conftest import auth_headers


class TestServiceCatalogue:
    async def test_clients_see_active_services(self, api, client_user, training_service, free_service):
        headers = auth_headers(client_user)

        response = await api.get("/api/services", headers=headers)

        assert response.status_code == 200
        body = response.json()
        assert {s["id"] for s in body} == {str(training_service.id), str(free_service.id)}
        training = next(s for s in body if s["id"] == str(training_service.id))
        assert training["durationMins"] == 60
        assert training["category"] == "personal_training"
        assert training["isActive"] is True

    async def test_admin_lifecycle(self, api, admin_user, client_user):
        admin = auth_headers(admin_user)

        created = await api.post(
            "/api/services",
            json={"name": "Golf Swing Analysis", "durationMins": 45, "price": "120.00", "category": "golf_fitness"},
            headers=admin,
        )
        assert created.status_code == 201
        service_id = created.json()["id"]

        updated = await api.patch(f"/api/services/{service_id}", json={"durationMins": 60}, headers=admin)
        assert updated.status_code == 200
        assert updated.json()["durationMins"] == 60
        assert Decimal(str(updated.json()["price"])) == Decimal("120.00")

        deactivated = await api.delete(f"/api/services/{service_id}", headers=admin)
        assert deactivated.status_code == 200
        assert deactivated.json()["isActive"] is False

        client_view = await api.get(f"/api/services/{service_id}", headers=auth_headers(client_user))
        admin_view = await api.get(f"/api/services/{service_id}", headers=admin)
        assert client_view.status_code == 404
        assert admin_view.status_code == 200

    async def test_include_inactive_is_admin_only(self, api, admin_user, client_user, training_service, free_service):
        await api.delete(f"/api/services/{free_service.id}", headers=auth_headers(admin_user))
        params = {"includeInactive": "true"}

        as_client = await api.get("/api/services", params=params, headers=auth_headers(client_user))
        as_admin = await api.get("/api/services", params=params, headers=auth_headers(admin_user))

        assert [s["id"] for s in as_client.json()] == [str(training_service.id)]
        assert len(as_admin.json()) == 2

    async def test_clients_cannot_manage(self, api, client_user, training_service):
        headers = auth_headers(client_user)

        created = await api.post(
            "/api/services", json={"name": "Free stuff", "durationMins": 30, "price": "0"}, headers=headers
        )
        deleted = await api.delete(f"/api/services/{training_service.id}", headers=headers)

        assert created.status_code == 403
        assert deleted.status_code == 403
        assert deleted.json()["code"] == "FORBIDDEN"

    async def test_invalid_duration_rejected(self, api, admin_user):
        response = await api.post(
            "/api/services",
            json={"name": "Nothing", "durationMins": 0, "price": "10.00"},
            headers=auth_headers(admin_user),
        )

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    async def test_requires_authentication(self, api, training_service):
        response = await api.get("/api/services")
        assert response.status_code == 401


class TestPackageCatalogue:
    async def test_lists_active_packages(self, api, client_user, admin_user, training_package):
        created = await api.post(
            "/api/packages",
            json={
                "name": "Recovery Trio",
                "sessionCount": 3,
                "price": "210.00",
                "validityDays": 60,
                "category": "recovery",
            },
            headers=auth_headers(admin_user),
        )
        assert created.status_code == 201
        await api.delete(f"/api/packages/{created.json()['id']}", headers=auth_headers(admin_user))

        response = await api.get("/api/packages", headers=auth_headers(client_user))

        assert response.status_code == 200
        body = response.json()
        assert [p["id"] for p in body] == [str(training_package.id)]
        assert body[0]["sessionCount"] == 5
        assert body[0]["validityDays"] == 90

    async def test_admin_updates_price(self, api, admin_user, training_package):
        response = await api.patch(
            f"/api/packages/{training_package.id}", json={"price": "600.00"}, headers=auth_headers(admin_user)
        )

        assert response.status_code == 200
        assert Decimal(str(response.json()["price"])) == Decimal("600.00")
        assert response.json()["sessionCount"] == 5

    async def test_deactivated_package_cannot_be_bought(self, api, admin_user, client_user, training_package):
        await api.delete(f"/api/packages/{training_package.id}", headers=auth_headers(admin_user))

        response = await api.post(
            f"/api/packages/{training_package.id}/checkout", headers=auth_headers(client_user)
        )

        assert response.status_code == 404

    async def test_category_is_required(self, api, admin_user):
        response = await api.post(
            "/api/packages",
            json={"name": "Mystery Pack", "sessionCount": 3, "price": "99.00", "validityDays": 30},
            headers=auth_headers(admin_user),
        )

        assert response.status_code == 400
