# tests/test_planets.py — Planet, column and membership endpoints
import asyncio

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from models import PlanetCollaborator, PlanetColumn, PlanetTask, PlanetRole
from tests.conftest import get_auth_headers, make_planet, make_column, make_tasks


async def _roles(session_factory, planet_id):
    async with session_factory() as session:
        result = await session.execute(
            select(PlanetCollaborator.user_id, PlanetCollaborator.role)
            .where(PlanetCollaborator.planet_id == planet_id)
        )
        return {user_id: role for user_id, role in result.all()}


@pytest.mark.asyncio
class TestCreatePlanet:
    async def test_create_planet(self, client: AsyncClient, session_factory, test_user):
        """Caller becomes the single owner; defaults fill color and theme"""
        resp = await client.post(
            "/planets",
            json={"name": "Venus", "description": "Second rock"},
            headers=get_auth_headers(test_user),
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["name"] == "Venus"
        assert data["color"] == "#b5b3b3"
        assert len(data["theme"]) == 5
        assert "createdAt" in data

        assert await _roles(session_factory, data["id"]) == {test_user.id: PlanetRole.OWNER}

    async def test_create_for_other_user_forbidden(self, client: AsyncClient, test_user, other_user):
        resp = await client.post(
            "/planets",
            json={"name": "Venus", "description": "x", "ownerId": other_user.id},
            headers=get_auth_headers(test_user),
        )
        assert resp.status_code == 403

    async def test_admin_creates_for_other_user(self, client: AsyncClient, session_factory, admin_user, other_user):
        resp = await client.post(
            "/planets",
            json={"name": "Venus", "description": "x", "ownerId": other_user.id},
            headers=get_auth_headers(admin_user),
        )
        assert resp.status_code == 201
        assert await _roles(session_factory, resp.json()["id"]) == {other_user.id: PlanetRole.OWNER}

    async def test_unknown_owner(self, client: AsyncClient, admin_user):
        resp = await client.post(
            "/planets",
            json={"name": "Venus", "description": "x", "ownerId": "ghost"},
            headers=get_auth_headers(admin_user),
        )
        assert resp.status_code == 404

    async def test_invalid_theme(self, client: AsyncClient, test_user):
        resp = await client.post(
            "/planets",
            json={"name": "Venus", "description": "x", "theme": ["#fff", "#000"]},
            headers=get_auth_headers(test_user),
        )
        assert resp.status_code == 400

    async def test_name_too_long(self, client: AsyncClient, test_user):
        resp = await client.post(
            "/planets",
            json={"name": "n" * 21, "description": "x"},
            headers=get_auth_headers(test_user),
        )
        assert resp.status_code == 400


@pytest.mark.asyncio
class TestGetPlanet:
    async def test_member_sees_collaborators(self, client: AsyncClient, db_session, test_user, other_user):
        planet = await make_planet(db_session, test_user, collaborators=[other_user])

        resp = await client.get(f"/planets/{planet.id}", headers=get_auth_headers(other_user))
        assert resp.status_code == 200
        data = resp.json()
        assert data["planet"]["id"] == planet.id
        assert data["role"] == "collaborator"
        assert [c["id"] for c in data["collaborators"]] == [test_user.id, other_user.id]
        assert data["collaborators"][0]["role"] == "owner"
        assert "passwordHash" not in data["collaborators"][0]

    async def test_non_member_forbidden(self, client: AsyncClient, other_user, planet):
        resp = await client.get(f"/planets/{planet.id}", headers=get_auth_headers(other_user))
        assert resp.status_code == 403

    async def test_admin_has_no_planet_role(self, client: AsyncClient, admin_user, planet):
        resp = await client.get(f"/planets/{planet.id}", headers=get_auth_headers(admin_user))
        assert resp.status_code == 200
        assert resp.json()["role"] is None

    async def test_missing_planet(self, client: AsyncClient, test_user):
        resp = await client.get("/planets/missing", headers=get_auth_headers(test_user))
        assert resp.status_code == 404


@pytest.mark.asyncio
class TestUpdateDeletePlanet:
    async def test_owner_updates(self, client: AsyncClient, test_user, planet):
        resp = await client.put(
            f"/planets/{planet.id}",
            json={"name": "Phobos", "color": "#123456"},
            headers=get_auth_headers(test_user),
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["name"] == "Phobos"
        assert data["color"] == "#123456"
        assert data["description"] == "Red planet backlog"

    async def test_collaborator_cannot_update(self, client: AsyncClient, db_session, test_user, other_user):
        planet = await make_planet(db_session, test_user, collaborators=[other_user])
        resp = await client.put(
            f"/planets/{planet.id}", json={"name": "Phobos"}, headers=get_auth_headers(other_user),
        )
        assert resp.status_code == 403

    async def test_delete_cascades(self, client: AsyncClient, db_session, session_factory, test_user, planet):
        column = await make_column(db_session, planet)
        await make_tasks(db_session, column, ["A", "B"])

        resp = await client.delete(f"/planets/{planet.id}", headers=get_auth_headers(test_user))
        assert resp.status_code == 200

        async with session_factory() as session:
            assert (await session.execute(select(PlanetColumn).where(PlanetColumn.planet_id == planet.id))).first() is None
            assert (await session.execute(select(PlanetTask).where(PlanetTask.column_id == column.id))).first() is None
            assert (await session.execute(
                select(PlanetCollaborator).where(PlanetCollaborator.planet_id == planet.id)
            )).first() is None

    async def test_collaborator_cannot_delete(self, client: AsyncClient, db_session, test_user, other_user):
        planet = await make_planet(db_session, test_user, collaborators=[other_user])
        resp = await client.delete(f"/planets/{planet.id}", headers=get_auth_headers(other_user))
        assert resp.status_code == 403


@pytest.mark.asyncio
class TestColumns:
    async def test_create_and_list_columns(self, client: AsyncClient, test_user, planet):
        headers = get_auth_headers(test_user)
        resp = await client.post(f"/planets/{planet.id}/columns", json={"name": "Doing"}, headers=headers)
        assert resp.status_code == 201
        column_id = resp.json()["id"]

        for content in ("one", "two"):
            await client.post(f"/planets/columns/{column_id}/task", json={"content": content}, headers=headers)

        resp = await client.get(f"/planets/{planet.id}/columns", headers=headers)
        assert resp.status_code == 200
        columns = resp.json()
        assert len(columns) == 1
        assert columns[0]["name"] == "Doing"
        assert [(t["content"], t["order"]) for t in columns[0]["tasks"]] == [("one", 1), ("two", 2)]

    async def test_column_name_too_long(self, client: AsyncClient, test_user, planet):
        resp = await client.post(
            f"/planets/{planet.id}/columns", json={"name": "c" * 16}, headers=get_auth_headers(test_user),
        )
        assert resp.status_code == 400

    async def test_non_member_cannot_list(self, client: AsyncClient, other_user, planet):
        resp = await client.get(f"/planets/{planet.id}/columns", headers=get_auth_headers(other_user))
        assert resp.status_code == 403

    async def test_delete_column(self, client: AsyncClient, db_session, session_factory, test_user, planet):
        column = await make_column(db_session, planet)
        tasks = await make_tasks(db_session, column, ["A"])

        resp = await client.delete(f"/planets/columns/{column.id}", headers=get_auth_headers(test_user))
        assert resp.status_code == 200
        async with session_factory() as session:
            assert await session.get(PlanetColumn, column.id) is None
            assert await session.get(PlanetTask, tasks[0].id) is None

    async def test_delete_missing_column(self, client: AsyncClient, test_user):
        resp = await client.delete("/planets/columns/missing", headers=get_auth_headers(test_user))
        assert resp.status_code == 404


@pytest.mark.asyncio
class TestMembership:
    async def test_remove_collaborator(self, client: AsyncClient, db_session, session_factory, test_user, other_user):
        planet = await make_planet(db_session, test_user, collaborators=[other_user])
        column = await make_column(db_session, planet)
        (task,) = await make_tasks(db_session, column, ["A"])
        task.assigned_user_id = other_user.id
        await db_session.commit()

        resp = await client.delete(f"/planets/{planet.id}/users/{other_user.id}", headers=get_auth_headers(test_user))
        assert resp.status_code == 204
        assert other_user.id not in await _roles(session_factory, planet.id)

        async with session_factory() as session:
            assert (await session.get(PlanetTask, task.id)).assigned_user_id is None

    async def test_cannot_remove_owner(self, client: AsyncClient, test_user, planet):
        resp = await client.delete(f"/planets/{planet.id}/users/{test_user.id}", headers=get_auth_headers(test_user))
        assert resp.status_code == 409

    async def test_remove_non_member(self, client: AsyncClient, test_user, other_user, planet):
        resp = await client.delete(f"/planets/{planet.id}/users/{other_user.id}", headers=get_auth_headers(test_user))
        assert resp.status_code == 404

    async def test_collaborator_cannot_remove(self, client: AsyncClient, db_session, test_user, other_user, admin_user):
        planet = await make_planet(db_session, admin_user, collaborators=[test_user, other_user])
        resp = await client.delete(f"/planets/{planet.id}/users/{other_user.id}", headers=get_auth_headers(test_user))
        assert resp.status_code == 403

    async def test_promote_transfers_ownership(self, client: AsyncClient, db_session, session_factory, test_user, other_user):
        planet = await make_planet(db_session, test_user, collaborators=[other_user])

        resp = await client.put(
            f"/planets/{planet.id}/users/{other_user.id}/promote", headers=get_auth_headers(test_user),
        )
        assert resp.status_code == 200
        assert await _roles(session_factory, planet.id) == {
            other_user.id: PlanetRole.OWNER,
            test_user.id: PlanetRole.COLLABORATOR,
        }

    async def test_self_promotion_rejected(self, client: AsyncClient, session_factory, test_user, planet):
        """Promoting the current owner leaves exactly one owner"""
        resp = await client.put(
            f"/planets/{planet.id}/users/{test_user.id}/promote", headers=get_auth_headers(test_user),
        )
        assert resp.status_code == 409
        assert await _roles(session_factory, planet.id) == {test_user.id: PlanetRole.OWNER}

    async def test_admin_promotes_without_membership(
        self, client: AsyncClient, db_session, session_factory, test_user, other_user, admin_user,
    ):
        planet = await make_planet(db_session, test_user, collaborators=[other_user])
        resp = await client.put(
            f"/planets/{planet.id}/users/{other_user.id}/promote", headers=get_auth_headers(admin_user),
        )
        assert resp.status_code == 200
        roles = await _roles(session_factory, planet.id)
        assert list(roles.values()).count(PlanetRole.OWNER) == 1
        assert roles[other_user.id] == PlanetRole.OWNER

    async def test_collaborator_cannot_promote(self, client: AsyncClient, db_session, test_user, other_user):
        planet = await make_planet(db_session, test_user, collaborators=[other_user])
        resp = await client.put(
            f"/planets/{planet.id}/users/{other_user.id}/promote", headers=get_auth_headers(other_user),
        )
        assert resp.status_code == 403


@pytest.mark.asyncio
class TestConcurrentOwnership:
    async def test_racing_promotions_keep_one_owner(
        self, client: AsyncClient, db_session, session_factory, test_user, other_user, third_user,
    ):
        """The first promotion demotes the caller, so the second is refused"""
        planet = await make_planet(db_session, test_user, collaborators=[other_user, third_user])
        headers = get_auth_headers(test_user)

        responses = await asyncio.gather(
            client.put(f"/planets/{planet.id}/users/{other_user.id}/promote", headers=headers),
            client.put(f"/planets/{planet.id}/users/{third_user.id}/promote", headers=headers),
        )

        assert sorted(r.status_code for r in responses) == [200, 403]
        roles = await _roles(session_factory, planet.id)
        assert list(roles.values()).count(PlanetRole.OWNER) == 1
        assert roles[test_user.id] == PlanetRole.COLLABORATOR

    async def test_racing_admin_promotions_keep_one_owner(
        self, client: AsyncClient, db_session, session_factory, test_user, other_user, third_user, admin_user,
    ):
        planet = await make_planet(db_session, test_user, collaborators=[other_user, third_user])
        headers = get_auth_headers(admin_user)

        responses = await asyncio.gather(
            client.put(f"/planets/{planet.id}/users/{other_user.id}/promote", headers=headers),
            client.put(f"/planets/{planet.id}/users/{third_user.id}/promote", headers=headers),
        )

        assert [r.status_code for r in responses] == [200, 200]
        roles = await _roles(session_factory, planet.id)
        assert list(roles.values()).count(PlanetRole.OWNER) == 1
        assert roles[test_user.id] == PlanetRole.COLLABORATOR

    async def test_removal_racing_promotion_of_same_user(
        self, client: AsyncClient, db_session, session_factory, test_user, other_user,
    ):
        """Whichever runs second sees the other's result, never a half-applied state"""
        planet = await make_planet(db_session, test_user, collaborators=[other_user])
        headers = get_auth_headers(test_user)

        promote, remove = await asyncio.gather(
            client.put(f"/planets/{planet.id}/users/{other_user.id}/promote", headers=headers),
            client.delete(f"/planets/{planet.id}/users/{other_user.id}", headers=headers),
        )

        roles = await _roles(session_factory, planet.id)
        assert list(roles.values()).count(PlanetRole.OWNER) == 1
        if promote.status_code == 200:
            assert remove.status_code == 403
            assert roles[other_user.id] == PlanetRole.OWNER
        else:
            assert remove.status_code == 204
            assert promote.status_code == 404
            assert roles == {test_user.id: PlanetRole.OWNER}

    async def test_database_rejects_second_owner_link(self, db_session, session_factory, test_user, other_user):
        planet = await make_planet(db_session, test_user)

        async with session_factory() as session:
            session.add(PlanetCollaborator(planet_id=planet.id, user_id=other_user.id, role=PlanetRole.OWNER))
            with pytest.raises(IntegrityError):
                await session.commit()
