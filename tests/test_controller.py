"""End-to-end tests of the controller against in-memory collaborators."""

import asyncio
import json

import pytest

from travelmap.client.controller import PlacementError, TravelMapController
from travelmap.client.map import MemoryMap
from travelmap.client.models import CitySuggestion, Photo
from travelmap.utils.image import bytes_to_data_url

USER_KEY = "viajes-fran-photos:user-1"
LYON = CitySuggestion("Lyon", "France", "FR", 45.764, 4.8357)


@pytest.fixture
def notices():
    return []


@pytest.fixture
def answers():
    """Replies to confirmation prompts; True when empty."""
    return []


@pytest.fixture
def controller(geocoder, kv, remote, notices, answers):
    return TravelMapController(
        identity=lambda: "user-1",
        geocoder=geocoder,
        local=kv,
        remote=remote,
        notify=lambda message, kind: notices.append((message, kind)),
        confirm=lambda message: answers.pop(0) if answers else True,
        debounce_seconds=0,
        settle_seconds=0,
        stagger_seconds=0,
    )


def cached_envelope(*records):
    return json.dumps({"schemaVersion": 1, "exportDate": "2024-05-01T00:00:00Z", "photos": list(records)})


async def placed_photo(controller, jpeg, city=LYON):
    await controller.upload_files([("no-gps.jpg", jpeg())])
    controller.select_city(city)
    photo = controller.confirm_city()
    await controller.drain()
    return photo


class TestSession:
    @pytest.mark.asyncio
    async def test_start_requires_identity(self, geocoder, kv):
        controller = TravelMapController(lambda: None, geocoder, kv)

        assert await controller.start() is False
        assert controller.state.user_id is None

    @pytest.mark.asyncio
    async def test_start_loads_local_and_remote(self, controller, kv, remote, geocoder, jpeg):
        image = bytes_to_data_url(jpeg())
        kv.set_item(USER_KEY, cached_envelope(
            {"id": "pho_a", "url": image, "lat": 48.8566, "lon": 2.3522,
             "location": "Paris, France", "country": "France", "countryCode": "FR", "dbId": 99},
            {"id": "pho_b", "url": image, "lat": 40.4168, "lon": -3.7038},
        ))
        remote.add_row("user-1", 41.9, 12.5, "Rome, Italy", "Italy")
        geocoder.place(40.4168, -3.7038, city="Madrid", country="España", country_code="es")

        assert await controller.start() is True
        await controller.drain()

        state = controller.state
        assert len(state) == 3
        assert set(state.city_groups) == {"Paris", "Madrid", "Rome"}
        # cached photo with a dbId is already synced; the other one is uploaded
        assert "pho_a" in state.synced_ids
        assert state.get("pho_b").db_id is not None
        # only the photo at the fallback place without country code is re-resolved
        assert geocoder.calls == [(40.4168, -3.7038)]

    @pytest.mark.asyncio
    async def test_logout_clears_everything(self, controller, jpeg):
        await controller.start()
        canvas = MemoryMap()
        controller.attach_map(canvas)
        await placed_photo(controller, jpeg)
        await controller.upload_files([("later.jpg", jpeg())])

        controller.logout()

        state = controller.state
        assert state.user_id is None
        assert len(state) == 0
        assert not state.pending
        assert state.markers == []
        assert canvas.markers == {}

    @pytest.mark.asyncio
    async def test_user_change_resets_state(self, controller, jpeg):
        await controller.start()
        await placed_photo(controller, jpeg)
        controller.identity = lambda: "user-2"

        await controller.start()

        assert controller.state.user_id == "user-2"
        assert len(controller.state) == 0


class TestUpload:
    @pytest.mark.asyncio
    async def test_photos_without_gps_are_queued(self, controller, jpeg, notices):
        await controller.start()

        await controller.upload_files([(f"img{i}.jpg", jpeg(seed=i)) for i in range(3)])

        state = controller.state
        assert len(state.pending) == 3
        assert len(state) == 0
        assert notices[-1] == ("3 fotos sin GPS - selecciona la ciudad", "info")

        controller.select_city(LYON)
        first = controller.current_pending
        photo = controller.confirm_city()

        assert photo.id == first.id
        assert len(state.pending) == 2
        assert (photo.lat, photo.lon) == (45.764, 4.8357)
        assert photo.location == "Lyon, France"
        assert photo.country_code == "FR"
        assert state.city_groups["Lyon"].photo_ids == [photo.id]
        assert controller.selected_city is None

    @pytest.mark.asyncio
    async def test_gps_photo_placed_and_resolved(self, controller, geocoder, remote, kv, jpeg, notices):
        await controller.start()
        canvas = MemoryMap()
        controller.attach_map(canvas)
        geocoder.place(48.8566, 2.3522, city="Paris", country="France", country_code="fr")

        await controller.upload_files([("paris.jpg", jpeg(gps=(48.8566, 2.3522), date="2024:05:01 10:00:00"))])
        await controller.drain()

        photo = next(iter(controller.state))
        assert photo.location == "Paris, France"
        assert photo.date == "2024:05:01 10:00:00"
        assert photo.db_id is not None
        assert list(controller.state.city_groups) == ["Paris"]
        assert [m.city_name for m in controller.state.markers] == ["Paris"]
        assert remote.updated == [photo.db_id]
        saved = json.loads(kv.get_item(USER_KEY))["photos"]
        assert saved[0]["location"] == "Paris, France"
        assert ("1 foto cargada exitosamente", "success") in notices

    @pytest.mark.asyncio
    async def test_unreadable_file_skipped(self, controller, jpeg):
        await controller.start()

        await controller.upload_files([("broken.jpg", b"nope"), ("ok.jpg", jpeg())])

        assert len(controller.state.pending) == 1

    @pytest.mark.asyncio
    async def test_remote_failure_keeps_photo(self, controller, remote, jpeg):
        await controller.start()
        remote.fail = True

        photo = await placed_photo(controller, jpeg)

        assert photo.id in controller.state
        assert photo.db_id is None

    @pytest.mark.asyncio
    async def test_overlapping_uploads_complete_separately(self, controller, kv, jpeg, notices):
        await controller.start()
        first = asyncio.create_task(controller.upload_files([
            (f"a{i}.jpg", jpeg(width=400, height=300, gps=(40.0 + i, -3.0), noise=True, seed=i))
            for i in range(3)
        ]))
        await asyncio.sleep(0)

        await controller.upload_files([("b.jpg", jpeg(gps=(45.0, 4.0), seed=9))])
        await first
        await controller.drain()

        assert len(controller.state) == 4
        assert len(json.loads(kv.get_item(USER_KEY))["photos"]) == 4
        assert ("3 fotos cargadas exitosamente", "success") in notices
        assert ("1 foto cargada exitosamente", "success") in notices


class TestPlacement:
    @pytest.mark.asyncio
    async def test_confirm_requires_pending_and_city(self, controller, jpeg):
        await controller.start()
        with pytest.raises(PlacementError):
            controller.confirm_city()

        await controller.upload_files([("a.jpg", jpeg())])
        with pytest.raises(PlacementError):
            controller.confirm_city()
        assert len(controller.state.pending) == 1

    @pytest.mark.asyncio
    async def test_skip_drops_head(self, controller, jpeg):
        await controller.start()
        await controller.upload_files([("a.jpg", jpeg()), ("b.jpg", jpeg(seed=1))])
        second = controller.state.pending[1]

        controller.skip_pending()

        assert controller.current_pending is second
        assert len(controller.state) == 0

    @pytest.mark.asyncio
    async def test_search_cities(self, controller, geocoder):
        geocoder.suggestions = [LYON]

        assert await controller.search_cities("L") == []
        assert await controller.search_cities("Lyo") == [LYON]


class TestEditing:
    @pytest.mark.asyncio
    async def test_save_note(self, controller, remote, kv, jpeg, notices):
        await controller.start()
        photo = await placed_photo(controller, jpeg)
        generation = photo.generation

        assert controller.save_note(photo.id, "  Vieux Lyon ", "Traboules") is True
        await controller.drain()

        assert photo.note_title == "Vieux Lyon"
        assert photo.generation == generation + 1
        assert remote.updated == [photo.db_id]
        assert json.loads(kv.get_item(USER_KEY))["photos"][0]["noteTitle"] == "Vieux Lyon"
        assert notices[-1] == ("Nota guardada exitosamente", "success")

    @pytest.mark.asyncio
    async def test_delete_selected(self, controller, remote, jpeg, notices):
        await controller.start()
        canvas = MemoryMap()
        controller.attach_map(canvas)
        lyon = await placed_photo(controller, jpeg)
        rome = await placed_photo(controller, jpeg, CitySuggestion("Rome", "Italy", "IT", 41.9, 12.5))

        assert controller.toggle_selection(lyon.id) is True
        assert controller.delete_selected() == 1
        await controller.drain()

        state = controller.state
        assert lyon.id not in state
        assert list(state.city_groups) == ["Rome"]
        assert [m.city_name for m in state.markers] == ["Rome"]
        assert len(canvas.markers) == 1
        assert remote.deleted == [lyon.db_id]
        assert rome.db_id in remote.rows
        assert notices[-1] == ("1 foto eliminada exitosamente", "success")

    @pytest.mark.asyncio
    async def test_delete_selected_needs_confirmation(self, controller, jpeg, answers):
        await controller.start()
        photo = await placed_photo(controller, jpeg)
        controller.toggle_selection(photo.id)
        answers.append(False)

        assert controller.delete_selected() == 0
        assert photo.id in controller.state

    @pytest.mark.asyncio
    async def test_delete_all(self, controller, remote, kv, jpeg):
        await controller.start()
        canvas = MemoryMap()
        controller.attach_map(canvas)
        await placed_photo(controller, jpeg)
        await placed_photo(controller, jpeg, CitySuggestion("Rome", "Italy", "IT", 41.9, 12.5))
        assert kv.get_item(USER_KEY) is not None

        assert await controller.delete_all() is True
        await controller.drain()

        state = controller.state
        assert len(state) == 0
        assert state.location_groups == {}
        assert state.city_groups == {}
        assert state.synced_ids == set()
        assert state.markers == []
        assert canvas.markers == {}
        assert kv.get_item(USER_KEY) is None
        assert remote.rows == {}
        assert (canvas.center, canvas.zoom) == ((0.0, 0.0), 3)

    @pytest.mark.asyncio
    async def test_delete_selected_while_saving(self, controller, kv, jpeg):
        await controller.start()
        await controller.upload_files([
            ("paris.jpg", jpeg(gps=(48.8566, 2.3522))),
            ("rome.jpg", jpeg(gps=(41.9, 12.5), seed=1)),
        ])
        # the upload's local save is now compressing
        await asyncio.sleep(0)
        gone, kept = list(controller.state)

        controller.toggle_selection(gone.id)
        assert controller.delete_selected() == 1
        await controller.drain()

        saved = json.loads(kv.get_item(USER_KEY))["photos"]
        assert [p["id"] for p in saved] == [kept.id]

    @pytest.mark.asyncio
    async def test_delete_all_while_saving(self, controller, kv, jpeg):
        await controller.start()
        await controller.upload_files([("paris.jpg", jpeg(gps=(48.8566, 2.3522)))])
        await asyncio.sleep(0)

        assert await controller.delete_all() is True
        await controller.drain()

        assert len(controller.state) == 0
        assert kv.get_item(USER_KEY) is None


class TestBackup:
    @pytest.mark.asyncio
    async def test_export_then_import_replaces_photos(self, controller, jpeg, notices):
        await controller.start()
        photo = await placed_photo(controller, jpeg)
        controller.save_note(photo.id, "Note", "")
        content = controller.export_backup()
        controller.state.get(photo.id).update(location="Somewhere, Else")

        assert await controller.import_backup(content) == 1

        restored = controller.state.get(photo.id)
        assert restored is not photo
        assert restored.location == "Lyon, France"
        assert restored.note_title == "Note"
        assert list(controller.state.city_groups) == ["Lyon"]
        assert notices[-1] == ("1 fotos importadas exitosamente", "success")

    @pytest.mark.asyncio
    async def test_import_declined_keeps_data(self, controller, jpeg, answers):
        await controller.start()
        photo = await placed_photo(controller, jpeg)
        content = controller.export_backup()
        answers.append(False)

        assert await controller.import_backup(content) == 0
        assert controller.state.get(photo.id) is photo

    @pytest.mark.asyncio
    async def test_import_invalid_file_notifies(self, controller, notices):
        await controller.start()

        assert await controller.import_backup(json.dumps({"schemaVersion": 9, "photos": []})) == 0
        assert notices[-1][1] == "error"

    @pytest.mark.asyncio
    async def test_export_empty_notifies(self, controller, notices):
        await controller.start()

        assert controller.export_backup() is None
        assert notices[-1] == ("No hay fotos para exportar", "error")


class TestViews:
    @pytest.mark.asyncio
    async def test_stats(self, controller, jpeg):
        await controller.start()
        await placed_photo(controller, jpeg)
        await placed_photo(controller, jpeg, CitySuggestion("Paris", "France", "FR", 48.85, 2.35))
        await placed_photo(controller, jpeg, CitySuggestion("Rome", "Italy", "IT", 41.9, 12.5))

        stats = controller.stats()

        assert stats.total_photos == 3
        assert stats.total_locations == 3
        assert stats.total_countries == 2
        assert stats.countries == ["France", "Italy"]
        assert set(stats.flags) == {"France", "Italy"}
        assert len(controller.photos_in_country("France")) == 2

    @pytest.mark.asyncio
    async def test_map_settles_then_fits(self, geocoder, kv, jpeg):
        controller = TravelMapController(
            lambda: "user-1", geocoder, kv, debounce_seconds=0, settle_seconds=0.2,
        )
        await controller.start()
        canvas = MemoryMap()
        controller.attach_map(canvas)
        await placed_photo(controller, jpeg)
        assert canvas.fit_count == 0

        await asyncio.sleep(0.3)

        assert controller.state.map_settled is True
        assert canvas.fit_count >= 1

    @pytest.mark.asyncio
    async def test_marker_click_opens_city(self, controller, jpeg):
        await controller.start()
        canvas = MemoryMap()
        controller.attach_map(canvas)
        photo = await placed_photo(controller, jpeg)

        canvas.click(controller.state.markers[0].handle)

        assert controller.open_city_name == "Lyon"
        assert controller.city_photos("Lyon") == [photo]

    @pytest.mark.asyncio
    async def test_display_url(self, controller, remote, jpeg):
        await controller.start()
        photo = await placed_photo(controller, jpeg)

        assert await controller.display_url(photo.id) == f"https://remote.test/files/{photo.db_id}?n=1"
        remote.fail = True
        controller.urls.clear()
        assert (await controller.display_url(photo.id)).startswith("data:image/jpeg")
        assert await controller.display_url("missing") is None
