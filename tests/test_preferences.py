"""
Preferences: validation, debounced persistence, migration, sync.
"""
import asyncio
import json

import pytest

from observability.event_store import event_store
from voice_commerce.errors import PreferencesValidationError
from voice_commerce.preferences import (
    SCHEMA_VERSION,
    Preferences,
    PreferencesStore,
    deep_merge,
    migrate,
    to_aliases,
)


class GatedSleep:
    """Sleep that records the requested delay and blocks until released."""

    def __init__(self):
        self.delays = []
        self.gate = asyncio.Event()

    async def __call__(self, delay):
        self.delays.append(delay)
        await self.gate.wait()


class FakeRemote:
    def __init__(self, record=None):
        self.record = record
        self.pushed = []

    async def fetch(self, device_id):
        return self.record

    async def push(self, device_id, record):
        self.pushed.append((device_id, record))
        return True


async def _settle(rounds=10):
    for _ in range(rounds):
        await asyncio.sleep(0)


class TestValidation:
    def test_out_of_range_threshold_is_rejected(self, tmp_path):
        store = PreferencesStore(tmp_path)
        result = store.update({"recognition": {"confidenceThreshold": 1.5}})

        assert not result.ok
        assert [e.location for e in result.errors] == ["recognition.confidenceThreshold"]
        assert store.preferences.recognition.confidence_threshold == 0.7
        assert not store.dirty
        assert not store.persist_pending

    def test_snake_case_keys_accepted(self, tmp_path):
        store = PreferencesStore(tmp_path)
        result = store.update({"recognition": {"confidence_threshold": 0.8}, "speaker": {"rate": 1.5}})
        assert result.ok
        assert store.preferences.recognition.confidence_threshold == 0.8
        assert store.preferences.speaker.rate == 1.5
        assert store.dirty

    def test_unknown_field_rejected(self, tmp_path):
        store = PreferencesStore(tmp_path)
        result = store.update({"speaker": {"loudness": 3}})
        assert not result.ok
        assert result.errors[0].location == "speaker.loudness"

    def test_whole_update_is_atomic(self, tmp_path):
        store = PreferencesStore(tmp_path)
        result = store.update({"speaker": {"volume": 0.5}, "microphone": {"sampleRate": 12345}})
        assert not result.ok
        assert store.preferences.speaker.volume == 0.8

    def test_dialect_must_fit_language(self, tmp_path):
        store = PreferencesStore(tmp_path)
        assert not store.update({"language": "fr-CH"}).ok
        assert store.set_language("fr-CH").ok
        assert store.preferences.dialect is None
        assert store.set_language("de-CH").ok
        assert store.preferences.dialect == "ZH"
        assert not store.set_dialect("XX").ok
        assert not store.set_language("xx-XX").ok

    def test_updater_function(self, tmp_path):
        store = PreferencesStore(tmp_path)
        result = store.update(lambda prefs: {"speaker": {"volume": prefs.speaker.volume / 2}})
        assert result.ok
        assert store.preferences.speaker.volume == 0.4

    def test_invalid_custom_template_rejected(self, tmp_path):
        store = PreferencesStore(tmp_path)
        result = store.update({"advanced": {"customCommands": [{"intent": "call_waiter", "templates": ["(kellner"]}]}})
        assert not result.ok
        assert store.preferences.advanced.custom_commands == []

    def test_listeners_get_committed_document(self, tmp_path):
        store = PreferencesStore(tmp_path)
        seen = []
        store.subscribe(lambda prefs: seen.append(prefs.speaker.volume))
        store.update({"speaker": {"volume": 0.3}})
        store.update({"speaker": {"volume": 7}})
        assert seen == [0.3]

    def test_preferences_property_is_a_copy(self, tmp_path):
        store = PreferencesStore(tmp_path)
        store.preferences.speaker.volume = 0.0
        assert store.preferences.speaker.volume == 0.8


class TestPersistence:
    @pytest.mark.asyncio
    async def test_writes_are_debounced(self, tmp_path):
        event_store.clear()
        sleep = GatedSleep()
        store = PreferencesStore(tmp_path, "kiosk", debounce_s=0.5, sleep=sleep, session_id="prefs-debounce")

        for volume in (0.1, 0.2, 0.3):
            store.update({"speaker": {"volume": volume}})
            await _settle(2)
        assert store.persist_pending
        assert not store.path.exists()
        assert sleep.delays == [0.5, 0.5, 0.5]

        sleep.gate.set()
        await _settle()
        assert not store.persist_pending
        assert not store.dirty
        assert json.loads(store.path.read_text())["preferences"]["speaker"]["volume"] == 0.3
        assert len(event_store.query(session_id="prefs-debounce", event_type="preferences.persisted")) == 1

    @pytest.mark.asyncio
    async def test_flush_and_load(self, tmp_path):
        store = PreferencesStore(tmp_path, "kiosk")
        store.set_language("fr-CH")
        assert await store.flush() is True
        assert await store.flush() is False

        record = json.loads(store.path.read_text())
        assert record["schemaVersion"] == SCHEMA_VERSION
        assert record["deviceId"] == "kiosk"
        assert record["preferences"]["language"] == "fr-CH"

        reloaded = PreferencesStore(tmp_path, "kiosk")
        prefs = await reloaded.load()
        assert prefs.language == "fr-CH"
        assert not reloaded.dirty

    @pytest.mark.asyncio
    async def test_backup_used_when_main_file_is_corrupt(self, tmp_path):
        store = PreferencesStore(tmp_path, "kiosk")
        store.set_language("it-CH")
        await store.flush()
        store.set_language("en-GB")
        await store.flush()
        assert json.loads(store.backup_path.read_text())["preferences"]["language"] == "it-CH"

        store.path.write_text("{not json")
        prefs = await PreferencesStore(tmp_path, "kiosk").load()
        assert prefs.language == "it-CH"

    @pytest.mark.asyncio
    async def test_defaults_without_files(self, tmp_path):
        prefs = await PreferencesStore(tmp_path / "missing", "kiosk").load()
        assert prefs == Preferences()

    @pytest.mark.asyncio
    async def test_aclose_flushes_dirty_state(self, tmp_path):
        store = PreferencesStore(tmp_path, "kiosk")
        store.update({"wakeWord": "hoi eatech"})
        await store.aclose()
        assert json.loads(store.path.read_text())["preferences"]["wakeWord"] == "hoi eatech"


class TestRemoteSync:
    async def _local_with_sync(self, tmp_path):
        store = PreferencesStore(tmp_path, "kiosk")
        store.update({"privacy": {"cloudSync": True}, "language": "de-CH"})
        await store.flush()
        return json.loads(store.path.read_text())

    @pytest.mark.asyncio
    async def test_newer_remote_is_adopted(self, tmp_path):
        await self._local_with_sync(tmp_path)
        remote = FakeRemote({
            "schemaVersion": SCHEMA_VERSION,
            "lastModified": "2999-01-01T00:00:00+00:00",
            "preferences": {"language": "it-CH", "dialect": None, "privacy": {"cloudSync": True}},
        })
        store = PreferencesStore(tmp_path, "kiosk", remote=remote)
        prefs = await store.load()
        assert prefs.language == "it-CH"
        assert json.loads(store.path.read_text())["preferences"]["language"] == "it-CH"
        assert remote.pushed == []

    @pytest.mark.asyncio
    async def test_newer_local_is_pushed(self, tmp_path):
        await self._local_with_sync(tmp_path)
        remote = FakeRemote({
            "schemaVersion": SCHEMA_VERSION,
            "lastModified": "2000-01-01T00:00:00Z",
            "preferences": {"language": "it-CH", "dialect": None},
        })
        store = PreferencesStore(tmp_path, "kiosk", remote=remote)
        prefs = await store.load()
        assert prefs.language == "de-CH"
        assert remote.pushed[0][0] == "kiosk"
        assert remote.pushed[0][1]["preferences"]["language"] == "de-CH"

    @pytest.mark.asyncio
    async def test_remote_ignored_without_cloud_sync(self, tmp_path):
        remote = FakeRemote({"lastModified": "2999-01-01T00:00:00Z", "preferences": {"language": "it-CH", "dialect": None}})
        store = PreferencesStore(tmp_path, "kiosk", remote=remote)
        prefs = await store.load()
        assert prefs.language == "de-CH"
        store.update({"speaker": {"volume": 0.5}})
        await store.flush()
        assert remote.pushed == []


class TestMigration:
    def test_version_two_record(self):
        record = migrate({
            "version": 2,
            "preferences": {
                "language": "de-CH",
                "dialect": "de-CH-BE",
                "tts": {"rate": 1.2, "confirmations": False, "errors": True},
                "obsolete": 1,
            },
        })
        prefs = record["preferences"]
        assert record["schemaVersion"] == SCHEMA_VERSION
        assert "version" not in record
        assert prefs["dialect"] == "BE"
        assert prefs["speaker"] == {"rate": 1.2}
        assert prefs["feedback"] == {"speakConfirmations": False, "speakErrors": True}
        assert "obsolete" not in prefs
        assert Preferences.model_validate(prefs).feedback.speak_confirmations is False

    def test_version_one_voice_settings(self):
        record = migrate({"schemaVersion": "1.2.0", "preferences": {"voiceSettings": {"volume": 0.4, "enabled": False}}})
        prefs = Preferences.model_validate(record["preferences"])
        assert prefs.speaker.volume == 0.4
        assert prefs.feedback.enabled is False

    def test_current_record_unchanged(self):
        current = {"schemaVersion": SCHEMA_VERSION, "preferences": Preferences().model_dump(by_alias=True, mode="json")}
        assert migrate(current)["preferences"] == current["preferences"]


class TestStatistics:
    def test_usage_statistics(self, tmp_path):
        store = PreferencesStore(tmp_path)
        store.record_command("add_to_cart", 0.9, True)
        store.record_command("add_to_cart", 0.7, True)
        store.record_command(None, 0.2, False)
        store.record_error("timeout")

        stats = store.usage_statistics()
        assert stats["totalCommands"] == 3
        assert stats["successfulCommands"] == 2
        assert stats["failedCommands"] == 1
        assert stats["successRate"] == pytest.approx(0.6667)
        assert stats["averageConfidence"] == pytest.approx(0.6)
        assert stats["favoriteCommands"] == [{"intent": "add_to_cart", "count": 2}]
        assert stats["errorsByCategory"] == {"timeout": 1}
        assert stats["lastUsed"] is not None

    def test_empty_statistics(self, tmp_path):
        stats = PreferencesStore(tmp_path).usage_statistics()
        assert stats["successRate"] == 0.0
        assert stats["favoriteCommands"] == []


class TestImportExportReset:
    def test_round_trip_between_devices(self, tmp_path):
        source = PreferencesStore(tmp_path, "a")
        source.update({"speaker": {"voice": "fr-CH-Standard-A"}, "language": "fr-CH", "dialect": None})
        exported = source.export()
        assert exported["deviceId"] == "a"

        target = PreferencesStore(tmp_path, "b")
        prefs = target.import_(exported)
        assert prefs.language == "fr-CH"
        assert prefs.speaker.voice == "fr-CH-Standard-A"
        assert target.dirty

    def test_import_bare_mapping(self, tmp_path):
        prefs = PreferencesStore(tmp_path).import_({"wakeWord": "sali eatech"})
        assert prefs.wake_word == "sali eatech"

    def test_invalid_import_raises(self, tmp_path):
        store = PreferencesStore(tmp_path)
        with pytest.raises(PreferencesValidationError) as excinfo:
            store.import_({"preferences": {"speaker": {"volume": 2}}})
        assert excinfo.value.errors[0].location == "speaker.volume"
        assert store.preferences.speaker.volume == 0.8

    def test_reset(self, tmp_path):
        store = PreferencesStore(tmp_path)
        store.update({"speaker": {"volume": 0.1}})
        store.record_command("greeting", 1.0, True)

        kept = store.reset(keep_statistics=True)
        assert kept.speaker.volume == 0.8
        assert kept.stats.total_commands == 1

        assert store.reset().stats.total_commands == 0


def test_helpers():
    assert deep_merge({"a": {"b": 1, "c": 2}, "l": [1]}, {"a": {"b": 3}, "l": [2]}) == {"a": {"b": 3, "c": 2}, "l": [2]}
    assert to_aliases(Preferences, {"wake_word": "x", "speaker": {"device_id": "hw:1"}, "bogus": 1}) == {
        "wakeWord": "x",
        "speaker": {"deviceId": "hw:1"},
        "bogus": 1,
    }
