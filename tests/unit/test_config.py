"""
Unit tests for configuration loading and validation.
"""

import json

import pytest
import yaml
from pydantic import ValidationError

from tidemark.utils.config import (
    ConfigLoader,
    StorageConfig,
    SyncConfig,
    TidemarkConfig,
    load_config,
)
from tidemark.utils.errors import ConfigurationError

from tests.fixtures import RecordFixtures


class TestSyncConfig:
    """Test sync policy defaults and validation."""

    def test_defaults(self):
        config = SyncConfig()

        assert config.auto_sync_interval == 0
        assert config.push_sync is True
        assert config.allow_remote is True
        assert config.allow_persistence is True
        assert config.early_data_return is False
        assert config.retry_codes == {401, 500, 502}
        assert config.replace_codes == {400, 403, 404}
        assert config.max_retry == 3
        assert config.schema_drift_reset is False

    def test_overlapping_codes_rejected(self):
        with pytest.raises(ValidationError):
            SyncConfig(retry_codes={500, 404}, replace_codes={404})

    def test_out_of_range_codes_rejected(self):
        with pytest.raises(ValidationError):
            SyncConfig(retry_codes={1000})

    def test_negative_retry_rejected(self):
        with pytest.raises(ValidationError):
            SyncConfig(max_retry=-1)


class TestTidemarkConfig:
    """Test the root configuration model."""

    def test_duplicate_collections_rejected(self):
        with pytest.raises(ValidationError):
            TidemarkConfig(collections=[RecordFixtures.TODOS, RecordFixtures.TODOS])

    def test_storage_path_made_absolute(self):
        config = StorageConfig(path="relative/store.db")

        assert config.path.is_absolute()


class TestConfigLoader:
    """Test merging of configuration sources."""

    @pytest.mark.asyncio
    async def test_file_sources_by_priority(self, temp_dir):
        base = temp_dir / "base.yaml"
        base.write_text(yaml.safe_dump({
            "sync": {"max_retry": 5, "push_sync": False},
            "collections": [RecordFixtures.TODOS],
        }))
        override = temp_dir / "override.json"
        override.write_text(json.dumps({"sync": {"max_retry": 7}}))

        loader = ConfigLoader()
        loader.add_source(override, priority=20)
        loader.add_source(base, priority=10)
        config = await loader.load()

        assert config.sync.max_retry == 7
        assert config.sync.push_sync is False
        assert config.collections[0].name == "todos"
        assert loader.get_config() is config

    @pytest.mark.asyncio
    async def test_toml_and_env_file(self, temp_dir):
        toml_path = temp_dir / "tidemark.toml"
        toml_path.write_text('[transport]\nbase_url = "http://remote"\ntimeout = 5\n')
        env_path = temp_dir / "local.env"
        env_path.write_text("# comment\nTIDEMARK_SYNC__AUTO_SYNC_INTERVAL=2.5\n")

        loader = ConfigLoader()
        loader.add_source(toml_path)
        loader.add_source(env_path, priority=1)
        config = await loader.load()

        assert config.transport.base_url == "http://remote"
        assert config.transport.timeout == 5
        assert config.sync.auto_sync_interval == 2.5

    @pytest.mark.asyncio
    async def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("TIDEMARK_SYNC__MAX_RETRY", "9")
        monkeypatch.setenv("TIDEMARK_SYNC__RETRY_CODES", "401,503")
        monkeypatch.setenv("TIDEMARK_DEBUG", "true")

        loader = ConfigLoader()
        loader.add_source({"sync": {"max_retry": 1}})
        config = await loader.load()

        assert config.sync.max_retry == 9
        assert config.sync.retry_codes == {401, 503}
        assert config.debug is True

    @pytest.mark.asyncio
    async def test_validation_error_wrapped(self):
        loader = ConfigLoader()
        loader.add_source({"sync": {"max_retry": "many"}})

        with pytest.raises(ConfigurationError) as exc_info:
            await loader.load()

        assert "sync.max_retry" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_unreadable_file_wrapped(self, temp_dir):
        broken = temp_dir / "broken.json"
        broken.write_text("{not json")

        loader = ConfigLoader()
        loader.add_source(broken)

        with pytest.raises(ConfigurationError):
            await loader.load()

    def test_unknown_file_type(self, temp_dir):
        with pytest.raises(ConfigurationError):
            ConfigLoader().add_source(temp_dir / "config.ini")

    def test_get_config_before_load(self):
        with pytest.raises(ConfigurationError):
            ConfigLoader().get_config()

    @pytest.mark.asyncio
    async def test_reload_notifies_callbacks(self, temp_dir):
        path = temp_dir / "config.json"
        path.write_text(json.dumps({"sync": {"max_retry": 1}}))
        loader = ConfigLoader()
        loader.add_source(path)
        await loader.load()
        seen = []
        loader.register_callback(lambda config: seen.append(config.sync.max_retry))

        path.write_text(json.dumps({"sync": {"max_retry": 2}}))
        await loader._reload()

        assert seen == [2]

    @pytest.mark.asyncio
    async def test_load_config_extra(self, temp_dir):
        path = temp_dir / "config.yaml"
        path.write_text(yaml.safe_dump({"app_name": "from-file"}))

        config = await load_config([path], extra_config={"storage": {"backend": "memory"}})

        assert config.app_name == "from-file"
        assert config.storage.backend == "memory"
