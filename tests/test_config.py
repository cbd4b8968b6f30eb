"""Tests for configuration loading."""

from pathlib import Path

from lanlens.config import ARP_CACHE_PRESETS, LanLensConfig


class TestDefaults:
    """Tests for default configuration values."""

    def test_defaults(self):
        config = LanLensConfig()

        assert config.db_path == Path.home() / ".lanlens" / "lanlens.db"
        assert config.api_port == 8085
        assert config.api_host == "127.0.0.1"
        assert config.arp_ttl_seconds == 30.0
        assert config.max_concurrent_scans == 32
        assert config.validate() == []

    def test_presets(self):
        assert ARP_CACHE_PRESETS["default"] == (30.0, 500, True)
        assert ARP_CACHE_PRESETS["aggressive"] == (60.0, 1000, True)
        assert ARP_CACHE_PRESETS["minimal"] == (10.0, 100, False)

    def test_apply_preset(self):
        config = LanLensConfig()
        config.apply_arp_preset("minimal")

        assert config.arp_preset == "minimal"
        assert config.arp_ttl_seconds == 10.0
        assert config.arp_max_entries == 100
        assert config.arp_auto_refresh is False

    def test_unknown_preset_ignored(self):
        config = LanLensConfig()
        config.apply_arp_preset("turbo")
        assert config.arp_preset == "default"


class TestFromEnv:
    """Tests for environment variable loading."""

    def test_from_env(self, monkeypatch, tmp_path):
        """Should read LANLENS_* variables and the Fingerbank key."""
        monkeypatch.setenv("LANLENS_DB_PATH", str(tmp_path / "devices.db"))
        monkeypatch.setenv("FINGERBANK_API_KEY", "secret")
        monkeypatch.setenv("LANLENS_ARP_PRESET", "aggressive")
        monkeypatch.setenv("LANLENS_ENABLE_MDNS", "false")
        monkeypatch.setenv("LANLENS_API_PORT", "9000")

        config = LanLensConfig.from_env()

        assert config.db_path == tmp_path / "devices.db"
        assert config.fingerbank_api_key == "secret"
        assert config.arp_max_entries == 1000
        assert config.enable_mdns is False
        assert config.enable_ssdp is True
        assert config.api_port == 9000

    def test_empty_api_key_is_none(self, monkeypatch):
        monkeypatch.setenv("FINGERBANK_API_KEY", "")
        assert LanLensConfig.from_env().fingerbank_api_key is None


class TestFromYaml:
    """Tests for YAML loading."""

    def test_missing_file_defaults(self, tmp_path):
        config = LanLensConfig.from_yaml(tmp_path / "nope.yaml")
        assert config.api_port == 8085

    def test_sections(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "paths:\n"
            "  db: /var/lib/lanlens/lanlens.db\n"
            "arp_cache:\n"
            "  preset: aggressive\n"
            "  ttl_seconds: 45\n"
            "behavior:\n"
            "  max_profiles: 50\n"
            "scanning:\n"
            "  max_concurrent: 8\n"
            "discovery:\n"
            "  ssdp: false\n"
            "api:\n"
            "  port: 9100\n"
            "log_level: DEBUG\n"
        )

        config = LanLensConfig.from_yaml(path)

        assert config.db_path == Path("/var/lib/lanlens/lanlens.db")
        assert config.arp_preset == "aggressive"
        assert config.arp_ttl_seconds == 45.0
        assert config.arp_max_entries == 1000
        assert config.behavior_max_profiles == 50
        assert config.max_concurrent_scans == 8
        assert config.enable_ssdp is False
        assert config.enable_arp is True
        assert config.api_port == 9100
        assert config.log_level == "DEBUG"

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert LanLensConfig.from_yaml(path).log_level == "INFO"


class TestCredentialsAndValidation:
    """Tests for credentials loading and validation."""

    def test_load_credentials(self, tmp_path):
        creds = tmp_path / "credentials.yaml"
        creds.write_text('fingerbank:\n  api_key: "abc123"\n')

        config = LanLensConfig(credentials_path=creds)

        assert config.load_credentials() is True
        assert config.fingerbank_api_key == "abc123"

    def test_missing_credentials(self, tmp_path):
        config = LanLensConfig(credentials_path=tmp_path / "none.yaml")
        assert config.load_credentials() is False
        assert config.fingerbank_api_key is None

    def test_invalid_credentials_file(self, tmp_path):
        creds = tmp_path / "credentials.yaml"
        creds.write_text("fingerbank: [unclosed\n")
        assert LanLensConfig(credentials_path=creds).load_credentials() is False

    def test_validate_collects_errors(self, tmp_path):
        config = LanLensConfig(
            arp_ttl_seconds=0,
            max_concurrent_scans=0,
            api_port=70000,
            bundled_db_path=tmp_path / "missing.db",
        )

        errors = config.validate()

        assert len(errors) == 4
        assert any("API port" in e for e in errors)
        assert any("Bundled fingerprint database" in e for e in errors)
