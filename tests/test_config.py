from pathlib import Path

from memorymap.config import Settings
from memorymap.services.status_store import StatusStore

ENV_VARS = ("SUPABASE_URL", "SUPABASE_BUCKET", "DATA_DIR", "CLOSE_DELAY_S", "PORT", "LOCATION_SITE", "MAP_API_KEY", "SESSION_TTL_S")


def test_defaults(monkeypatch, tmp_path):
	for var in ENV_VARS:
		monkeypatch.delenv(var, raising=False)
	s = Settings.from_env(str(tmp_path / "missing.env"))
	assert s.supabase_bucket == "images"
	assert s.supabase_table == "image_info"
	assert s.port == 5000
	assert s.close_delay_s == 1.0
	assert s.session_ttl_s == 1800.0
	assert s.preview_dir == Path("data") / "previews"


def test_environment_overrides(monkeypatch, tmp_path):
	monkeypatch.setenv("SUPABASE_URL", "https://project.supabase.test")
	monkeypatch.setenv("DATA_DIR", str(tmp_path / "work"))
	monkeypatch.setenv("CLOSE_DELAY_S", "2.5")
	monkeypatch.setenv("PORT", "8080")
	monkeypatch.setenv("SESSION_TTL_S", "120")
	monkeypatch.setenv("LOCATION_SITE", "https://geo.example.test/search")
	monkeypatch.setenv("MAP_API_KEY", "")
	s = Settings.from_env(str(tmp_path / "missing.env"))
	assert s.supabase_url == "https://project.supabase.test"
	assert s.status_dir == tmp_path / "work" / "sessions"
	assert s.close_delay_s == 2.5
	assert s.port == 8080
	assert s.session_ttl_s == 120.0
	assert s.place_search_url == "https://geo.example.test/search"
	assert s.map_api_key is None


def test_dotenv_file_is_loaded(monkeypatch, tmp_path):
	monkeypatch.delenv("SUPABASE_BUCKET", raising=False)
	env_file = tmp_path / ".env"
	env_file.write_text("SUPABASE_BUCKET=photos\n")
	assert Settings.from_env(str(env_file)).supabase_bucket == "photos"


def test_status_store_round_trip(tmp_path):
	store = StatusStore(tmp_path / "sessions")
	assert store.read_status("abc") == {"session_id": "abc", "phase": "unknown"}
	assert not store.exists("abc")

	store.write_status("abc", {"session_id": "abc", "phase": "done", "status": "업로드 완료!"})
	assert store.exists("abc")
	assert store.read_status("abc")["status"] == "업로드 완료!"
	assert "업로드" in (tmp_path / "sessions" / "abc.json").read_text(encoding="utf-8")

	store.delete("abc")
	store.delete("abc")
	assert not store.exists("abc")
