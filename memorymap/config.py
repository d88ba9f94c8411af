from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class Settings(BaseModel):
	"""Application settings. Built from the environment by `from_env`."""

	supabase_url: str = Field(default="", description="Supabase project URL.")
	supabase_key: str = Field(default="", description="Supabase service or anon key.")
	supabase_bucket: str = Field(default="images", description="Storage bucket holding uploaded images.")
	supabase_table: str = Field(default="image_info", description="Table holding image metadata rows.")
	map_tiles: str = Field(default="OpenStreetMap", description="Tile provider name or URL template; may contain {api_key}.")
	map_api_key: Optional[str] = Field(default=None, description="API key substituted into the tile URL template.")
	map_attribution: Optional[str] = Field(default=None, description="Attribution text required by custom tile URLs.")
	reverse_geocode_url: str = Field(default="https://nominatim.openstreetmap.org/reverse")
	place_search_url: str = Field(default="https://nominatim.openstreetmap.org/search")
	user_agent: str = Field(default="MemoryMap/1.0", description="User-Agent sent to the geocoding service.")
	public_api_url: str = Field(default="http://localhost:5000", description="Base URL clients use to reach the API.")
	static_dir: Path = Field(default=Path("dist"), description="Directory of static assets served as-is.")
	data_dir: Path = Field(default=Path("data"), description="Working directory for previews and session status.")
	log_dir: Optional[Path] = Field(default=None, description="Directory for rotating log files; stderr only when unset.")
	log_level: str = Field(default="INFO")
	close_delay_s: float = Field(default=1.0, description="Delay before a finished upload session is closed.")
	session_ttl_s: float = Field(default=1800.0, description="Idle time after which an upload session is closed and its files removed.")
	host: str = Field(default="0.0.0.0")
	port: int = Field(default=5000)

	@property
	def preview_dir(self) -> Path:
		return self.data_dir / "previews"

	@property
	def status_dir(self) -> Path:
		return self.data_dir / "sessions"

	@classmethod
	def from_env(cls, env_file: Optional[str] = None) -> "Settings":
		"""Load `.env` (if present) and read overrides from the environment."""

		load_dotenv(env_file)
		env = {
			"supabase_url": os.getenv("SUPABASE_URL"),
			"supabase_key": os.getenv("SUPABASE_KEY"),
			"supabase_bucket": os.getenv("SUPABASE_BUCKET"),
			"supabase_table": os.getenv("SUPABASE_TABLE"),
			"map_tiles": os.getenv("MAP_TILES"),
			"map_api_key": os.getenv("MAP_API_KEY"),
			"map_attribution": os.getenv("MAP_ATTRIBUTION"),
			"reverse_geocode_url": os.getenv("REVERSE_GEOCODE_URL"),
			"place_search_url": os.getenv("LOCATION_SITE"),
			"user_agent": os.getenv("GEOCODER_USER_AGENT"),
			"public_api_url": os.getenv("API_URL"),
			"static_dir": os.getenv("STATIC_DIR"),
			"data_dir": os.getenv("DATA_DIR"),
			"log_dir": os.getenv("LOG_DIR"),
			"log_level": os.getenv("LOG_LEVEL"),
			"close_delay_s": os.getenv("CLOSE_DELAY_S"),
			"session_ttl_s": os.getenv("SESSION_TTL_S"),
			"host": os.getenv("HOST"),
			"port": os.getenv("PORT"),
		}
		return cls(**{k: v for k, v in env.items() if v})


__all__ = ["Settings"]
