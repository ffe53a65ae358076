import os
from pathlib import Path


def _load_dotenv_if_needed() -> None:
	# Tests run offline and must not pick up a developer's provider keys
	if os.getenv("PYTEST_CURRENT_TEST"):
		return
	env_path = Path(os.getenv("STUDIO_ENV_FILE", ".env"))
	if not env_path.exists():
		return
	try:
		for line in env_path.read_text(encoding="utf-8").splitlines():
			s = line.strip()
			if not s or s.startswith("#") or "=" not in s:
				continue
			if s.startswith("export "):
				s = s[len("export "):].lstrip()
			key, val = s.split("=", 1)
			key = key.strip()
			val = val.strip()
			if (val.startswith('"') and val.endswith('"')) or (val.startswith("'") and val.endswith("'")):
				val = val[1:-1]
			# Real environment wins over the file
			if key and key not in os.environ:
				os.environ[key] = val
	except OSError:
		# Fail open: the service still starts with plain environment variables
		pass


_load_dotenv_if_needed()

__version__ = "0.3.0"
