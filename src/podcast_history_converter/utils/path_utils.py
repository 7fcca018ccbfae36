import os
from pathlib import Path
from typing import List


def config_search_paths(filename: str, env_var_name: str = "PHC_CONFIGS_DIR") -> List[Path]:
    """Candidate locations of a config file, most specific first.

    1. Directory named by the environment variable (default: PHC_CONFIGS_DIR)
    2. ./configs relative to the current working directory
    3. $XDG_CONFIG_HOME/podcast-history-converter (~/.config by default)
    4. configs/ shipped at the repository root
    """
    xdg_home = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    paths = []
    if env_var_name in os.environ:
        paths.append(Path(os.environ[env_var_name]) / filename)
    paths.extend(
        [
            Path.cwd() / "configs" / filename,
            xdg_home / "podcast-history-converter" / filename,
            Path(__file__).parent.parent.parent.parent / "configs" / filename,
        ]
    )
    return paths


def resolve_config_path(filename: str, env_var_name: str = "PHC_CONFIGS_DIR") -> Path:
    """Return the first existing config location.

    Falls back to the shipped location even if it doesn't exist; the error is
    raised when the file is loaded.
    """
    paths = config_search_paths(filename, env_var_name)
    for path in paths:
        if path.exists():
            return path
    return paths[-1]
