from __future__ import annotations

from typing import Any, Dict, Optional

from wanroute.backends.sim import SimBackend
from wanroute.cli.validate import validate_config
from wanroute.core.errors import ConfigError
from wanroute.runtime.config import load_effective_config


def run_sim(
    config_path: str,
    output_dir: Optional[str] = None,
    include_packets: bool = False,
    write: bool = True,
) -> Dict[str, Any]:
    cfg = load_effective_config(config_path)
    if output_dir:
        cfg["output_dir"] = output_dir
    errors = validate_config(cfg)
    if errors:
        raise ConfigError("Invalid config: " + "; ".join(errors))
    return SimBackend(write=write, include_packets=include_packets).run(cfg)
