"""
Configuration of the annotation store.

Defaults live here; any entry can be overridden through ``ANNOSTORE_``
environment variables, with ``__`` separating nested keys.
"""

import os
from typing import Dict, Optional

from easydict import EasyDict as edict

from annostore.utils.env import load_cfg_from_env


def default_config() -> edict:
    cfg = edict()
    cfg.store = edict()
    # Nested dispatch depth at which re-entrant mutations are refused, 0 = no limit
    cfg.store.max_dispatch_depth = 64
    cfg.store.raise_observer_errors = False
    # Check index consistency after every mutation
    cfg.store.verify = False
    return cfg


def load_config(env: Optional[Dict[str, str]] = None) -> edict:
    """Default configuration with environment overrides applied."""
    return load_cfg_from_env(default_config(), os.environ if env is None else env)
